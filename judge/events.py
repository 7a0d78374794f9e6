"""
Live-update events.

Grading outcomes are announced on the owning class's room. Publishing is
fire-and-forget: `EventPublisher.emit` schedules the publish on the running
event loop and returns immediately; failures are logged and never reach
the grading request.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Set, Tuple

logger = logging.getLogger(__name__)

SUBMISSION_UPDATE = "submissionUpdate"
CODE_RUN = "codeRun"
CUSTOM_INPUT_RUN = "customInputRun"


def class_room(class_id: str) -> str:
    return f"class:{class_id}"


class LiveUpdateChannel(ABC):
    """Transport that delivers events to the subscribers of a room."""

    @abstractmethod
    async def publish(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        ...


class MemoryChannel(LiveUpdateChannel):
    """Keeps published events in a list. Used by the CLI and in tests."""

    def __init__(self):
        self.published: List[Tuple[str, str, Dict[str, Any]]] = []

    async def publish(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        self.published.append((room, event, payload))


class LoggingChannel(LiveUpdateChannel):
    """Writes events to the log instead of delivering them."""

    async def publish(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        logger.info("[%s] %s %s", room, event, payload)


class EventPublisher:
    """Schedules publishes as background tasks."""

    def __init__(self, channel: LiveUpdateChannel):
        self.channel = channel
        self._tasks: Set[asyncio.Task] = set()

    def emit(self, class_id: str, event: str, payload: Dict[str, Any]) -> None:
        """Schedule one event for the class room. Must be called from a running loop."""
        task = asyncio.get_running_loop().create_task(self._publish(class_room(class_id), event, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _publish(self, room: str, event: str, payload: Dict[str, Any]):
        try:
            await self.channel.publish(room, event, payload)
        except Exception as e:
            logger.error("Failed to publish %s to %s: %s", event, room, e)

    async def drain(self):
        """Wait for every scheduled publish to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))
