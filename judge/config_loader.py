"""
Configuration loader for the grading pipeline.

Handles loading and validating the judge configuration file.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "JUDGE_CONFIG"


@dataclass
class JudgeConfig:
    """
    Operational settings of the sandbox and the leaderboard.

    Attributes:
        docker_base_url: Docker daemon URL; None uses the environment (DOCKER_HOST)
        scratch_root: Parent directory of per-execution scratch dirs; None uses the system temp dir
        mount_path: Path at which the scratch dir is mounted inside the container
        cpu_period_us: CFS scheduling period; the CPU quota is time_limit * period
        wall_clock_factor: Multiplier on the question time limit for the run deadline
        wall_clock_grace_sec: Seconds added to the run deadline
        compile_timeout_sec: Wall-clock seconds allowed for the compile step
        fill_marker: Marker replaced by the student's fragment in code templates
        focus_threshold: Graded submits at which a student becomes "focused"
        log_level: Logging level name
        language_images: Per-language image overrides
    """
    docker_base_url: Optional[str] = None
    scratch_root: Optional[str] = None
    mount_path: str = "/app"
    cpu_period_us: int = 100000
    wall_clock_factor: float = 2.0
    wall_clock_grace_sec: float = 1.0
    compile_timeout_sec: float = 30.0
    fill_marker: str = "// FILL_IN_THE_BLANK"
    focus_threshold: int = 5
    log_level: str = "INFO"
    language_images: Dict[str, str] = field(default_factory=dict)

    @staticmethod
    def from_dict(data: dict) -> 'JudgeConfig':
        """Create JudgeConfig from dictionary."""
        return JudgeConfig(
            docker_base_url=data.get('docker_base_url'),
            scratch_root=data.get('scratch_root'),
            mount_path=data.get('mount_path', '/app'),
            cpu_period_us=int(data.get('cpu_period_us', 100000)),
            wall_clock_factor=float(data.get('wall_clock_factor', 2.0)),
            wall_clock_grace_sec=float(data.get('wall_clock_grace_sec', 1.0)),
            compile_timeout_sec=float(data.get('compile_timeout_sec', 30.0)),
            fill_marker=data.get('fill_marker', '// FILL_IN_THE_BLANK'),
            focus_threshold=int(data.get('focus_threshold', 5)),
            log_level=str(data.get('log_level', 'INFO')).upper(),
            language_images=dict(data.get('language_images') or {})
        )

    def validate(self) -> tuple[bool, str]:
        """
        Validate configuration consistency.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if self.cpu_period_us < 1000 or self.cpu_period_us > 1000000:
            return False, f"cpu_period_us must be between 1000 and 1000000, got {self.cpu_period_us}"

        if self.wall_clock_factor <= 0:
            return False, "wall_clock_factor must be positive"

        if self.wall_clock_grace_sec < 0:
            return False, "wall_clock_grace_sec must be non-negative"

        if self.compile_timeout_sec <= 0:
            return False, "compile_timeout_sec must be positive"

        if not self.fill_marker:
            return False, "fill_marker must not be empty"

        if self.focus_threshold < 1:
            return False, "focus_threshold must be at least 1"

        if not self.mount_path.startswith('/'):
            return False, f"mount_path must be absolute, got {self.mount_path}"

        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            return False, f"Unknown log_level: {self.log_level}"

        return True, ""

    def run_deadline(self, time_limit: float) -> float:
        """Wall-clock seconds allowed for one run of a program."""
        return time_limit * self.wall_clock_factor + self.wall_clock_grace_sec

    @staticmethod
    def default() -> 'JudgeConfig':
        """Return default configuration."""
        return JudgeConfig()


def load_config(config_path: Optional[Path] = None) -> JudgeConfig:
    """
    Load judge configuration from a JSON file.

    Args:
        config_path: Path to the configuration file. If None, uses $JUDGE_CONFIG
                    or 'config.json' in the project root.

    Returns:
        JudgeConfig object with validated configuration

    Raises:
        ValueError: If config is invalid
    """
    if config_path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if env_path:
            config_path = Path(env_path)
        else:
            config_path = Path(__file__).parent.parent / "config.json"

    if not config_path.exists():
        logger.warning("Config file '%s' not found. Using default configuration.", config_path)
        return JudgeConfig.default()

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}")
    except OSError as e:
        raise ValueError(f"Error reading config file: {e}")

    config = JudgeConfig.from_dict(data)

    is_valid, error_message = config.validate()
    if not is_valid:
        raise ValueError(f"Invalid configuration: {error_message}")

    return config


def create_sample_config(output_path: Path):
    """
    Create a sample configuration file for operators.

    Args:
        output_path: Path where to save the sample config
    """
    sample_config = {
        "docker_base_url": None,
        "scratch_root": None,
        "mount_path": "/app",
        "cpu_period_us": 100000,
        "wall_clock_factor": 2.0,
        "wall_clock_grace_sec": 1.0,
        "compile_timeout_sec": 30.0,
        "fill_marker": "// FILL_IN_THE_BLANK",
        "focus_threshold": 5,
        "log_level": "INFO",
        "language_images": {},
        "_comment": "This is a sample judge configuration. Adjust values as needed.",
        "_instructions": {
            "docker_base_url": "Docker daemon URL (null: use DOCKER_HOST / local socket)",
            "scratch_root": "Directory for per-execution scratch dirs (null: system temp)",
            "mount_path": "Where the scratch dir is mounted inside the container",
            "cpu_period_us": "CPU scheduling period; quota = time limit * period",
            "wall_clock_factor": "Run deadline = time limit * factor + grace",
            "wall_clock_grace_sec": "Extra seconds added to every run deadline",
            "compile_timeout_sec": "Wall-clock seconds allowed for compilation",
            "fill_marker": "Marker replaced by the answer in fill-in-the-blank code templates",
            "focus_threshold": "Graded submits after which a student is 'focused'",
            "log_level": "DEBUG, INFO, WARNING, ERROR or CRITICAL",
            "language_images": "Optional per-language image overrides, e.g. {\"python\": \"my/python:3.12\"}"
        }
    }

    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(sample_config, f, indent=2)

    logger.info("Sample configuration created at: %s", output_path)
