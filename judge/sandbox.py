"""
Sandboxed execution of submitted programs.

One isolated container is provisioned per `SandboxExecutor.execute` call:
network disabled, a fresh scratch directory mounted read-write, CPU quota
proportional to the question time limit and a memory ceiling. The program
is compiled once (when the language needs it) and run against each test
case in order. The container and the scratch directory are always torn
down, whatever happened before.

The container runtime is reached through an injected `SandboxProvider`.
`DockerSandboxProvider` is the production implementation; blocking Docker
SDK calls are pushed to worker threads so that container operations are
the suspension points of the calling task.
"""

import asyncio
import logging
import math
import os
import shlex
import shutil
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import docker

from .config_loader import JudgeConfig
from .errors import ProvisioningError
from .languages import LanguageSpec, lookup
from .models import TestCase, TestResult

logger = logging.getLogger(__name__)

COMPILATION_ERROR_PREFIX = "Compilation Error: "
EXECUTION_ERROR_PREFIX = "Execution Error: "
TIMEOUT_PREFIX = "Timeout: "

MIN_CPU_QUOTA_US = 1000


@dataclass
class ExecOutput:
    """Demultiplexed result of one command run inside a sandbox."""
    exit_code: Optional[int]
    stdout: str
    stderr: str


@dataclass(frozen=True)
class SandboxLimits:
    cpu_period_us: int
    cpu_quota_us: int
    memory_mb: int

    @staticmethod
    def for_question(time_limit: float, memory_limit_mb: int, cpu_period_us: int) -> 'SandboxLimits':
        """CPU quota is the time limit expressed as a fraction of the scheduling period."""
        quota = max(MIN_CPU_QUOTA_US, math.floor(time_limit * cpu_period_us))
        return SandboxLimits(cpu_period_us, quota, int(memory_limit_mb))


# ===== PROVIDER INTERFACE =====

class SandboxHandle(ABC):
    """A running execution environment scoped to a single execute call."""

    @abstractmethod
    async def exec(self, argv: List[str], stdin: Optional[str] = None) -> ExecOutput:
        """Run a command, feeding `stdin` to its standard input."""

    @abstractmethod
    async def kill(self) -> None:
        """Forcibly terminate every process in the environment."""

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    async def remove(self) -> None:
        ...


class SandboxProvider(ABC):
    """Creates isolated execution environments."""

    @abstractmethod
    async def create(self, spec: LanguageSpec, scratch_dir: Path, limits: SandboxLimits) -> SandboxHandle:
        """
        Create and start an environment for one execution.

        Args:
            spec: Language whose image is started
            scratch_dir: Host directory mounted read-write inside the environment
            limits: CPU and memory limits

        Returns:
            A started SandboxHandle
        """


# ===== DOCKER IMPLEMENTATION =====

def _decode(data: Optional[bytes]) -> str:
    if not data:
        return ""
    return data.decode('utf-8', errors='replace')


class DockerSandbox(SandboxHandle):
    """A long-lived `sleep infinity` container that commands are exec'd into."""

    def __init__(self, container, scratch_dir: Path, mount_path: str):
        self.container = container
        self.scratch_dir = scratch_dir
        self.mount_path = mount_path
        self._stdin_count = 0

    async def exec(self, argv: List[str], stdin: Optional[str] = None) -> ExecOutput:
        if stdin is None:
            return await self._exec(list(argv))

        stdin_file = await self._write_stdin(stdin)
        try:
            redirect = f"{self.mount_path}/{stdin_file.name}"
            return await self._exec(["sh", "-c", f"{shlex.join(argv)} < {shlex.quote(redirect)}"])
        finally:
            # Later tests must not see earlier (possibly hidden) inputs
            await asyncio.to_thread(stdin_file.unlink, missing_ok=True)

    async def _exec(self, command: List[str]) -> ExecOutput:
        result = await asyncio.to_thread(
            self.container.exec_run,
            command,
            stdout=True,
            stderr=True,
            demux=True,
            workdir=self.mount_path
        )
        stdout, stderr = result.output if result.output else (None, None)
        return ExecOutput(result.exit_code, _decode(stdout), _decode(stderr))

    async def _write_stdin(self, data: str) -> Path:
        # Programs reading line by line expect a terminated last line
        if not data.endswith("\n"):
            data += "\n"
        self._stdin_count += 1
        path = self.scratch_dir / f".stdin_{self._stdin_count}"
        await asyncio.to_thread(path.write_text, data, encoding='utf-8')
        return path

    async def kill(self) -> None:
        await asyncio.to_thread(self.container.kill)

    async def stop(self) -> None:
        await asyncio.to_thread(self.container.stop, timeout=1)

    async def remove(self) -> None:
        await asyncio.to_thread(self.container.remove, force=True)


class DockerSandboxProvider(SandboxProvider):
    """Runs each execution in a fresh container of the language's image."""

    def __init__(self, config: Optional[JudgeConfig] = None, client=None):
        self.config = config or JudgeConfig.default()
        self._client = client

    @property
    def client(self):
        if self._client is None:
            if self.config.docker_base_url:
                self._client = docker.DockerClient(base_url=self.config.docker_base_url)
            else:
                self._client = docker.from_env()
        return self._client

    async def create(self, spec: LanguageSpec, scratch_dir: Path, limits: SandboxLimits) -> SandboxHandle:
        mount_path = self.config.mount_path
        container = await asyncio.to_thread(
            self.client.containers.create,
            spec.image,
            ["sleep", "infinity"],
            working_dir=mount_path,
            network_mode="none",
            mem_limit=f"{limits.memory_mb}m",
            cpu_period=limits.cpu_period_us,
            cpu_quota=limits.cpu_quota_us,
            volumes={str(scratch_dir): {"bind": mount_path, "mode": "rw"}},
            tty=False
        )
        logger.debug("Container %s created from %s", container.short_id, spec.image)

        try:
            await asyncio.to_thread(container.start)
        except Exception:
            await asyncio.to_thread(container.remove, force=True)
            raise
        return DockerSandbox(container, scratch_dir, mount_path)


# ===== EXECUTOR =====

def _failed(test: TestCase, output: str, error: Optional[str], status: str) -> TestResult:
    return TestResult(
        input=test.input,
        output=output,
        expected=test.expected_output,
        passed=False,
        is_public=test.is_public,
        error=error,
        status=status
    )


class SandboxExecutor:
    """Compiles and runs one program against a list of test cases."""

    def __init__(self, provider: SandboxProvider, config: Optional[JudgeConfig] = None):
        self.provider = provider
        self.config = config or JudgeConfig.default()

    async def execute(
        self,
        language: str,
        source_code: str,
        test_cases: List[TestCase],
        time_limit: float,
        memory_limit: int
    ) -> List[TestResult]:
        """
        Run a program against test cases inside a fresh sandbox.

        Args:
            language: Language identifier from the registry
            source_code: Program text
            test_cases: Test cases, run strictly in order
            time_limit: Question time limit in seconds
            memory_limit: Memory ceiling in MB

        Returns:
            One TestResult per test case, in input order. Infrastructure failures
            are reported as failing results, never raised.

        Raises:
            UnsupportedLanguage: If the language is not registered
            ProvisioningError: If the scratch directory cannot be created
        """
        spec = lookup(language, self.config.language_images)
        if not test_cases:
            return []
        scratch_dir = await asyncio.to_thread(self._provision, spec, source_code)
        limits = SandboxLimits.for_question(time_limit, memory_limit, self.config.cpu_period_us)
        logger.info(
            "Executing %s program against %d test case(s) (cpu quota %dus/%dus, memory %dMB)",
            language, len(test_cases), limits.cpu_quota_us, limits.cpu_period_us, limits.memory_mb
        )

        sandbox = None
        try:
            sandbox = await self.provider.create(spec, scratch_dir, limits)
            return await self._run(sandbox, spec, test_cases, time_limit)
        except Exception as e:
            logger.error("Execution error for %s program: %s", language, e, exc_info=True)
            return [_failed(tc, f"{EXECUTION_ERROR_PREFIX}{e}", str(e), "execution_error") for tc in test_cases]
        finally:
            await self._teardown(sandbox, scratch_dir)

    def _provision(self, spec: LanguageSpec, source_code: str) -> Path:
        """Create a uniquely named scratch directory holding the source file."""
        try:
            if self.config.scratch_root:
                Path(self.config.scratch_root).mkdir(parents=True, exist_ok=True)
            scratch_dir = Path(tempfile.mkdtemp(prefix="judge-", dir=self.config.scratch_root))
        except OSError as e:
            raise ProvisioningError(f"Could not create scratch directory: {e}") from e

        try:
            # The container user is not necessarily the host user
            os.chmod(scratch_dir, 0o777)
            (scratch_dir / spec.source_file).write_text(source_code, encoding='utf-8')
        except OSError as e:
            shutil.rmtree(scratch_dir, ignore_errors=True)
            raise ProvisioningError(f"Could not write source file: {e}") from e
        return scratch_dir

    async def _run(
        self,
        sandbox: SandboxHandle,
        spec: LanguageSpec,
        test_cases: List[TestCase],
        time_limit: float
    ) -> List[TestResult]:
        if spec.compile_cmd:
            try:
                compiled = await asyncio.wait_for(sandbox.exec(spec.compile_cmd), self.config.compile_timeout_sec)
            except asyncio.TimeoutError:
                await self._kill(sandbox)
                message = f"{TIMEOUT_PREFIX}compilation exceeded {self.config.compile_timeout_sec:g}s"
                return [_failed(tc, message, message, "timeout") for tc in test_cases]

            if compiled.stderr:
                logger.info("Compilation failed: %s", compiled.stderr.strip())
                return [
                    _failed(tc, f"{COMPILATION_ERROR_PREFIX}{compiled.stderr}", compiled.stderr, "compilation_error")
                    for tc in test_cases
                ]

        deadline = self.config.run_deadline(time_limit)
        results: List[TestResult] = []

        for index, test_case in enumerate(test_cases):
            try:
                executed = await asyncio.wait_for(sandbox.exec(spec.run_cmd, stdin=test_case.input), deadline)
            except asyncio.TimeoutError:
                logger.warning("Test case %d exceeded %.1fs, terminating sandbox", index + 1, deadline)
                await self._kill(sandbox)
                message = f"{TIMEOUT_PREFIX}exceeded {deadline:g}s"
                results.extend(_failed(tc, message, message, "timeout") for tc in test_cases[index:])
                break
            except Exception as e:
                logger.warning("Test case %d failed to execute: %s", index + 1, e)
                results.append(_failed(test_case, f"{EXECUTION_ERROR_PREFIX}{e}", str(e), "execution_error"))
                continue

            results.append(self._check(test_case, executed))

        return results

    def _check(self, test_case: TestCase, executed: ExecOutput) -> TestResult:
        """Exact comparison of trimmed stdout with the trimmed expected output."""
        output = executed.stdout.strip()
        passed = output == test_case.expected_output.strip()

        if passed:
            status = "passed"
        elif executed.exit_code not in (0, None):
            status = "runtime_error"
        else:
            status = "failed"

        return TestResult(
            input=test_case.input,
            output=output,
            expected=test_case.expected_output,
            passed=passed,
            is_public=test_case.is_public,
            error=executed.stderr.strip() or None,
            status=status
        )

    async def _kill(self, sandbox: SandboxHandle):
        try:
            await sandbox.kill()
        except Exception as e:
            logger.warning("Failed to kill sandbox: %s", e)

    async def _teardown(self, sandbox: Optional[SandboxHandle], scratch_dir: Path):
        """Stop, remove, then delete the scratch dir. Errors are logged only."""
        if sandbox is not None:
            try:
                await sandbox.stop()
            except Exception as e:
                logger.warning("Failed to stop sandbox: %s", e)
            try:
                await sandbox.remove()
            except Exception as e:
                logger.warning("Failed to remove sandbox: %s", e)

        try:
            await asyncio.to_thread(shutil.rmtree, scratch_dir)
        except OSError as e:
            logger.warning("Failed to delete scratch directory %s: %s", scratch_dir, e)
