"""
Tests for the sandbox executor.

Covers:
- CPU/memory limits derived from the question limits
- Compile phase, per-test run phase and result classification
- Timeouts, infrastructure failures and teardown on every path
- The Docker provider against a mocked docker client
"""

import asyncio
import pytest
from unittest.mock import MagicMock, Mock
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from judge.config_loader import JudgeConfig
from judge.errors import ProvisioningError, UnsupportedLanguage
from judge.languages import lookup
from judge.models import TestCase
from judge.sandbox import (
    DockerSandbox,
    DockerSandboxProvider,
    ExecOutput,
    SandboxExecutor,
    SandboxLimits,
)
from fakes import HANG, FakeProvider, FakeSandbox, echo


def make_executor(tmp_path, sandbox=None, create_error=None, **config):
    provider = FakeProvider(sandbox, create_error)
    executor = SandboxExecutor(provider, JudgeConfig(scratch_root=str(tmp_path), **config))
    return executor, provider


CASES = [
    TestCase("1 2", "1 2", is_public=True),
    TestCase("3 4", "3 4"),
    TestCase("5 6", "5 6"),
]


class TestSandboxLimits:
    """Test CPU quota and memory derivation."""

    def test_quota_is_time_limit_fraction_of_period(self):
        """A 2 second limit gives twice the scheduling period."""
        limits = SandboxLimits.for_question(2, 256, 100000)
        assert limits.cpu_quota_us == 200000
        assert limits.cpu_period_us == 100000
        assert limits.memory_mb == 256

    def test_fractional_time_limit_is_floored(self):
        limits = SandboxLimits.for_question(0.5, 64, 100000)
        assert limits.cpu_quota_us == 50000

    def test_tiny_time_limit_has_minimum_quota(self):
        """Docker rejects quotas under 1ms."""
        limits = SandboxLimits.for_question(0.001, 64, 100000)
        assert limits.cpu_quota_us == 1000


class TestExecuteSuccess:
    """Test the normal execution path."""

    def test_all_tests_pass(self, tmp_path):
        """An echo program passes every echo test, in order."""
        executor, provider = make_executor(tmp_path)

        results = asyncio.run(executor.execute("python", "print(input())", CASES, 2, 256))

        assert [r.passed for r in results] == [True, True, True]
        assert [r.status for r in results] == ["passed"] * 3
        assert [r.is_public for r in results] == [True, False, False]
        assert provider.sandbox.stdins == ["1 2", "3 4", "5 6"]
        assert provider.sources == ["print(input())"]

    def test_output_compared_after_trimming(self, tmp_path):
        sandbox = FakeSandbox(respond=lambda s: ExecOutput(0, f"\n  {s}  \n\n", ""))
        executor, _ = make_executor(tmp_path, sandbox)

        results = asyncio.run(executor.execute("python", "x", [TestCase("7", " 7\n")], 2, 256))

        assert results[0].passed is True
        assert results[0].output == "7"

    def test_wrong_answer_is_failed(self, tmp_path):
        sandbox = FakeSandbox(respond=lambda s: ExecOutput(0, "nope", ""))
        executor, _ = make_executor(tmp_path, sandbox)

        results = asyncio.run(executor.execute("python", "x", CASES[:1], 2, 256))

        assert results[0].passed is False
        assert results[0].status == "failed"
        assert results[0].error is None

    def test_nonzero_exit_is_runtime_error(self, tmp_path):
        sandbox = FakeSandbox(respond=lambda s: ExecOutput(1, "", "Traceback: boom\n"))
        executor, _ = make_executor(tmp_path, sandbox)

        results = asyncio.run(executor.execute("python", "x", CASES[:1], 2, 256))

        assert results[0].status == "runtime_error"
        assert results[0].error == "Traceback: boom"

    def test_limits_passed_to_provider(self, tmp_path):
        executor, provider = make_executor(tmp_path)

        asyncio.run(executor.execute("python", "x", CASES[:1], 3, 128))

        assert provider.limits[0] == SandboxLimits(100000, 300000, 128)

    def test_empty_test_cases_provision_nothing(self, tmp_path):
        executor, provider = make_executor(tmp_path)

        results = asyncio.run(executor.execute("python", "x", [], 2, 256))

        assert results == []
        assert provider.created == 0

    def test_unknown_language_rejected_before_provisioning(self, tmp_path):
        executor, provider = make_executor(tmp_path)

        with pytest.raises(UnsupportedLanguage):
            asyncio.run(executor.execute("cobol", "x", CASES, 2, 256))
        assert provider.created == 0


class TestCompilation:
    """Test the compile phase of compiled languages."""

    def test_compile_stderr_fails_every_test(self, tmp_path):
        """No test runs when the compiler writes to stderr."""
        sandbox = FakeSandbox(compile_output=ExecOutput(1, "", "code.c:1: error: expected ';'"))
        executor, _ = make_executor(tmp_path, sandbox)

        results = asyncio.run(executor.execute("c", "int main(){}", CASES, 2, 256))

        assert len(results) == 3
        for r in results:
            assert r.passed is False
            assert r.status == "compilation_error"
            assert r.output.startswith("Compilation Error: ")
            assert "expected ';'" in r.error
        assert sandbox.stdins == []

    def test_compile_command_runs_first(self, tmp_path):
        sandbox = FakeSandbox()
        executor, _ = make_executor(tmp_path, sandbox)

        asyncio.run(executor.execute("cpp", "int main(){}", CASES[:1], 2, 256))

        assert sandbox.commands[0] == lookup("cpp").compile_cmd
        assert sandbox.commands[1] == lookup("cpp").run_cmd

    def test_java_source_uses_class_file_name(self, tmp_path):
        executor, provider = make_executor(tmp_path)

        asyncio.run(executor.execute("java", "public class Solution {}", CASES[:1], 2, 256))

        assert provider.scratch_dirs[0].name.startswith("judge-")
        assert provider.sources == ["public class Solution {}"]


class TestTimeouts:
    """Test the explicit run deadline."""

    def test_hung_test_and_remaining_tests_time_out(self, tmp_path):
        """The sandbox is killed and every test from the hung one on times out."""
        sandbox = FakeSandbox(respond=lambda s: HANG if s == "3 4" else echo(s))
        executor, _ = make_executor(tmp_path, sandbox, wall_clock_factor=0.01, wall_clock_grace_sec=0.0)

        results = asyncio.run(executor.execute("python", "x", CASES, 1, 256))

        assert [r.status for r in results] == ["passed", "timeout", "timeout"]
        assert results[1].output.startswith("Timeout: ")
        assert sandbox.killed is True
        assert sandbox.removed is True


class TestInfrastructureFailures:
    """Test that infrastructure errors become failing results."""

    def test_create_failure_fails_every_test(self, tmp_path):
        executor, provider = make_executor(tmp_path, create_error=RuntimeError("image not found"))

        results = asyncio.run(executor.execute("python", "x", CASES, 2, 256))

        assert len(results) == 3
        for r in results:
            assert r.status == "execution_error"
            assert r.output == "Execution Error: image not found"
        assert not provider.scratch_dirs[0].exists()

    def test_exec_failure_isolated_to_one_test(self, tmp_path):
        def respond(stdin):
            if stdin == "3 4":
                raise ConnectionError("stream closed")
            return echo(stdin)

        executor, _ = make_executor(tmp_path, FakeSandbox(respond=respond))

        results = asyncio.run(executor.execute("python", "x", CASES, 2, 256))

        assert [r.status for r in results] == ["passed", "execution_error", "passed"]

    def test_unusable_scratch_root_raises_provisioning_error(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        executor, provider = make_executor(blocker)

        with pytest.raises(ProvisioningError, match="Could not create scratch directory"):
            asyncio.run(executor.execute("python", "x", CASES, 2, 256))
        assert provider.created == 0

    def test_teardown_after_success(self, tmp_path):
        executor, provider = make_executor(tmp_path)

        asyncio.run(executor.execute("python", "x", CASES, 2, 256))

        assert provider.sandbox.stopped is True
        assert provider.sandbox.removed is True
        assert not provider.scratch_dirs[0].exists()

    def test_teardown_errors_are_not_raised(self, tmp_path):
        sandbox = FakeSandbox()

        async def failing_stop():
            raise RuntimeError("already stopped")

        sandbox.stop = failing_stop
        executor, provider = make_executor(tmp_path, sandbox)

        results = asyncio.run(executor.execute("python", "x", CASES[:1], 2, 256))

        assert results[0].passed is True
        assert sandbox.removed is True
        assert not provider.scratch_dirs[0].exists()


class TestDockerProvider:
    """Test container creation against a mocked docker client."""

    def test_container_created_isolated_and_limited(self, tmp_path):
        client = MagicMock()
        container = client.containers.create.return_value
        provider = DockerSandboxProvider(JudgeConfig(), client=client)

        handle = asyncio.run(provider.create(lookup("python"), tmp_path, SandboxLimits(100000, 200000, 256)))

        args, kwargs = client.containers.create.call_args
        assert args[0] == "python-compiler"
        assert kwargs["network_mode"] == "none"
        assert kwargs["mem_limit"] == "256m"
        assert kwargs["cpu_period"] == 100000
        assert kwargs["cpu_quota"] == 200000
        assert kwargs["volumes"] == {str(tmp_path): {"bind": "/app", "mode": "rw"}}
        container.start.assert_called_once()
        assert isinstance(handle, DockerSandbox)

    def test_image_override_from_config(self, tmp_path):
        client = MagicMock()
        provider = DockerSandboxProvider(JudgeConfig(), client=client)
        spec = lookup("python", {"python": "python:3.12-slim"})

        asyncio.run(provider.create(spec, tmp_path, SandboxLimits(100000, 200000, 256)))

        assert client.containers.create.call_args[0][0] == "python:3.12-slim"

    def test_start_failure_removes_container(self, tmp_path):
        client = MagicMock()
        container = client.containers.create.return_value
        container.start.side_effect = RuntimeError("cannot start")
        provider = DockerSandboxProvider(JudgeConfig(), client=client)

        with pytest.raises(RuntimeError):
            asyncio.run(provider.create(lookup("python"), tmp_path, SandboxLimits(100000, 200000, 256)))
        container.remove.assert_called_once_with(force=True)


class TestDockerSandbox:
    """Test command execution inside a mocked container."""

    def test_exec_demultiplexes_streams(self, tmp_path):
        container = Mock()
        container.exec_run.return_value = Mock(exit_code=0, output=(b"out\n", b"warn\n"))
        sandbox = DockerSandbox(container, tmp_path, "/app")

        result = asyncio.run(sandbox.exec(["python", "/app/code.py"]))

        assert result == ExecOutput(0, "out\n", "warn\n")
        container.exec_run.assert_called_once_with(
            ["python", "/app/code.py"], stdout=True, stderr=True, demux=True, workdir="/app"
        )

    def test_exec_with_stdin_redirects_from_scratch_file(self, tmp_path):
        seen = []

        def exec_run(command, **kwargs):
            seen.append((tmp_path / ".stdin_1").read_text())
            return Mock(exit_code=0, output=(b"3", None))

        container = Mock()
        container.exec_run.side_effect = exec_run
        sandbox = DockerSandbox(container, tmp_path, "/app")

        result = asyncio.run(sandbox.exec(["python", "/app/code.py"], stdin="1 2"))

        command = container.exec_run.call_args[0][0]
        assert command == ["sh", "-c", "python /app/code.py < /app/.stdin_1"]
        assert seen == ["1 2\n"]
        assert result.stdout == "3"
        assert result.stderr == ""

    def test_stdin_file_removed_after_exec(self, tmp_path):
        """Inputs of earlier tests are gone before the next test runs."""
        container = Mock()
        container.exec_run.side_effect = [Mock(exit_code=0, output=None), RuntimeError("exec failed")]
        sandbox = DockerSandbox(container, tmp_path, "/app")

        asyncio.run(sandbox.exec(["python", "/app/code.py"], stdin="hidden"))
        with pytest.raises(RuntimeError):
            asyncio.run(sandbox.exec(["python", "/app/code.py"], stdin="also hidden"))

        assert list(tmp_path.iterdir()) == []

    def test_exec_without_output(self, tmp_path):
        container = Mock()
        container.exec_run.return_value = Mock(exit_code=0, output=None)
        sandbox = DockerSandbox(container, tmp_path, "/app")

        result = asyncio.run(sandbox.exec(["true"]))

        assert result == ExecOutput(0, "", "")

    def test_remove_forces(self, tmp_path):
        container = Mock()
        sandbox = DockerSandbox(container, tmp_path, "/app")

        asyncio.run(sandbox.stop())
        asyncio.run(sandbox.remove())

        container.stop.assert_called_once_with(timeout=1)
        container.remove.assert_called_once_with(force=True)
