"""ProcessRunner unit tests.

Test coverage:
- Spawning shell strings and argv sequences
- Spawn failure classification
- Working directory and environment overrides
- Process isolation (new session/process group)
- Termination (SIGTERM, SIGKILL escalation, idempotency)
"""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

import pytest

from build_host.errors import SpawnError, SpawnErrorKind
from build_host.runtime.process_runner import (
    IS_WINDOWS,
    ProcessRunner,
    ProcessSpec,
    shell_argv,
    split_command,
)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def runner() -> ProcessRunner:
    """ProcessRunner with short timeouts for testing."""
    return ProcessRunner(term_timeout=0.5, kill_timeout=0.5)


async def read_all(stream: asyncio.StreamReader) -> str:
    return (await stream.read()).decode()


# =============================================================================
# ProcessSpec Tests
# =============================================================================


class TestProcessSpec:
    """Test command normalization."""

    def test_shell_syntax_uses_shell(self):
        spec = ProcessSpec("echo hi | cat")
        assert spec.argv == shell_argv("echo hi | cat")
        assert spec.display == "echo hi | cat"

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    def test_plain_string_runs_directly(self):
        spec = ProcessSpec("cargo build --features 'a b'")
        assert spec.argv == ["cargo", "build", "--features", "a b"]
        assert spec.display == "cargo build --features 'a b'"

    def test_sequence_command_is_direct(self):
        spec = ProcessSpec(["git", "clone", Path("repo")])
        assert spec.argv == ["git", "clone", "repo"]
        assert spec.display == "git clone repo"

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    def test_posix_shell(self):
        assert shell_argv("ls") == ["sh", "-c", "ls"]


@pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
class TestSplitCommand:
    """Test which command lines bypass the shell."""

    @pytest.mark.parametrize(
        "command",
        [
            "make all && make install",
            "echo $HOME",
            "ls *.txt",
            "cat < input.txt",
            "CC=clang make",
            "exit 1",
            "cd build",
            "echo 'unbalanced",
            "   ",
        ],
    )
    def test_needs_shell(self, command: str):
        assert split_command(command) is None

    def test_plain_command(self):
        assert split_command("git clone https://example.com/repo.git") == [
            "git",
            "clone",
            "https://example.com/repo.git",
        ]

    def test_quoted_arguments(self):
        assert split_command('echo "hello world"') == ["echo", "hello world"]


# =============================================================================
# Spawn Tests
# =============================================================================


class TestSpawn:
    """Test process start-up."""

    @pytest.mark.asyncio
    async def test_simple_command(self, workspace: Path, runner: ProcessRunner):
        handle = await runner.spawn(ProcessSpec("echo hello", cwd=workspace))
        output = await read_all(handle.stdout)
        assert await handle.wait() == 0
        assert output.strip() == "hello"

    @pytest.mark.asyncio
    async def test_stderr_is_separate(self, workspace: Path, runner: ProcessRunner):
        handle = await runner.spawn(
            ProcessSpec(
                [sys.executable, "-c", "import sys; print('out'); print('err', file=sys.stderr)"],
                cwd=workspace,
            )
        )
        stdout, stderr = await asyncio.gather(read_all(handle.stdout), read_all(handle.stderr))
        await handle.wait()
        assert stdout.strip() == "out"
        assert stderr.strip() == "err"

    @pytest.mark.asyncio
    async def test_working_directory(self, workspace: Path, runner: ProcessRunner):
        handle = await runner.spawn(
            ProcessSpec([sys.executable, "-c", "import os; print(os.getcwd())"], cwd=workspace)
        )
        output = await read_all(handle.stdout)
        await handle.wait()
        assert Path(output.strip()).resolve() == workspace.resolve()

    @pytest.mark.asyncio
    async def test_environment_overrides(self, workspace: Path, runner: ProcessRunner):
        handle = await runner.spawn(
            ProcessSpec(
                [sys.executable, "-c", "import os; print(os.environ['BH_TEST_VAR'], os.environ.get('PATH') is not None)"],
                cwd=workspace,
                env={"BH_TEST_VAR": "value_123"},
            )
        )
        output = await read_all(handle.stdout)
        await handle.wait()
        # Overrides are merged into the host environment
        assert output.split() == ["value_123", "True"]

    @pytest.mark.asyncio
    async def test_stdin_is_closed(self, workspace: Path, runner: ProcessRunner):
        handle = await runner.spawn(
            ProcessSpec([sys.executable, "-c", "import sys; print(repr(sys.stdin.read()))"], cwd=workspace)
        )
        output = await read_all(handle.stdout)
        await handle.wait()
        assert output.strip() == "''"

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, workspace: Path, runner: ProcessRunner):
        handle = await runner.spawn(ProcessSpec("exit 3", cwd=workspace))
        assert await handle.wait() == 3
        assert handle.returncode == 3
        assert not handle.running


class TestSpawnErrors:
    """Test spawn failure classification."""

    @pytest.mark.asyncio
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    async def test_missing_executable_plain_string(self, workspace: Path, runner: ProcessRunner):
        with pytest.raises(SpawnError) as exc_info:
            await runner.spawn(ProcessSpec("definitely-not-a-real-binary-xyz --help", cwd=workspace))
        assert exc_info.value.kind == SpawnErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_missing_executable(self, workspace: Path, runner: ProcessRunner):
        with pytest.raises(SpawnError) as exc_info:
            await runner.spawn(ProcessSpec(["definitely-not-a-real-binary-xyz"], cwd=workspace))
        assert exc_info.value.kind == SpawnErrorKind.NOT_FOUND
        assert exc_info.value.command == "definitely-not-a-real-binary-xyz"

    @pytest.mark.asyncio
    async def test_missing_working_directory(self, workspace: Path, runner: ProcessRunner):
        with pytest.raises(SpawnError) as exc_info:
            await runner.spawn(ProcessSpec("echo hi", cwd=workspace / "missing"))
        assert exc_info.value.kind == SpawnErrorKind.INVALID_WORKING_DIRECTORY

    @pytest.mark.asyncio
    async def test_working_directory_is_file(self, workspace: Path, runner: ProcessRunner):
        target = workspace / "file.txt"
        target.write_text("x")
        with pytest.raises(SpawnError) as exc_info:
            await runner.spawn(ProcessSpec("echo hi", cwd=target))
        assert exc_info.value.kind == SpawnErrorKind.INVALID_WORKING_DIRECTORY

    @pytest.mark.asyncio
    async def test_empty_argv(self, workspace: Path, runner: ProcessRunner):
        with pytest.raises(SpawnError) as exc_info:
            await runner.spawn(ProcessSpec([], cwd=workspace))
        assert exc_info.value.kind == SpawnErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    async def test_permission_denied(self, workspace: Path, runner: ProcessRunner):
        script = workspace / "not_executable.sh"
        script.write_text("#!/bin/sh\necho hi\n")
        script.chmod(0o644)
        with pytest.raises(SpawnError) as exc_info:
            await runner.spawn(ProcessSpec([str(script)], cwd=workspace))
        assert exc_info.value.kind == SpawnErrorKind.PERMISSION_DENIED


# =============================================================================
# Process Isolation Tests
# =============================================================================


class TestProcessIsolation:
    """Test process isolation (new session/process group)."""

    @pytest.mark.asyncio
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    async def test_process_group_leader(self, workspace: Path, runner: ProcessRunner):
        handle = await runner.spawn(ProcessSpec(["sleep", "5"], cwd=workspace))
        try:
            assert os.getpgid(handle.pid) == handle.pid
            assert os.getsid(handle.pid) != os.getsid(os.getpid())
        finally:
            await handle.terminate()


# =============================================================================
# Termination Tests
# =============================================================================


class TestTermination:
    """Test process termination."""

    @pytest.mark.asyncio
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    async def test_terminate_long_running(self, workspace: Path, runner: ProcessRunner):
        handle = await runner.spawn(ProcessSpec(["sleep", "100"], cwd=workspace))
        await handle.terminate()
        assert not handle.running
        assert handle.returncode == -15

    @pytest.mark.asyncio
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    async def test_kill_after_ignored_sigterm(self, workspace: Path, runner: ProcessRunner, chatty):
        handle = await runner.spawn(
            ProcessSpec(chatty("--ignore-term", "--lines", 1, "--sleep", 30), cwd=workspace)
        )
        # Wait until the handler is installed
        await handle.stdout.readline()
        await handle.terminate()
        assert handle.returncode == -9

    @pytest.mark.asyncio
    async def test_terminate_is_idempotent(self, workspace: Path, runner: ProcessRunner):
        handle = await runner.spawn(ProcessSpec("echo done", cwd=workspace))
        await handle.wait()
        returncode = handle.returncode
        await handle.terminate()
        await handle.terminate()
        assert handle.returncode == returncode

    @pytest.mark.asyncio
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    async def test_concurrent_terminate(self, workspace: Path, runner: ProcessRunner):
        handle = await runner.spawn(ProcessSpec(["sleep", "100"], cwd=workspace))
        await asyncio.gather(handle.terminate(), handle.terminate())
        assert not handle.running

    @pytest.mark.asyncio
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    async def test_terminate_after_leader_exit_kills_group(
        self, workspace: Path, runner: ProcessRunner
    ):
        handle = await runner.spawn(
            ProcessSpec("sleep 2 && echo alive > survived.txt & echo started", cwd=workspace)
        )
        assert (await handle.stdout.readline()).strip() == b"started"
        # The shell exits at once; its background job keeps the pipes open
        for _ in range(100):
            if not handle.running:
                break
            await asyncio.sleep(0.02)
        assert not handle.running

        await handle.terminate()

        await asyncio.sleep(2.5)
        assert not (workspace / "survived.txt").exists()
        assert handle.returncode == 0
