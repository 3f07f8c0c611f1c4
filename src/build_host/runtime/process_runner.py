"""Process spawner with subprocess isolation and reliable termination.

This module provides:
- Command line (string) and argv (sequence) commands
- Cross-platform subprocess isolation (new session/process group)
- Spawn failure classification (SpawnError kinds)
- Idempotent termination (SIGTERM -> timeout -> SIGKILL)

Key design points:
- POSIX: start_new_session=True to create new process group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- Termination targets the process group, not just the main process
- stdin is DEVNULL so children never inherit the host's terminal input
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import signal
import subprocess
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..errors import SpawnError, SpawnErrorKind

__all__ = [
    "IS_WINDOWS",
    "ProcessHandle",
    "ProcessRunner",
    "ProcessSpec",
    "shell_argv",
    "split_command",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Default timeouts
DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL

# Interval for polling a process group whose leader already exited
GROUP_POLL_INTERVAL = 0.05

# Characters that give a command line meaning only the shell understands
_SHELL_METACHARS = frozenset("|&;<>()$`\\*?[#~\n")

# Builtins with no executable on PATH
_SHELL_BUILTINS = frozenset({
    ".", ":", "alias", "bg", "break", "cd", "command", "continue", "eval",
    "exec", "exit", "export", "fg", "getopts", "hash", "jobs", "local",
    "read", "readonly", "return", "set", "shift", "source", "times", "trap",
    "type", "ulimit", "umask", "unset", "wait",
})


def shell_argv(command: str) -> list[str]:
    """Wrap a command string for the platform shell."""
    if IS_WINDOWS:
        return ["cmd", "/C", command]
    return ["sh", "-c", command]


def split_command(command: str) -> list[str] | None:
    """Split a plain command line for direct execution.

    Returns None when the line needs the shell: metacharacters, variable
    assignments, builtins, or unbalanced quotes. Windows always uses cmd.
    """
    if IS_WINDOWS or any(ch in _SHELL_METACHARS for ch in command):
        return None
    try:
        argv = shlex.split(command)
    except ValueError:
        return None
    if not argv or "=" in argv[0] or argv[0] in _SHELL_BUILTINS:
        return None
    return argv


@dataclass(frozen=True)
class ProcessSpec:
    """Description of a subprocess to run.

    Attributes:
        command: Command line string, or argv sequence executed directly.
            A string runs directly when split_command() accepts it and
            through the platform shell otherwise.
        cwd: Working directory for the process
        env: Variables added to (or overriding) the host environment
    """

    command: str | Sequence[str]
    cwd: Path = field(default_factory=Path.cwd)
    env: Mapping[str, str] | None = None

    @property
    def argv(self) -> list[str]:
        if isinstance(self.command, str):
            return split_command(self.command) or shell_argv(self.command)
        return [str(arg) for arg in self.command]

    @property
    def display(self) -> str:
        """Human readable command text for logs and errors."""
        if isinstance(self.command, str):
            return self.command
        return " ".join(str(arg) for arg in self.command)


class ProcessHandle:
    """A live child process owned by exactly one execution session.

    Exposes the stdout/stderr byte streams and a single-resolution exit
    status. terminate() is idempotent and safe to call after the process
    has already exited.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        spec: ProcessSpec,
        runner: "ProcessRunner",
    ) -> None:
        self._process = process
        self.spec = spec
        self._runner = runner
        self._terminate_lock = asyncio.Lock()

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def stdout(self) -> asyncio.StreamReader:
        assert self._process.stdout is not None
        return self._process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader:
        assert self._process.stderr is not None
        return self._process.stderr

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def running(self) -> bool:
        return self._process.returncode is None

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit status."""
        return await self._process.wait()

    async def terminate(self) -> None:
        """Terminate the process group, shielded from caller cancellation.

        Runs even after the leader exited: background members of its group
        may still be alive.
        """
        async with self._terminate_lock:
            logger.debug(f"Terminating {self.spec.display!r} pid={self.pid}")
            try:
                await asyncio.shield(self._runner.terminate_process(self._process))
            except asyncio.CancelledError:
                # If the shield itself is cancelled, still make sure the child dies
                await self._runner.terminate_process(self._process)
                raise


@dataclass
class ProcessRunner:
    """Cross-platform process spawner with isolation and reliable termination.

    This class manages subprocess creation with:
    - Process group/session isolation to prevent SIGINT propagation
    - Graceful termination (SIGTERM -> timeout -> SIGKILL)
    - Classification of spawn failures into SpawnError kinds

    Example:
        runner = ProcessRunner()
        handle = await runner.spawn(ProcessSpec("make all", cwd=Path("/src")))
        ...
        exit_code = await handle.wait()
    """

    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT

    async def spawn(self, spec: ProcessSpec) -> ProcessHandle:
        """Start the child with captured stdout/stderr.

        Args:
            spec: Process specification

        Returns:
            Handle to the running child

        Raises:
            SpawnError: If the OS cannot start the process
        """
        cwd = Path(spec.cwd)
        if not cwd.exists():
            raise SpawnError(
                SpawnErrorKind.INVALID_WORKING_DIRECTORY,
                spec.display,
                cwd,
                "directory does not exist",
            )
        if not cwd.is_dir():
            raise SpawnError(
                SpawnErrorKind.INVALID_WORKING_DIRECTORY,
                spec.display,
                cwd,
                "not a directory",
            )

        argv = spec.argv
        if not argv:
            raise SpawnError(SpawnErrorKind.NOT_FOUND, spec.display, cwd, "empty command")

        kwargs = self._build_subprocess_kwargs(spec)

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                **kwargs,
            )
        except FileNotFoundError as e:
            raise SpawnError(SpawnErrorKind.NOT_FOUND, spec.display, cwd, str(e)) from e
        except PermissionError as e:
            raise SpawnError(
                SpawnErrorKind.PERMISSION_DENIED, spec.display, cwd, str(e)
            ) from e
        except NotADirectoryError as e:
            raise SpawnError(
                SpawnErrorKind.INVALID_WORKING_DIRECTORY, spec.display, cwd, str(e)
            ) from e
        except OSError as e:
            raise SpawnError(SpawnErrorKind.OS_ERROR, spec.display, cwd, str(e)) from e

        logger.debug(
            f"Started subprocess pid={process.pid} "
            f"argv={argv[0]} cwd={cwd}"
        )
        return ProcessHandle(process, spec, self)

    def _build_subprocess_kwargs(self, spec: ProcessSpec) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs.

        Args:
            spec: Process specification

        Returns:
            Dict of kwargs for asyncio.create_subprocess_exec
        """
        kwargs: dict[str, Any] = {}

        # Environment: host environment plus overrides
        if spec.env:
            env = dict(os.environ)
            env.update({str(k): str(v) for k, v in spec.env.items()})
            kwargs["env"] = env

        # Platform-specific isolation
        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        return kwargs

    async def terminate_process(
        self,
        process: asyncio.subprocess.Process,
    ) -> None:
        """Terminate subprocess gracefully, then forcefully if needed.

        Termination strategy:
        1. Send SIGTERM to the process group (or CTRL_BREAK_EVENT on Windows)
        2. Wait up to term_timeout for the leader and the rest of its group
        3. If anything is still running, send SIGKILL (or kill() on Windows)
        4. Wait up to kill_timeout for forced exit

        On POSIX the group is signalled even when the leader already exited,
        so background children still holding the pipes are not orphaned.

        Args:
            process: The subprocess to terminate
        """
        pid = process.pid
        if process.returncode is not None and (IS_WINDOWS or not self._group_alive(pid)):
            return

        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            # Step 1: Graceful termination
            if IS_WINDOWS:
                self._windows_terminate(process)
            else:
                self._posix_signal(process, signal.SIGTERM)

            # Step 2: Wait for graceful exit
            if await self._wait_exit(process, self.term_timeout):
                logger.debug(
                    f"Subprocess terminated gracefully pid={pid} "
                    f"returncode={process.returncode}"
                )
                return

            # Step 3: Force kill
            logger.debug(f"Force killing subprocess pid={pid}")
            if IS_WINDOWS:
                self._windows_kill(process)
            else:
                self._posix_signal(process, signal.SIGKILL)

            # Step 4: Wait for forced exit
            if await self._wait_exit(process, self.kill_timeout):
                logger.debug(
                    f"Subprocess killed pid={pid} "
                    f"returncode={process.returncode}"
                )
            else:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")
        except OSError as e:
            logger.warning(f"Error terminating subprocess pid={pid}: {e}")

    async def _wait_exit(
        self,
        process: asyncio.subprocess.Process,
        timeout: float,
    ) -> bool:
        """Wait for the leader, then (POSIX) for the rest of its group."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        try:
            await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        if IS_WINDOWS:
            return True
        while self._group_alive(process.pid):
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            await asyncio.sleep(min(GROUP_POLL_INTERVAL, remaining))
        return True

    @staticmethod
    def _group_alive(pgid: int) -> bool:
        """True while any process remains in the group."""
        try:
            os.killpg(pgid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True

    def _posix_signal(
        self,
        process: asyncio.subprocess.Process,
        sig: signal.Signals,
    ) -> None:
        """Send a signal to the process group on POSIX systems."""
        # Process group ID equals pid due to start_new_session, and stays
        # valid after the leader is reaped while other members remain
        pgid = process.pid
        try:
            os.killpg(pgid, sig)
            logger.debug(f"Sent {sig.name} to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            if process.returncode is not None:
                raise
            logger.debug(f"killpg failed, falling back to send_signal: {e}")
            process.send_signal(sig)

    def _windows_terminate(
        self,
        process: asyncio.subprocess.Process,
    ) -> None:
        """Send CTRL_BREAK_EVENT to the process group on Windows."""
        try:
            os.kill(process.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
        except (ProcessLookupError, OSError) as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            process.terminate()

    def _windows_kill(
        self,
        process: asyncio.subprocess.Process,
    ) -> None:
        try:
            process.kill()
            logger.debug(f"Called kill() on pid={process.pid}")
        except ProcessLookupError:
            pass
