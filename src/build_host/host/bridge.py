"""Synchronous process bridge for build scripts.

Build scripts are plain, single-threaded Python. All process I/O runs on an
anyio blocking-portal event loop in a background thread; the script thread
pulls line events across that boundary one at a time and invokes the
script callback itself. The event loop thread never calls into script
state, and a callback may start a nested command without re-entering the
outer dispatcher.

Entry points exposed to scripts:
- run(command, on_line) -> bool                     (Simple mode)
- run_with_progress(command, on_progress) -> bool   (Progress mode)
- run_realtime(command, on_event) -> None           (Realtime mode)
- execute(command, callback, mode) -> Outcome
- exec_command / exec_silent / exec_streaming / git_clone / cargo_build
- get_cwd / set_cwd
- which / command_exists
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Mapping, Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from anyio.from_thread import BlockingPortal, start_blocking_portal

from ..errors import SpawnError
from ..orchestrator import SessionRegistry
from ..runtime.dispatcher import CallbackDispatcher, ScriptCallback
from ..runtime.events import (
    CancelReason,
    DispatchPayload,
    ErrorPayload,
    InvocationMode,
    LinePayload,
    Outcome,
)
from ..runtime.session import ExecutionSession
from .console import ScriptConsole

__all__ = ["ProcessBridge", "CommandResult", "StreamingResult"]

logger = logging.getLogger(__name__)

Command = str | Sequence[str]


@dataclass(frozen=True)
class CommandResult:
    """Collected result of a finished command.

    Attributes:
        exit_code: Child exit status (None if it was not observed)
        stdout: Standard output lines, newline terminated
        stderr: Standard error lines, newline terminated
        success: Exit status 0 and not cancelled
    """

    exit_code: int | None
    stdout: str
    stderr: str
    success: bool


@dataclass(frozen=True)
class StreamingResult:
    """Result of exec_streaming().

    Attributes:
        exit_code: Child exit status
        success: Exit status 0
        output: All lines in arrival order, prefixed with [OUT] or [ERR]
    """

    exit_code: int | None
    success: bool
    output: str


class _Collector:
    """Progress-mode callback that keeps stdout and stderr apart."""

    def __init__(self) -> None:
        self.stdout: list[str] = []
        self.stderr: list[str] = []

    def __call__(self, payload: DispatchPayload) -> None:
        if isinstance(payload, LinePayload):
            self.stdout.append(payload.line)
        elif isinstance(payload, ErrorPayload):
            self.stderr.append(payload.error)

    @staticmethod
    def _join(lines: list[str]) -> str:
        return "".join(f"{line}\n" for line in lines)

    def result(self, outcome: Outcome) -> CommandResult:
        return CommandResult(
            exit_code=outcome.exit_code,
            stdout=self._join(self.stdout),
            stderr=self._join(self.stderr),
            success=outcome.success,
        )


class ProcessBridge:
    """Runs commands for a build script and streams their output back.

    Example:
        with ProcessBridge(working_dir=Path("/src")) as bridge:
            ok = bridge.run("make all", lambda line: print(line))

    Attributes:
        working_dir: Default working directory for commands
        registry: Registry the active sessions are listed in
        console: Console used by exec_streaming()
        queue_capacity: Line event queue capacity (None = from config)
    """

    def __init__(
        self,
        working_dir: Path | str | None = None,
        registry: SessionRegistry | None = None,
        console: ScriptConsole | None = None,
        env: Mapping[str, str] | None = None,
        queue_capacity: int | None = None,
    ) -> None:
        self.working_dir = Path(working_dir) if working_dir is not None else Path.cwd()
        self.registry = registry or SessionRegistry()
        self.console = console or ScriptConsole()
        self.env = dict(env) if env else {}
        self.queue_capacity = queue_capacity
        self._portal_cm: AbstractContextManager[BlockingPortal] | None = None
        self._portal: BlockingPortal | None = None

    def __enter__(self) -> "ProcessBridge":
        self._get_portal()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _get_portal(self) -> BlockingPortal:
        if self._portal is None:
            self._portal_cm = start_blocking_portal(backend="asyncio")
            self._portal = self._portal_cm.__enter__()
            logger.debug("Started event loop thread")
        return self._portal

    def close(self) -> None:
        """Stop the event loop thread."""
        if self._portal_cm is not None:
            cm, self._portal_cm, self._portal = self._portal_cm, None, None
            cm.__exit__(None, None, None)
            logger.debug("Stopped event loop thread")

    def get_cwd(self) -> str:
        return str(self.working_dir)

    def set_cwd(self, path: Path | str) -> None:
        """Change the default working directory for later commands.

        Relative paths resolve against the current working_dir.

        Raises:
            NotADirectoryError: If path is not an existing directory
        """
        new_dir = (self.working_dir / Path(path)).resolve()
        if not new_dir.is_dir():
            raise NotADirectoryError(f"Not a directory: {new_dir}")
        self.working_dir = new_dir
        logger.debug(f"Working directory set to {new_dir}")

    def _merged_env(self, env: Mapping[str, str] | None) -> dict[str, str] | None:
        if not self.env and not env:
            return None
        merged = dict(self.env)
        if env:
            merged.update(env)
        return merged

    # =========================================================================
    # Core entry point
    # =========================================================================

    def execute(
        self,
        command: Command,
        callback: ScriptCallback,
        mode: InvocationMode | str = InvocationMode.SIMPLE,
        *,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> Outcome:
        """Run a command, delivering its lines to callback on this thread.

        Args:
            command: Shell command string or argv sequence
            callback: Script callback (argument shape depends on mode)
            mode: Invocation mode
            cwd: Working directory, relative to working_dir (default: working_dir)
            env: Environment overrides for this command
            timeout: Optional deadline in seconds

        Returns:
            The session outcome, available only after the terminal payload
            was dispatched

        Raises:
            SpawnError: If the process cannot be started
            CallbackError: If the callback raised (the child is terminated first)
        """
        portal = self._get_portal()
        session = ExecutionSession(
            command,
            self.working_dir / Path(cwd) if cwd is not None else self.working_dir,
            self._merged_env(env),
            mode,
            timeout=timeout,
            queue_capacity=self.queue_capacity,
        )
        dispatcher = CallbackDispatcher(session, callback)

        portal.call(session.start)
        self.registry.register(session)

        try:
            while True:
                event = portal.call(session.next_event)
                if event is None:
                    break
                if not dispatcher.dispatch(event):
                    portal.call(session.cancel, CancelReason.CALLBACK)
                    break
            outcome = portal.call(session.finish)
        except BaseException as e:
            reason = CancelReason.CALLBACK if isinstance(e, Exception) else CancelReason.SIGNAL
            portal.call(session.shutdown, reason)
            raise
        finally:
            self.registry.unregister(session.session_id)

        dispatcher.dispatch_terminal(outcome)
        return outcome

    # =========================================================================
    # Script-facing modes
    # =========================================================================

    def run(
        self,
        command: Command,
        on_line: ScriptCallback,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> bool:
        """Simple mode: on_line(text); return False from it to cancel."""
        outcome = self.execute(
            command, on_line, InvocationMode.SIMPLE, cwd=cwd, env=env, timeout=timeout
        )
        return outcome.success

    def run_with_progress(
        self,
        command: Command,
        on_progress: ScriptCallback,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> bool:
        """Progress mode: line/error payloads, then one terminal payload."""
        outcome = self.execute(
            command, on_progress, InvocationMode.PROGRESS, cwd=cwd, env=env, timeout=timeout
        )
        return outcome.success

    def run_realtime(
        self,
        command: Command,
        on_event: ScriptCallback,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> None:
        """Realtime mode: line/error payloads, then a final-output marker."""
        self.execute(
            command, on_event, InvocationMode.REALTIME, cwd=cwd, env=env, timeout=timeout
        )

    # =========================================================================
    # Convenience wrappers
    # =========================================================================

    def exec_command(
        self,
        command: Command,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command and collect its output."""
        collector = _Collector()
        outcome = self.execute(
            command, collector, InvocationMode.PROGRESS, cwd=cwd, env=env, timeout=timeout
        )
        return collector.result(outcome)

    def exec_silent(
        self,
        command: Command,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> bool:
        """Run a command, discarding its output."""
        outcome = self.execute(
            command, lambda _: None, InvocationMode.SIMPLE, cwd=cwd, env=env, timeout=timeout
        )
        return outcome.success

    def exec_streaming(
        self,
        command: Command,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> StreamingResult:
        """Run a command, echoing each line to the console as it arrives."""
        output: list[str] = []

        def echo(payload: DispatchPayload) -> None:
            if isinstance(payload, LinePayload):
                self.console.echo(payload.line)
                output.append(f"[OUT] {payload.line}")
            elif isinstance(payload, ErrorPayload):
                self.console.echo_error(payload.error)
                output.append(f"[ERR] {payload.error}")

        outcome = self.execute(
            command, echo, InvocationMode.PROGRESS, cwd=cwd, env=env, timeout=timeout
        )
        return StreamingResult(
            exit_code=outcome.exit_code,
            success=outcome.success,
            output="\n".join(output),
        )

    def git_clone(self, repo_url: str, target_dir: str | None = None) -> bool:
        """Clone a repository; False if it failed or git is not installed."""
        argv = ["git", "clone", repo_url]
        if target_dir:
            argv.append(target_dir)
        try:
            return self.exec_command(argv).success
        except SpawnError as e:
            logger.warning(f"git clone could not start: {e}")
            return False

    def cargo_build(self, release: bool = False) -> CommandResult:
        """Run cargo build; a missing cargo is reported as a failed result."""
        argv = ["cargo", "build"]
        if release:
            argv.append("--release")
        try:
            return self.exec_command(argv)
        except SpawnError as e:
            logger.warning(f"cargo build could not start: {e}")
            return CommandResult(exit_code=None, stdout="", stderr=str(e), success=False)

    @staticmethod
    def which(program: str) -> str | None:
        """Full path of program on PATH, or None."""
        return shutil.which(program)

    @staticmethod
    def command_exists(program: str) -> bool:
        return shutil.which(program) is not None
