"""Execution session and completion aggregation.

An ExecutionSession owns one child process from spawn to terminal event:

    idle -> spawning -> running -> draining -> {completed | cancelled | spawn_error}

Key design points:
- Two LineReader tasks feed one bounded EventMultiplexer
- Exactly one consumer pulls events with next_event(); the consumer decides
  where the script callback runs (event loop thread or script thread)
- cancel() is idempotent: it stops the readers and terminates the process
  group; next_event() returns None from then on
- finish() waits for exit (racing cancellation and the optional deadline)
  and computes the Outcome exactly once
- request_cancel() may be called from any thread
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from ..config import get_config
from ..errors import SpawnError
from .dispatcher import CallbackDispatcher, ScriptCallback
from .events import (
    CancelReason,
    InvocationMode,
    LineEvent,
    Origin,
    Outcome,
    OutcomeStatus,
    SessionState,
)
from .line_reader import LineReader
from .multiplexer import EventMultiplexer
from .process_runner import ProcessHandle, ProcessRunner, ProcessSpec

if TYPE_CHECKING:
    from ..orchestrator import SessionRegistry

__all__ = ["ExecutionSession", "execute_async"]

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.SPAWNING}),
    SessionState.SPAWNING: frozenset({SessionState.RUNNING, SessionState.SPAWN_ERROR}),
    SessionState.RUNNING: frozenset({SessionState.DRAINING, SessionState.CANCELLED}),
    SessionState.DRAINING: frozenset({SessionState.COMPLETED, SessionState.CANCELLED}),
    SessionState.COMPLETED: frozenset(),
    SessionState.CANCELLED: frozenset(),
    SessionState.SPAWN_ERROR: frozenset(),
}


class ExecutionSession:
    """One execution of one external command.

    Attributes:
        session_id: Unique session identifier
        spec: Process specification
        mode: Invocation mode
        timeout: Optional deadline in seconds (None = no deadline)
        processed_lines: Line/error payloads dispatched so far
        started_at: Monotonic timestamp taken just before spawning
        state: Current lifecycle state
        cancel_reason: Why the session was cancelled (NONE if it was not)
        outcome: Final outcome, set once by finish()
    """

    def __init__(
        self,
        command: str | Sequence[str],
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        mode: InvocationMode | str = InvocationMode.SIMPLE,
        *,
        timeout: float | None = None,
        runner: ProcessRunner | None = None,
        queue_capacity: int | None = None,
        encoding: str | None = None,
    ) -> None:
        config = get_config()
        self.session_id = str(uuid.uuid4())
        self.spec = ProcessSpec(
            command=command,
            cwd=Path(cwd) if cwd is not None else Path.cwd(),
            env=env,
        )
        self.mode = InvocationMode(mode)
        self.timeout = timeout
        self.runner = runner or ProcessRunner(
            term_timeout=config.term_timeout,
            kill_timeout=config.kill_timeout,
        )
        self.queue_capacity = queue_capacity or config.queue_capacity
        self.encoding = encoding or config.encoding

        self.processed_lines = 0
        self.started_at: float | None = None
        self.state = SessionState.IDLE
        self.cancel_reason = CancelReason.NONE
        self.outcome: Outcome | None = None

        self._handle: ProcessHandle | None = None
        self._mux: EventMultiplexer | None = None
        self._readers: list[LineReader] = []
        self._reader_tasks: list[asyncio.Task[int]] = []
        self._watchdog: asyncio.Task[None] | None = None
        self._cancel_event: asyncio.Event | None = None
        self._terminated: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._background: set[asyncio.Task[None]] = set()

    def __repr__(self) -> str:
        return (
            f"ExecutionSession(id={self.session_id[:8]}..., "
            f"command={self.command!r}, "
            f"mode={self.mode.value}, "
            f"state={self.state.value}, "
            f"lines={self.processed_lines})"
        )

    @property
    def command(self) -> str:
        return self.spec.display

    @property
    def handle(self) -> ProcessHandle | None:
        return self._handle

    @property
    def cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    @property
    def active(self) -> bool:
        return self.state in (SessionState.RUNNING, SessionState.DRAINING)

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid session transition {self.state.value} -> {new_state.value}"
            )
        logger.debug(f"Session {self.session_id[:8]} {self.state.value} -> {new_state.value}")
        self.state = new_state

    def _elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        return time.monotonic() - self.started_at

    async def start(self) -> None:
        """Spawn the child and start both stream readers.

        Raises:
            SpawnError: If the process cannot be started (no events follow)
        """
        self._transition(SessionState.SPAWNING)
        self._loop = asyncio.get_running_loop()
        self._cancel_event = asyncio.Event()
        self._terminated = asyncio.Event()
        self.started_at = time.monotonic()

        try:
            self._handle = await self.runner.spawn(self.spec)
        except SpawnError as e:
            self._transition(SessionState.SPAWN_ERROR)
            self.cancel_reason = CancelReason.SPAWN_ERROR
            self.outcome = Outcome(
                success=False,
                total_time=self._elapsed(),
                status=OutcomeStatus.SPAWN_ERROR,
                reason=CancelReason.SPAWN_ERROR,
            )
            logger.warning(f"Spawn failed: {e}")
            raise

        self._mux = EventMultiplexer(self.queue_capacity)
        self._readers = [
            LineReader(self._handle.stdout, Origin.OUTPUT, self._mux, self.encoding),
            LineReader(self._handle.stderr, Origin.ERROR, self._mux, self.encoding),
        ]
        self._reader_tasks = [
            asyncio.create_task(
                reader.run(),
                name=f"bh-reader-{reader.origin.value}-{self.session_id[:8]}",
            )
            for reader in self._readers
        ]
        if self.timeout is not None:
            self._watchdog = asyncio.create_task(
                self._watch_deadline(self.timeout),
                name=f"bh-deadline-{self.session_id[:8]}",
            )

        self._transition(SessionState.RUNNING)
        logger.info(
            f"Running {self.command!r} (pid={self._handle.pid}, "
            f"mode={self.mode.value}, cwd={self.spec.cwd})"
        )

    async def next_event(self) -> LineEvent | None:
        """Return the next line event in delivery order.

        Returns:
            The next event, or None once both streams ended or the session
            was cancelled
        """
        if self._mux is None or self._cancel_event is None:
            raise RuntimeError("Session not started")
        if self._cancel_event.is_set():
            return None

        try:
            return self._mux.get_nowait()
        except asyncio.QueueEmpty:
            pass

        # Wait for either the next event or a cancellation
        get_task = asyncio.ensure_future(self._mux.get())
        cancel_task = asyncio.ensure_future(self._cancel_event.wait())
        try:
            await asyncio.wait(
                {get_task, cancel_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (get_task, cancel_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(get_task, cancel_task, return_exceptions=True)

        if self._cancel_event.is_set():
            return None
        return get_task.result()

    async def cancel(self, reason: CancelReason = CancelReason.CALLBACK) -> None:
        """Stop delivering events and terminate the child.

        Idempotent; concurrent callers all return once the child is gone.
        """
        if not self.active or self._cancel_event is None or self._terminated is None:
            logger.debug(f"Ignoring cancel in state {self.state.value}")
            return
        if self._cancel_event.is_set():
            await self._terminated.wait()
            return

        self.cancel_reason = reason
        self._cancel_event.set()
        logger.info(
            f"Cancelling {self.command!r} (reason={reason.value}, "
            f"lines={self.processed_lines})"
        )

        try:
            await self._stop_readers()
            if self._handle is not None:
                await self._handle.terminate()
        finally:
            self._terminated.set()

    def request_cancel(self, reason: CancelReason = CancelReason.SIGNAL) -> bool:
        """Thread-safe cancellation request.

        Returns:
            True if a cancellation was scheduled
        """
        loop = self._loop
        if loop is None or not self.active or self.cancelled:
            return False

        def _schedule() -> None:
            task = loop.create_task(self.cancel(reason))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

        loop.call_soon_threadsafe(_schedule)
        return True

    async def finish(self) -> Outcome:
        """Wait for process exit and compute the outcome.

        Must be called after next_event() returned None.
        """
        if self.outcome is not None:
            return self.outcome
        if self._handle is None or self._mux is None:
            raise RuntimeError("Session not started")
        assert self._cancel_event is not None and self._terminated is not None

        if not self.cancelled:
            if not self._mux.exhausted:
                raise RuntimeError("finish() called with undelivered events")
            self._transition(SessionState.DRAINING)
            await asyncio.gather(*self._reader_tasks, return_exceptions=True)
            await self._wait_exit_or_cancel()

        if self.cancelled:
            await self._terminated.wait()

        await self._stop_watchdog()

        exit_code = self._handle.returncode
        decode_errors = sum(reader.decode_errors for reader in self._readers)
        if self.cancelled:
            status = OutcomeStatus.CANCELLED
            self._transition(SessionState.CANCELLED)
        else:
            status = OutcomeStatus.SUCCEEDED if exit_code == 0 else OutcomeStatus.FAILED
            self._transition(SessionState.COMPLETED)

        self.outcome = Outcome(
            success=status == OutcomeStatus.SUCCEEDED,
            exit_code=exit_code,
            total_lines=self.processed_lines,
            total_time=self._elapsed(),
            status=status,
            reason=self.cancel_reason,
            decode_errors=decode_errors,
        )
        logger.info(
            f"Finished {self.command!r}: status={status.value} "
            f"exit_code={exit_code} lines={self.processed_lines} "
            f"time={self.outcome.total_time:.3f}s"
        )
        return self.outcome

    async def shutdown(self, reason: CancelReason = CancelReason.SIGNAL) -> None:
        """Tear the session down after a failed or interrupted dispatch.

        Shielded from caller cancellation so the child is never orphaned.
        """
        try:
            await asyncio.shield(self._teardown(reason))
        except asyncio.CancelledError:
            # If the shield itself is cancelled, still try teardown
            await self._teardown(reason)
            raise

    async def _teardown(self, reason: CancelReason) -> None:
        if self.outcome is not None or not self.active:
            return
        await self.cancel(reason)
        await self.finish()

    async def _wait_exit_or_cancel(self) -> None:
        assert self._handle is not None and self._cancel_event is not None
        exit_task = asyncio.ensure_future(self._handle.wait())
        cancel_task = asyncio.ensure_future(self._cancel_event.wait())
        try:
            await asyncio.wait(
                {exit_task, cancel_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (exit_task, cancel_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(exit_task, cancel_task, return_exceptions=True)

    async def _stop_readers(self) -> None:
        for task in self._reader_tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._reader_tasks, return_exceptions=True)

    async def _stop_watchdog(self) -> None:
        watchdog = self._watchdog
        if watchdog is None or watchdog is asyncio.current_task():
            return
        if not watchdog.done():
            watchdog.cancel()
        await asyncio.gather(watchdog, return_exceptions=True)

    async def _watch_deadline(self, timeout: float) -> None:
        await asyncio.sleep(timeout)
        logger.warning(f"{self.command!r} exceeded timeout of {timeout}s")
        await self.cancel(CancelReason.TIMEOUT)


async def execute_async(
    command: str | Sequence[str],
    callback: ScriptCallback,
    mode: InvocationMode | str = InvocationMode.SIMPLE,
    *,
    cwd: Path | str | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
    registry: "SessionRegistry | None" = None,
    runner: ProcessRunner | None = None,
    queue_capacity: int | None = None,
    encoding: str | None = None,
) -> Outcome:
    """Run a command and stream its lines into callback on the event loop.

    The callback is invoked from this coroutine only, one event at a time.
    The terminal payload is dispatched before the outcome is returned.

    Args:
        command: Shell command string or argv sequence
        callback: Script callback (shape depends on mode)
        mode: Invocation mode
        cwd: Working directory (default: current directory)
        env: Environment overrides
        timeout: Optional deadline in seconds
        registry: Optional registry the session is listed in while active

    Returns:
        The session outcome

    Raises:
        SpawnError: If the process cannot be started
        CallbackError: If the callback raised (the child is terminated first)
    """
    session = ExecutionSession(
        command,
        cwd,
        env,
        mode,
        timeout=timeout,
        runner=runner,
        queue_capacity=queue_capacity,
        encoding=encoding,
    )
    dispatcher = CallbackDispatcher(session, callback)

    await session.start()
    if registry is not None:
        registry.register(session)

    try:
        while True:
            event = await session.next_event()
            if event is None:
                break
            if not dispatcher.dispatch(event):
                await session.cancel(CancelReason.CALLBACK)
                break
        outcome = await session.finish()
    except BaseException as e:
        reason = CancelReason.CALLBACK if isinstance(e, Exception) else CancelReason.SIGNAL
        await session.shutdown(reason)
        raise
    finally:
        if registry is not None:
            registry.unregister(session.session_id)

    dispatcher.dispatch_terminal(outcome)
    return outcome
