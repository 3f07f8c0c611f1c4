"""Event and outcome models for the process execution bridge.

Design:
1. LineEvent - immutable record produced by a stream reader
2. DispatchPayload - tagged variant handed to the script callback
3. Outcome - final verdict, computed once per session
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict

__all__ = [
    "Origin",
    "InvocationMode",
    "SessionState",
    "OutcomeStatus",
    "CancelReason",
    "LineEvent",
    "LinePayload",
    "ErrorPayload",
    "TerminalPayload",
    "FinalOutputPayload",
    "DispatchPayload",
    "Outcome",
]


class Origin(str, Enum):
    """Which child stream a line came from."""

    OUTPUT = "output"
    ERROR = "error"


class InvocationMode(str, Enum):
    """Callback invocation style."""

    SIMPLE = "simple"
    PROGRESS = "progress"
    REALTIME = "realtime"


class SessionState(str, Enum):
    """Lifecycle of an execution session.

    idle -> spawning -> running -> draining -> {completed | cancelled | spawn_error}
    """

    IDLE = "idle"
    SPAWNING = "spawning"
    RUNNING = "running"
    DRAINING = "draining"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    SPAWN_ERROR = "spawn_error"

    @property
    def is_terminal(self) -> bool:
        return self in (
            SessionState.COMPLETED,
            SessionState.CANCELLED,
            SessionState.SPAWN_ERROR,
        )


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SPAWN_ERROR = "spawn_error"


class CancelReason(str, Enum):
    """Why a session ended early."""

    NONE = "none"
    CALLBACK = "callback"
    TIMEOUT = "timeout"
    SIGNAL = "signal"
    SPAWN_ERROR = "spawn_error"


class LineEvent(BaseModel):
    """One line read from a child stream.

    Attributes:
        origin: Stream the line came from
        sequence: Per-origin sequence number, starting at 1
        text: Line text without the line terminator
        decode_error: True if undecodable bytes were replaced
    """

    model_config = ConfigDict(frozen=True)

    origin: Origin
    sequence: int
    text: str
    decode_error: bool = False


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True)


class LinePayload(_Payload):
    """A stdout line."""

    kind: Literal["line"] = "line"
    line: str


class ErrorPayload(_Payload):
    """A stderr line."""

    kind: Literal["error"] = "error"
    error: str


class TerminalPayload(_Payload):
    """Final Progress-mode payload, delivered once after process exit.

    Attributes:
        success: Exit status 0 and no cancellation
        total_time: Seconds from spawn to completion
        total_lines: Number of line/error payloads delivered before this one
        exit_code: Child exit status, if it was observed
        status: Outcome status name
    """

    kind: Literal["terminal"] = "terminal"
    success: bool
    total_time: float
    total_lines: int
    exit_code: int | None = None
    status: OutcomeStatus = OutcomeStatus.SUCCEEDED


class FinalOutputPayload(_Payload):
    """Realtime-mode marker: the child's streams are closed."""

    kind: Literal["final_output"] = "final_output"


DispatchPayload = LinePayload | ErrorPayload | TerminalPayload | FinalOutputPayload


class Outcome(BaseModel):
    """Result of one execution session.

    Attributes:
        success: True iff the child exited 0 and the session was not cancelled
        exit_code: Child exit status (None if it never ran or was not observed)
        total_lines: Line/error payloads dispatched
        total_time: Seconds from spawn to completion
        status: Outcome status
        reason: Cancellation reason (NONE unless cancelled or spawn failed)
        decode_errors: Lines that contained undecodable bytes
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    exit_code: int | None = None
    total_lines: int = 0
    total_time: float = 0.0
    status: OutcomeStatus = OutcomeStatus.SUCCEEDED
    reason: CancelReason = CancelReason.NONE
    decode_errors: int = 0

    @property
    def cancelled(self) -> bool:
        return self.status == OutcomeStatus.CANCELLED
