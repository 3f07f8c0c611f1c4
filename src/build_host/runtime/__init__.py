"""Runtime module for process execution and line event streaming.

This module provides isolated process execution with proper termination,
concurrent stdout/stderr line reading, and serialized delivery of line
events into a single-threaded script callback.
"""

from __future__ import annotations

from .dispatcher import CallbackDispatcher
from .events import (
    CancelReason,
    DispatchPayload,
    ErrorPayload,
    FinalOutputPayload,
    InvocationMode,
    LineEvent,
    LinePayload,
    Origin,
    Outcome,
    OutcomeStatus,
    SessionState,
    TerminalPayload,
)
from .modes import CANCEL, policy_for
from .process_runner import ProcessRunner, ProcessSpec
from .session import ExecutionSession, execute_async

__all__ = [
    "CANCEL",
    "CallbackDispatcher",
    "CancelReason",
    "DispatchPayload",
    "ErrorPayload",
    "ExecutionSession",
    "FinalOutputPayload",
    "InvocationMode",
    "LineEvent",
    "LinePayload",
    "Origin",
    "Outcome",
    "OutcomeStatus",
    "ProcessRunner",
    "ProcessSpec",
    "SessionState",
    "TerminalPayload",
    "execute_async",
    "policy_for",
]
