"""Invocation mode policies.

All modes share one event pipeline; a policy only decides what the script
callback sees and how its return value is read:

- Simple: callback(text) for every line of either stream; an explicit False
  requests cancellation. No terminal payload is shown.
- Progress: callback(LinePayload | ErrorPayload), then one TerminalPayload
  with the success flag, elapsed seconds and line count.
- Realtime: callback(LinePayload | ErrorPayload), then one FinalOutputPayload
  marking stream closure, whatever the exit status.

Every mode also accepts the CANCEL sentinel as an explicit cancel request.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from .events import (
    DispatchPayload,
    ErrorPayload,
    FinalOutputPayload,
    InvocationMode,
    LineEvent,
    LinePayload,
    Origin,
    Outcome,
    TerminalPayload,
)

__all__ = [
    "CANCEL",
    "CancelSignal",
    "ModePolicy",
    "SimplePolicy",
    "ProgressPolicy",
    "RealtimePolicy",
    "policy_for",
]


class CancelSignal(Enum):
    """Return value a callback uses to stop the running command."""

    CANCEL = "cancel"

    def __repr__(self) -> str:
        return "CANCEL"


CANCEL = CancelSignal.CANCEL


class ModePolicy(ABC):
    """Shapes line events into callback arguments for one invocation mode."""

    mode: InvocationMode

    @abstractmethod
    def shape(self, event: LineEvent) -> Any:
        """Build the callback argument for a line event."""
        ...

    @abstractmethod
    def shape_terminal(self, outcome: Outcome) -> DispatchPayload | None:
        """Build the terminal payload, or None if the mode shows none."""
        ...

    def wants_cancel(self, result: Any) -> bool:
        """Interpret the callback's return value."""
        return result is CANCEL

    @staticmethod
    def _structured(event: LineEvent) -> DispatchPayload:
        if event.origin == Origin.ERROR:
            return ErrorPayload(error=event.text)
        return LinePayload(line=event.text)


class SimplePolicy(ModePolicy):
    mode = InvocationMode.SIMPLE

    def shape(self, event: LineEvent) -> str:
        return event.text

    def shape_terminal(self, outcome: Outcome) -> DispatchPayload | None:
        return None

    def wants_cancel(self, result: Any) -> bool:
        return result is False or result is CANCEL


class ProgressPolicy(ModePolicy):
    mode = InvocationMode.PROGRESS

    def shape(self, event: LineEvent) -> DispatchPayload:
        return self._structured(event)

    def shape_terminal(self, outcome: Outcome) -> DispatchPayload:
        return TerminalPayload(
            success=outcome.success,
            total_time=outcome.total_time,
            total_lines=outcome.total_lines,
            exit_code=outcome.exit_code,
            status=outcome.status,
        )


class RealtimePolicy(ModePolicy):
    mode = InvocationMode.REALTIME

    def shape(self, event: LineEvent) -> DispatchPayload:
        return self._structured(event)

    def shape_terminal(self, outcome: Outcome) -> DispatchPayload:
        return FinalOutputPayload()


_POLICIES: dict[InvocationMode, type[ModePolicy]] = {
    InvocationMode.SIMPLE: SimplePolicy,
    InvocationMode.PROGRESS: ProgressPolicy,
    InvocationMode.REALTIME: RealtimePolicy,
}


def policy_for(mode: InvocationMode | str) -> ModePolicy:
    """Create the policy for an invocation mode."""
    return _POLICIES[InvocationMode(mode)]()
