"""Callback dispatcher.

The only code allowed to call into script state. It is driven by exactly
one consumer loop, pulls one event at a time, and refuses to be re-entered
or to dispatch anything after the terminal payload.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ..errors import CallbackError
from .events import LineEvent, Outcome
from .modes import ModePolicy, policy_for

if TYPE_CHECKING:
    from .session import ExecutionSession

__all__ = ["CallbackDispatcher", "ScriptCallback"]

logger = logging.getLogger(__name__)

# Script callbacks take one argument; the return value is read by the mode policy
ScriptCallback = Callable[[Any], Any]


class CallbackDispatcher:
    """Delivers shaped payloads to a script callback, one at a time.

    Attributes:
        session: Session whose processed_lines counter is advanced
        policy: Mode policy shaping payloads and reading return values
        terminal_dispatched: True once the terminal payload was delivered
    """

    def __init__(
        self,
        session: "ExecutionSession",
        callback: ScriptCallback,
        policy: ModePolicy | None = None,
    ) -> None:
        self.session = session
        self._callback = callback
        self.policy = policy or policy_for(session.mode)
        self.terminal_dispatched = False
        self._in_callback = False

    def dispatch(self, event: LineEvent) -> bool:
        """Invoke the callback for one line event.

        Returns:
            False if the callback requested cancellation, True to continue

        Raises:
            CallbackError: If the callback raised
        """
        if self.terminal_dispatched:
            raise RuntimeError("Line event dispatched after the terminal payload")

        payload = self.policy.shape(event)
        self.session.processed_lines += 1
        result = self._invoke(payload)

        if self.policy.wants_cancel(result):
            logger.info(
                f"Callback requested cancellation at line "
                f"{self.session.processed_lines} of {self.session.command!r}"
            )
            return False
        return True

    def dispatch_terminal(self, outcome: Outcome) -> None:
        """Deliver the mode's terminal payload (if any) exactly once."""
        if self.terminal_dispatched:
            raise RuntimeError("Terminal payload already dispatched")
        self.terminal_dispatched = True

        payload = self.policy.shape_terminal(outcome)
        if payload is not None:
            # The return value of the terminal callback carries no meaning
            self._invoke(payload)

    def _invoke(self, payload: Any) -> Any:
        if self._in_callback:
            raise RuntimeError("Callback dispatch is not re-entrant")
        self._in_callback = True
        try:
            return self._callback(payload)
        except Exception as e:
            logger.warning(
                f"Callback raised {type(e).__name__} for {self.session.command!r}: {e}"
            )
            raise CallbackError(self.session.command, self.session.processed_lines) from e
        finally:
            self._in_callback = False
