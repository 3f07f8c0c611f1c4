"""CallbackDispatcher unit tests."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from build_host.errors import CallbackError
from build_host.runtime.dispatcher import CallbackDispatcher
from build_host.runtime.events import (
    InvocationMode,
    LineEvent,
    LinePayload,
    Origin,
    Outcome,
    TerminalPayload,
)
from build_host.runtime.modes import CANCEL


def make_session(mode: InvocationMode = InvocationMode.SIMPLE) -> SimpleNamespace:
    """Minimal stand-in exposing what the dispatcher reads and writes."""
    return SimpleNamespace(mode=mode, processed_lines=0, command="make all")


def line(seq: int, text: str = "") -> LineEvent:
    return LineEvent(origin=Origin.OUTPUT, sequence=seq, text=text or f"line {seq}")


class TestDispatch:
    def test_counts_and_delivers(self):
        session = make_session()
        seen = []
        dispatcher = CallbackDispatcher(session, seen.append)

        assert dispatcher.dispatch(line(1))
        assert dispatcher.dispatch(line(2))
        assert seen == ["line 1", "line 2"]
        assert session.processed_lines == 2

    def test_cancel_request(self):
        session = make_session()
        dispatcher = CallbackDispatcher(session, lambda text: False)
        assert dispatcher.dispatch(line(1)) is False
        # The cancelling line still counts as processed
        assert session.processed_lines == 1

    def test_progress_cancel_sentinel(self):
        session = make_session(InvocationMode.PROGRESS)
        dispatcher = CallbackDispatcher(session, lambda payload: CANCEL)
        assert dispatcher.dispatch(line(1)) is False

    def test_callback_exception_is_wrapped(self):
        session = make_session()

        def explode(text):
            raise KeyError(text)

        dispatcher = CallbackDispatcher(session, explode)
        with pytest.raises(CallbackError) as exc_info:
            dispatcher.dispatch(line(1))
        assert isinstance(exc_info.value.__cause__, KeyError)
        assert exc_info.value.processed_lines == 1
        assert exc_info.value.command == "make all"

    def test_not_reentrant(self):
        session = make_session()
        dispatcher = CallbackDispatcher(session, lambda text: dispatcher.dispatch(line(2)))
        with pytest.raises(CallbackError) as exc_info:
            dispatcher.dispatch(line(1))
        assert isinstance(exc_info.value.__cause__, RuntimeError)


class TestTerminal:
    def test_progress_terminal_once(self):
        session = make_session(InvocationMode.PROGRESS)
        seen = []
        dispatcher = CallbackDispatcher(session, seen.append)
        dispatcher.dispatch(line(1))
        dispatcher.dispatch_terminal(
            Outcome(success=True, exit_code=0, total_lines=1, total_time=0.1)
        )

        assert seen[0] == LinePayload(line="line 1")
        assert isinstance(seen[1], TerminalPayload)
        assert seen[1].total_lines == 1
        assert dispatcher.terminal_dispatched

        with pytest.raises(RuntimeError):
            dispatcher.dispatch_terminal(Outcome(success=True))

    def test_no_lines_after_terminal(self):
        session = make_session(InvocationMode.REALTIME)
        dispatcher = CallbackDispatcher(session, lambda payload: None)
        dispatcher.dispatch_terminal(Outcome(success=True))
        with pytest.raises(RuntimeError):
            dispatcher.dispatch(line(1))

    def test_simple_mode_shows_no_terminal(self):
        session = make_session()
        seen = []
        dispatcher = CallbackDispatcher(session, seen.append)
        dispatcher.dispatch_terminal(Outcome(success=True))
        assert seen == []
