"""Script host: the synchronous API build scripts call."""

from __future__ import annotations

from .bridge import CommandResult, ProcessBridge, StreamingResult
from .console import ScriptConsole
from .engine import ScriptEngine, list_targets
from .timer import Stopwatch, create_timer

__all__ = [
    "CommandResult",
    "ProcessBridge",
    "ScriptConsole",
    "ScriptEngine",
    "Stopwatch",
    "StreamingResult",
    "create_timer",
    "list_targets",
]
