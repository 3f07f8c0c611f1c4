"""Error taxonomy for the build host.

Only failures that abort an execution call are exceptions:

- SpawnError: the OS could not start the child process
- CallbackError: the script callback raised while handling an event
- ScriptError: a build script could not be loaded or failed while running

Undecodable output and non-zero exit codes are reported as data
(LineEvent.decode_error, Outcome.success) rather than raised.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

__all__ = [
    "BuildHostError",
    "SpawnError",
    "SpawnErrorKind",
    "CallbackError",
    "ScriptError",
]


class BuildHostError(Exception):
    """Base class for all build host errors."""


class SpawnErrorKind(str, Enum):
    """Why a child process could not be started."""

    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    INVALID_WORKING_DIRECTORY = "invalid_working_directory"
    OS_ERROR = "os_error"


class SpawnError(BuildHostError):
    """Raised when a child process cannot be started.

    Attributes:
        kind: Failure category
        command: The command that was being started
        cwd: Working directory requested for the child
    """

    def __init__(
        self,
        kind: SpawnErrorKind,
        command: str,
        cwd: Path | None = None,
        detail: str = "",
    ) -> None:
        self.kind = kind
        self.command = command
        self.cwd = cwd
        self.detail = detail
        message = f"Failed to spawn {command!r}: {kind.value}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class CallbackError(BuildHostError):
    """Raised when the script callback fails while handling an event.

    The original exception is available as ``__cause__``.
    """

    def __init__(self, command: str, processed_lines: int) -> None:
        self.command = command
        self.processed_lines = processed_lines
        super().__init__(
            f"Callback failed for {command!r} after {processed_lines} line(s)"
        )


class ScriptError(BuildHostError):
    """Raised when a build script cannot be loaded or fails while running."""

    def __init__(self, script_path: Path, message: str) -> None:
        self.script_path = script_path
        super().__init__(f"{script_path}: {message}")
