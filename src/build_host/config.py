"""Build host configuration from environment variables.

Environment variables:
    BH_LOG_DEBUG: Debug logging
        - true/1/yes = on (DEBUG log written to a temp file)
        - false/0/no = off (default, log to stderr; INFO with --verbose)

    BH_QUEUE_CAPACITY: Capacity of the per-session line event queue
        - default 256, clamped to 1..65536
        - a full queue suspends the stream readers (backpressure)

    BH_TERM_TIMEOUT: Seconds to wait after SIGTERM before SIGKILL
        - default 2.0

    BH_KILL_TIMEOUT: Seconds to wait after SIGKILL
        - default 1.0

    BH_ENCODING: Encoding used to decode child output
        - default utf-8; undecodable bytes are replaced

    BH_SIGINT_MODE: SIGINT (Ctrl+C) handling mode
        - cancel = cancel running commands (interrupt the script if none) (default)
        - exit = interrupt the script immediately
        - cancel_then_exit = cancel first, interrupt only on the second Ctrl+C

    BH_SIGINT_DOUBLE_TAP_WINDOW: Double-tap window in seconds
        - default 1.0
        - a second Ctrl+C inside this window forces exit
"""

from __future__ import annotations

import codecs
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = ["Config", "SigintMode", "load_config", "get_config", "reload_config"]

DEFAULT_QUEUE_CAPACITY = 256
DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0
DEFAULT_ENCODING = "utf-8"


class SigintMode(Enum):
    """SIGINT handling mode.

    - CANCEL: cancel running commands; interrupt the script when none are running
    - EXIT: interrupt the script immediately
    - CANCEL_THEN_EXIT: cancel running commands, interrupt on the second SIGINT
    """

    CANCEL = "cancel"
    EXIT = "exit"
    CANCEL_THEN_EXIT = "cancel_then_exit"

    @classmethod
    def from_string(cls, value: str) -> "SigintMode":
        """Parse a mode name, falling back to CANCEL for unknown values."""
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.CANCEL


def _parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_int(value: str | None, default: int, low: int, high: int) -> int:
    if not value:
        return default
    try:
        return max(low, min(int(value), high))
    except ValueError:
        return default


def _parse_float(value: str | None, default: float, low: float, high: float) -> float:
    if not value:
        return default
    try:
        return max(low, min(float(value), high))
    except ValueError:
        return default


def _parse_encoding(value: str | None) -> str:
    """Return a codec name Python knows, or the default."""
    if not value or not value.strip():
        return DEFAULT_ENCODING
    try:
        return codecs.lookup(value.strip()).name
    except LookupError:
        return DEFAULT_ENCODING


@dataclass
class Config:
    """Build host configuration.

    Attributes:
        log_debug: Debug logging (to a temp file)
        log_file: Log file path (set when log_debug=True)
        queue_capacity: Line event queue capacity per session
        term_timeout: Seconds to wait after SIGTERM
        kill_timeout: Seconds to wait after SIGKILL
        encoding: Encoding used to decode child output
        sigint_mode: SIGINT handling mode
        sigint_double_tap_window: Double-tap window in seconds
    """

    log_debug: bool = False
    log_file: str | None = None
    queue_capacity: int = DEFAULT_QUEUE_CAPACITY
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    encoding: str = DEFAULT_ENCODING
    sigint_mode: SigintMode = SigintMode.CANCEL
    sigint_double_tap_window: float = 1.0

    def __repr__(self) -> str:
        return (
            f"Config(log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"queue_capacity={self.queue_capacity}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"encoding={self.encoding}, "
            f"sigint_mode={self.sigint_mode.value}, "
            f"sigint_double_tap_window={self.sigint_double_tap_window})"
        )


def _generate_log_file_path() -> str:
    """Build a timestamped log file path under the system temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "build-host"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"bh_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("BH_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    sigint_value = os.environ.get("BH_SIGINT_MODE")

    return Config(
        log_debug=log_debug,
        log_file=log_file,
        queue_capacity=_parse_int(
            os.environ.get("BH_QUEUE_CAPACITY"), DEFAULT_QUEUE_CAPACITY, 1, 65536
        ),
        term_timeout=_parse_float(
            os.environ.get("BH_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT, 0.0, 60.0
        ),
        kill_timeout=_parse_float(
            os.environ.get("BH_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT, 0.0, 60.0
        ),
        encoding=_parse_encoding(os.environ.get("BH_ENCODING")),
        sigint_mode=SigintMode.from_string(sigint_value) if sigint_value else SigintMode.CANCEL,
        sigint_double_tap_window=_parse_float(
            os.environ.get("BH_SIGINT_DOUBLE_TAP_WINDOW"), 1.0, 0.1, 10.0
        ),
    )


# Lazily loaded global instance
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Re-read the environment (used by tests)."""
    global _config
    _config = load_config()
    return _config
