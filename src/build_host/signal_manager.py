"""Signal handling for running build scripts.

Turns OS signals into session-level actions instead of killing the host:
- SIGINT: cancel the active sessions (the script keeps running and sees a
  cancelled outcome), or interrupt the script when nothing is running
- SIGTERM: cancel everything and exit

Configuration:
- BH_SIGINT_MODE: cancel | exit | cancel_then_exit
- BH_SIGINT_DOUBLE_TAP_WINDOW: double-tap window in seconds

Build scripts run on the main thread, so the handlers are installed with
signal.signal() and interrupt the script by raising KeyboardInterrupt or
SystemExit from the handler.
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
import time
from types import FrameType
from typing import Any, Callable, Optional

from .config import SigintMode, get_config
from .orchestrator import SessionRegistry
from .runtime.events import CancelReason

__all__ = ["SignalManager", "SigintMode"]

logger = logging.getLogger(__name__)

EXIT_SIGINT = 130
EXIT_SIGTERM = 143


class SignalManager:
    """Installs SIGINT/SIGTERM handlers for the duration of a script run.

    Example:
        ```python
        registry = SessionRegistry()
        with SignalManager(registry):
            engine.run()
        ```

    Attributes:
        registry: Registry of sessions to cancel
        sigint_mode: SIGINT handling mode
        double_tap_window: Double-tap window in seconds
    """

    def __init__(
        self,
        registry: SessionRegistry,
        sigint_mode: Optional[SigintMode] = None,
        double_tap_window: Optional[float] = None,
        on_shutdown: Optional[Callable[[], None]] = None,
    ) -> None:
        self.registry = registry

        config = get_config()
        self.sigint_mode = sigint_mode if sigint_mode is not None else config.sigint_mode
        self.double_tap_window = (
            double_tap_window if double_tap_window is not None else config.sigint_double_tap_window
        )
        self._on_shutdown = on_shutdown

        self._last_sigint_time: float = 0.0
        self._armed: bool = False
        self._shutdown_requested: bool = False
        self._force_exit: bool = False
        self._original_sigint_handler: Any = None
        self._original_sigterm_handler: Any = None
        self._installed: bool = False

    @property
    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested

    @property
    def is_force_exit(self) -> bool:
        """True after a double SIGINT."""
        return self._force_exit

    @property
    def installed(self) -> bool:
        return self._installed

    def __enter__(self) -> "SignalManager":
        self.install()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.uninstall()

    def install(self) -> bool:
        """Install the handlers.

        Only possible on the main thread; elsewhere this logs and returns False.
        """
        if self._installed:
            logger.warning("SignalManager already installed")
            return True
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, signal handlers not installed")
            return False

        self._original_sigint_handler = signal.signal(signal.SIGINT, self._on_sigint)
        if sys.platform != "win32":
            self._original_sigterm_handler = signal.signal(signal.SIGTERM, self._on_sigterm)
        self._installed = True
        logger.debug(
            f"Signal handlers installed (mode={self.sigint_mode.value}, "
            f"double_tap_window={self.double_tap_window}s)"
        )
        return True

    def uninstall(self) -> None:
        """Restore the original handlers."""
        if not self._installed:
            return
        self._installed = False

        signal.signal(signal.SIGINT, self._original_sigint_handler)
        if sys.platform != "win32" and self._original_sigterm_handler is not None:
            signal.signal(signal.SIGTERM, self._original_sigterm_handler)
        logger.debug("Signal handlers removed")

    def _on_sigint(self, signum: int, frame: Optional[FrameType]) -> None:
        self.handle_sigint()

    def _on_sigterm(self, signum: int, frame: Optional[FrameType]) -> None:
        self.handle_sigterm()

    def handle_sigint(self) -> None:
        """React to SIGINT according to the configured mode.

        Raises:
            KeyboardInterrupt: When the script should be interrupted
            SystemExit: On a second SIGINT within the window after a shutdown
        """
        current_time = time.monotonic()
        time_since_last = current_time - self._last_sigint_time
        self._last_sigint_time = current_time

        if time_since_last < self.double_tap_window and self._shutdown_requested:
            logger.warning("Double SIGINT detected, forcing exit")
            self._force_shutdown()
            raise SystemExit(EXIT_SIGINT)

        if time_since_last < self.double_tap_window and self._armed:
            logger.info("Second SIGINT within window, interrupting script")
            self._request_shutdown()
            raise KeyboardInterrupt

        if self.sigint_mode == SigintMode.EXIT:
            logger.info("SIGINT received (mode=exit), interrupting script")
            self._request_shutdown()
            raise KeyboardInterrupt

        if not self.registry.has_active_sessions():
            logger.info(
                f"SIGINT received (mode={self.sigint_mode.value}), "
                "no active sessions, interrupting script"
            )
            self._request_shutdown()
            raise KeyboardInterrupt

        count = self.registry.cancel_all(CancelReason.SIGNAL)
        if self.sigint_mode == SigintMode.CANCEL_THEN_EXIT:
            self._armed = True
            logger.info(
                f"SIGINT received (mode=cancel_then_exit), cancelled {count} session(s). "
                f"Press Ctrl+C again within {self.double_tap_window}s to exit."
            )
        else:
            logger.info(f"SIGINT received (mode=cancel), cancelled {count} session(s)")

    def handle_sigterm(self) -> None:
        """Cancel all sessions and exit.

        Raises:
            SystemExit: Always
        """
        logger.info("SIGTERM received, shutting down")
        if self.registry.has_active_sessions():
            count = self.registry.cancel_all(CancelReason.SIGNAL)
            logger.info(f"Cancelled {count} active session(s) for shutdown")
        self._request_shutdown()
        raise SystemExit(EXIT_SIGTERM)

    def _request_shutdown(self) -> None:
        self._shutdown_requested = True
        self._armed = False
        if self._on_shutdown:
            try:
                self._on_shutdown()
            except Exception as e:
                logger.warning(f"Error in shutdown callback: {e}")

    def _force_shutdown(self) -> None:
        self._force_exit = True
        if self.registry.has_active_sessions():
            count = self.registry.cancel_all(CancelReason.SIGNAL)
            logger.info(f"Force exit: cancelled {count} session(s)")
        self._request_shutdown()
