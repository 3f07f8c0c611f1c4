"""Session registry.

Tracks the execution sessions that are currently running so that a
signal handler (or any other thread) can cancel them:
- SessionRegistry: register/unregister active sessions
- bulk cancellation with a reason
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Optional

from .runtime.events import CancelReason

if TYPE_CHECKING:
    from .runtime.session import ExecutionSession

__all__ = ["SessionRegistry", "SessionInfo"]

logger = logging.getLogger(__name__)


@dataclass
class SessionInfo:
    """Registry entry for an active session.

    Attributes:
        session: The execution session
        created_at: Registration time
    """

    session: "ExecutionSession"
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def session_id(self) -> str:
        return self.session.session_id

    def __repr__(self) -> str:
        elapsed = (datetime.now() - self.created_at).total_seconds()
        return (
            f"SessionInfo(id={self.session_id[:8]}..., "
            f"command={self.session.command!r}, "
            f"state={self.session.state.value}, "
            f"elapsed={elapsed:.1f}s)"
        )


class SessionRegistry:
    """Registry of active execution sessions.

    Provides:
    - session registration and removal
    - bulk cancellation
    - activity queries

    Thread safety: all methods may be called from any thread. The lock is
    reentrant because signal handlers run on the main thread, possibly while
    it holds the lock. Sessions are cancelled through
    ExecutionSession.request_cancel(), which hops onto the session's loop.

    Example:
        ```python
        registry = SessionRegistry()
        registry.register(session)

        if registry.has_active_sessions():
            registry.cancel_all(CancelReason.SIGNAL)

        registry.unregister(session.session_id)
        ```
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, SessionInfo] = {}
        self._lock = threading.RLock()

    def register(self, session: "ExecutionSession") -> None:
        """Register an active session.

        Raises:
            ValueError: If the session is already registered
        """
        with self._lock:
            if session.session_id in self._sessions:
                raise ValueError(f"Session {session.session_id} already registered")
            info = SessionInfo(session=session)
            self._sessions[session.session_id] = info
        logger.debug(f"Registered session: {info}")

    def unregister(self, session_id: str) -> bool:
        """Remove a session.

        Returns:
            True if the session was registered
        """
        with self._lock:
            info = self._sessions.pop(session_id, None)

        if info is None:
            return False

        logger.debug(f"Unregistered session: {info}")
        return True

    def get(self, session_id: str) -> Optional[SessionInfo]:
        with self._lock:
            return self._sessions.get(session_id)

    def cancel(self, session_id: str, reason: CancelReason = CancelReason.SIGNAL) -> bool:
        """Request cancellation of one session.

        Returns:
            True if a cancellation was scheduled
        """
        info = self.get(session_id)
        if info and info.session.request_cancel(reason):
            logger.info(f"Cancelled session: {info}")
            return True
        return False

    def cancel_all(self, reason: CancelReason = CancelReason.SIGNAL) -> int:
        """Request cancellation of every active session.

        Returns:
            Number of sessions a cancellation was scheduled for
        """
        cancelled = 0
        for info in self.list_active():
            if info.session.request_cancel(reason):
                logger.info(f"Cancelled session: {info}")
                cancelled += 1

        if cancelled > 0:
            logger.info(f"Cancelled {cancelled} active session(s)")
        return cancelled

    def has_active_sessions(self) -> bool:
        with self._lock:
            return any(info.session.active for info in self._sessions.values())

    @property
    def active_count(self) -> int:
        with self._lock:
            return sum(1 for info in self._sessions.values() if info.session.active)

    @property
    def total_count(self) -> int:
        """Registered sessions, including finished ones not yet removed."""
        with self._lock:
            return len(self._sessions)

    def list_active(self) -> list[SessionInfo]:
        """Active sessions ordered by registration time."""
        with self._lock:
            active = [info for info in self._sessions.values() if info.session.active]
        return sorted(active, key=lambda x: x.created_at)

    def __len__(self) -> int:
        return self.total_count

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions
