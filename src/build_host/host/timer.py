"""Stopwatch for timing build steps."""

from __future__ import annotations

import time

__all__ = ["Stopwatch", "create_timer"]


class Stopwatch:
    """Start/stop timer.

    Example:
        timer = create_timer()
        timer.start()
        build()
        print(f"took {timer.stop():.2f}s")
    """

    def __init__(self) -> None:
        self._started_at: float | None = None
        self._elapsed = 0.0

    @property
    def running(self) -> bool:
        return self._started_at is not None

    def start(self) -> None:
        self._started_at = time.monotonic()

    def stop(self) -> float:
        """Stop the timer and return the measured seconds.

        Raises:
            RuntimeError: If the timer was not started
        """
        if self._started_at is None:
            raise RuntimeError("Timer was not started")
        self._elapsed = time.monotonic() - self._started_at
        self._started_at = None
        return self._elapsed

    def elapsed(self) -> float:
        """Seconds since start() while running, else the last measurement."""
        if self._started_at is not None:
            return time.monotonic() - self._started_at
        return self._elapsed


def create_timer() -> Stopwatch:
    return Stopwatch()
