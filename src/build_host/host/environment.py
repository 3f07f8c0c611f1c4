"""Environment and platform helpers exposed to build scripts."""

from __future__ import annotations

import os
import sys

__all__ = [
    "get_env",
    "set_env",
    "unset_env",
    "get_platform",
    "is_windows",
    "is_unix",
]


def get_env(name: str, default: str | None = None) -> str | None:
    return os.environ.get(name, default)


def set_env(name: str, value: str) -> None:
    """Set a variable in the host environment.

    Commands started afterwards inherit it.
    """
    os.environ[name] = str(value)


def unset_env(name: str) -> None:
    os.environ.pop(name, None)


def get_platform() -> str:
    """One of: windows, macos, linux, unknown."""
    if sys.platform == "win32":
        return "windows"
    if sys.platform == "darwin":
        return "macos"
    if sys.platform.startswith("linux"):
        return "linux"
    return "unknown"


def is_windows() -> bool:
    return sys.platform == "win32"


def is_unix() -> bool:
    return os.name == "posix"
