"""File and JSON helpers exposed to build scripts.

Queries (file_exists, read_file, json_parse, ...) report problems as False
or None. Mutations (write_file, create_dir, delete_*) raise OSError.
"""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Any

__all__ = [
    "file_exists",
    "dir_exists",
    "read_file",
    "write_file",
    "create_dir",
    "delete_file",
    "delete_dir",
    "json_parse",
    "json_stringify",
]

logger = logging.getLogger(__name__)

PathLike = str | Path


def file_exists(path: PathLike) -> bool:
    """True if anything exists at path (file or directory)."""
    return Path(path).exists()


def dir_exists(path: PathLike) -> bool:
    return Path(path).is_dir()


def read_file(path: PathLike, encoding: str = "utf-8") -> str | None:
    """File contents, or None if it cannot be read."""
    try:
        return Path(path).read_text(encoding=encoding)
    except (OSError, UnicodeDecodeError) as e:
        logger.debug(f"read_file({path!r}) failed: {e}")
        return None


def write_file(path: PathLike, content: str, encoding: str = "utf-8") -> None:
    Path(path).write_text(content, encoding=encoding)


def create_dir(path: PathLike) -> None:
    """Create a directory and any missing parents."""
    Path(path).mkdir(parents=True, exist_ok=True)


def delete_file(path: PathLike) -> None:
    Path(path).unlink()


def delete_dir(path: PathLike) -> None:
    """Remove a directory tree."""
    shutil.rmtree(path)


def json_parse(text: str) -> Any:
    """Parsed JSON value, or None if text is not valid JSON."""
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def json_stringify(value: Any, indent: int | None = None) -> str | None:
    """JSON text, or None if value is not serializable."""
    try:
        return json.dumps(value, ensure_ascii=False, indent=indent, allow_nan=False)
    except (TypeError, ValueError):
        return None
