"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Put src on the Python path (development checkout)
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = Path(__file__).parent / "fixtures"
CHATTY_CLI = FIXTURES_DIR / "chatty_cli.py"


def chatty_argv(*args: object) -> list[str]:
    """argv for the fixture CLI, run with the current interpreter."""
    return [sys.executable, str(CHATTY_CLI), *(str(a) for a in args)]


@pytest.fixture
def project_root() -> Path:
    return PROJECT_ROOT


@pytest.fixture
def chatty():
    """Builds argv lists for tests/fixtures/chatty_cli.py."""
    return chatty_argv


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Empty working directory for child processes."""
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch: pytest.MonkeyPatch):
    """Reload configuration from a clean BH_* environment for every test."""
    import os

    from build_host.config import reload_config

    for name in list(os.environ):
        if name.startswith("BH_"):
            monkeypatch.delenv(name)
    reload_config()
    yield
    monkeypatch.undo()
    reload_config()


@pytest.fixture
def spawned(monkeypatch: pytest.MonkeyPatch) -> list:
    """Records every ProcessHandle started through ProcessRunner.spawn."""
    from build_host.runtime.process_runner import ProcessRunner

    handles = []
    original_spawn = ProcessRunner.spawn

    async def recording_spawn(self, spec):
        handle = await original_spawn(self, spec)
        handles.append(handle)
        return handle

    monkeypatch.setattr(ProcessRunner, "spawn", recording_spawn)
    return handles
