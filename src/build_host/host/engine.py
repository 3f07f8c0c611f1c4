"""Build script engine.

Executes a Python build script with the host API injected as globals.
Scripts are plain Python; `include()` and `include_local()` run other
script files in the same namespace.
"""

from __future__ import annotations

import ast
import logging
from pathlib import Path
from typing import Any

from ..errors import ScriptError
from ..runtime.modes import CANCEL
from . import environment, files
from .bridge import ProcessBridge
from .console import ScriptConsole
from .timer import create_timer

__all__ = ["ScriptEngine", "list_targets"]

logger = logging.getLogger(__name__)

TARGETS_NAME = "TARGETS"


def list_targets(script_path: Path | str) -> list[str]:
    """Read the top-level TARGETS list of a script without running it.

    Returns:
        Target names, or an empty list if the script declares none

    Raises:
        ScriptError: If the script cannot be read or parsed, or TARGETS is
            not a literal sequence of strings
    """
    path = Path(script_path)
    try:
        tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
    except (OSError, SyntaxError, UnicodeDecodeError) as e:
        raise ScriptError(path, f"cannot parse script: {e}") from e

    for node in tree.body:
        if not isinstance(node, ast.Assign):
            continue
        if not any(isinstance(t, ast.Name) and t.id == TARGETS_NAME for t in node.targets):
            continue
        try:
            value = ast.literal_eval(node.value)
        except ValueError as e:
            raise ScriptError(path, f"{TARGETS_NAME} must be a literal list") from e
        if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
            raise ScriptError(path, f"{TARGETS_NAME} must be a list of strings")
        return list(value)
    return []


class ScriptEngine:
    """Runs one build script.

    Attributes:
        script_path: Absolute path of the main script
        target: Requested build target (None if not given)
        verbose: Verbose flag exposed to the script
        bridge: Process bridge backing run()/exec_command()/...
        console: Console used by the print helpers
        namespace: Globals shared by the script and its includes
    """

    def __init__(
        self,
        script_path: Path | str,
        target: str | None = None,
        verbose: bool = False,
        bridge: ProcessBridge | None = None,
        console: ScriptConsole | None = None,
    ) -> None:
        self.script_path = Path(script_path).resolve()
        self.target = target
        self.verbose = verbose
        self.console = console or ScriptConsole()
        self.bridge = bridge or ProcessBridge(
            working_dir=self.script_path.parent,
            console=self.console,
        )
        self._including: list[Path] = []
        self.namespace = self._build_namespace()

    @property
    def script_dir(self) -> Path:
        return self.script_path.parent

    def _build_namespace(self) -> dict[str, Any]:
        bridge = self.bridge
        console = self.console
        return {
            "__name__": "__build__",
            "__file__": str(self.script_path),
            # Invocation context
            "verbose": self.verbose,
            "target": self.target,
            "script_path": str(self.script_path),
            "script_dir": str(self.script_dir),
            # Process execution
            "CANCEL": CANCEL,
            "run": bridge.run,
            "run_with_progress": bridge.run_with_progress,
            "run_realtime": bridge.run_realtime,
            "execute": bridge.execute,
            "exec_command": bridge.exec_command,
            "exec_silent": bridge.exec_silent,
            "exec_streaming": bridge.exec_streaming,
            "git_clone": bridge.git_clone,
            "cargo_build": bridge.cargo_build,
            "which": bridge.which,
            "command_exists": bridge.command_exists,
            # Environment
            "get_env": environment.get_env,
            "set_env": environment.set_env,
            "unset_env": environment.unset_env,
            "get_cwd": bridge.get_cwd,
            "set_cwd": bridge.set_cwd,
            "get_platform": environment.get_platform,
            "is_windows": environment.is_windows,
            "is_unix": environment.is_unix,
            # Output
            "println": console.echo,
            "print_success": console.print_success,
            "print_error": console.print_error,
            # Files and JSON
            "file_exists": files.file_exists,
            "dir_exists": files.dir_exists,
            "read_file": files.read_file,
            "write_file": files.write_file,
            "create_dir": files.create_dir,
            "delete_file": files.delete_file,
            "delete_dir": files.delete_dir,
            "json_parse": files.json_parse,
            "json_stringify": files.json_stringify,
            # Utilities
            "include": self.include,
            "include_local": self.include_local,
            "create_timer": create_timer,
        }

    def run(self) -> None:
        """Execute the main script.

        Raises:
            ScriptError: If the script cannot be loaded or raises
        """
        if self.verbose:
            self.console.print_status(f"Executing {self.script_path}")
        if self.target is not None:
            logger.info(f"Build target: {self.target}")
        self._exec_file(self.script_path)

    def include(self, path: str) -> None:
        """Execute another script in the current namespace.

        Relative paths resolve against the bridge's working directory.
        """
        self._exec_file(Path(self.bridge.get_cwd()) / path)

    def include_local(self, path: str) -> None:
        """Execute a script relative to the main script's directory."""
        self._exec_file(self.script_dir / path)

    def _exec_file(self, path: Path) -> None:
        path = path.resolve()
        if path in self._including:
            raise ScriptError(path, "circular include")

        try:
            source = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ScriptError(path, f"cannot read script: {e}") from e
        try:
            code = compile(source, str(path), "exec")
        except SyntaxError as e:
            raise ScriptError(path, f"syntax error at line {e.lineno}: {e.msg}") from e

        logger.debug(f"Executing script {path}")
        self._including.append(path)
        try:
            exec(code, self.namespace)
        except ScriptError:
            raise
        except Exception as e:
            raise ScriptError(path, f"{type(e).__name__}: {e}") from e
        finally:
            self._including.pop()
