"""Console output for build scripts."""

from __future__ import annotations

from rich.console import Console

__all__ = ["ScriptConsole"]


class ScriptConsole:
    """Plain and colored line output on stdout/stderr.

    Script text is printed verbatim: no markup, no highlighting, no wrapping.
    """

    def __init__(self, stdout: Console | None = None, stderr: Console | None = None) -> None:
        self.stdout = stdout or Console(highlight=False, emoji=False, soft_wrap=True)
        self.stderr = stderr or Console(stderr=True, highlight=False, emoji=False, soft_wrap=True)

    def echo(self, text: str) -> None:
        self.stdout.print(text, markup=False)

    def echo_error(self, text: str) -> None:
        self.stderr.print(text, markup=False)

    def print_success(self, text: str) -> None:
        self.stdout.print(text, style="green", markup=False)

    def print_error(self, text: str) -> None:
        self.stderr.print(text, style="red", markup=False)

    def print_status(self, text: str) -> None:
        self.stdout.print(text, style="bold cyan", markup=False)
