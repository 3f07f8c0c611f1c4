"""build-host application entry point.

Parses the command line, configures logging and runs one build script with
signal handling installed.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from . import __version__
from .config import Config, get_config
from .errors import ScriptError
from .host.bridge import ProcessBridge
from .host.console import ScriptConsole
from .host.engine import ScriptEngine, list_targets
from .orchestrator import SessionRegistry
from .signal_manager import EXIT_SIGINT, SignalManager

__all__ = ["build_parser", "configure_logging", "run_script", "main"]

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="build-host",
        description="Run a Python build script that drives external tools.",
    )
    parser.add_argument("script", type=Path, help="Path to the build script")
    parser.add_argument("-t", "--target", help="Build target passed to the script")
    parser.add_argument(
        "-l",
        "--list-targets",
        action="store_true",
        help="List the targets declared in the script's TARGETS and exit",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def configure_logging(config: Config, verbose: bool = False) -> None:
    """Configure logging for the build_host namespace.

    BH_LOG_DEBUG sends DEBUG records to a temp file; otherwise records go to
    stderr at INFO with --verbose and WARNING without.
    """
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        Path(config.log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.INFO if verbose else logging.WARNING

    # Third-party libraries stay at WARNING
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers, force=True)
    logging.getLogger("build_host").setLevel(log_level)


def run_script(
    script: Path,
    target: str | None = None,
    verbose: bool = False,
    console: ScriptConsole | None = None,
) -> int:
    """Run a build script and return the process exit code.

    Returns:
        0 on success, 1 if the script failed, 130 if it was interrupted
    """
    console = console or ScriptConsole()
    registry = SessionRegistry()
    script_path = script.resolve()

    if verbose:
        console.print_status(f"build-host {__version__}")
        console.echo(f"Script: {script_path}")
        if target is not None:
            console.echo(f"Target: {target}")

    try:
        with ProcessBridge(
            working_dir=script_path.parent,
            registry=registry,
            console=console,
        ) as bridge, SignalManager(registry):
            engine = ScriptEngine(
                script_path,
                target=target,
                verbose=verbose,
                bridge=bridge,
                console=console,
            )
            engine.run()
    except ScriptError as e:
        logger.debug("Script failed", exc_info=True)
        console.print_error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("Script interrupted")
        console.print_error("Interrupted")
        return EXIT_SIGINT

    if verbose:
        console.print_success("Build script finished")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Command line entry point."""
    args = build_parser().parse_args(argv)
    config = get_config()
    configure_logging(config, args.verbose)
    logger.debug(f"Starting build-host: {config}")

    console = ScriptConsole()
    if not args.script.is_file():
        console.print_error(f"Script not found: {args.script}")
        return 1

    if args.list_targets:
        try:
            targets = list_targets(args.script)
        except ScriptError as e:
            console.print_error(str(e))
            return 1
        if not targets:
            console.echo("No targets declared")
        for name in targets:
            console.echo(name)
        return 0

    return run_script(args.script, args.target, args.verbose, console)


if __name__ == "__main__":
    sys.exit(main())
