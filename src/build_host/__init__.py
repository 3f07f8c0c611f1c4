"""build-host - run build scripts that drive external tools.

Build scripts are Python files executed with a host API for starting
processes and consuming their output line by line.

Environment variables:
    BH_LOG_DEBUG: Debug log to a temp file (default false)
    BH_QUEUE_CAPACITY: Line event queue capacity (default 256)
    BH_SIGINT_MODE: cancel | exit | cancel_then_exit (default cancel)

Usage:
    build-host build.py --target release
"""

__version__ = "0.1.0"

from .app import main

__all__ = ["__version__", "main"]
