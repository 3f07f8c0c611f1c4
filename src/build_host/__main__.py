"""build-host entry point.

Supports: python -m build_host
"""

import sys

from .app import main

if __name__ == "__main__":
    sys.exit(main())
