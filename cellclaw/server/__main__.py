"""
Entry point for running the server as a module.

Usage:
    python -m cellclaw.server
    python -m cellclaw.server --port 8765 --host 0.0.0.0
"""

import sys

from ..cli import main

if __name__ == "__main__":
    sys.exit(main(["serve", *sys.argv[1:]]))
