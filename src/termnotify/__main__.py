"""Entry point for ``python -m termnotify``."""

import sys

from termnotify.cli import main

if __name__ == "__main__":
    sys.exit(main())
