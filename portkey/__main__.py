"""
Entry point for ``python -m portkey``.
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
