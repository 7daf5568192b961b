"""docauth CLI entry point: python -m docauth"""

from __future__ import annotations

import sys

from docauth.cli import main

if __name__ == "__main__":
    sys.exit(main())
