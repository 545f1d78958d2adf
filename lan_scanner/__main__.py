"""
Entry point for running lan_scanner as a module.

This allows the package to be executed with: python -m lan_scanner
"""

import sys

from .main import main

if __name__ == "__main__":
    sys.exit(main())
