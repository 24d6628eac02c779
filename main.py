#!/usr/bin/env python3
"""Mavin metadata cache - main entry point.

Equivalent to the ``mavin`` console script; usable straight from a source
checkout without installing the package.
"""

import sys
from pathlib import Path

# Add src directory to Python path BEFORE imports
sys.path.insert(0, str(Path(__file__).parent / "src"))

from mavin.app.cli import run

if __name__ == "__main__":
    run()
