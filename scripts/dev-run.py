#!/usr/bin/env python3
"""
Command-line entry point for rccopy.

This script provides a convenient command-line interface to the rccopy
tool without requiring the package to be installed.
"""

import sys
from pathlib import Path

# Add src directory to Python path (go up to project root first)
project_root = Path(__file__).parent.parent
src_dir = project_root / "src"
sys.path.insert(0, str(src_dir))

# Import and run the main function
from rccopy import main

if __name__ == "__main__":
    sys.exit(main())
