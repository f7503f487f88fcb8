#!/usr/bin/env python3
"""CLI entry point for autopilot training."""

import os
import sys

# Add parent directory to path for imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from autopilot.cli import main


if __name__ == '__main__':
    main()
