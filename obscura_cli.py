#!/usr/bin/env python3
"""
Obscura CLI Entry Point
Runs the obscura command from a source checkout without installation
"""

import sys
from pathlib import Path

src_path = Path(__file__).parent / 'src'
sys.path.insert(0, str(src_path))

from obscura.cli import main

if __name__ == '__main__':
    sys.exit(main())
