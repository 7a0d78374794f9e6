#!/usr/bin/env python3
"""
Entry point wrapper.

Runs the judge CLI from a source checkout without installing the package.
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

if __name__ == "__main__":
    from judge.cli import main
    sys.exit(main())
