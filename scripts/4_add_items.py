#!/usr/bin/env python3
"""
Stage 4: load one item per unit of supply into the candy machine.

All items share the same metadata pointer.
"""

import sys

from candymint.cli import main

if __name__ == "__main__":
    sys.exit(main(["items"] + sys.argv[1:]))
