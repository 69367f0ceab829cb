#!/usr/bin/env python3
"""
Stage 2: create the candy machine for the collection from stage 1.

Pass --collection <addr> to override the saved collection address.
"""

import sys

from candymint.cli import main

if __name__ == "__main__":
    sys.exit(main(["machine"] + sys.argv[1:]))
