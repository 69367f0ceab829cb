#!/usr/bin/env python3
"""
Stage 3: add start date, SOL payment and mint limit guards.

Run once after stage 2; running it again replaces the guard set.
"""

import sys

from candymint.cli import main

if __name__ == "__main__":
    sys.exit(main(["guards"] + sys.argv[1:]))
