#!/usr/bin/env python3
"""
Stage 1: mint the collection NFT.

Run once. The collection address is saved to candy_state.json for stage 2.
"""

import sys

from candymint.cli import main

if __name__ == "__main__":
    sys.exit(main(["collection"] + sys.argv[1:]))
