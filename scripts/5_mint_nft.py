#!/usr/bin/env python3
"""
Stage 5: mint one NFT from the candy machine to the operator.

Requires all items loaded (stage 4) and the guards satisfied.
"""

import sys

from candymint.cli import main

if __name__ == "__main__":
    sys.exit(main(["mint"] + sys.argv[1:]))
