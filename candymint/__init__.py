"""Metaplex candy machine setup and minting, one stage at a time."""

__version__ = "0.1.0"
