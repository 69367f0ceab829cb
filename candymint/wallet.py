"""Operator key pair loading."""

import json
from pathlib import Path

from solders.keypair import Keypair

from .errors import ValidationError


def load_keypair(path):
    """
    Load a signing key pair from a JSON array of 64 byte values.

    This is the format written by `solana-keygen new`.

    Args:
        path: Path to the key file.

    Returns:
        Keypair: The operator identity.
    """
    path = Path(path)
    try:
        secret = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ValidationError(f"key file not found: {path}")
    except json.JSONDecodeError as e:
        raise ValidationError(f"key file {path} is not valid JSON", str(e))

    if not isinstance(secret, list) or not all(isinstance(b, int) and 0 <= b <= 255 for b in secret):
        raise ValidationError(f"key file {path} must hold a JSON array of byte values")
    if len(secret) != 64:
        raise ValidationError(f"key file {path} holds {len(secret)} bytes, expected 64")

    try:
        return Keypair.from_bytes(bytes(secret))
    except ValueError as e:
        raise ValidationError(f"key file {path} is not a valid ed25519 key pair", str(e))
