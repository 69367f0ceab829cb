"""
Stage Hand-off File

Each stage records what it produced (addresses, signatures) in a small
JSON file; the next stage reads its predecessor's address from there when
it is not given on the command line.
"""

import json
from datetime import datetime, timezone
from pathlib import Path

from solders.pubkey import Pubkey

from .errors import ValidationError

# Which stage produces each recorded address
PRODUCERS = {
    "collection_address": "collection",
    "machine_address": "machine",
}


def load_state(path):
    """Load the hand-off state, or an empty dict if no stage has run yet."""
    path = Path(path)
    if not path.exists():
        return {}
    try:
        state = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValidationError(f"state file {path} is not valid JSON", str(e))
    if not isinstance(state, dict):
        raise ValidationError(f"state file {path} must hold a JSON object")
    return state


def save_state(path, state):
    Path(path).write_text(json.dumps(state, indent=2) + "\n", encoding="utf-8")


def record_stage(path, stage, output):
    """Record a stage's output and return the updated state."""
    state = load_state(path)
    entry = {"completed_at": datetime.now(timezone.utc).isoformat()}
    if output.address is not None:
        entry["address"] = str(output.address)
    if output.signature is not None:
        entry["signature"] = str(output.signature)
    if output.remaining is not None:
        entry["remaining"] = output.remaining
    state.setdefault("stages", {})[stage] = entry

    if stage == "collection":
        state["collection_address"] = entry["address"]
    elif stage == "machine":
        state["machine_address"] = entry["address"]
    elif stage == "mint":
        state.setdefault("minted", []).append(entry["address"])

    save_state(path, state)
    return state


def require_address(explicit, state, key, stage):
    """
    Resolve a predecessor's address.

    Args:
        explicit: Address given on the command line, or None.
        state: Loaded hand-off state.
        key: State key holding the address (collection_address, machine_address).
        stage: Name of the stage asking, for the error message.

    Returns:
        Pubkey: The explicit address if given, else the recorded one.
    """
    value = explicit or state.get(key)
    if not value:
        raise ValidationError(
            f"{stage} needs a {key.replace('_', ' ')}; "
            f"run the '{PRODUCERS[key]}' stage first or pass it explicitly"
        )
    try:
        return Pubkey.from_string(value)
    except ValueError as e:
        raise ValidationError(f"invalid {key.replace('_', ' ')}: {value}", str(e))
