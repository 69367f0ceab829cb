#!/usr/bin/env python3
"""
Candy Machine Configuration and Constants

Defines the network endpoint, key file location, metadata pointer, and the
collection / candy machine / guard settings used by the five workflow stages.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

# Network
RPC_URL = "https://api.devnet.solana.com/"
CLUSTER = "devnet"
COMMITMENT = "finalized"

# Operator key pair (JSON array of 64 bytes)
KEYPAIR_PATH = "guideSecret.json"

# Pre-uploaded metadata, shared by the collection and every item
NFT_METADATA = "https://bqp23v2j76qrmk5yqn73hbtbhntcfcwavvgia5gshk3wbqk54k4a.arweave.net/DB-t10n_oRYruIN_s4ZhO2YiisCtTIB00jq3YMFd4rg"

COLLECTION_NAME = "Dreams of Summer NFT Collection"
ITEM_NAME_PREFIX = "Dreams of Summer NFT # "

# Stage hand-off and mock ledger files
STATE_FILE = "candy_state.json"
LEDGER_FILE = "candy_ledger.json"

LAMPORTS_PER_SOL = 1_000_000_000

# Candy machine settings
MACHINE_CONFIG = {
    "items_available": 3,             # Collection size
    "seller_fee_basis_points": 1000,  # 10% royalties
    "symbol": "DOSPX",
    "max_edition_supply": 0,          # no reproductions of each NFT
    "is_mutable": True,               # once false, can't be changed back
    "creator_share": 100,
}

# Candy guard settings
GUARD_CONFIG = {
    "start_date": "2023-02-24T17:00:00Z",
    "sol_amount": "0.1",
    "mint_limit_id": 1,
    "mint_limit": 2,
}


def sol_to_lamports(amount):
    """Convert a SOL amount (str, int, float or Decimal) to lamports."""
    return int(Decimal(str(amount)) * LAMPORTS_PER_SOL)


def parse_datetime(value):
    """Parse an ISO-8601 timestamp; a trailing 'Z' means UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def explorer_address_url(address, cluster=CLUSTER):
    return f"https://explorer.solana.com/address/{address}?cluster={cluster}"


def explorer_tx_url(signature, cluster=CLUSTER):
    return f"https://explorer.solana.com/tx/{signature}?cluster={cluster}"


@dataclass(frozen=True)
class Creator:
    address: Pubkey
    share: int


@dataclass(frozen=True)
class MachineSettings:
    """Settings for a new candy machine."""

    items_available: int
    seller_fee_basis_points: int
    symbol: str
    max_edition_supply: int
    is_mutable: bool
    creators: List[Creator]
    collection: Pubkey

    @classmethod
    def from_config(cls, identity: Pubkey, collection: Pubkey) -> "MachineSettings":
        return cls(
            items_available=MACHINE_CONFIG["items_available"],
            seller_fee_basis_points=MACHINE_CONFIG["seller_fee_basis_points"],
            symbol=MACHINE_CONFIG["symbol"],
            max_edition_supply=MACHINE_CONFIG["max_edition_supply"],
            is_mutable=MACHINE_CONFIG["is_mutable"],
            creators=[Creator(identity, MACHINE_CONFIG["creator_share"])],
            collection=collection,
        )


@dataclass(frozen=True)
class GuardSettings:
    start_date: datetime
    lamports: int
    mint_limit_id: int
    mint_limit: int

    @classmethod
    def from_config(cls) -> "GuardSettings":
        return cls(
            start_date=parse_datetime(GUARD_CONFIG["start_date"]),
            lamports=sol_to_lamports(GUARD_CONFIG["sol_amount"]),
            mint_limit_id=GUARD_CONFIG["mint_limit_id"],
            mint_limit=GUARD_CONFIG["mint_limit"],
        )


@dataclass(frozen=True)
class WorkflowConfig:
    """
    Everything a stage needs besides its service.

    The collection and machine addresses are the hand-off values between
    stages: stage 1 produces the collection address consumed by stage 2,
    stage 2 produces the machine address consumed by stages 3-5.
    """

    identity: Keypair
    rpc_url: str = RPC_URL
    cluster: str = CLUSTER
    commitment: str = COMMITMENT
    metadata_uri: str = NFT_METADATA
    collection_address: Optional[Pubkey] = None
    machine_address: Optional[Pubkey] = None
    verify_metadata: bool = True
    guards: GuardSettings = field(default_factory=GuardSettings.from_config)

    @property
    def operator(self) -> Pubkey:
        return self.identity.pubkey()

    def with_collection(self, address: Pubkey) -> "WorkflowConfig":
        return replace(self, collection_address=address)

    def with_machine(self, address: Pubkey) -> "WorkflowConfig":
        return replace(self, machine_address=address)


if __name__ == "__main__":
    print("=== Candy Machine Configuration ===")
    print(f"RPC: {RPC_URL} ({CLUSTER}, {COMMITMENT})")
    print(f"Metadata: {NFT_METADATA}")
    print(f"Machine config: {MACHINE_CONFIG}")
    print(f"Guard config: {GUARD_CONFIG}")
