"""
Candy Machine Service Interface

The stages never talk to the cluster directly. They call a
CandyMachineService, which is either the devnet client or the in-memory
ledger used for dry runs and tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from solders.pubkey import Pubkey
from solders.signature import Signature

from .config import Creator, MachineSettings
from .errors import GuardRejectedError, InsufficientFundsError, InventoryError, ValidationError

MAX_SYMBOL_LENGTH = 10
MAX_CREATOR_LIMIT = 5
MAX_SELLER_FEE_BASIS_POINTS = 10000
MAX_MINT_LIMIT_ID = 255
MAX_MINT_LIMIT = 65535
MAX_LAMPORTS = 2 ** 64 - 1


@dataclass(frozen=True)
class CollectionRequest:
    name: str
    uri: str
    seller_fee_basis_points: int = 0
    is_collection: bool = True
    symbol: str = ""


@dataclass(frozen=True)
class ConfigLine:
    """One not-yet-minted item: display name and metadata pointer."""

    name: str
    uri: str


# Guard rules, in candy guard program order
@dataclass(frozen=True)
class SolPayment:
    lamports: int
    destination: Pubkey


@dataclass(frozen=True)
class StartDate:
    date: datetime


@dataclass(frozen=True)
class MintLimit:
    id: int
    limit: int


@dataclass(frozen=True)
class GuardSet:
    sol_payment: Optional[SolPayment] = None
    start_date: Optional[StartDate] = None
    mint_limit: Optional[MintLimit] = None

    def rules(self):
        """Return the enabled rules."""
        return [
            rule
            for rule in (self.sol_payment, self.start_date, self.mint_limit)
            if rule is not None
        ]


@dataclass
class MachineState:
    """Snapshot of a candy machine as read back from the ledger."""

    address: Pubkey
    authority: Pubkey
    collection_mint: Pubkey
    candy_guard: Optional[Pubkey]
    items_available: int
    items_loaded: int = 0
    items_redeemed: int = 0
    symbol: str = ""
    seller_fee_basis_points: int = 0
    max_edition_supply: int = 0
    is_mutable: bool = True
    creators: List[Creator] = field(default_factory=list)
    guards: GuardSet = field(default_factory=GuardSet)

    @property
    def items_remaining(self):
        return self.items_available - self.items_redeemed

    @property
    def is_fully_loaded(self):
        return self.items_loaded >= self.items_available


def check_machine_settings(settings):
    """Reject settings the Candy Machine Core program would refuse."""
    if len(settings.symbol) > MAX_SYMBOL_LENGTH:
        raise ValidationError(f"symbol longer than {MAX_SYMBOL_LENGTH} characters: {settings.symbol}")
    if not settings.creators or len(settings.creators) > MAX_CREATOR_LIMIT:
        raise ValidationError(f"a candy machine needs 1 to {MAX_CREATOR_LIMIT} creators")
    if sum(creator.share for creator in settings.creators) != 100:
        raise ValidationError("creator shares must add up to 100")
    if not 0 <= settings.seller_fee_basis_points <= MAX_SELLER_FEE_BASIS_POINTS:
        raise ValidationError(f"invalid seller fee: {settings.seller_fee_basis_points} basis points")
    if settings.items_available <= 0:
        raise ValidationError("a candy machine needs at least one item")


def check_guards(guards):
    """Reject guard values that do not fit their on-chain fields."""
    if guards.sol_payment is not None and not 0 <= guards.sol_payment.lamports <= MAX_LAMPORTS:
        raise ValidationError(f"invalid SOL payment: {guards.sol_payment.lamports} lamports")
    if guards.mint_limit is not None:
        if not 0 <= guards.mint_limit.id <= MAX_MINT_LIMIT_ID:
            raise ValidationError(f"mint limit id must fit in a byte: {guards.mint_limit.id}")
        if not 0 <= guards.mint_limit.limit <= MAX_MINT_LIMIT:
            raise ValidationError(
                f"mint limit must be between 0 and {MAX_MINT_LIMIT}: {guards.mint_limit.limit}"
            )


def check_mint_allowed(machine, now, balance, cost, minted=0):
    """
    Apply the candy machine and guard checks for one mint.

    Args:
        machine: MachineState to mint from.
        now: Current aware datetime.
        balance: Payer balance in lamports.
        cost: Lamports the mint needs besides any SOL payment (fees, rent).
        minted: Mints already counted against the mint limit for this minter.

    Returns:
        int: Total lamports the mint will take from the payer.
    """
    if machine.items_loaded == 0:
        raise InventoryError("candy machine has no items")
    if not machine.is_fully_loaded:
        raise InventoryError(
            f"candy machine not fully loaded: {machine.items_loaded} of {machine.items_available}"
        )
    if machine.items_remaining <= 0:
        raise InventoryError("candy machine is empty")

    guards = machine.guards
    if guards.sol_payment is not None:
        cost += guards.sol_payment.lamports
    if balance < cost:
        raise InsufficientFundsError(cost, balance, "mint")
    if guards.start_date is not None and now < guards.start_date.date:
        raise GuardRejectedError("startDate", f"mint opens at {guards.start_date.date.isoformat()}")
    if guards.mint_limit is not None and minted >= guards.mint_limit.limit:
        raise GuardRejectedError("mintLimit", f"limit of {guards.mint_limit.limit} reached")
    return cost


@dataclass(frozen=True)
class Submission:
    signature: Signature
    address: Optional[Pubkey] = None


class CandyMachineService(ABC):
    """
    Operations against collection and candy machine records.

    Every method raises a WorkflowError subclass on failure; nothing is
    retried.
    """

    @abstractmethod
    async def create_collection(self, request: CollectionRequest) -> Submission:
        """Mint a collection NFT; Submission.address is its mint."""

    @abstractmethod
    async def create_machine(self, settings: MachineSettings) -> Submission:
        """Create a candy machine wrapped by an empty candy guard."""

    @abstractmethod
    async def find_machine(self, address: Pubkey) -> MachineState:
        """Raise AccountNotFoundError if there is no machine at address."""

    @abstractmethod
    async def update_guards(self, machine: MachineState, guards: GuardSet) -> Submission:
        pass

    @abstractmethod
    async def insert_items(self, machine: MachineState, items: List[ConfigLine]) -> Submission:
        pass

    @abstractmethod
    async def mint(self, machine: MachineState, owner: Pubkey) -> Submission:
        """Mint one item to owner; Submission.address is the new NFT mint."""

    async def close(self):
        pass
