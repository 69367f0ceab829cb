"""
In-Memory Candy Machine Ledger

A CandyMachineService that keeps collections, candy machines, balances and
mint counters in memory. It applies the same checks the Metaplex programs
apply (supply, loading, guard rules, rent and fees) and raises the same
typed errors, so the stages can run end to end without a cluster.

The ledger can be saved to a JSON file and loaded back, which lets
`candymint --mock` carry state from one stage to the next.
"""

import json
import secrets
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from .config import Creator, LAMPORTS_PER_SOL
from .errors import AccountNotFoundError, InsufficientFundsError, InventoryError, ValidationError
from .instructions import (
    MASTER_EDITION_SIZE, MAX_NAME_LENGTH, MAX_URI_LENGTH, METADATA_SIZE, MINT_SIZE,
    TOKEN_ACCOUNT_SIZE, candy_guard_size, candy_machine_size,
)
from .service import (
    CandyMachineService, ConfigLine, GuardSet, MachineState, MintLimit,
    SolPayment, StartDate, Submission, check_guards, check_machine_settings, check_mint_allowed,
)

TX_FEE = 5000
NFT_ACCOUNTS_SIZE = MINT_SIZE + TOKEN_ACCOUNT_SIZE + METADATA_SIZE + MASTER_EDITION_SIZE
MOCK_STARTING_BALANCE = 10 * LAMPORTS_PER_SOL


def rent_exempt_minimum(space):
    """Lamports needed to keep `space` bytes rent exempt (3480 lamports/byte-year, 2 years)."""
    return (128 + space) * 3480 * 2


def _new_address():
    return Keypair().pubkey()


def _new_signature():
    return Signature.from_bytes(secrets.token_bytes(64))


def _utcnow():
    return datetime.now(timezone.utc)


class Ledger(CandyMachineService):
    """
    In-memory stand-in for the cluster.

    Args:
        payer: Public key that signs and pays for every call.
        clock: Callable returning the current (aware) datetime, used by
               the start date guard.
    """

    def __init__(self, payer, clock=None):
        self.payer = payer
        self.clock = clock or _utcnow
        self.balances = {}
        self.collections = {}
        self.machines = {}
        self.lines = {}
        self.nfts = {}
        self.mint_counters = {}
        self.calls = []

    # --- balances ---

    def airdrop(self, address, lamports):
        self.balances[address] = self.balances.get(address, 0) + lamports

    def balance(self, address):
        return self.balances.get(address, 0)

    def _charge(self, lamports, purpose):
        available = self.balance(self.payer)
        if available < lamports:
            raise InsufficientFundsError(lamports, available, purpose)
        self.balances[self.payer] = available - lamports

    def _machine(self, address):
        if address not in self.machines:
            raise AccountNotFoundError(address, "candy machine")
        return self.machines[address]

    # --- CandyMachineService ---

    async def create_collection(self, request):
        self.calls.append(("create_collection", request))
        if len(request.name.encode("utf-8")) > MAX_NAME_LENGTH:
            raise ValidationError(f"name longer than {MAX_NAME_LENGTH} bytes: {request.name}")
        if len(request.uri.encode("utf-8")) > MAX_URI_LENGTH:
            raise ValidationError(f"uri longer than {MAX_URI_LENGTH} bytes")
        self._charge(TX_FEE + rent_exempt_minimum(NFT_ACCOUNTS_SIZE), "collection NFT")
        address = _new_address()
        self.collections[address] = {
            "name": request.name,
            "uri": request.uri,
            "seller_fee_basis_points": request.seller_fee_basis_points,
            "is_collection": request.is_collection,
            "update_authority": self.payer,
            "size": 0,
        }
        return Submission(signature=_new_signature(), address=address)

    async def create_machine(self, settings):
        self.calls.append(("create_machine", settings))
        collection = self.collections.get(settings.collection)
        if collection is None:
            raise AccountNotFoundError(settings.collection, "collection")
        if not collection["is_collection"]:
            raise ValidationError(f"{settings.collection} is not a collection NFT")
        if collection["update_authority"] != self.payer:
            raise ValidationError("payer is not the collection update authority")
        check_machine_settings(settings)
        space = candy_machine_size(settings.items_available)
        self._charge(
            TX_FEE + rent_exempt_minimum(space) + rent_exempt_minimum(candy_guard_size(GuardSet())),
            "candy machine",
        )
        address = _new_address()
        self.machines[address] = MachineState(
            address=address,
            authority=self.payer,
            collection_mint=settings.collection,
            candy_guard=_new_address(),
            items_available=settings.items_available,
            symbol=settings.symbol,
            seller_fee_basis_points=settings.seller_fee_basis_points,
            max_edition_supply=settings.max_edition_supply,
            is_mutable=settings.is_mutable,
            creators=list(settings.creators),
        )
        self.lines[address] = []
        return Submission(signature=_new_signature(), address=address)

    async def find_machine(self, address):
        machine = self._machine(address)
        return replace(machine, creators=list(machine.creators))

    async def update_guards(self, machine, guards):
        self.calls.append(("update_guards", guards))
        stored = self._machine(machine.address)
        if stored.authority != self.payer:
            raise ValidationError("payer is not the candy guard authority")
        check_guards(guards)
        self._charge(TX_FEE, "guard update")
        stored.guards = guards
        return Submission(signature=_new_signature())

    async def insert_items(self, machine, items):
        self.calls.append(("insert_items", list(items)))
        stored = self._machine(machine.address)
        if stored.authority != self.payer:
            raise ValidationError("payer is not the candy machine authority")
        if stored.items_loaded + len(items) > stored.items_available:
            raise InventoryError(
                f"cannot add {len(items)} items: {stored.items_loaded} of "
                f"{stored.items_available} already loaded"
            )
        for item in items:
            if len(item.name.encode("utf-8")) > MAX_NAME_LENGTH:
                raise ValidationError(f"item name longer than {MAX_NAME_LENGTH} bytes: {item.name}")
            if len(item.uri.encode("utf-8")) > MAX_URI_LENGTH:
                raise ValidationError(f"item uri longer than {MAX_URI_LENGTH} bytes")
        self._charge(TX_FEE, "config lines")
        self.lines[stored.address].extend(items)
        stored.items_loaded += len(items)
        return Submission(signature=_new_signature())

    async def mint(self, machine, owner):
        self.calls.append(("mint", owner))
        stored = self._machine(machine.address)
        guards = stored.guards
        counter_key = None
        if guards.mint_limit is not None:
            counter_key = (stored.address, guards.mint_limit.id, self.payer)
        cost = check_mint_allowed(
            stored,
            now=self.clock(),
            balance=self.balance(self.payer),
            cost=TX_FEE + rent_exempt_minimum(NFT_ACCOUNTS_SIZE),
            minted=self.mint_counters.get(counter_key, 0),
        )

        self._charge(cost, "mint")
        if guards.sol_payment is not None:
            self.airdrop(guards.sol_payment.destination, guards.sol_payment.lamports)
        if counter_key is not None:
            self.mint_counters[counter_key] = self.mint_counters.get(counter_key, 0) + 1

        line = self.lines[stored.address][stored.items_redeemed]
        stored.items_redeemed += 1
        address = _new_address()
        self.nfts[address] = {
            "name": line.name,
            "uri": line.uri,
            "owner": owner,
            "collection": stored.collection_mint,
        }
        self.collections[stored.collection_mint]["size"] += 1
        return Submission(signature=_new_signature(), address=address)

    # --- persistence ---

    def to_dict(self):
        return {
            "payer": str(self.payer),
            "balances": {str(k): v for k, v in self.balances.items()},
            "collections": {
                str(k): dict(v, update_authority=str(v["update_authority"]))
                for k, v in self.collections.items()
            },
            "machines": {str(k): _machine_to_dict(v) for k, v in self.machines.items()},
            "lines": {
                str(k): [{"name": line.name, "uri": line.uri} for line in v]
                for k, v in self.lines.items()
            },
            "nfts": {
                str(k): dict(v, owner=str(v["owner"]), collection=str(v["collection"]))
                for k, v in self.nfts.items()
            },
            "mint_counters": [
                {"machine": str(machine), "id": limit_id, "minter": str(minter), "count": count}
                for (machine, limit_id, minter), count in self.mint_counters.items()
            ],
        }

    @classmethod
    def from_dict(cls, data, clock=None):
        ledger = cls(Pubkey.from_string(data["payer"]), clock=clock)
        ledger.balances = {Pubkey.from_string(k): v for k, v in data["balances"].items()}
        ledger.collections = {
            Pubkey.from_string(k): dict(v, update_authority=Pubkey.from_string(v["update_authority"]))
            for k, v in data["collections"].items()
        }
        ledger.machines = {
            Pubkey.from_string(k): _machine_from_dict(v) for k, v in data["machines"].items()
        }
        ledger.lines = {
            Pubkey.from_string(k): [ConfigLine(line["name"], line["uri"]) for line in v]
            for k, v in data["lines"].items()
        }
        ledger.nfts = {
            Pubkey.from_string(k): dict(
                v,
                owner=Pubkey.from_string(v["owner"]),
                collection=Pubkey.from_string(v["collection"]),
            )
            for k, v in data["nfts"].items()
        }
        ledger.mint_counters = {
            (Pubkey.from_string(c["machine"]), c["id"], Pubkey.from_string(c["minter"])): c["count"]
            for c in data["mint_counters"]
        }
        return ledger

    def save(self, path):
        Path(path).write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path, payer, clock=None):
        """
        Load a saved ledger, or start a new one funded with 10 SOL.

        A saved ledger belonging to a different payer is rejected.
        """
        path = Path(path)
        if not path.exists():
            ledger = cls(payer, clock=clock)
            ledger.airdrop(payer, MOCK_STARTING_BALANCE)
            return ledger
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ValidationError(f"ledger file {path} is not valid JSON", str(e))
        ledger = cls.from_dict(data, clock=clock)
        if ledger.payer != payer:
            raise ValidationError(f"ledger file {path} belongs to {ledger.payer}, not {payer}")
        return ledger


def _guards_to_dict(guards):
    data = {}
    if guards.sol_payment is not None:
        data["sol_payment"] = {
            "lamports": guards.sol_payment.lamports,
            "destination": str(guards.sol_payment.destination),
        }
    if guards.start_date is not None:
        data["start_date"] = guards.start_date.date.isoformat()
    if guards.mint_limit is not None:
        data["mint_limit"] = {"id": guards.mint_limit.id, "limit": guards.mint_limit.limit}
    return data


def _guards_from_dict(data):
    sol_payment = start_date = mint_limit = None
    if "sol_payment" in data:
        sol_payment = SolPayment(
            data["sol_payment"]["lamports"],
            Pubkey.from_string(data["sol_payment"]["destination"]),
        )
    if "start_date" in data:
        start_date = StartDate(datetime.fromisoformat(data["start_date"]))
    if "mint_limit" in data:
        mint_limit = MintLimit(data["mint_limit"]["id"], data["mint_limit"]["limit"])
    return GuardSet(sol_payment=sol_payment, start_date=start_date, mint_limit=mint_limit)


def _machine_to_dict(machine):
    return {
        "address": str(machine.address),
        "authority": str(machine.authority),
        "collection_mint": str(machine.collection_mint),
        "candy_guard": str(machine.candy_guard) if machine.candy_guard else None,
        "items_available": machine.items_available,
        "items_loaded": machine.items_loaded,
        "items_redeemed": machine.items_redeemed,
        "symbol": machine.symbol,
        "seller_fee_basis_points": machine.seller_fee_basis_points,
        "max_edition_supply": machine.max_edition_supply,
        "is_mutable": machine.is_mutable,
        "creators": [{"address": str(c.address), "share": c.share} for c in machine.creators],
        "guards": _guards_to_dict(machine.guards),
    }


def _machine_from_dict(data):
    return MachineState(
        address=Pubkey.from_string(data["address"]),
        authority=Pubkey.from_string(data["authority"]),
        collection_mint=Pubkey.from_string(data["collection_mint"]),
        candy_guard=Pubkey.from_string(data["candy_guard"]) if data["candy_guard"] else None,
        items_available=data["items_available"],
        items_loaded=data["items_loaded"],
        items_redeemed=data["items_redeemed"],
        symbol=data["symbol"],
        seller_fee_basis_points=data["seller_fee_basis_points"],
        max_edition_supply=data["max_edition_supply"],
        is_mutable=data["is_mutable"],
        creators=[Creator(Pubkey.from_string(c["address"]), c["share"]) for c in data["creators"]],
        guards=_guards_from_dict(data["guards"]),
    )
