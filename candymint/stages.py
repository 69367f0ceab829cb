"""
Candy Machine Workflow Stages

The five stages, run one per invocation and in order:

    collection -> machine -> guards -> items -> mint

Each stage takes the workflow configuration and a CandyMachineService and
returns Success(StageOutput) or Failure(WorkflowError). Stages 2-5 need the
address produced by an earlier stage in the configuration.
"""

import asyncio

from .config import (
    COLLECTION_NAME, ITEM_NAME_PREFIX, MachineSettings,
    explorer_address_url, explorer_tx_url,
)
from .errors import ValidationError, WorkflowError
from .metadata import fetch_metadata
from .results import Failure, StageOutput, Success
from .service import CollectionRequest, ConfigLine, GuardSet, MintLimit, SolPayment, StartDate


def _failed(stage, error):
    print(f"[ERROR] {stage}: {error}")
    return Failure(error)


def _require_collection(config):
    if config.collection_address is None:
        raise ValidationError("no collection address; run the collection stage first")
    return config.collection_address


def _require_machine(config):
    if config.machine_address is None:
        raise ValidationError("no candy machine address; run the machine stage first")
    return config.machine_address


def build_items(count, uri):
    """
    Build `count` config lines sharing one metadata pointer.

    Names are 1-based: "Dreams of Summer NFT # 1", "... # 2", ...
    """
    return [ConfigLine(name=f"{ITEM_NAME_PREFIX}{i + 1}", uri=uri) for i in range(count)]


def build_guards(config):
    """Start date, SOL payment to the operator, and a per-wallet mint limit."""
    settings = config.guards
    return GuardSet(
        sol_payment=SolPayment(lamports=settings.lamports, destination=config.operator),
        start_date=StartDate(date=settings.start_date),
        mint_limit=MintLimit(id=settings.mint_limit_id, limit=settings.mint_limit),
    )


async def create_collection(config, service):
    """
    Stage 1: mint the collection NFT.

    Run this once, then feed the printed address to the machine stage.
    """
    try:
        if config.verify_metadata:
            document = await asyncio.to_thread(fetch_metadata, config.metadata_uri)
            print(f"Metadata OK: {document['name']}")
        submission = await service.create_collection(CollectionRequest(
            name=COLLECTION_NAME,
            uri=config.metadata_uri,
            seller_fee_basis_points=0,
            is_collection=True,
        ))
    except WorkflowError as e:
        return _failed("collection", e)

    print(f"✅ - Minted Collection NFT: {submission.address}")
    print(f"     {explorer_address_url(submission.address, config.cluster)}")
    return Success(StageOutput(address=submission.address, signature=submission.signature))


async def create_candy_machine(config, service, settings=None):
    """
    Stage 2: create the candy machine for the collection.

    The collection address is taken from the configuration as-is.
    """
    try:
        collection = _require_collection(config)
        if settings is None:
            settings = MachineSettings.from_config(config.operator, collection)
        submission = await service.create_machine(settings)
    except WorkflowError as e:
        return _failed("machine", e)

    print(f"✅ - Created Candy Machine: {submission.address}")
    print(f"     {explorer_address_url(submission.address, config.cluster)}")
    return Success(StageOutput(
        address=submission.address,
        signature=submission.signature,
        remaining=settings.items_available,
    ))


async def update_guards(config, service, guards=None):
    """Stage 3: replace the machine's guard set."""
    try:
        machine = await service.find_machine(_require_machine(config))
        if guards is None:
            guards = build_guards(config)
        submission = await service.update_guards(machine, guards)
    except WorkflowError as e:
        return _failed("guards", e)

    print(f"✅ - Updated Candy Machine: {machine.address}")
    print(f"     {explorer_tx_url(submission.signature, config.cluster)}")
    return Success(StageOutput(address=machine.address, signature=submission.signature))


async def add_items(config, service):
    """
    Stage 4: load one config line per item of supply.

    Every item points at the same metadata document.
    """
    try:
        machine = await service.find_machine(_require_machine(config))
        items = build_items(machine.items_available, config.metadata_uri)
        submission = await service.insert_items(machine, items)
    except WorkflowError as e:
        return _failed("items", e)

    print(f"✅ - Items added to Candy Machine: {machine.address}")
    print(f"     {explorer_tx_url(submission.signature, config.cluster)}")
    return Success(StageOutput(
        address=machine.address,
        signature=submission.signature,
        remaining=machine.items_remaining,
    ))


async def mint_nft(config, service):
    """Stage 5: mint one NFT to the operator."""
    try:
        machine = await service.find_machine(_require_machine(config))
        submission = await service.mint(machine, config.operator)
    except WorkflowError as e:
        return _failed("mint", e)

    print(f"✅ - Minted NFT: {submission.address}")
    print(f"     {explorer_address_url(submission.address, config.cluster)}")
    print(f"     {explorer_tx_url(submission.signature, config.cluster)}")
    return Success(StageOutput(
        address=submission.address,
        signature=submission.signature,
        remaining=machine.items_remaining - 1,
    ))


async def describe_machine(config, service):
    """Print the machine's inventory and guard rules."""
    try:
        machine = await service.find_machine(_require_machine(config))
    except WorkflowError as e:
        return _failed("status", e)

    print(f"=== Candy Machine {machine.address} ===")
    print(f"Collection: {machine.collection_mint}")
    print(f"Symbol: {machine.symbol}  Royalty: {machine.seller_fee_basis_points / 100}%")
    print(f"Items: {machine.items_loaded}/{machine.items_available} loaded, "
          f"{machine.items_redeemed} minted, {machine.items_remaining} remaining")
    if not machine.is_fully_loaded:
        print("[WARN] Not fully loaded; minting is blocked until all items are added")
    rules = machine.guards.rules()
    if not rules:
        print("Guards: none")
    for rule in rules:
        print(f"Guard: {rule}")
    return Success(StageOutput(address=machine.address, remaining=machine.items_remaining))


STAGES = {
    "collection": create_collection,
    "machine": create_candy_machine,
    "guards": update_guards,
    "items": add_items,
    "mint": mint_nft,
    "status": describe_machine,
}
