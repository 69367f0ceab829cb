"""
Metaplex Instruction Builders

Borsh layouts, PDA derivation and instruction builders for the three
Metaplex programs the workflow touches:

- Token Metadata: collection NFT metadata and master edition
- Candy Machine Core (v3): machine initialization and config lines
- Candy Guard: guard initialization, wrapping, updates and minting

Anchor programs (Candy Machine Core, Candy Guard) prefix instruction data
with sha256("global:<name>")[:8]. Token Metadata uses a single u8 tag.
"""

import hashlib
import io
from datetime import datetime, timezone

from borsh_construct import CStruct, U8, U16, U32, U64, I64, Bool, String, Vec, Option, Bytes
from construct import Bytes as FixedBytes
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYS_PROGRAM_ID
from spl.token.constants import TOKEN_PROGRAM_ID

from .errors import ValidationError
from .service import (
    MAX_CREATOR_LIMIT, MAX_SYMBOL_LENGTH, GuardSet, MintLimit, SolPayment, StartDate,
    check_guards, check_machine_settings,
)

TOKEN_METADATA_PROGRAM_ID = Pubkey.from_string("metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s")
CANDY_MACHINE_PROGRAM_ID = Pubkey.from_string("CndyV3LdqHUfDLmE5naZjVN8rBZz4tqhdefbAnjHG3JR")
CANDY_GUARD_PROGRAM_ID = Pubkey.from_string("Guard1JwRhJkVH6XZhzoYxeBVQe872VH6QggF4BWmS9g")
SYSVAR_RENT_ID = Pubkey.from_string("SysvarRent111111111111111111111111111111111")
SYSVAR_INSTRUCTIONS_ID = Pubkey.from_string("Sysvar1nstructions1111111111111111111111111")
SYSVAR_SLOT_HASHES_ID = Pubkey.from_string("SysvarS1otHashes111111111111111111111111111")

# Token Metadata instruction tags
CREATE_MASTER_EDITION_V3 = 17
CREATE_METADATA_ACCOUNT_V3 = 33

# Account sizes (bytes)
MINT_SIZE = 82
TOKEN_ACCOUNT_SIZE = 165
METADATA_SIZE = 679
MASTER_EDITION_SIZE = 282

# Candy machine limits
MAX_NAME_LENGTH = 32
MAX_URI_LENGTH = 200
MAX_CREATOR_LEN = 32 + 1 + 1

CANDY_MACHINE_HEADER_SIZE = (
    8                                         # discriminator
    + 8                                       # version, token standard, features
    + 32                                      # authority
    + 32                                      # mint authority
    + 32                                      # collection mint
    + 8                                       # items redeemed
    + 8                                       # items available
    + 4 + MAX_SYMBOL_LENGTH
    + 2                                       # seller fee basis points
    + 8                                       # max supply
    + 1                                       # is mutable
    + 4 + MAX_CREATOR_LIMIT * MAX_CREATOR_LEN
    + 1                                       # option: config line settings
    + 4 + MAX_NAME_LENGTH                     # prefix name
    + 4                                       # name length
    + 4 + MAX_URI_LENGTH                      # prefix uri
    + 4                                       # uri length
    + 1                                       # is sequential
    + 1                                       # option: hidden settings
    + 4 + MAX_NAME_LENGTH
    + 4 + MAX_URI_LENGTH
    + 32                                      # hash
)

# base, bump, authority after the discriminator
CANDY_GUARD_HEADER_SIZE = 8 + 32 + 1 + 32

# Guard feature bits, in program order
GUARD_BITS = {
    "bot_tax": 0,
    "sol_payment": 1,
    "token_payment": 2,
    "start_date": 3,
    "mint_limit": 9,
}

PUBKEY = FixedBytes(32)

# --- Token Metadata layouts ---

METADATA_CREATOR = CStruct("address" / PUBKEY, "verified" / Bool, "share" / U8)
METADATA_COLLECTION = CStruct("verified" / Bool, "key" / PUBKEY)
METADATA_USES = CStruct("use_method" / U8, "remaining" / U64, "total" / U64)
DATA_V2 = CStruct(
    "name" / String,
    "symbol" / String,
    "uri" / String,
    "seller_fee_basis_points" / U16,
    "creators" / Option(Vec(METADATA_CREATOR)),
    "collection" / Option(METADATA_COLLECTION),
    "uses" / Option(METADATA_USES),
)
# CollectionDetails::V1 { size }
COLLECTION_DETAILS = CStruct("variant" / U8, "size" / U64)
CREATE_METADATA_ACCOUNT_V3_ARGS = CStruct(
    "instruction" / U8,
    "data" / DATA_V2,
    "is_mutable" / Bool,
    "collection_details" / Option(COLLECTION_DETAILS),
)
CREATE_MASTER_EDITION_V3_ARGS = CStruct("instruction" / U8, "max_supply" / Option(U64))

# --- Candy Machine Core layouts ---

CANDY_MACHINE_CREATOR = CStruct("address" / PUBKEY, "verified" / Bool, "percentage_share" / U8)
CONFIG_LINE_SETTINGS = CStruct(
    "prefix_name" / String,
    "name_length" / U32,
    "prefix_uri" / String,
    "uri_length" / U32,
    "is_sequential" / Bool,
)
HIDDEN_SETTINGS = CStruct("name" / String, "uri" / String, "hash" / FixedBytes(32))
CANDY_MACHINE_DATA = CStruct(
    "items_available" / U64,
    "symbol" / String,
    "seller_fee_basis_points" / U16,
    "max_supply" / U64,
    "is_mutable" / Bool,
    "creators" / Vec(CANDY_MACHINE_CREATOR),
    "config_line_settings" / Option(CONFIG_LINE_SETTINGS),
    "hidden_settings" / Option(HIDDEN_SETTINGS),
)
CANDY_MACHINE_ACCOUNT = CStruct(
    "discriminator" / FixedBytes(8),
    "version" / U8,
    "token_standard" / U8,
    "features" / FixedBytes(6),
    "authority" / PUBKEY,
    "mint_authority" / PUBKEY,
    "collection_mint" / PUBKEY,
    "items_redeemed" / U64,
    "data" / CANDY_MACHINE_DATA,
)
CONFIG_LINE = CStruct("name" / String, "uri" / String)
ADD_CONFIG_LINES_ARGS = CStruct("index" / U32, "config_lines" / Vec(CONFIG_LINE))

# --- Candy Guard layouts ---

GUARD_DATA_ARGS = CStruct("data" / Bytes)
MINT_ARGS = CStruct("mint_args" / Bytes, "label" / Option(String))
CANDY_GUARD_ACCOUNT = CStruct(
    "discriminator" / FixedBytes(8),
    "base" / PUBKEY,
    "bump" / U8,
    "authority" / PUBKEY,
)
SOL_PAYMENT_GUARD = CStruct("lamports" / U64, "destination" / PUBKEY)
START_DATE_GUARD = CStruct("date" / I64)
MINT_LIMIT_GUARD = CStruct("id" / U8, "limit" / U16)
MINT_COUNTER_ACCOUNT = CStruct("discriminator" / FixedBytes(8), "count" / U16)

# Every line reserves the full name / uri width.
DEFAULT_CONFIG_LINE_SETTINGS = {
    "prefix_name": "",
    "name_length": MAX_NAME_LENGTH,
    "prefix_uri": "",
    "uri_length": MAX_URI_LENGTH,
    "is_sequential": False,
}


def anchor_discriminator(name):
    return hashlib.sha256(f"global:{name}".encode("utf-8")).digest()[:8]


def _meta(pubkey, signer=False, writable=False):
    return AccountMeta(pubkey=pubkey, is_signer=signer, is_writable=writable)


# --- PDAs ---

def find_metadata_pda(mint):
    return Pubkey.find_program_address(
        [b"metadata", bytes(TOKEN_METADATA_PROGRAM_ID), bytes(mint)],
        TOKEN_METADATA_PROGRAM_ID,
    )[0]


def find_master_edition_pda(mint):
    return Pubkey.find_program_address(
        [b"metadata", bytes(TOKEN_METADATA_PROGRAM_ID), bytes(mint), b"edition"],
        TOKEN_METADATA_PROGRAM_ID,
    )[0]


def find_collection_authority_record_pda(mint, delegate):
    return Pubkey.find_program_address(
        [
            b"metadata",
            bytes(TOKEN_METADATA_PROGRAM_ID),
            bytes(mint),
            b"collection_authority",
            bytes(delegate),
        ],
        TOKEN_METADATA_PROGRAM_ID,
    )[0]


def find_candy_machine_authority_pda(candy_machine):
    return Pubkey.find_program_address(
        [b"candy_machine", bytes(candy_machine)], CANDY_MACHINE_PROGRAM_ID
    )[0]


def find_candy_guard_pda(base):
    return Pubkey.find_program_address([b"candy_guard", bytes(base)], CANDY_GUARD_PROGRAM_ID)[0]


def find_mint_limit_counter_pda(limit_id, user, candy_guard, candy_machine):
    return Pubkey.find_program_address(
        [b"mint_limit", bytes([limit_id]), bytes(user), bytes(candy_guard), bytes(candy_machine)],
        CANDY_GUARD_PROGRAM_ID,
    )[0]


# --- Sizes ---

def candy_machine_size(items_available, name_length=MAX_NAME_LENGTH, uri_length=MAX_URI_LENGTH):
    """
    Account space for a candy machine holding items_available config lines.

    Layout after the header: u32 line count, the lines, a loaded-lines
    bitmask, then a u32-prefixed table of mint indices.
    """
    return (
        CANDY_MACHINE_HEADER_SIZE
        + 4
        + items_available * (name_length + uri_length)
        + 4
        + (items_available // 8 + 1)
        + 4
        + items_available * 4
    )


def candy_guard_size(guards):
    return CANDY_GUARD_HEADER_SIZE + len(serialize_guard_data(guards))


# --- Token Metadata ---

def create_metadata_account_v3(mint, mint_authority, payer, update_authority, name, symbol,
                               uri, seller_fee_basis_points, creators, is_mutable=True,
                               is_collection=False):
    """Build CreateMetadataAccountV3; creators is a list of (address, share)."""
    data = CREATE_METADATA_ACCOUNT_V3_ARGS.build({
        "instruction": CREATE_METADATA_ACCOUNT_V3,
        "data": {
            "name": name,
            "symbol": symbol,
            "uri": uri,
            "seller_fee_basis_points": seller_fee_basis_points,
            "creators": [
                {"address": bytes(address), "verified": address == update_authority, "share": share}
                for address, share in creators
            ] or None,
            "collection": None,
            "uses": None,
        },
        "is_mutable": is_mutable,
        "collection_details": {"variant": 0, "size": 0} if is_collection else None,
    })
    accounts = [
        _meta(find_metadata_pda(mint), writable=True),
        _meta(mint),
        _meta(mint_authority, signer=True),
        _meta(payer, signer=True, writable=True),
        _meta(update_authority, signer=True),
        _meta(SYS_PROGRAM_ID),
        _meta(SYSVAR_RENT_ID),
    ]
    return Instruction(TOKEN_METADATA_PROGRAM_ID, data, accounts)


def create_master_edition_v3(mint, update_authority, mint_authority, payer, max_supply=0):
    data = CREATE_MASTER_EDITION_V3_ARGS.build({
        "instruction": CREATE_MASTER_EDITION_V3,
        "max_supply": max_supply,
    })
    accounts = [
        _meta(find_master_edition_pda(mint), writable=True),
        _meta(mint, writable=True),
        _meta(update_authority, signer=True),
        _meta(mint_authority, signer=True),
        _meta(payer, signer=True, writable=True),
        _meta(find_metadata_pda(mint), writable=True),
        _meta(TOKEN_PROGRAM_ID),
        _meta(SYS_PROGRAM_ID),
        _meta(SYSVAR_RENT_ID),
    ]
    return Instruction(TOKEN_METADATA_PROGRAM_ID, data, accounts)


# --- Candy Machine Core ---

def initialize_candy_machine(candy_machine, authority, payer, settings, collection_update_authority):
    check_machine_settings(settings)
    authority_pda = find_candy_machine_authority_pda(candy_machine)
    data = anchor_discriminator("initialize") + CANDY_MACHINE_DATA.build({
        "items_available": settings.items_available,
        "symbol": settings.symbol,
        "seller_fee_basis_points": settings.seller_fee_basis_points,
        "max_supply": settings.max_edition_supply,
        "is_mutable": settings.is_mutable,
        "creators": [
            {"address": bytes(creator.address), "verified": False, "percentage_share": creator.share}
            for creator in settings.creators
        ],
        "config_line_settings": DEFAULT_CONFIG_LINE_SETTINGS,
        "hidden_settings": None,
    })
    accounts = [
        _meta(candy_machine, writable=True),
        _meta(authority_pda, writable=True),
        _meta(authority),
        _meta(payer, signer=True),
        _meta(find_metadata_pda(settings.collection)),
        _meta(settings.collection),
        _meta(find_master_edition_pda(settings.collection)),
        _meta(collection_update_authority, signer=True, writable=True),
        _meta(find_collection_authority_record_pda(settings.collection, authority_pda), writable=True),
        _meta(TOKEN_METADATA_PROGRAM_ID),
        _meta(SYS_PROGRAM_ID),
    ]
    return Instruction(CANDY_MACHINE_PROGRAM_ID, data, accounts)


def add_config_lines(candy_machine, authority, index, items):
    for item in items:
        if len(item.name.encode("utf-8")) > MAX_NAME_LENGTH:
            raise ValidationError(f"item name longer than {MAX_NAME_LENGTH} bytes: {item.name}")
        if len(item.uri.encode("utf-8")) > MAX_URI_LENGTH:
            raise ValidationError(f"item uri longer than {MAX_URI_LENGTH} bytes: {item.uri}")
    data = anchor_discriminator("add_config_lines") + ADD_CONFIG_LINES_ARGS.build({
        "index": index,
        "config_lines": [{"name": item.name, "uri": item.uri} for item in items],
    })
    accounts = [
        _meta(candy_machine, writable=True),
        _meta(authority, signer=True),
    ]
    return Instruction(CANDY_MACHINE_PROGRAM_ID, data, accounts)


# --- Candy Guard ---

def serialize_guard_data(guards):
    """
    Serialize a default guard set with no groups.

    Format: u64 feature bitmask, then each enabled guard's fields in bit
    order, then a u32 group count.
    """
    check_guards(guards)
    features = 0
    payload = b""
    if guards.sol_payment is not None:
        features |= 1 << GUARD_BITS["sol_payment"]
        payload += SOL_PAYMENT_GUARD.build({
            "lamports": guards.sol_payment.lamports,
            "destination": bytes(guards.sol_payment.destination),
        })
    if guards.start_date is not None:
        features |= 1 << GUARD_BITS["start_date"]
        payload += START_DATE_GUARD.build({"date": int(guards.start_date.date.timestamp())})
    if guards.mint_limit is not None:
        features |= 1 << GUARD_BITS["mint_limit"]
        payload += MINT_LIMIT_GUARD.build({
            "id": guards.mint_limit.id,
            "limit": guards.mint_limit.limit,
        })
    return U64.build(features) + payload + U32.build(0)


def deserialize_guard_data(data):
    supported = 0
    for name in ("sol_payment", "start_date", "mint_limit"):
        supported |= 1 << GUARD_BITS[name]
    stream = io.BytesIO(data)
    features = U64.parse_stream(stream)
    if features & ~supported:
        raise ValidationError(f"unsupported guards enabled (features={features:#x})")
    sol_payment = start_date = mint_limit = None
    if features & (1 << GUARD_BITS["sol_payment"]):
        parsed = SOL_PAYMENT_GUARD.parse_stream(stream)
        sol_payment = SolPayment(parsed.lamports, Pubkey.from_bytes(parsed.destination))
    if features & (1 << GUARD_BITS["start_date"]):
        parsed = START_DATE_GUARD.parse_stream(stream)
        start_date = StartDate(datetime.fromtimestamp(parsed.date, tz=timezone.utc))
    if features & (1 << GUARD_BITS["mint_limit"]):
        parsed = MINT_LIMIT_GUARD.parse_stream(stream)
        mint_limit = MintLimit(parsed.id, parsed.limit)
    return GuardSet(sol_payment=sol_payment, start_date=start_date, mint_limit=mint_limit)


def initialize_candy_guard(base, authority, payer, guards=None):
    data = anchor_discriminator("initialize") + GUARD_DATA_ARGS.build(
        {"data": serialize_guard_data(guards or GuardSet())}
    )
    accounts = [
        _meta(find_candy_guard_pda(base), writable=True),
        _meta(base, signer=True),
        _meta(authority),
        _meta(payer, signer=True, writable=True),
        _meta(SYS_PROGRAM_ID),
    ]
    return Instruction(CANDY_GUARD_PROGRAM_ID, data, accounts)


def wrap(candy_guard, authority, candy_machine, candy_machine_authority):
    accounts = [
        _meta(candy_guard),
        _meta(authority, signer=True),
        _meta(candy_machine, writable=True),
        _meta(CANDY_MACHINE_PROGRAM_ID),
        _meta(candy_machine_authority, signer=True),
    ]
    return Instruction(CANDY_GUARD_PROGRAM_ID, anchor_discriminator("wrap"), accounts)


def update_candy_guard(candy_guard, authority, payer, guards):
    data = anchor_discriminator("update") + GUARD_DATA_ARGS.build(
        {"data": serialize_guard_data(guards)}
    )
    accounts = [
        _meta(candy_guard, writable=True),
        _meta(authority, signer=True),
        _meta(payer, signer=True, writable=True),
        _meta(SYS_PROGRAM_ID),
    ]
    return Instruction(CANDY_GUARD_PROGRAM_ID, data, accounts)


def mint_from_candy_guard(machine, payer, nft_mint, collection_update_authority):
    """
    Build the candy guard mint instruction for a NonFungible item.

    The NFT mint must already exist with one token in the owner's account;
    guard accounts (payment destination, mint counter) follow the fixed
    accounts in guard order.
    """
    authority_pda = find_candy_machine_authority_pda(machine.address)
    collection = machine.collection_mint
    accounts = [
        _meta(machine.candy_guard),
        _meta(CANDY_MACHINE_PROGRAM_ID),
        _meta(machine.address, writable=True),
        _meta(authority_pda, writable=True),
        _meta(payer, signer=True, writable=True),
        _meta(nft_mint, writable=True),
        _meta(payer, signer=True),
        _meta(find_metadata_pda(nft_mint), writable=True),
        _meta(find_master_edition_pda(nft_mint), writable=True),
        _meta(find_collection_authority_record_pda(collection, authority_pda)),
        _meta(collection),
        _meta(find_metadata_pda(collection), writable=True),
        _meta(find_master_edition_pda(collection)),
        _meta(collection_update_authority),
        _meta(TOKEN_METADATA_PROGRAM_ID),
        _meta(TOKEN_PROGRAM_ID),
        _meta(SYS_PROGRAM_ID),
        _meta(SYSVAR_SLOT_HASHES_ID),
        _meta(SYSVAR_INSTRUCTIONS_ID),
    ]
    guards = machine.guards
    if guards.sol_payment is not None:
        accounts.append(_meta(guards.sol_payment.destination, writable=True))
    if guards.mint_limit is not None:
        counter = find_mint_limit_counter_pda(
            guards.mint_limit.id, payer, machine.candy_guard, machine.address
        )
        accounts.append(_meta(counter, writable=True))
    data = anchor_discriminator("mint") + MINT_ARGS.build({"mint_args": b"", "label": None})
    return Instruction(CANDY_GUARD_PROGRAM_ID, data, accounts)


# --- Account decoding ---

def decode_candy_machine(data):
    """Return (parsed account, items loaded) for raw candy machine data."""
    account = CANDY_MACHINE_ACCOUNT.parse(data)
    items_loaded = 0
    if account.data.hidden_settings is None and len(data) >= CANDY_MACHINE_HEADER_SIZE + 4:
        items_loaded = U32.parse(data[CANDY_MACHINE_HEADER_SIZE:CANDY_MACHINE_HEADER_SIZE + 4])
    return account, items_loaded


def decode_candy_guard(data):
    """Return (parsed header, GuardSet) for raw candy guard data."""
    header = CANDY_GUARD_ACCOUNT.parse(data)
    return header, deserialize_guard_data(data[CANDY_GUARD_HEADER_SIZE:])


def decode_mint_counter(data):
    """Return the count stored in a mint limit counter account."""
    return MINT_COUNTER_ACCOUNT.parse(data).count
