import hashlib
import struct
from datetime import datetime, timezone

import pytest
from solders.keypair import Keypair

from candymint.config import MachineSettings
from candymint.errors import ValidationError
from candymint.instructions import (
    CANDY_GUARD_PROGRAM_ID, CANDY_MACHINE_HEADER_SIZE, CANDY_MACHINE_PROGRAM_ID,
    TOKEN_METADATA_PROGRAM_ID, add_config_lines, anchor_discriminator, candy_machine_size,
    create_master_edition_v3, create_metadata_account_v3, decode_mint_counter, deserialize_guard_data,
    find_candy_guard_pda, find_master_edition_pda, find_metadata_pda,
    initialize_candy_machine, mint_from_candy_guard, serialize_guard_data, update_candy_guard,
)
from candymint.service import ConfigLine, GuardSet, MachineState, MintLimit, SolPayment, StartDate


def _guards(destination):
    return GuardSet(
        sol_payment=SolPayment(100_000_000, destination),
        start_date=StartDate(datetime(2023, 2, 24, 17, 0, tzinfo=timezone.utc)),
        mint_limit=MintLimit(1, 2),
    )


def test_anchor_discriminator():
    assert anchor_discriminator("initialize") == hashlib.sha256(b"global:initialize").digest()[:8]


def test_guard_data_layout():
    destination = Keypair().pubkey()

    data = serialize_guard_data(_guards(destination))

    (features,) = struct.unpack_from("<Q", data, 0)
    assert features == (1 << 1) | (1 << 3) | (1 << 9)
    assert struct.unpack_from("<Q", data, 8) == (100_000_000,)
    assert data[16:48] == bytes(destination)
    assert struct.unpack_from("<q", data, 48) == (1677258000,)
    assert struct.unpack_from("<BH", data, 56) == (1, 2)
    # no groups
    assert data[-4:] == b"\x00\x00\x00\x00"
    assert len(data) == 8 + 40 + 8 + 3 + 4


def test_empty_guard_data():
    assert serialize_guard_data(GuardSet()) == b"\x00" * 12


def test_guard_data_decodes():
    guards = _guards(Keypair().pubkey())

    assert deserialize_guard_data(serialize_guard_data(guards)) == guards


def test_unknown_guards_are_rejected():
    data = struct.pack("<Q", 1) + b"\x00" * 9 + struct.pack("<I", 0)

    with pytest.raises(ValidationError):
        deserialize_guard_data(data)


def test_mint_limit_id_must_fit_in_a_byte():
    with pytest.raises(ValidationError):
        serialize_guard_data(GuardSet(mint_limit=MintLimit(256, 2)))


def test_mint_limit_must_fit_in_a_u16():
    with pytest.raises(ValidationError, match="mint limit must be between 0 and 65535"):
        serialize_guard_data(GuardSet(mint_limit=MintLimit(1, 70000)))


def test_mint_counter_decodes():
    data = b"\x00" * 8 + struct.pack("<H", 2)

    assert decode_mint_counter(data) == 2


def test_candy_machine_size():
    assert CANDY_MACHINE_HEADER_SIZE == 850
    assert candy_machine_size(3) == 850 + 4 + 3 * (32 + 200) + 4 + 1 + 4 + 3 * 4


def test_metadata_pdas_are_deterministic():
    mint = Keypair().pubkey()

    assert find_metadata_pda(mint) == find_metadata_pda(mint)
    assert find_metadata_pda(mint) != find_master_edition_pda(mint)


def test_collection_instructions_target_token_metadata():
    payer = Keypair().pubkey()
    mint = Keypair().pubkey()

    metadata = create_metadata_account_v3(
        mint, payer, payer, payer, "Dreams of Summer NFT Collection", "", "https://example.com/1.json",
        0, [(payer, 100)], is_collection=True,
    )
    edition = create_master_edition_v3(mint, payer, payer, payer)

    assert metadata.program_id == TOKEN_METADATA_PROGRAM_ID
    assert metadata.data[0] == 33
    # is_mutable, Some(CollectionDetails::V1 { size: 0 })
    assert metadata.data.endswith(b"\x01\x01\x00" + b"\x00" * 8)
    assert metadata.accounts[0].pubkey == find_metadata_pda(mint)
    assert edition.data == bytes([17, 1]) + b"\x00" * 8
    assert edition.accounts[0].pubkey == find_master_edition_pda(mint)


def test_initialize_candy_machine():
    payer = Keypair().pubkey()
    candy_machine = Keypair().pubkey()
    settings = MachineSettings.from_config(payer, Keypair().pubkey())

    ix = initialize_candy_machine(candy_machine, payer, payer, settings, payer)

    assert ix.program_id == CANDY_MACHINE_PROGRAM_ID
    assert ix.data[:8] == anchor_discriminator("initialize")
    assert struct.unpack_from("<Q", ix.data, 8) == (3,)
    assert ix.accounts[0].pubkey == candy_machine
    assert ix.accounts[5].pubkey == settings.collection


def test_machine_settings_are_checked():
    payer = Keypair().pubkey()
    settings = MachineSettings.from_config(payer, Keypair().pubkey())
    bad = MachineSettings(
        items_available=3, seller_fee_basis_points=1000, symbol="TOOLONGSYMBOL",
        max_edition_supply=0, is_mutable=True, creators=settings.creators,
        collection=settings.collection,
    )

    with pytest.raises(ValidationError):
        initialize_candy_machine(Keypair().pubkey(), payer, payer, bad, payer)


def test_add_config_lines():
    authority = Keypair().pubkey()
    candy_machine = Keypair().pubkey()
    lines = [ConfigLine("Dreams of Summer NFT # 1", "https://example.com/1.json")]

    ix = add_config_lines(candy_machine, authority, 2, lines)

    assert ix.data[:8] == anchor_discriminator("add_config_lines")
    assert struct.unpack_from("<II", ix.data, 8) == (2, 1)
    assert ix.accounts[1].is_signer


def test_add_config_lines_rejects_long_names():
    lines = [ConfigLine("x" * 33, "https://example.com/1.json")]

    with pytest.raises(ValidationError):
        add_config_lines(Keypair().pubkey(), Keypair().pubkey(), 0, lines)


def test_update_candy_guard_carries_guard_data():
    payer = Keypair().pubkey()
    guard = find_candy_guard_pda(Keypair().pubkey())
    guards = _guards(payer)

    ix = update_candy_guard(guard, payer, payer, guards)

    assert ix.program_id == CANDY_GUARD_PROGRAM_ID
    payload = serialize_guard_data(guards)
    assert ix.data == anchor_discriminator("update") + struct.pack("<I", len(payload)) + payload


def test_mint_appends_guard_accounts():
    payer = Keypair().pubkey()
    machine = MachineState(
        address=Keypair().pubkey(),
        authority=payer,
        collection_mint=Keypair().pubkey(),
        candy_guard=find_candy_guard_pda(Keypair().pubkey()),
        items_available=3,
        guards=_guards(payer),
    )

    ix = mint_from_candy_guard(machine, payer, Keypair().pubkey(), payer)

    assert len(ix.accounts) == 19 + 2
    assert ix.accounts[19].pubkey == payer
    assert ix.accounts[19].is_writable
