import asyncio

import pytest
from solders.keypair import Keypair

from candymint.config import MachineSettings, sol_to_lamports
from candymint.errors import ValidationError
from candymint.ledger import Ledger, MOCK_STARTING_BALANCE
from candymint.service import GuardSet, MintLimit
from candymint.stages import add_items, create_candy_machine, create_collection, mint_nft, update_guards


def run(coro):
    return asyncio.run(coro)


def test_missing_ledger_file_starts_funded(tmp_path, operator):
    ledger = Ledger.load(tmp_path / "ledger.json", operator.pubkey())

    assert ledger.balance(operator.pubkey()) == MOCK_STARTING_BALANCE


def test_ledger_survives_save_and_load(tmp_path, config, ledger, operator):
    collection = run(create_collection(config, ledger)).unwrap()
    config = config.with_collection(collection.address)
    machine = run(create_candy_machine(config, ledger)).unwrap()
    config = config.with_machine(machine.address)
    run(update_guards(config, ledger)).unwrap()
    run(add_items(config, ledger)).unwrap()
    run(mint_nft(config, ledger)).unwrap()
    path = tmp_path / "ledger.json"

    ledger.save(path)
    loaded = Ledger.load(path, operator.pubkey(), clock=ledger.clock)

    assert loaded.balances == ledger.balances
    restored = run(loaded.find_machine(machine.address))
    assert restored.items_redeemed == 1
    assert restored.guards == ledger.machines[machine.address].guards
    assert loaded.lines == ledger.lines
    assert loaded.mint_counters == ledger.mint_counters
    # the restored counter still counts toward the limit of 2
    assert run(mint_nft(config, loaded)).ok
    assert not run(mint_nft(config, loaded)).ok


def test_ledger_of_another_payer_is_rejected(tmp_path, ledger):
    path = tmp_path / "ledger.json"
    ledger.save(path)

    with pytest.raises(ValidationError):
        Ledger.load(path, Keypair().pubkey())


def test_find_machine_returns_a_copy(config, ledger):
    collection = run(create_collection(config, ledger)).unwrap()
    machine = run(create_candy_machine(config.with_collection(collection.address), ledger)).unwrap()

    snapshot = run(ledger.find_machine(machine.address))
    snapshot.items_redeemed = 99

    assert ledger.machines[machine.address].items_redeemed == 0


def test_rent_and_fees_are_charged(config, ledger, operator):
    before = ledger.balance(operator.pubkey())

    run(create_collection(config, ledger)).unwrap()

    spent = before - ledger.balance(operator.pubkey())
    assert 0 < spent < sol_to_lamports("0.05")


def test_machine_with_long_symbol_is_rejected(config, ledger, operator):
    collection = run(create_collection(config, ledger)).unwrap()
    config = config.with_collection(collection.address)
    defaults = MachineSettings.from_config(operator.pubkey(), collection.address)
    settings = MachineSettings(
        items_available=3, seller_fee_basis_points=1000, symbol="DOSPXDOSPXD",
        max_edition_supply=0, is_mutable=True, creators=defaults.creators,
        collection=collection.address,
    )

    result = run(create_candy_machine(config, ledger, settings=settings))

    assert isinstance(result.error, ValidationError)
    assert "symbol longer than 10" in str(result.error)
    assert ledger.machines == {}


def test_mint_limit_out_of_range_is_rejected(config, ledger):
    collection = run(create_collection(config, ledger)).unwrap()
    config = config.with_collection(collection.address)
    machine = run(create_candy_machine(config, ledger)).unwrap()
    config = config.with_machine(machine.address)

    result = run(update_guards(config, ledger, guards=GuardSet(mint_limit=MintLimit(1, 70000))))

    assert isinstance(result.error, ValidationError)
    assert ledger.machines[machine.address].guards == GuardSet()


def test_mint_limit_counts_the_payer(config, ledger, operator):
    collection = run(create_collection(config, ledger)).unwrap()
    config = config.with_collection(collection.address)
    machine = run(create_candy_machine(config, ledger)).unwrap()
    config = config.with_machine(machine.address)
    run(update_guards(config, ledger)).unwrap()
    run(add_items(config, ledger)).unwrap()
    stored = run(ledger.find_machine(machine.address))

    run(ledger.mint(stored, Keypair().pubkey()))

    assert list(ledger.mint_counters) == [(machine.address, 1, operator.pubkey())]
