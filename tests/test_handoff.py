import pytest
from solders.keypair import Keypair
from solders.signature import Signature

from candymint.errors import ValidationError
from candymint.handoff import load_state, record_stage, require_address
from candymint.results import StageOutput


def test_empty_state(tmp_path):
    assert load_state(tmp_path / "state.json") == {}


def test_recorded_collection_feeds_machine_stage(tmp_path):
    path = tmp_path / "state.json"
    collection = Keypair().pubkey()

    record_stage(path, "collection", StageOutput(address=collection, signature=Signature.default()))
    state = load_state(path)

    assert state["collection_address"] == str(collection)
    assert state["stages"]["collection"]["signature"] == str(Signature.default())
    assert require_address(None, state, "collection_address", "machine") == collection


def test_explicit_address_wins(tmp_path):
    path = tmp_path / "state.json"
    record_stage(path, "machine", StageOutput(address=Keypair().pubkey()))
    explicit = Keypair().pubkey()

    assert require_address(str(explicit), load_state(path), "machine_address", "mint") == explicit


def test_mints_accumulate(tmp_path):
    path = tmp_path / "state.json"
    first, second = Keypair().pubkey(), Keypair().pubkey()

    record_stage(path, "mint", StageOutput(address=first, remaining=2))
    record_stage(path, "mint", StageOutput(address=second, remaining=1))

    state = load_state(path)
    assert state["minted"] == [str(first), str(second)]
    assert state["stages"]["mint"]["remaining"] == 1


def test_missing_predecessor_names_the_stage():
    with pytest.raises(ValidationError, match="run the 'machine' stage first"):
        require_address(None, {}, "machine_address", "guards")


def test_invalid_address():
    with pytest.raises(ValidationError, match="invalid collection address"):
        require_address("not-a-key", {}, "collection_address", "machine")


def test_corrupt_state_file(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{")

    with pytest.raises(ValidationError):
        load_state(path)


def test_state_file_must_hold_an_object(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("[]")

    with pytest.raises(ValidationError, match="must hold a JSON object"):
        load_state(path)
