import json

from solders.keypair import Keypair

from candymint.cli import build_parser, main


def _common(tmp_path):
    key = tmp_path / "id.json"
    if not key.exists():
        key.write_text(json.dumps(list(bytes(Keypair()))))
    return [
        "--keypair", str(key),
        "--state-file", str(tmp_path / "state.json"),
        "--mock",
        "--ledger-file", str(tmp_path / "ledger.json"),
    ]


def test_every_stage_is_a_command():
    parser = build_parser()

    for command in ("collection", "machine", "guards", "items", "mint", "status"):
        args = parser.parse_args([command])
        assert args.command == command


def test_stages_run_in_order_in_mock_mode(tmp_path, capsys):
    common = _common(tmp_path)

    assert main(["collection", "--skip-metadata-check"] + common) == 0
    assert main(["machine"] + common) == 0
    assert main(["guards"] + common) == 0
    assert main(["items"] + common) == 0
    assert main(["mint"] + common) == 0

    state = json.loads((tmp_path / "state.json").read_text())
    assert set(state["stages"]) == {"collection", "machine", "guards", "items", "mint"}
    assert len(state["minted"]) == 1
    assert state["stages"]["mint"]["remaining"] == 2

    capsys.readouterr()
    assert main(["status"] + common) == 0
    assert "3/3 loaded, 1 minted, 2 remaining" in capsys.readouterr().out


def test_machine_before_collection_fails(tmp_path, capsys):
    assert main(["machine"] + _common(tmp_path)) == 1

    out = capsys.readouterr().out
    assert "[ERROR]" in out
    assert "run the 'collection' stage first" in out
    assert not (tmp_path / "state.json").exists()


def test_mint_before_items_fails(tmp_path, capsys):
    common = _common(tmp_path)
    assert main(["collection", "--skip-metadata-check"] + common) == 0
    assert main(["machine"] + common) == 0

    assert main(["mint"] + common) == 1
    assert "[ERROR] mint: candy machine has no items" in capsys.readouterr().out


def test_explicit_machine_argument(tmp_path):
    common = _common(tmp_path)
    assert main(["collection", "--skip-metadata-check"] + common) == 0
    assert main(["machine"] + common) == 0
    machine = json.loads((tmp_path / "state.json").read_text())["machine_address"]
    (tmp_path / "state.json").unlink()

    assert main(["items", "--machine", machine] + common) == 0


def test_bad_key_file_exits_nonzero(tmp_path, capsys):
    key = tmp_path / "id.json"
    key.write_text("[1, 2, 3]")

    assert main(["collection", "--keypair", str(key), "--mock",
                 "--ledger-file", str(tmp_path / "ledger.json")]) == 1
    assert "expected 64" in capsys.readouterr().out


def test_state_file_that_is_not_an_object_exits_nonzero(tmp_path, capsys):
    common = _common(tmp_path)
    (tmp_path / "state.json").write_text("[]")

    assert main(["machine"] + common) == 1
    assert "[ERROR]" in capsys.readouterr().out
