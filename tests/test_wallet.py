import json

import pytest
from solders.keypair import Keypair

from candymint.errors import ValidationError
from candymint.wallet import load_keypair


def test_load_keypair(tmp_path):
    keypair = Keypair()
    path = tmp_path / "id.json"
    path.write_text(json.dumps(list(bytes(keypair))))

    assert load_keypair(path).pubkey() == keypair.pubkey()


@pytest.mark.parametrize("content", [
    "not json",
    '{"secret": [1, 2, 3]}',
    "[1, 2, 3]",
    json.dumps([256] * 64),
])
def test_malformed_key_files_fail_early(tmp_path, content):
    path = tmp_path / "id.json"
    path.write_text(content)

    with pytest.raises(ValidationError):
        load_keypair(path)


def test_missing_key_file(tmp_path):
    with pytest.raises(ValidationError, match="not found"):
        load_keypair(tmp_path / "missing.json")
