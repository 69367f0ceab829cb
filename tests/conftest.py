from datetime import datetime, timezone

import pytest
from solders.keypair import Keypair

from candymint.config import WorkflowConfig
from candymint.ledger import Ledger, MOCK_STARTING_BALANCE


@pytest.fixture
def operator():
    return Keypair()


@pytest.fixture
def config(operator):
    return WorkflowConfig(identity=operator, verify_metadata=False)


@pytest.fixture
def ledger(operator):
    ledger = Ledger(operator.pubkey(), clock=lambda: datetime(2024, 6, 1, tzinfo=timezone.utc))
    ledger.airdrop(operator.pubkey(), MOCK_STARTING_BALANCE)
    return ledger
