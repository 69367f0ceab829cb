"""Stage results: a success payload or a typed failure."""

from dataclasses import dataclass
from typing import Optional

from solders.pubkey import Pubkey
from solders.signature import Signature

from .errors import WorkflowError


@dataclass(frozen=True)
class StageOutput:
    address: Optional[Pubkey] = None
    signature: Optional[Signature] = None
    remaining: Optional[int] = None


@dataclass(frozen=True)
class Success:
    value: StageOutput
    ok = True

    def unwrap(self):
        return self.value


@dataclass(frozen=True)
class Failure:
    error: WorkflowError
    ok = False

    def unwrap(self):
        raise self.error
