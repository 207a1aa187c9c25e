"""Shared fixtures data for ledger tests."""

import hashlib

from ..config import FIELD_SIZE
from ..types import address_to_int
from ..verifiers import mock_prove

GATE = "0x00000000000000000000000000000000000a11ce"
MANAGER = "0x000000000000000000000000000000000000b0b0"
TREASURY = "0x00000000000000000000000000000000000fee5e"
ALICE = "0x00000000000000000000000000000000000000a1"
BOB = "0x00000000000000000000000000000000000000b2"
CAROL = "0x00000000000000000000000000000000000000c3"
RELAYER = "0x0000000000000000000000000000000000000e1a"
RECIPIENT = "0x0000000000000000000000000000000000000d0e"

DENOMINATION = 10**17


def field_value(label: str, index: int = 0) -> int:
    digest = hashlib.sha256(f"{label}:{index}".encode()).digest()
    return int.from_bytes(digest, "big") % FIELD_SIZE


def commitment(index: int) -> int:
    return field_value("commitment", index)


def nullifier(index: int) -> int:
    return field_value("nullifier", index)


def withdraw_args(ledger, index=0, recipient=RECIPIENT, relayer=RELAYER, fee=0, refund=0):
    """Positional arguments for ``ledger.withdraw`` with a matching mock proof."""
    root = ledger.last_root
    nullifier_hash = nullifier(index)
    proof = mock_prove(
        [
            root,
            nullifier_hash,
            address_to_int(recipient),
            address_to_int(relayer),
            fee,
            refund,
        ]
    )
    return (proof, root, nullifier_hash, recipient, relayer, fee, refund)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
