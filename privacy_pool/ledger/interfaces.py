"""
Collaborator ports consumed by the pool ledger and the access gate.

Implementations are injected at construction. Every call is synchronous
and completes inside the caller's unit of work.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence, Tuple


class ProofVerifier(ABC):
    """
    Verifies withdrawal proofs.

    ``public_inputs`` is the fixed six-element vector
    ``[root, nullifier_hash, recipient, relayer, fee, refund]`` with
    addresses given as integers. Implementations must be stateless and
    must return False (not raise) for proofs they cannot parse.
    """

    @abstractmethod
    def verify(
        self,
        a: Tuple[int, int],
        b: Tuple[Tuple[int, int], Tuple[int, int]],
        c: Tuple[int, int],
        public_inputs: Sequence[int],
    ) -> bool:
        ...

    @property
    def backend_name(self) -> str:
        return type(self).__name__


class AttestationOracle(ABC):
    """Answers whether an address holds a valid identity attestation."""

    @abstractmethod
    def is_verified(self, address: str) -> bool:
        ...


class AssetTransfer(ABC):
    """
    Moves value out of pool custody.

    ``send`` returns False on failure; callers treat that as an abort
    signal for the whole operation.
    """

    @abstractmethod
    def send(self, destination: str, amount: int) -> bool:
        ...


class TokenTransfer(AssetTransfer):
    """Asset transfer that can also pull tokens into pool custody."""

    @abstractmethod
    def collect(self, source: str, amount: int) -> bool:
        ...


class ReversibleTransfer(ABC):
    """
    Transfer port that can compensate its own moves.

    A failed operation reverses each send and collect it made, newest
    first. A reversal moves exactly the recorded amount back, so transfers
    committed by other operations on the same port are left untouched.
    """

    @abstractmethod
    def reverse_send(self, destination: str, amount: int) -> None:
        ...

    @abstractmethod
    def reverse_collect(self, source: str, amount: int) -> None:
        ...


class BalanceSource(ABC):
    """Balance lookup for the governance token used in deposit gating."""

    @abstractmethod
    def balance_of(self, address: str) -> int:
        ...
