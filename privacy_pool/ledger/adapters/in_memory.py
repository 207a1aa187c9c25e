"""
In-memory collaborator implementations.

Deterministic stand-ins for the external ports, used by the CLI simulator
and the test suite. ``InMemoryVault`` can reverse individual sends and
collections, so a failed operation takes back only its own transfers.
"""

from __future__ import annotations

import threading
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..interfaces import (
    AttestationOracle,
    BalanceSource,
    ProofVerifier,
    ReversibleTransfer,
    TokenTransfer,
)
from ..types import normalize_address

SendHook = Callable[[str, int], None]


class InMemoryVault(TokenTransfer, ReversibleTransfer):
    """
    Account balances moved by the ledger's transfer port.

    ``send`` credits the destination; ``collect`` debits the source.
    Destinations marked with ``fail_for`` refuse transfers. ``on_send`` runs
    after every successful send, which lets tests act like a recipient that
    calls back into the ledger.
    """

    def __init__(self, balances: Optional[Mapping[str, int]] = None) -> None:
        self.balances: Dict[str, int] = {
            normalize_address(k): int(v) for k, v in (balances or {}).items()
        }
        self.collected = 0
        self.sent: List[Tuple[str, int]] = []
        self.failing: set[str] = set()
        self.on_send: Optional[SendHook] = None
        self._lock = threading.Lock()

    def fail_for(self, address: str, failing: bool = True) -> None:
        key = normalize_address(address)
        if failing:
            self.failing.add(key)
        else:
            self.failing.discard(key)

    def balance_of(self, address: str) -> int:
        return self.balances.get(normalize_address(address), 0)

    def send(self, destination: str, amount: int) -> bool:
        key = normalize_address(destination)
        if key in self.failing or amount < 0:
            return False
        with self._lock:
            self.balances[key] = self.balances.get(key, 0) + amount
            self.sent.append((key, amount))
        if self.on_send is not None:
            try:
                self.on_send(key, amount)
            except Exception:
                # A send whose receiver raises did not complete
                self.reverse_send(key, amount)
                raise
        return True

    def collect(self, source: str, amount: int) -> bool:
        key = normalize_address(source)
        with self._lock:
            if key in self.failing or self.balances.get(key, 0) < amount:
                return False
            self.balances[key] -= amount
            self.collected += amount
        return True

    def reverse_send(self, destination: str, amount: int) -> None:
        key = normalize_address(destination)
        with self._lock:
            self.balances[key] = self.balances.get(key, 0) - amount
            # Drop the most recent matching entry only
            for position in range(len(self.sent) - 1, -1, -1):
                if self.sent[position] == (key, amount):
                    del self.sent[position]
                    break

    def reverse_collect(self, source: str, amount: int) -> None:
        key = normalize_address(source)
        with self._lock:
            self.balances[key] = self.balances.get(key, 0) + amount
            self.collected -= amount


class StaticAttestationOracle(AttestationOracle):
    """Attestation oracle backed by a fixed set of verified addresses."""

    def __init__(self, verified: Iterable[str] = ()) -> None:
        self._verified = {normalize_address(a) for a in verified}

    def set_verified(self, address: str, verified: bool = True) -> None:
        key = normalize_address(address)
        if verified:
            self._verified.add(key)
        else:
            self._verified.discard(key)

    def is_verified(self, address: str) -> bool:
        return normalize_address(address) in self._verified


class StaticBalances(BalanceSource):
    def __init__(self, balances: Optional[Mapping[str, int]] = None) -> None:
        self._balances = {
            normalize_address(k): int(v) for k, v in (balances or {}).items()
        }

    def set_balance(self, address: str, amount: int) -> None:
        self._balances[normalize_address(address)] = amount

    def balance_of(self, address: str) -> int:
        return self._balances.get(normalize_address(address), 0)


class StaticProofVerifier(ProofVerifier):
    """
    Returns a fixed verdict and records every call.

    Testing only: accepts or rejects regardless of the proof.
    """

    def __init__(self, verdict: bool = True) -> None:
        self.verdict = verdict
        self.calls: List[Sequence[int]] = []

    def verify(self, a, b, c, public_inputs) -> bool:
        self.calls.append(list(public_inputs))
        return self.verdict
