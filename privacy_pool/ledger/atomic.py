"""
All-or-nothing execution of ledger and gate operations.

Each operation runs inside ``OperationGuard.operation()``, which

1. serializes operations on one instance across threads,
2. rejects a nested call that would take guards out of rank order
   (e.g. a transfer callback trying to withdraw again or to deposit through
   the gate), and
3. hands out a ``UnitOfWork`` journal. Every mutation registers its own
   inverse on the journal, transfers included. Any exception replays the
   journal newest-first before it propagates, so a failed operation leaves
   no residue and never touches effects committed by other operations.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

from .exceptions import ReentrantCall
from .interfaces import ReversibleTransfer

logger = logging.getLogger(__name__)

# Guard ranks. A thread inside an operation may only enter a guard of
# strictly higher rank.
GATE_RANK = 0
LEDGER_RANK = 1

_held = threading.local()


def _held_guards() -> List["OperationGuard"]:
    guards = getattr(_held, "guards", None)
    if guards is None:
        guards = _held.guards = []
    return guards


class UnitOfWork:
    """Undo journal for one externally observable operation."""

    def __init__(self, label: str) -> None:
        self.label = label
        self._undo: List[Callable[[], None]] = []

    def on_rollback(self, undo: Callable[[], None]) -> None:
        self._undo.append(undo)

    def rollback(self) -> None:
        while self._undo:
            undo = self._undo.pop()
            try:
                undo()
            except Exception:  # noqa: BLE001
                logger.exception("%s: rollback step failed", self.label)

    def commit(self) -> None:
        self._undo.clear()


class OperationGuard:
    """
    Mutual exclusion plus re-entrancy rejection for one instance.

    Guards are ranked: the access gate holds ``GATE_RANK`` and pool ledgers
    ``LEDGER_RANK``. The gate may call into a ledger while inside its own
    operation; every other nesting raises ``ReentrantCall`` before any lock
    is taken, so locks are always acquired in ascending rank.
    """

    def __init__(self, name: str, rank: int = LEDGER_RANK) -> None:
        self.name = name
        self.rank = rank
        self._lock = threading.Lock()
        self._owner: Optional[int] = None

    @property
    def in_flight(self) -> bool:
        return self._owner is not None

    @contextmanager
    def operation(self, label: str) -> Iterator[UnitOfWork]:
        held = _held_guards()
        if held and held[-1].rank >= self.rank:
            raise ReentrantCall(
                f"{self.name}: {label} called while {held[-1].name} has an operation in flight"
            )

        with self._lock:
            self._owner = threading.get_ident()
            held.append(self)
            unit = UnitOfWork(f"{self.name}.{label}")
            try:
                yield unit
            except BaseException:
                unit.rollback()
                logger.warning("%s: rolled back", unit.label)
                raise
            else:
                unit.commit()
            finally:
                held.pop()
                self._owner = None


def journal_send(unit: UnitOfWork, transfer: object, destination: str, amount: int) -> None:
    """Register the reversal of a completed send, when the port supports it."""
    if isinstance(transfer, ReversibleTransfer):
        unit.on_rollback(lambda: transfer.reverse_send(destination, amount))


def journal_collect(unit: UnitOfWork, transfer: object, source: str, amount: int) -> None:
    """Register the reversal of a completed collection, when the port supports it."""
    if isinstance(transfer, ReversibleTransfer):
        unit.on_rollback(lambda: transfer.reverse_collect(source, amount))
