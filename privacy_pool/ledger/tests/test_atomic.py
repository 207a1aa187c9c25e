"""Tests for the undo journal and operation guard"""

import threading

import pytest

from ..adapters import InMemoryVault
from ..atomic import (
    GATE_RANK,
    LEDGER_RANK,
    OperationGuard,
    UnitOfWork,
    journal_collect,
    journal_send,
)
from ..exceptions import ReentrantCall
from ..interfaces import AssetTransfer
from .helpers import ALICE, BOB


class OneWayTransfer(AssetTransfer):
    def send(self, destination, amount):
        return True


class TestUnitOfWork:
    """Test undo journal replay"""

    def test_rollback_runs_newest_first(self):
        """Undo steps replay in reverse order"""
        unit = UnitOfWork("test")
        order = []
        unit.on_rollback(lambda: order.append(1))
        unit.on_rollback(lambda: order.append(2))
        unit.rollback()
        assert order == [2, 1]

    def test_commit_discards_journal(self):
        """Nothing replays after commit"""
        unit = UnitOfWork("test")
        order = []
        unit.on_rollback(lambda: order.append(1))
        unit.commit()
        unit.rollback()
        assert order == []

    def test_failing_undo_does_not_stop_rollback(self):
        """Later undo steps still run when one fails"""
        unit = UnitOfWork("test")
        order = []

        def broken():
            raise RuntimeError("boom")

        unit.on_rollback(lambda: order.append(1))
        unit.on_rollback(broken)
        unit.rollback()
        assert order == [1]


class TestTransferJournal:
    """Test compensation of individual transfers"""

    def test_reverses_only_own_send(self):
        """A rollback takes back its own send and leaves earlier ones alone"""
        vault = InMemoryVault()
        vault.send(ALICE, 7)

        unit = UnitOfWork("test")
        vault.send(ALICE, 5)
        journal_send(unit, vault, ALICE, 5)
        vault.send(BOB, 3)
        unit.rollback()

        assert vault.balance_of(ALICE) == 7
        assert vault.balance_of(BOB) == 3
        assert vault.sent == [(ALICE, 7), (BOB, 3)]

    def test_reverses_collection(self):
        vault = InMemoryVault({ALICE: 10})
        unit = UnitOfWork("test")
        vault.collect(ALICE, 4)
        journal_collect(unit, vault, ALICE, 4)
        unit.rollback()
        assert vault.balance_of(ALICE) == 10
        assert vault.collected == 0

    def test_one_way_port_not_journaled(self):
        """Ports without reversal register nothing"""
        unit = UnitOfWork("test")
        journal_send(unit, OneWayTransfer(), ALICE, 1)
        journal_collect(unit, OneWayTransfer(), ALICE, 1)
        assert unit._undo == []


class TestOperationGuard:
    """Test mutual exclusion and re-entrancy"""

    def test_rolls_back_on_error(self):
        """An exception replays the journal and propagates"""
        guard = OperationGuard("test")
        state = {"value": 0}
        with pytest.raises(ValueError):
            with guard.operation("op") as unit:
                state["value"] = 1
                unit.on_rollback(lambda: state.update(value=0))
                raise ValueError("fail")
        assert state["value"] == 0
        assert not guard.in_flight

    def test_commits_on_success(self):
        """A clean exit keeps the mutations"""
        guard = OperationGuard("test")
        state = {"value": 0}
        with guard.operation("op") as unit:
            state["value"] = 1
            unit.on_rollback(lambda: state.update(value=0))
        assert state["value"] == 1

    def test_reentrant_call_rejected(self):
        """A nested operation on the same thread raises"""
        guard = OperationGuard("test")
        with guard.operation("outer"):
            assert guard.in_flight
            with pytest.raises(ReentrantCall):
                with guard.operation("inner"):
                    pass
        assert not guard.in_flight

    def test_gate_may_enter_ledger(self):
        """A lower-rank guard may call into a higher-rank one"""
        gate = OperationGuard("gate", rank=GATE_RANK)
        ledger = OperationGuard("ledger", rank=LEDGER_RANK)
        with gate.operation("deposit"):
            with ledger.operation("deposit"):
                assert gate.in_flight and ledger.in_flight
        assert not gate.in_flight and not ledger.in_flight

    def test_ledger_may_not_enter_gate(self):
        """Out-of-rank nesting is rejected before any lock is taken"""
        gate = OperationGuard("gate", rank=GATE_RANK)
        ledger = OperationGuard("ledger", rank=LEDGER_RANK)
        with ledger.operation("withdraw"):
            with pytest.raises(ReentrantCall):
                with gate.operation("deposit"):
                    pass
            assert not gate.in_flight

    def test_ledgers_may_not_nest(self):
        first = OperationGuard("a")
        second = OperationGuard("b")
        with first.operation("withdraw"):
            with pytest.raises(ReentrantCall):
                with second.operation("withdraw"):
                    pass
        with second.operation("withdraw"):
            pass

    def test_other_threads_are_serialized(self):
        """Concurrent operations never overlap"""
        guard = OperationGuard("test")
        active = []
        overlaps = []

        def worker():
            for _ in range(50):
                with guard.operation("op"):
                    if active:
                        overlaps.append(True)
                    active.append(1)
                    active.pop()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert overlaps == []
