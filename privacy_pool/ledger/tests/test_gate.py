"""Tests for the access gate: eligibility, fees, limits and administration"""

import threading

import pytest

from ..adapters import InMemoryVault, StaticAttestationOracle, StaticBalances
from ..config import PERIOD_SECONDS
from ..exceptions import (
    CollaboratorError,
    ConfigurationError,
    DailyDepositLimitReached,
    DepositsDisabled,
    DuplicateCommitment,
    FeeTransferFailed,
    IncorrectValueSent,
    InsufficientGovernanceTokens,
    NotAllowedToDeposit,
    ReentrantCall,
    TransferFailed,
    Unauthorized,
    UnknownPool,
    ValidationError,
)
from ..gate import AccessGate
from ..interfaces import AttestationOracle
from ..pool import PoolLedger
from ..types import ZERO_ADDRESS, AssetKind
from ..verifiers import MockProofVerifier
from .helpers import (
    ALICE,
    BOB,
    CAROL,
    DENOMINATION,
    GATE,
    MANAGER,
    RECIPIENT,
    TREASURY,
    FakeClock,
    commitment,
    nullifier,
    withdraw_args,
)

FEE = DENOMINATION * 50 // 10_000


class BrokenOracle(AttestationOracle):
    def is_verified(self, address):
        raise RuntimeError("oracle offline")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def vault():
    return InMemoryVault()


@pytest.fixture
def gate(vault, clock):
    return AccessGate(
        GATE, MANAGER, vault, fee_bps=50, fee_recipient=TREASURY, clock=clock
    )


def make_ledger(vault, clock, **kwargs):
    return PoolLedger(
        DENOMINATION,
        MockProofVerifier(),
        vault,
        access_gate=GATE,
        height=4,
        clock=clock,
        **kwargs,
    )


@pytest.fixture
def ledger(gate, vault, clock):
    ledger = make_ledger(vault, clock)
    gate.register_pool(MANAGER, "0.1", ledger, deposit_limit=2)
    return ledger


def pay(gate, pool_id, index, sender=ALICE):
    return gate.deposit(
        pool_id, commitment(index), sender=sender, value=gate.required_value(pool_id)
    )


class TestFees:
    """Test fee arithmetic and forwarding"""

    def test_fee_from_basis_points(self, gate, ledger):
        assert gate.compute_fee("0.1") == FEE
        assert gate.required_value("0.1") == DENOMINATION + FEE

    def test_deposit_forwards_fee(self, gate, ledger, vault):
        record = pay(gate, "0.1", 0)
        assert record.origin == ALICE
        assert vault.balance_of(TREASURY) == FEE
        assert ledger.has_commitment(commitment(0))
        assert ledger.balance == DENOMINATION

    def test_incorrect_value(self, gate, ledger, vault):
        with pytest.raises(IncorrectValueSent):
            gate.deposit("0.1", commitment(0), sender=ALICE, value=DENOMINATION)
        assert vault.balance_of(TREASURY) == 0
        assert ledger.commitment_count() == 0

    def test_zero_fee(self, gate, ledger, vault):
        gate.set_fee(MANAGER, 0)
        assert gate.required_value("0.1") == DENOMINATION
        pay(gate, "0.1", 0)
        assert vault.sent == []

    def test_fee_transfer_failure_rolls_back(self, gate, ledger, vault):
        vault.fail_for(TREASURY)
        with pytest.raises(FeeTransferFailed):
            pay(gate, "0.1", 0)
        assert ledger.commitment_count() == 0
        assert gate.deposit_count("0.1") == 0

    def test_missing_fee_recipient(self, vault, clock):
        gate = AccessGate(GATE, MANAGER, vault, fee_bps=10, clock=clock)
        gate.register_pool(MANAGER, "0.1", make_ledger(vault, clock))
        with pytest.raises(FeeTransferFailed):
            pay(gate, "0.1", 0)

    def test_ledger_rejection_happens_before_fee(self, gate, ledger, vault):
        pay(gate, "0.1", 0)
        with pytest.raises(DuplicateCommitment):
            pay(gate, "0.1", 0, sender=BOB)
        assert vault.balance_of(TREASURY) == FEE
        assert gate.deposit_count("0.1") == 1


class TestLimits:
    """Test per-period deposit caps"""

    def test_pool_wide_cap_and_reset(self, gate, ledger, clock):
        pay(gate, "0.1", 0)
        pay(gate, "0.1", 1, sender=BOB)
        assert gate.deposits_remaining("0.1") == 0
        with pytest.raises(DailyDepositLimitReached):
            pay(gate, "0.1", 2, sender=CAROL)

        clock.advance(PERIOD_SECONDS)
        assert gate.deposit_count("0.1") == 0
        pay(gate, "0.1", 2, sender=CAROL)
        assert gate.deposits_remaining("0.1") == 1

    def test_per_address_cap(self, gate, vault, clock):
        gate.register_pool(
            MANAGER, "1", make_ledger(vault, clock), deposit_limit=1, per_address_limit=True
        )
        pay(gate, "1", 0, sender=ALICE)
        with pytest.raises(DailyDepositLimitReached):
            pay(gate, "1", 1, sender=ALICE)
        pay(gate, "1", 1, sender=BOB)
        assert gate.deposit_count("1", ALICE) == 1
        assert gate.deposits_remaining("1", CAROL) == 1
        with pytest.raises(ValidationError):
            gate.deposit_count("1")

        clock.advance(PERIOD_SECONDS)
        assert gate.deposit_count("1", ALICE) == 0
        pay(gate, "1", 2, sender=ALICE)
        assert gate.deposits_remaining("1", ALICE) == 0

    def test_past_periods_are_pruned(self, gate, ledger, clock):
        pay(gate, "0.1", 0)
        clock.advance(3 * PERIOD_SECONDS)
        pay(gate, "0.1", 1)
        assert list(gate._counters) == [(gate.current_period(), "0.1")]
        assert gate.deposit_count("0.1") == 1

    def test_unlimited(self, gate, vault, clock):
        gate.register_pool(MANAGER, "free", make_ledger(vault, clock))
        for i in range(5):
            pay(gate, "free", i)
        assert gate.deposits_remaining("free") is None

    def test_limit_can_be_lowered(self, gate, ledger):
        gate.set_deposit_limit(MANAGER, "0.1", 0)
        with pytest.raises(DailyDepositLimitReached):
            pay(gate, "0.1", 0)


class TestEligibility:
    """Test gated tiers, allow-list and attestation"""

    @pytest.fixture
    def gated(self, gate, vault, clock):
        gate.register_pool(MANAGER, "kyc", make_ledger(vault, clock), gated=True)
        return "kyc"

    def test_ineligible_rejected(self, gate, gated):
        assert not gate.can_deposit(ALICE, gated)
        with pytest.raises(NotAllowedToDeposit):
            pay(gate, gated, 0)

    def test_allow_list(self, gate, gated):
        gate.set_allow_list(MANAGER, ALICE, True, "manual review")
        assert gate.allow_list_note(ALICE) == "manual review"
        assert gate.can_deposit(ALICE, gated)
        pay(gate, gated, 0)

        gate.set_allow_list(MANAGER, ALICE, False, "revoked")
        with pytest.raises(NotAllowedToDeposit):
            pay(gate, gated, 1)

    def test_batch_allow_list(self, gate, gated):
        gate.set_allow_list_batch(MANAGER, [ALICE, BOB], True)
        assert gate.is_allow_listed(ALICE) and gate.is_allow_listed(BOB)
        with pytest.raises(ValidationError):
            gate.set_allow_list_batch(MANAGER, [CAROL], True, ["a", "b"])
        assert not gate.is_allow_listed(CAROL)

    def test_attestation(self, gate, gated):
        gate.set_attestation_oracle(MANAGER, StaticAttestationOracle([BOB]))
        pay(gate, gated, 0, sender=BOB)
        with pytest.raises(NotAllowedToDeposit):
            pay(gate, gated, 1, sender=ALICE)

    def test_oracle_failure(self, gate, gated):
        gate.set_attestation_oracle(MANAGER, BrokenOracle())
        with pytest.raises(CollaboratorError):
            pay(gate, gated, 0)

    def test_ungated_ignores_allow_list(self, gate, ledger):
        assert gate.can_deposit(CAROL, "0.1")


class TestTokenRequirement:
    """Test governance-token thresholds"""

    def test_requirement_enforced(self, gate, vault, clock):
        balances = StaticBalances({ALICE: 50})
        gate.set_governance_token(MANAGER, balances)
        gate.register_pool(
            MANAGER, "gov", make_ledger(vault, clock), token_requirement=100
        )
        with pytest.raises(InsufficientGovernanceTokens):
            pay(gate, "gov", 0)
        balances.set_balance(ALICE, 100)
        pay(gate, "gov", 0)

    def test_vacuous_without_token(self, gate, vault, clock):
        gate.register_pool(
            MANAGER, "gov", make_ledger(vault, clock), token_requirement=100
        )
        pay(gate, "gov", 0)

    def test_disabled_checked_first(self, gate, vault, clock):
        gate.set_governance_token(MANAGER, StaticBalances())
        gate.register_pool(
            MANAGER,
            "off",
            make_ledger(vault, clock),
            enabled=False,
            gated=True,
            token_requirement=1,
        )
        with pytest.raises(DepositsDisabled):
            pay(gate, "off", 0)


class TestTokenPools:
    """Test routing into token-asset pools"""

    def test_depositor_pays_only_fee(self, gate, vault, clock):
        tokens = InMemoryVault({ALICE: DENOMINATION})
        ledger = make_ledger(tokens, clock, asset=AssetKind.TOKEN, refund_transfer=vault)
        gate.register_pool(MANAGER, "tok", ledger)

        assert gate.required_value("tok") == FEE
        pay(gate, "tok", 0)
        assert tokens.balance_of(ALICE) == 0
        assert ledger.balance == DENOMINATION
        assert vault.balance_of(TREASURY) == FEE

    def test_collect_failure_refunds_fee(self, gate, vault, clock):
        tokens = InMemoryVault()
        ledger = make_ledger(tokens, clock, asset=AssetKind.TOKEN, refund_transfer=vault)
        gate.register_pool(MANAGER, "tok", ledger)

        with pytest.raises(TransferFailed):
            pay(gate, "tok", 0)
        assert vault.balance_of(TREASURY) == 0
        assert gate.deposit_count("tok") == 0
        assert ledger.next_index == 0


class TestAdministration:
    """Test manager-only mutations"""

    def test_non_manager_rejected(self, gate, ledger, vault, clock):
        calls = [
            lambda: gate.register_pool(ALICE, "x", make_ledger(vault, clock)),
            lambda: gate.set_pool_enabled(ALICE, "0.1", False),
            lambda: gate.set_deposit_limit(ALICE, "0.1", 5),
            lambda: gate.set_token_requirement(ALICE, "0.1", 5),
            lambda: gate.set_fee(ALICE, 10),
            lambda: gate.set_fee_recipient(ALICE, BOB),
            lambda: gate.set_attestation_oracle(ALICE, None),
            lambda: gate.set_governance_token(ALICE, None),
            lambda: gate.set_allow_list(ALICE, BOB, True),
        ]
        for call in calls:
            with pytest.raises(Unauthorized):
                call()
        assert gate.fee_bps == 50
        assert gate.policy("0.1").enabled

    def test_disable_pool(self, gate, ledger):
        gate.set_pool_enabled(MANAGER, "0.1", False)
        with pytest.raises(DepositsDisabled):
            pay(gate, "0.1", 0)

    def test_fee_bounds(self, gate):
        with pytest.raises(ValidationError):
            gate.set_fee(MANAGER, 10_001)
        with pytest.raises(ValidationError):
            gate.set_fee(MANAGER, -1)

    def test_fee_recipient_not_zero(self, gate, vault):
        with pytest.raises(ValidationError):
            gate.set_fee_recipient(MANAGER, ZERO_ADDRESS)
        gate.set_fee_recipient(MANAGER, BOB)
        assert gate.fee_recipient == BOB
        with pytest.raises(ValidationError):
            AccessGate(GATE, MANAGER, vault, fee_recipient=ZERO_ADDRESS)

    def test_register_checks(self, gate, ledger, vault, clock):
        with pytest.raises(ConfigurationError):
            gate.register_pool(MANAGER, "0.1", make_ledger(vault, clock))
        foreign = PoolLedger(DENOMINATION, MockProofVerifier(), vault, access_gate=BOB)
        with pytest.raises(ConfigurationError):
            gate.register_pool(MANAGER, "foreign", foreign)
        assert gate.pool_ids() == ["0.1"]

    def test_unknown_pool(self, gate):
        with pytest.raises(UnknownPool):
            pay(gate, "nope", 0)


class SignallingBalances(StaticBalances):
    """Governance balances that report when the gate consults them."""

    def __init__(self, consulted):
        super().__init__()
        self.consulted = consulted

    def balance_of(self, address):
        self.consulted.set()
        return 1


class TestConcurrency:
    """Test gate and ledger operations racing across threads"""

    def test_withdraw_callback_into_gate_does_not_deadlock(self, gate, ledger, vault):
        pay(gate, "0.1", 0)
        in_callback = threading.Event()
        gate_entered = threading.Event()
        gate.set_governance_token(MANAGER, SignallingBalances(gate_entered))
        gate.set_token_requirement(MANAGER, "0.1", 1)
        outcomes = {}

        def on_send(destination, amount):
            if destination != RECIPIENT:
                return
            in_callback.set()
            gate_entered.wait(timeout=2)
            try:
                pay(gate, "0.1", 5, sender=BOB)
            except ReentrantCall as exc:
                outcomes["callback"] = exc

        def withdraw():
            try:
                outcomes["withdraw"] = ledger.withdraw(*withdraw_args(ledger))
            except Exception as exc:  # noqa: BLE001
                outcomes["withdraw"] = exc

        def deposit():
            in_callback.wait(timeout=2)
            try:
                outcomes["deposit"] = pay(gate, "0.1", 1)
            except Exception as exc:  # noqa: BLE001
                outcomes["deposit"] = exc

        vault.on_send = on_send
        threads = [threading.Thread(target=withdraw), threading.Thread(target=deposit)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert not any(thread.is_alive() for thread in threads)
        assert isinstance(outcomes["callback"], ReentrantCall)
        assert outcomes["withdraw"].nullifier_hash == nullifier(0)
        assert outcomes["deposit"].commitment == commitment(1)
        assert ledger.is_spent(nullifier(0))
        assert ledger.commitment_count() == 2
        assert not ledger.has_commitment(commitment(5))
