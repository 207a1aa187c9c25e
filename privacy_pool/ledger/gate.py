"""
Access gate: eligibility, fees and rate limits in front of the pool ledgers.

The gate is the only address a pool ledger accepts deposits from. A single
parametric ``deposit`` serves every registered pool; tier rules are per-pool
policy flags:

- ``gated``: depositor must hold an attestation or be allow-listed
- ``per_address_limit``: the period cap counts per depositor instead of
  per pool
- ``token_requirement``: minimum governance-token balance (ignored when no
  governance token is configured)

Deposit checks run in a fixed order:

    DepositsDisabled -> InsufficientGovernanceTokens -> NotAllowedToDeposit
    -> DailyDepositLimitReached -> IncorrectValueSent -> (ledger checks)
    -> fee transfer -> counter increment -> ledger deposit

Administrative mutations require the manager role.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .atomic import GATE_RANK, OperationGuard, UnitOfWork, journal_send
from .config import FEE_DENOMINATOR, MAX_FEE_BPS, PERIOD_SECONDS
from .exceptions import (
    CollaboratorError,
    ConfigurationError,
    DailyDepositLimitReached,
    DepositsDisabled,
    FeeTransferFailed,
    IncorrectValueSent,
    InsufficientGovernanceTokens,
    NotAllowedToDeposit,
    Unauthorized,
    UnknownPool,
    ValidationError,
)
from .interfaces import AssetTransfer, AttestationOracle, BalanceSource
from .pool import PoolLedger
from .types import (
    AssetKind,
    DepositRecord,
    IdentifierLike,
    is_zero_address,
    normalize_address,
    short_hex,
)

logger = logging.getLogger(__name__)

CounterKey = Tuple[int, ...]


@dataclass
class PoolPolicy:
    """
    Per-pool deposit rules.

    Attributes:
        pool_id: Identifier used by depositors
        ledger: Pool ledger receiving the deposits
        enabled: Whether deposits are accepted
        deposit_limit: Deposits allowed per period (None = unlimited)
        gated: Require attestation or allow-list membership
        per_address_limit: Count the cap per depositor instead of per pool
        token_requirement: Minimum governance-token balance (0 = none)
    """

    pool_id: str
    ledger: PoolLedger
    enabled: bool = True
    deposit_limit: Optional[int] = None
    gated: bool = False
    per_address_limit: bool = False
    token_requirement: int = 0


@dataclass(frozen=True)
class EligibilityRecord:
    allowed: bool
    note: str = ""


def _require_count(value: Optional[int], label: str) -> Optional[int]:
    if value is None:
        return None
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ValidationError(f"{label} must be a non-negative int")
    return value


def _ledger_value(policy: PoolPolicy) -> int:
    """Value the ledger itself must receive; token pools collect their own."""
    if policy.ledger.asset is AssetKind.NATIVE:
        return policy.ledger.denomination
    return 0


class AccessGate:
    """
    Router deciding who may deposit into which pool.

    Usage:
        gate = AccessGate(address=GATE, manager=ADMIN, fee_transfer=vault,
                          fee_bps=50, fee_recipient=TREASURY)
        gate.register_pool(ADMIN, "0.1", ledger, deposit_limit=5, gated=True)
        gate.set_allow_list(ADMIN, alice, True, "kyc ok")
        gate.deposit("0.1", commitment, sender=alice,
                     value=gate.required_value("0.1"))
    """

    def __init__(
        self,
        address: str,
        manager: str,
        fee_transfer: AssetTransfer,
        *,
        fee_bps: int = 0,
        fee_recipient: Optional[str] = None,
        attestation_oracle: Optional[AttestationOracle] = None,
        governance_token: Optional[BalanceSource] = None,
        clock: Callable[[], float] = time.time,
        period_seconds: int = PERIOD_SECONDS,
    ) -> None:
        if not isinstance(fee_transfer, AssetTransfer):
            raise ConfigurationError("fee_transfer must implement AssetTransfer")
        if not isinstance(period_seconds, int) or period_seconds <= 0:
            raise ConfigurationError("period_seconds must be a positive int")

        self.address = normalize_address(address)
        self._manager = normalize_address(manager)
        self._fee_transfer = fee_transfer
        self._fee_bps = self._validate_fee_bps(fee_bps)
        self._fee_recipient = (
            self._validate_fee_recipient(fee_recipient)
            if fee_recipient is not None
            else None
        )
        self._attestation_oracle = attestation_oracle
        self._governance_token = governance_token
        self._clock = clock
        self._period_seconds = period_seconds

        self._pools: Dict[str, PoolPolicy] = {}
        self._allow_list: Dict[str, EligibilityRecord] = {}
        self._counters: Dict[CounterKey, int] = {}
        self._guard = OperationGuard("access_gate", rank=GATE_RANK)

    # ------------------------------------------------------------------
    # Configuration reads
    # ------------------------------------------------------------------

    @property
    def manager(self) -> str:
        return self._manager

    @property
    def fee_bps(self) -> int:
        return self._fee_bps

    @property
    def fee_recipient(self) -> Optional[str]:
        return self._fee_recipient

    @property
    def attestation_oracle(self) -> Optional[AttestationOracle]:
        return self._attestation_oracle

    def pool_ids(self) -> List[str]:
        return list(self._pools)

    def policy(self, pool_id: str) -> PoolPolicy:
        """Copy of the pool's current policy."""
        return replace(self._policy(pool_id))

    def ledger(self, pool_id: str) -> PoolLedger:
        return self._policy(pool_id).ledger

    def allow_list_entry(self, address: str) -> Optional[EligibilityRecord]:
        return self._allow_list.get(normalize_address(address))

    def allow_list_note(self, address: str) -> str:
        entry = self.allow_list_entry(address)
        return entry.note if entry is not None else ""

    def is_allow_listed(self, address: str) -> bool:
        entry = self.allow_list_entry(address)
        return entry is not None and entry.allowed

    def current_period(self) -> int:
        return int(self._clock()) // self._period_seconds

    # ------------------------------------------------------------------
    # Fees and limits
    # ------------------------------------------------------------------

    def compute_fee(self, pool_id: str) -> int:
        denomination = self._policy(pool_id).ledger.denomination
        return denomination * self._fee_bps // FEE_DENOMINATOR

    def required_value(self, pool_id: str) -> int:
        """Exact value a deposit into ``pool_id`` must attach."""
        return _ledger_value(self._policy(pool_id)) + self.compute_fee(pool_id)

    def deposit_count(self, pool_id: str, address: Optional[str] = None) -> int:
        policy = self._policy(pool_id)
        if policy.per_address_limit and address is None:
            raise ValidationError(f"pool {pool_id!r} counts deposits per address")
        return self._counters.get(self._counter_key(policy, address), 0)

    def deposits_remaining(
        self, pool_id: str, address: Optional[str] = None
    ) -> Optional[int]:
        """Deposits left in the current period, None when unlimited."""
        policy = self._policy(pool_id)
        if policy.deposit_limit is None:
            return None
        return max(policy.deposit_limit - self.deposit_count(pool_id, address), 0)

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------

    def can_deposit(self, address: str, pool_id: str) -> bool:
        """
        Whether ``address`` passes the pool's token and identity gates.

        Gated pools accept attested or allow-listed addresses. Ungated pools
        only apply the governance-token requirement, if any.
        """
        policy = self._policy(pool_id)
        address = normalize_address(address)
        if not self._meets_token_requirement(address, policy):
            return False
        if policy.gated:
            return self._is_eligible(address)
        return True

    def _is_eligible(self, address: str) -> bool:
        if self.is_allow_listed(address):
            return True
        if self._attestation_oracle is None:
            return False
        try:
            return bool(self._attestation_oracle.is_verified(address))
        except Exception as exc:  # noqa: BLE001
            raise CollaboratorError(f"attestation lookup failed: {exc}") from exc

    def _meets_token_requirement(self, address: str, policy: PoolPolicy) -> bool:
        if self._governance_token is None or policy.token_requirement == 0:
            return True
        try:
            balance = int(self._governance_token.balance_of(address))
        except Exception as exc:  # noqa: BLE001
            raise CollaboratorError(f"governance balance lookup failed: {exc}") from exc
        return balance >= policy.token_requirement

    # ------------------------------------------------------------------
    # Deposit
    # ------------------------------------------------------------------

    def deposit(
        self, pool_id: str, commitment: IdentifierLike, *, sender: str, value: int
    ) -> DepositRecord:
        """
        Route a deposit into ``pool_id``.

        Args:
            pool_id: Registered pool identifier
            commitment: Leaf to insert
            sender: Depositor address
            value: Attached value; must equal ``required_value(pool_id)``

        Returns:
            DepositRecord emitted by the pool ledger

        Raises:
            DepositsDisabled, InsufficientGovernanceTokens,
            NotAllowedToDeposit, DailyDepositLimitReached,
            IncorrectValueSent, FeeTransferFailed, and any pool ledger
            deposit error
        """
        with self._guard.operation("deposit") as unit:
            policy = self._policy(pool_id)
            sender = normalize_address(sender)

            if not policy.enabled:
                raise DepositsDisabled(f"Deposits to pool {pool_id!r} are disabled")
            if not self._meets_token_requirement(sender, policy):
                raise InsufficientGovernanceTokens(
                    f"Pool {pool_id!r} requires {policy.token_requirement} governance tokens"
                )
            if policy.gated and not self._is_eligible(sender):
                raise NotAllowedToDeposit(f"{sender} may not deposit into {pool_id!r}")

            key = self._counter_key(policy, sender)
            count = self._counters.get(key, 0)
            if policy.deposit_limit is not None and count >= policy.deposit_limit:
                raise DailyDepositLimitReached(
                    f"Deposit limit of {policy.deposit_limit} reached for this period"
                )

            ledger_value = _ledger_value(policy)
            fee = self.compute_fee(pool_id)
            if value != ledger_value + fee:
                raise IncorrectValueSent(
                    f"Expected {ledger_value + fee} (deposit {ledger_value} + fee {fee}), got {value}"
                )

            policy.ledger.check_deposit(commitment, ledger_value)

            if fee > 0:
                self._forward_fee(unit, fee)

            self._prune_counters(key[0])
            self._counters[key] = count + 1
            unit.on_rollback(lambda: self._restore_counter(key, count))

            record = policy.ledger.deposit(
                commitment, caller=self.address, value=ledger_value, origin=sender
            )

        logger.info(
            "access gate: %s deposited %s into %s (fee %d)",
            sender,
            short_hex(record.commitment),
            pool_id,
            fee,
        )
        return record

    def _forward_fee(self, unit: UnitOfWork, fee: int) -> None:
        if self._fee_recipient is None:
            raise FeeTransferFailed("No fee recipient configured")
        try:
            sent = bool(self._fee_transfer.send(self._fee_recipient, fee))
        except Exception as exc:  # noqa: BLE001
            raise FeeTransferFailed(f"Fee transfer raised: {exc}") from exc
        if not sent:
            raise FeeTransferFailed("Fee transfer failed")
        journal_send(unit, self._fee_transfer, self._fee_recipient, fee)

    def _prune_counters(self, period: int) -> None:
        for stale in [k for k in self._counters if k[0] < period]:
            del self._counters[stale]

    def _restore_counter(self, key: CounterKey, count: int) -> None:
        if count == 0:
            self._counters.pop(key, None)
        else:
            self._counters[key] = count

    def _counter_key(self, policy: PoolPolicy, address: Optional[str]) -> CounterKey:
        period = self.current_period()
        if policy.per_address_limit:
            return (period, policy.pool_id, normalize_address(address))
        return (period, policy.pool_id)

    def _policy(self, pool_id: str) -> PoolPolicy:
        try:
            return self._pools[pool_id]
        except KeyError:
            raise UnknownPool(f"Unknown pool: {pool_id!r}") from None

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def _only_manager(self, caller: str) -> None:
        if normalize_address(caller) != self._manager:
            raise Unauthorized(f"{caller} does not hold the manager role")

    @staticmethod
    def _validate_fee_bps(fee_bps: int) -> int:
        if not isinstance(fee_bps, int) or isinstance(fee_bps, bool):
            raise ValidationError("fee_bps must be int")
        if not 0 <= fee_bps <= MAX_FEE_BPS:
            raise ValidationError(f"fee_bps must be within [0, {MAX_FEE_BPS}]")
        return fee_bps

    @staticmethod
    def _validate_fee_recipient(recipient: str) -> str:
        if is_zero_address(recipient):
            raise ValidationError("Fee recipient cannot be the zero address")
        return normalize_address(recipient)

    def register_pool(
        self,
        caller: str,
        pool_id: str,
        ledger: PoolLedger,
        *,
        enabled: bool = True,
        deposit_limit: Optional[int] = None,
        gated: bool = False,
        per_address_limit: bool = False,
        token_requirement: int = 0,
    ) -> None:
        with self._guard.operation("register_pool") as unit:
            self._only_manager(caller)
            if not isinstance(pool_id, str) or not pool_id:
                raise ConfigurationError("pool_id must be a non-empty string")
            if pool_id in self._pools:
                raise ConfigurationError(f"Pool already registered: {pool_id!r}")
            if ledger.access_gate != self.address:
                raise ConfigurationError(
                    f"Pool {pool_id!r} is bound to another access gate"
                )

            self._pools[pool_id] = PoolPolicy(
                pool_id=pool_id,
                ledger=ledger,
                enabled=bool(enabled),
                deposit_limit=_require_count(deposit_limit, "deposit_limit"),
                gated=bool(gated),
                per_address_limit=bool(per_address_limit),
                token_requirement=_require_count(token_requirement, "token_requirement"),
            )
            unit.on_rollback(lambda: self._pools.pop(pool_id, None))
        logger.info("access gate: registered pool %s", pool_id)

    def _update_policy(self, caller: str, pool_id: str, label: str, **changes) -> None:
        with self._guard.operation(label):
            self._only_manager(caller)
            policy = self._policy(pool_id)
            for name, value in changes.items():
                setattr(policy, name, value)
        logger.info("access gate: %s %s %s", label, pool_id, changes)

    def set_pool_enabled(self, caller: str, pool_id: str, enabled: bool) -> None:
        self._update_policy(caller, pool_id, "set_pool_enabled", enabled=bool(enabled))

    def set_deposit_limit(
        self, caller: str, pool_id: str, limit: Optional[int]
    ) -> None:
        limit = _require_count(limit, "limit")
        self._update_policy(caller, pool_id, "set_deposit_limit", deposit_limit=limit)

    def set_token_requirement(self, caller: str, pool_id: str, amount: int) -> None:
        amount = _require_count(amount, "amount")
        self._update_policy(
            caller, pool_id, "set_token_requirement", token_requirement=amount
        )

    def set_fee(self, caller: str, fee_bps: int) -> None:
        with self._guard.operation("set_fee"):
            self._only_manager(caller)
            self._fee_bps = self._validate_fee_bps(fee_bps)
        logger.info("access gate: fee set to %d bps", fee_bps)

    def set_fee_recipient(self, caller: str, recipient: str) -> None:
        with self._guard.operation("set_fee_recipient"):
            self._only_manager(caller)
            self._fee_recipient = self._validate_fee_recipient(recipient)
        logger.info("access gate: fee recipient set to %s", self._fee_recipient)

    def set_attestation_oracle(
        self, caller: str, oracle: Optional[AttestationOracle]
    ) -> None:
        with self._guard.operation("set_attestation_oracle"):
            self._only_manager(caller)
            if oracle is not None and not isinstance(oracle, AttestationOracle):
                raise ConfigurationError("oracle must implement AttestationOracle")
            self._attestation_oracle = oracle
        logger.info("access gate: attestation oracle replaced")

    def set_governance_token(
        self, caller: str, token: Optional[BalanceSource]
    ) -> None:
        with self._guard.operation("set_governance_token"):
            self._only_manager(caller)
            if token is not None and not isinstance(token, BalanceSource):
                raise ConfigurationError("token must implement BalanceSource")
            self._governance_token = token
        logger.info("access gate: governance token replaced")

    def set_allow_list(
        self, caller: str, address: str, allowed: bool, note: str = ""
    ) -> None:
        self.set_allow_list_batch(caller, [address], allowed, [note])

    def set_allow_list_batch(
        self,
        caller: str,
        addresses: Sequence[str],
        allowed: bool,
        notes: Optional[Sequence[str]] = None,
    ) -> None:
        """
        Set the allow-list flag for many addresses at once.

        ``notes`` must be absent or match ``addresses`` in length.
        """
        with self._guard.operation("set_allow_list") as unit:
            self._only_manager(caller)
            if notes is None:
                notes = [""] * len(addresses)
            if len(notes) != len(addresses):
                raise ValidationError("addresses and notes must have the same length")

            for address, note in zip(addresses, notes):
                key = normalize_address(address)
                previous = self._allow_list.get(key)
                self._allow_list[key] = EligibilityRecord(bool(allowed), str(note))
                unit.on_rollback(lambda k=key, p=previous: self._restore_entry(k, p))
        logger.info(
            "access gate: allow-list %s for %d address(es)",
            "granted" if allowed else "revoked",
            len(addresses),
        )

    def _restore_entry(self, key: str, previous: Optional[EligibilityRecord]) -> None:
        if previous is None:
            self._allow_list.pop(key, None)
        else:
            self._allow_list[key] = previous
