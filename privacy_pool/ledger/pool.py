"""
Fixed-denomination pool ledger.

A pool owns one anonymity-set tree, the append-only commitment log with its
membership set, and the nullifier set. Deposits append a commitment;
withdrawals consume a nullifier after the proof verifier accepts the
public inputs ``[root, nullifier_hash, recipient, relayer, fee, refund]``.

Nullifiers are marked spent before any value leaves custody. A failed
transfer aborts the withdrawal and the unit of work undoes every mutation,
the spent marking and the transfers this withdrawal already made included.

State machines:
    nullifier:   UNSPENT -> SPENT               (terminal)
    commitment:  UNUSED  -> INSERTED(leaf_index) (terminal)
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, List, Optional, Sequence, Set, Union

from .atomic import LEDGER_RANK, OperationGuard, UnitOfWork, journal_collect, journal_send
from .config import DEFAULT_TREE_HEIGHT, ROOT_HISTORY_SIZE
from .exceptions import (
    AlreadySpent,
    ConfigurationError,
    DuplicateCommitment,
    FeeExceedsDenomination,
    InsufficientPoolBalance,
    InvalidProof,
    InvalidRange,
    NonZeroAttachedValue,
    NonZeroRefund,
    NotAccessGate,
    SerializationError,
    TransferFailed,
    TreeFull,
    UnknownRoot,
    ValidationError,
    WrongValue,
)
from .interfaces import AssetTransfer, ProofVerifier, TokenTransfer
from .merkle import AnonymitySetTree, Hasher, hash_left_right
from .types import (
    AssetKind,
    DepositRecord,
    Groth16Proof,
    IdentifierLike,
    WithdrawalRecord,
    address_to_int,
    normalize_address,
    short_hex,
    to_field_element,
    to_uint256,
)

logger = logging.getLogger(__name__)


def _require_amount(value: int, label: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{label} must be int")
    if value < 0:
        raise ValidationError(f"{label} must be non-negative")
    return value


class PoolLedger:
    """
    Deposit/withdraw ledger for one fixed-denomination pool.

    Usage:
        ledger = PoolLedger(
            denomination=10**17,
            verifier=verifier,
            transfer=vault,
            access_gate=gate.address,
        )
        record = ledger.deposit(commitment, caller=gate.address,
                                value=10**17, origin=depositor)
        ledger.withdraw(proof, root, nullifier_hash, recipient, relayer, fee)
    """

    def __init__(
        self,
        denomination: int,
        verifier: ProofVerifier,
        transfer: AssetTransfer,
        *,
        access_gate: str,
        asset: AssetKind = AssetKind.NATIVE,
        refund_transfer: Optional[AssetTransfer] = None,
        height: int = DEFAULT_TREE_HEIGHT,
        root_history_size: int = ROOT_HISTORY_SIZE,
        hasher: Hasher = hash_left_right,
        clock: Callable[[], float] = time.time,
        name: str = "pool",
    ) -> None:
        if not isinstance(denomination, int) or denomination <= 0:
            raise ConfigurationError("denomination should be greater than 0")
        if not isinstance(verifier, ProofVerifier):
            raise ConfigurationError("verifier must implement ProofVerifier")
        if not isinstance(transfer, AssetTransfer):
            raise ConfigurationError("transfer must implement AssetTransfer")
        if asset is AssetKind.TOKEN:
            if not isinstance(transfer, TokenTransfer):
                raise ConfigurationError("token pools need a TokenTransfer")
            if refund_transfer is None:
                raise ConfigurationError("token pools need a refund transfer")

        self._denomination = denomination
        self._verifier = verifier
        self._transfer = transfer
        self._refund_transfer = refund_transfer
        self._asset = asset
        self._access_gate = normalize_address(access_gate)
        self._clock = clock
        self.name = name

        self._tree = AnonymitySetTree(height, root_history_size, hasher)
        self._commitment_log: List[int] = []
        self._commitments: Set[int] = set()
        self._nullifier_hashes: Set[int] = set()
        self._balance = 0

        self.deposits: List[DepositRecord] = []
        self.withdrawals: List[WithdrawalRecord] = []

        self._guard = OperationGuard(name, rank=LEDGER_RANK)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def denomination(self) -> int:
        return self._denomination

    @property
    def asset(self) -> AssetKind:
        return self._asset

    @property
    def access_gate(self) -> str:
        return self._access_gate

    @property
    def balance(self) -> int:
        """Value currently held in custody."""
        return self._balance

    @property
    def height(self) -> int:
        return self._tree.height

    @property
    def capacity(self) -> int:
        return self._tree.capacity

    @property
    def next_index(self) -> int:
        return self._tree.next_index

    @property
    def last_root(self) -> int:
        return self._tree.last_root

    @property
    def in_flight(self) -> bool:
        return self._guard.in_flight

    def is_known_root(self, root: IdentifierLike) -> bool:
        return self._tree.is_known_root(root)

    def known_roots(self) -> List[int]:
        return self._tree.known_roots()

    # ------------------------------------------------------------------
    # Deposit
    # ------------------------------------------------------------------

    def check_deposit(self, commitment: IdentifierLike, value: int) -> int:
        """
        Run the deposit preconditions without mutating anything.

        Returns:
            The commitment as a field element

        Raises:
            DuplicateCommitment, WrongValue, NonZeroAttachedValue, TreeFull
        """
        commitment_value = to_field_element(commitment, "commitment")
        if commitment_value in self._commitments:
            raise DuplicateCommitment("Commitment is already in the anonymity set")

        _require_amount(value, "value")
        if self._asset is AssetKind.NATIVE:
            if value != self._denomination:
                raise WrongValue(
                    "Attached value must equal the pool denomination"
                )
        elif value != 0:
            raise NonZeroAttachedValue(
                "Token pools take no attached value on deposit"
            )

        if self._tree.is_full:
            raise TreeFull("Anonymity set is full; no further deposits are possible")
        return commitment_value

    def deposit(
        self,
        commitment: IdentifierLike,
        *,
        caller: str,
        value: int,
        origin: str,
    ) -> DepositRecord:
        """
        Insert a commitment into the anonymity set.

        Args:
            commitment: Leaf to insert (field element)
            caller: Address invoking the ledger; must be the access gate
            value: Value attached to the call
            origin: Address that initiated the deposit

        Returns:
            DepositRecord for the insertion

        Raises:
            NotAccessGate: If caller is not the bound access gate
            DuplicateCommitment: If the commitment was already inserted
            WrongValue: If a native pool receives anything but the denomination
            TreeFull: If the anonymity set is exhausted
            TransferFailed: If a token pool cannot collect the denomination
        """
        with self._guard.operation("deposit") as unit:
            if normalize_address(caller) != self._access_gate:
                raise NotAccessGate("Deposits must go through the access gate")
            depositor = normalize_address(origin)
            commitment_value = self.check_deposit(commitment, value)

            tree_state = self._tree.snapshot()
            unit.on_rollback(lambda: self._tree.restore(tree_state))
            leaf_index = self._tree.insert(commitment_value)
            self._record_commitment(unit, commitment_value)

            if self._asset is AssetKind.TOKEN:
                if not self._collect(unit, depositor, self._denomination):
                    raise TransferFailed("Could not collect the deposit tokens")
            self._credit(unit, self._denomination)

            record = DepositRecord(
                origin=depositor,
                commitment=commitment_value,
                leaf_index=leaf_index,
                timestamp=int(self._clock()),
            )
            self.deposits.append(record)
            unit.on_rollback(self.deposits.pop)

        logger.info(
            "%s: deposit %s at leaf %d", self.name, short_hex(commitment_value), leaf_index
        )
        return record

    def _record_commitment(self, unit: UnitOfWork, commitment: int) -> None:
        self._commitment_log.append(commitment)
        unit.on_rollback(self._commitment_log.pop)
        self._commitments.add(commitment)
        unit.on_rollback(lambda: self._commitments.discard(commitment))

    def _credit(self, unit: UnitOfWork, amount: int) -> None:
        previous = self._balance
        self._balance = previous + amount
        unit.on_rollback(lambda: setattr(self, "_balance", previous))

    def _collect(self, unit: UnitOfWork, source: str, amount: int) -> bool:
        try:
            collected = bool(self._transfer.collect(source, amount))
        except Exception as exc:  # noqa: BLE001
            raise TransferFailed(f"token collection raised: {exc}") from exc
        if collected:
            journal_collect(unit, self._transfer, source, amount)
        return collected

    # ------------------------------------------------------------------
    # Withdraw
    # ------------------------------------------------------------------

    def withdraw(
        self,
        proof: Union[bytes, bytearray, Groth16Proof],
        root: IdentifierLike,
        nullifier_hash: IdentifierLike,
        recipient: str,
        relayer: str,
        fee: int,
        refund: int = 0,
        *,
        value: int = 0,
    ) -> WithdrawalRecord:
        """
        Spend a nullifier and pay out the denomination.

        Args:
            proof: 256-byte Groth16 proof or parsed Groth16Proof
            root: Tree root the proof was generated against
            nullifier_hash: Hash of the note's nullifier
            recipient: Beneficiary address
            relayer: Address submitting the withdrawal (fee receiver)
            fee: Part of the denomination paid to the relayer
            refund: Native value forwarded to the recipient (token pools)
            value: Value attached to the call

        Returns:
            WithdrawalRecord

        Raises:
            FeeExceedsDenomination, AlreadySpent, UnknownRoot,
            NonZeroAttachedValue, NonZeroRefund, WrongValue, InvalidProof,
            InsufficientPoolBalance, TransferFailed
        """
        with self._guard.operation("withdraw") as unit:
            fee = _require_amount(fee, "fee")
            refund = _require_amount(refund, "refund")
            value = _require_amount(value, "value")
            if fee > self._denomination:
                raise FeeExceedsDenomination("Fee exceeds the pool denomination")

            nullifier = to_uint256(nullifier_hash, "nullifier_hash")
            if nullifier in self._nullifier_hashes:
                raise AlreadySpent("Nullifier has already been spent")

            root_value = to_uint256(root, "root")
            if not self._tree.is_known_root(root_value):
                raise UnknownRoot("Root is not in the recent root history")

            recipient = normalize_address(recipient)
            relayer = normalize_address(relayer)
            self._check_withdraw_value(value, refund)

            parsed = self._parse_proof(proof)
            public_inputs = [
                root_value,
                nullifier,
                address_to_int(recipient),
                address_to_int(relayer),
                fee,
                refund,
            ]
            if not self._verify(parsed, public_inputs):
                raise InvalidProof("Invalid withdraw proof")

            if self._balance < self._denomination:
                raise InsufficientPoolBalance(
                    f"{self.name}: custody {self._balance} below denomination"
                )

            # Spent before any value leaves custody
            self._nullifier_hashes.add(nullifier)
            unit.on_rollback(lambda: self._nullifier_hashes.discard(nullifier))
            self._credit(unit, -self._denomination)

            self._payout(unit, recipient, relayer, fee, refund)

            record = WithdrawalRecord(
                recipient=recipient,
                nullifier_hash=nullifier,
                relayer=relayer,
                fee=fee,
                timestamp=int(self._clock()),
            )
            self.withdrawals.append(record)
            unit.on_rollback(self.withdrawals.pop)

        logger.info(
            "%s: withdrawal %s fee=%d", self.name, short_hex(nullifier), fee
        )
        return record

    def _check_withdraw_value(self, value: int, refund: int) -> None:
        if self._asset is AssetKind.NATIVE:
            if value != 0:
                raise NonZeroAttachedValue(
                    "Native pools take no attached value on withdrawal"
                )
            if refund != 0:
                raise NonZeroRefund("Native pools do not support refunds")
        elif value != refund:
            raise WrongValue("Attached value must equal the refund")

    def _parse_proof(
        self, proof: Union[bytes, bytearray, Groth16Proof]
    ) -> Groth16Proof:
        if isinstance(proof, Groth16Proof):
            return proof
        try:
            return Groth16Proof.from_bytes(proof)
        except SerializationError as exc:
            raise InvalidProof(f"Malformed withdraw proof: {exc}") from exc

    def _verify(self, proof: Groth16Proof, public_inputs: List[int]) -> bool:
        try:
            return bool(
                self._verifier.verify(proof.a, proof.b, proof.c, public_inputs)
            )
        except Exception as exc:  # noqa: BLE001
            raise InvalidProof(f"Proof verifier raised: {exc}") from exc

    def _payout(
        self, unit: UnitOfWork, recipient: str, relayer: str, fee: int, refund: int
    ) -> None:
        if not self._send(unit, self._transfer, recipient, self._denomination - fee):
            raise TransferFailed("payment to recipient failed")
        if fee > 0 and not self._send(unit, self._transfer, relayer, fee):
            raise TransferFailed("payment to relayer failed")

        if refund > 0:
            if not self._send(unit, self._refund_transfer, recipient, refund):
                # Unclaimable refund goes back to the relayer
                if not self._send(unit, self._refund_transfer, relayer, refund):
                    raise TransferFailed("refund could not be delivered")

    @staticmethod
    def _send(
        unit: UnitOfWork,
        transfer: Optional[AssetTransfer],
        destination: str,
        amount: int,
    ) -> bool:
        if transfer is None:
            raise TransferFailed("no transfer port configured")
        try:
            sent = bool(transfer.send(destination, amount))
        except Exception as exc:  # noqa: BLE001
            raise TransferFailed(f"transfer to {destination} raised: {exc}") from exc
        if sent:
            journal_send(unit, transfer, destination, amount)
        return sent

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def is_spent(self, nullifier_hash: IdentifierLike) -> bool:
        return to_uint256(nullifier_hash, "nullifier_hash") in self._nullifier_hashes

    def is_spent_array(self, nullifier_hashes: Iterable[IdentifierLike]) -> List[bool]:
        return [self.is_spent(n) for n in nullifier_hashes]

    def has_commitment(self, commitment: IdentifierLike) -> bool:
        return to_uint256(commitment, "commitment") in self._commitments

    def commitment_count(self) -> int:
        return len(self._commitment_log)

    def get_commitments_in_range(self, start: int, end: int) -> List[int]:
        """
        Commitments with leaf indices ``start..end`` inclusive.

        Raises:
            InvalidRange: If start > end, start < 0 or end is past the log
        """
        if start < 0 or start > end or end >= len(self._commitment_log):
            raise InvalidRange(
                f"Invalid range [{start}, {end}] for {len(self._commitment_log)} commitments"
            )
        return self._commitment_log[start : end + 1]

    def commitments(self) -> Sequence[int]:
        """Read-only view of the full commitment log in leaf order."""
        return tuple(self._commitment_log)
