"""
Common types for the privacy pool ledger.

This module provides:
1. Address and 256-bit identifier helpers
2. AssetKind - what a pool holds in custody
3. Groth16Proof - the withdrawal proof as consumed by the verifier
4. DepositRecord / WithdrawalRecord - emitted ledger events with CBOR
   serialization
"""

from __future__ import annotations

import re
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Sequence, Tuple, Union

try:
    import cbor2
except ImportError:
    raise ImportError(
        "cbor2 is required for record serialization. "
        "Install with: pip install cbor2"
    )

from .config import (
    ADDRESS_BYTES,
    FIELD_SIZE,
    PROOF_BYTES,
    PROOF_WORDS,
    RECORD_VERSION,
    WORD_BYTES,
)
from .exceptions import LeafOutOfField, SerializationError, ValidationError

IdentifierLike = Union[int, bytes, bytearray, str]

ZERO_ADDRESS = "0x" + "00" * ADDRESS_BYTES
UINT256_MAX = 2**256 - 1

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


# ============================================================================
# ADDRESSES
# ============================================================================


def normalize_address(address: str) -> str:
    """
    Normalize an account address to lowercase ``0x``-prefixed hex.

    Raises:
        ValidationError: If the value is not a 20-byte hex address
    """
    if not isinstance(address, str) or not _ADDRESS_RE.match(address):
        raise ValidationError(f"Invalid address: {address!r}")
    return address.lower()


def address_to_int(address: str) -> int:
    """Integer form of an address, as fed to the proof verifier."""
    return int(normalize_address(address), 16)


def is_zero_address(address: str) -> bool:
    return normalize_address(address) == ZERO_ADDRESS


# ============================================================================
# 256-BIT IDENTIFIERS
# ============================================================================


def to_uint256(value: IdentifierLike, label: str = "value") -> int:
    """
    Coerce an int, 32-byte big-endian bytes or hex string to a uint256.

    Raises:
        ValidationError: If the value is malformed or out of range
    """
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be int, bytes or hex string")

    if isinstance(value, int):
        result = value
    elif isinstance(value, (bytes, bytearray)):
        if len(value) > WORD_BYTES:
            raise ValidationError(f"{label} must be at most {WORD_BYTES} bytes")
        result = int.from_bytes(bytes(value), "big")
    elif isinstance(value, str):
        text = value[2:] if value.lower().startswith("0x") else value
        try:
            result = int(text, 16)
        except ValueError as exc:
            raise ValidationError(f"{label} is not valid hex: {value!r}") from exc
    else:
        raise ValidationError(f"{label} must be int, bytes or hex string")

    if result < 0 or result > UINT256_MAX:
        raise ValidationError(f"{label} does not fit in 256 bits")
    return result


def to_field_element(value: IdentifierLike, label: str = "value") -> int:
    """
    Coerce a value to a scalar field element.

    Raises:
        LeafOutOfField: If the value is >= FIELD_SIZE
    """
    result = to_uint256(value, label)
    if result >= FIELD_SIZE:
        raise LeafOutOfField(f"{label} should be inside the field")
    return result


def to_bytes32(value: int) -> bytes:
    return value.to_bytes(WORD_BYTES, "big")


def to_hex32(value: int) -> str:
    return "0x" + to_bytes32(value).hex()


def short_hex(value: int, length: int = 10) -> str:
    """Abbreviated hex for log lines."""
    return to_hex32(value)[: 2 + length]


# ============================================================================
# ASSET KIND
# ============================================================================


class AssetKind(Enum):
    """
    What a pool holds in custody.

    - NATIVE: value attached to the call is the deposit itself; refunds are
      meaningless and must be zero
    - TOKEN: the denomination is collected from the depositor through a
      token transfer port; the attached value on withdrawal funds the refund
    """

    NATIVE = "native"
    TOKEN = "token"


# ============================================================================
# GROTH16 PROOF
# ============================================================================


@dataclass(frozen=True)
class Groth16Proof:
    """
    Withdrawal proof split the way the verifier consumes it.

    Wire format is eight big-endian uint256 words:
    ``a0 a1 b00 b01 b10 b11 c0 c1``.
    """

    a: Tuple[int, int]
    b: Tuple[Tuple[int, int], Tuple[int, int]]
    c: Tuple[int, int]

    @classmethod
    def from_words(cls, words: Sequence[int]) -> "Groth16Proof":
        if len(words) != PROOF_WORDS:
            raise SerializationError(
                f"Proof must have {PROOF_WORDS} words, got {len(words)}"
            )
        p = [to_uint256(word, f"proof[{i}]") for i, word in enumerate(words)]
        return cls(
            a=(p[0], p[1]),
            b=((p[2], p[3]), (p[4], p[5])),
            c=(p[6], p[7]),
        )

    @classmethod
    def from_bytes(cls, data: Union[bytes, bytearray]) -> "Groth16Proof":
        if not isinstance(data, (bytes, bytearray)):
            raise SerializationError("Proof must be bytes")
        if len(data) != PROOF_BYTES:
            raise SerializationError(
                f"Proof must be {PROOF_BYTES} bytes, got {len(data)}"
            )
        words = [
            int.from_bytes(data[i : i + WORD_BYTES], "big")
            for i in range(0, PROOF_BYTES, WORD_BYTES)
        ]
        return cls.from_words(words)

    def words(self) -> Tuple[int, ...]:
        return (*self.a, *self.b[0], *self.b[1], *self.c)

    def to_bytes(self) -> bytes:
        return b"".join(to_bytes32(word) for word in self.words())


# ============================================================================
# LEDGER RECORDS
# ============================================================================


def _decode_record(data: bytes, record_type: str) -> Dict[str, Any]:
    try:
        obj = cbor2.loads(data)
    except Exception as exc:  # noqa: BLE001
        raise SerializationError(f"Failed to decode {record_type} record") from exc

    if not isinstance(obj, dict):
        raise SerializationError(f"{record_type} record must be a map")
    if obj.get("version") != RECORD_VERSION:
        raise SerializationError(
            f"Unsupported record version: {obj.get('version')!r}"
        )
    if obj.get("type") != record_type:
        raise SerializationError(
            f"Expected {record_type} record, got {obj.get('type')!r}"
        )
    return obj


@dataclass(frozen=True)
class DepositRecord:
    """
    Emitted once per successful deposit.

    Attributes:
        origin: Address that initiated the deposit
        commitment: Inserted leaf
        leaf_index: Position assigned in the anonymity set
        timestamp: Unix seconds at insertion
    """

    origin: str
    commitment: int
    leaf_index: int
    timestamp: int

    def serialize(self) -> bytes:
        return cbor2.dumps(
            {
                "version": RECORD_VERSION,
                "type": "deposit",
                "origin": self.origin,
                "commitment": to_bytes32(self.commitment),
                "leaf_index": self.leaf_index,
                "timestamp": self.timestamp,
            }
        )

    @classmethod
    def deserialize(cls, data: bytes) -> "DepositRecord":
        obj = _decode_record(data, "deposit")
        try:
            return cls(
                origin=normalize_address(obj["origin"]),
                commitment=to_uint256(obj["commitment"], "commitment"),
                leaf_index=int(obj["leaf_index"]),
                timestamp=int(obj["timestamp"]),
            )
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            raise SerializationError("Malformed deposit record") from exc

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["commitment"] = to_hex32(self.commitment)
        return data


@dataclass(frozen=True)
class WithdrawalRecord:
    """Emitted once per successful withdrawal."""

    recipient: str
    nullifier_hash: int
    relayer: str
    fee: int
    timestamp: int

    def serialize(self) -> bytes:
        return cbor2.dumps(
            {
                "version": RECORD_VERSION,
                "type": "withdrawal",
                "recipient": self.recipient,
                "nullifier_hash": to_bytes32(self.nullifier_hash),
                "relayer": self.relayer,
                "fee": self.fee,
                "timestamp": self.timestamp,
            }
        )

    @classmethod
    def deserialize(cls, data: bytes) -> "WithdrawalRecord":
        obj = _decode_record(data, "withdrawal")
        try:
            return cls(
                recipient=normalize_address(obj["recipient"]),
                nullifier_hash=to_uint256(obj["nullifier_hash"], "nullifier_hash"),
                relayer=normalize_address(obj["relayer"]),
                fee=int(obj["fee"]),
                timestamp=int(obj["timestamp"]),
            )
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            raise SerializationError("Malformed withdrawal record") from exc

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["nullifier_hash"] = to_hex32(self.nullifier_hash)
        return data
