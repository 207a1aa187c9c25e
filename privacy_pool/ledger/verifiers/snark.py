"""Groth16 withdrawal verification via a native extension module."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from ..config import (
    DEFAULT_VERIFIER_MODULE,
    PUBLIC_INPUT_COUNT,
    WITHDRAW_SCHEMA_VERSION,
    WITHDRAW_STATEMENT_TYPE,
    WITHDRAW_STATEMENT_VERSION,
)
from ..interfaces import ProofVerifier
from ..types import Groth16Proof, to_bytes32

VERIFY_FUNCTION = "verify_withdraw_v1_bytes"

_HEADER = b"".join(
    value.to_bytes(2, "little")
    for value in (
        WITHDRAW_SCHEMA_VERSION,
        WITHDRAW_STATEMENT_TYPE,
        WITHDRAW_STATEMENT_VERSION,
    )
)


def encode_public_inputs(public_inputs: Sequence[int]) -> bytes:
    """
    Header (schema, statement type, statement version as u16 little-endian)
    followed by the six inputs as 32-byte big-endian words.
    """
    if len(public_inputs) != PUBLIC_INPUT_COUNT:
        raise ValueError(f"expected {PUBLIC_INPUT_COUNT} public inputs")
    return _HEADER + b"".join(to_bytes32(int(value)) for value in public_inputs)


class SnarkModuleVerifier(ProofVerifier):
    """
    Verify withdrawal proofs via PyO3 bindings.

    Fails closed: a missing module, verifying key or verifier function, or
    any error raised by the binding, yields False.
    """

    def __init__(
        self,
        vk_path_or_bytes: str | Path | bytes | bytearray | None = None,
        module_name: str = DEFAULT_VERIFIER_MODULE,
    ) -> None:
        self._vk_bytes = _read_bytes(vk_path_or_bytes) if vk_path_or_bytes else None
        self._module_name = module_name

    def verify(self, a, b, c, public_inputs) -> bool:
        if not self._vk_bytes:
            return False
        try:
            public_inputs_bytes = encode_public_inputs(public_inputs)
            proof_bytes = Groth16Proof(
                a=tuple(a), b=tuple(tuple(row) for row in b), c=tuple(c)
            ).to_bytes()
        except Exception:
            return False

        module = _load_module(self._module_name)
        if module is None:
            return False
        verifier = getattr(module, VERIFY_FUNCTION, None)
        if verifier is None:
            return False

        try:
            return bool(verifier(self._vk_bytes, public_inputs_bytes, proof_bytes))
        except Exception:
            return False


def _read_bytes(value: str | Path | bytes | bytearray) -> bytes | None:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    try:
        return Path(value).read_bytes()
    except OSError:
        return None


def _load_module(module_name: str):
    try:
        return __import__(module_name)
    except ImportError:
        return None
