"""
Hash-based stand-in for the withdrawal proof system.

WARNING: testing only. A "proof" here is a deterministic digest of the
public inputs; anyone can produce one. It exercises the exact public-input
contract of the real verifier (order and encoding of the six inputs) without
any zero-knowledge property.
"""

from __future__ import annotations

import hashlib
from typing import List, Sequence

from ..config import DOMAIN_SEPARATORS, FIELD_SIZE, PROOF_WORDS, PUBLIC_INPUT_COUNT
from ..exceptions import ValidationError
from ..interfaces import ProofVerifier
from ..types import Groth16Proof, to_bytes32, to_uint256


def _encode_inputs(public_inputs: Sequence[int]) -> bytes:
    if len(public_inputs) != PUBLIC_INPUT_COUNT:
        raise ValidationError(
            f"Expected {PUBLIC_INPUT_COUNT} public inputs, got {len(public_inputs)}"
        )
    return b"".join(
        to_bytes32(to_uint256(value, f"public_inputs[{i}]"))
        for i, value in enumerate(public_inputs)
    )


def mock_proof_words(public_inputs: Sequence[int]) -> List[int]:
    encoded = _encode_inputs(public_inputs)
    words = []
    for i in range(PROOF_WORDS):
        digest = hashlib.sha256(
            DOMAIN_SEPARATORS["mock_proof"] + bytes([i]) + encoded
        ).digest()
        words.append(int.from_bytes(digest, "big") % FIELD_SIZE)
    return words


def mock_prove(public_inputs: Sequence[int]) -> bytes:
    """
    Produce the 256-byte proof ``MockProofVerifier`` accepts for these inputs.

    Args:
        public_inputs: [root, nullifier_hash, recipient, relayer, fee, refund]
    """
    return Groth16Proof.from_words(mock_proof_words(public_inputs)).to_bytes()


class MockProofVerifier(ProofVerifier):
    """Accepts exactly the proof ``mock_prove`` derives from the inputs."""

    def verify(self, a, b, c, public_inputs) -> bool:
        try:
            expected = Groth16Proof.from_words(mock_proof_words(public_inputs))
        except ValidationError:
            return False
        return (tuple(a), tuple(tuple(row) for row in b), tuple(c)) == (
            expected.a,
            expected.b,
            expected.c,
        )
