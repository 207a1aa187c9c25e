from .in_memory import (
    InMemoryVault,
    StaticAttestationOracle,
    StaticBalances,
    StaticProofVerifier,
)

__all__ = [
    "InMemoryVault",
    "StaticAttestationOracle",
    "StaticBalances",
    "StaticProofVerifier",
]
