from .mock import MockProofVerifier, mock_prove
from .snark import SnarkModuleVerifier

__all__ = ["MockProofVerifier", "SnarkModuleVerifier", "mock_prove"]
