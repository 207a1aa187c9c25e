"""Public API for the privacy pool ledger."""

from __future__ import annotations

from .atomic import OperationGuard, UnitOfWork
from .exceptions import (
    AlreadySpent,
    AuthorizationError,
    CollaboratorError,
    ConfigurationError,
    DailyDepositLimitReached,
    DepositsDisabled,
    DuplicateCommitment,
    FatalCondition,
    FeeExceedsDenomination,
    FeeTransferFailed,
    IncorrectValueSent,
    InsufficientGovernanceTokens,
    InsufficientPoolBalance,
    InvalidProof,
    InvalidRange,
    LeafOutOfField,
    NonZeroAttachedValue,
    NonZeroRefund,
    NotAccessGate,
    NotAllowedToDeposit,
    PrivacyPoolError,
    ReentrantCall,
    SerializationError,
    TransferFailed,
    TreeFull,
    Unauthorized,
    UnknownPool,
    UnknownRoot,
    ValidationError,
    WrongValue,
)
from .factory import build_router, get_proof_verifier, resolve_verifier_backend
from .gate import AccessGate, EligibilityRecord, PoolPolicy
from .interfaces import (
    AssetTransfer,
    AttestationOracle,
    BalanceSource,
    ProofVerifier,
    ReversibleTransfer,
    TokenTransfer,
)
from .merkle import (
    AnonymitySetTree,
    build_path,
    compute_root,
    hash_left_right,
    verify_path,
    zero_hashes,
)
from .pool import PoolLedger
from .settings import (
    PoolSettings,
    RouterSettings,
    VerifierSettings,
    dump_settings,
    load_settings,
    migrate,
    parse_settings,
)
from .types import AssetKind, DepositRecord, Groth16Proof, WithdrawalRecord

__all__ = [
    "AccessGate",
    "AlreadySpent",
    "AnonymitySetTree",
    "AssetKind",
    "AssetTransfer",
    "AttestationOracle",
    "AuthorizationError",
    "BalanceSource",
    "CollaboratorError",
    "ConfigurationError",
    "DailyDepositLimitReached",
    "DepositRecord",
    "DepositsDisabled",
    "DuplicateCommitment",
    "EligibilityRecord",
    "FatalCondition",
    "FeeExceedsDenomination",
    "FeeTransferFailed",
    "Groth16Proof",
    "IncorrectValueSent",
    "InsufficientGovernanceTokens",
    "InsufficientPoolBalance",
    "InvalidProof",
    "InvalidRange",
    "LeafOutOfField",
    "NonZeroAttachedValue",
    "NonZeroRefund",
    "NotAccessGate",
    "NotAllowedToDeposit",
    "OperationGuard",
    "PoolLedger",
    "PoolPolicy",
    "PoolSettings",
    "PrivacyPoolError",
    "ProofVerifier",
    "ReentrantCall",
    "ReversibleTransfer",
    "RouterSettings",
    "SerializationError",
    "TokenTransfer",
    "TransferFailed",
    "TreeFull",
    "Unauthorized",
    "UnitOfWork",
    "UnknownPool",
    "UnknownRoot",
    "ValidationError",
    "VerifierSettings",
    "WithdrawalRecord",
    "WrongValue",
    "build_path",
    "build_router",
    "compute_root",
    "dump_settings",
    "get_proof_verifier",
    "hash_left_right",
    "load_settings",
    "migrate",
    "parse_settings",
    "resolve_verifier_backend",
    "verify_path",
    "zero_hashes",
]
