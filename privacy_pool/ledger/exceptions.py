"""
Exceptions raised by the pool ledger and the access gate.

Every rejected operation raises one of these and leaves no state change
behind. ``reason`` is a stable identifier callers can match on.
"""


class PrivacyPoolError(Exception):
    """Base exception for privacy pool errors."""

    reason = "privacy_pool_error"


# ============================================================================
# VALIDATION
# ============================================================================


class ValidationError(PrivacyPoolError):
    """The request is malformed or conflicts with ledger state."""

    reason = "validation_error"


class DuplicateCommitment(ValidationError):
    reason = "duplicate_commitment"


class WrongValue(ValidationError):
    """Attached value does not match the pool denomination."""

    reason = "wrong_value"


class UnknownRoot(ValidationError):
    reason = "unknown_root"


class AlreadySpent(ValidationError):
    reason = "already_spent"


class InvalidProof(ValidationError):
    reason = "invalid_proof"


class FeeExceedsDenomination(ValidationError):
    reason = "fee_exceeds_denomination"


class NonZeroRefund(ValidationError):
    reason = "non_zero_refund"


class NonZeroAttachedValue(ValidationError):
    reason = "non_zero_attached_value"


class InvalidRange(ValidationError):
    reason = "invalid_range"


class LeafOutOfField(ValidationError):
    """Leaf, root or nullifier is not an element of the scalar field."""

    reason = "leaf_out_of_field"


class DepositsDisabled(ValidationError):
    reason = "deposits_disabled"


class InsufficientGovernanceTokens(ValidationError):
    reason = "insufficient_governance_tokens"


class DailyDepositLimitReached(ValidationError):
    reason = "daily_deposit_limit_reached"


class IncorrectValueSent(ValidationError):
    """Attached value is not denomination + fee."""

    reason = "incorrect_value_sent"


class UnknownPool(ValidationError):
    reason = "unknown_pool"


class SerializationError(ValidationError):
    """Record or proof bytes could not be decoded."""

    reason = "serialization_error"


# ============================================================================
# AUTHORIZATION
# ============================================================================


class AuthorizationError(PrivacyPoolError):
    """Caller is not permitted to perform the operation."""

    reason = "authorization_error"


class NotAllowedToDeposit(AuthorizationError):
    reason = "not_allowed_to_deposit"


class Unauthorized(AuthorizationError):
    """Administrative call from an address without the manager role."""

    reason = "unauthorized"


class NotAccessGate(AuthorizationError):
    """Pool deposit attempted by someone other than the bound access gate."""

    reason = "not_access_gate"


# ============================================================================
# COLLABORATORS
# ============================================================================


class CollaboratorError(PrivacyPoolError):
    """An external collaborator reported failure; the operation is rolled back."""

    reason = "collaborator_error"


class TransferFailed(CollaboratorError):
    reason = "transfer_failed"


class FeeTransferFailed(CollaboratorError):
    reason = "fee_transfer_failed"


# ============================================================================
# FATAL / SYSTEM
# ============================================================================


class FatalCondition(PrivacyPoolError):
    """The pool instance can no longer serve the operation at all."""

    reason = "fatal_condition"


class TreeFull(FatalCondition):
    """Anonymity set capacity is exhausted; no further deposits are possible."""

    reason = "tree_full"


class InsufficientPoolBalance(FatalCondition):
    """Custody balance cannot cover a payout. Indicates broken accounting."""

    reason = "insufficient_pool_balance"


class ReentrantCall(PrivacyPoolError):
    """Operation invoked while another one is in flight on the same instance."""

    reason = "reentrant_call"


class ConfigurationError(PrivacyPoolError):
    """Configuration error."""

    reason = "configuration_error"
