"""
Protocol parameters for the privacy pool ledger.

Values here are shared by the accumulator, the pool ledger and the access
gate. Deployment-specific values (denominations, caps, fee rate) live in
the YAML settings file, see ``settings.py``.
"""

# ============================================================================
# FIELD PARAMETERS
# ============================================================================

# BN254 scalar field; every leaf, root and public input is an element of it.
FIELD_SIZE = (
    21888242871839275222246405745257275088548364400416034343698204186575808495617
)
FIELD_BITS = 254

# keccak256("tornado") % FIELD_SIZE, the value of an empty leaf
ZERO_VALUE = (
    21663839004416932945382355908790599225266501822907911457504978515578255421292
)

# ============================================================================
# ACCUMULATOR
# ============================================================================

MAX_TREE_HEIGHT = 32  # exclusive
DEFAULT_TREE_HEIGHT = 20
ROOT_HISTORY_SIZE = 30

# Domain separation for the default compression function
DOMAIN_SEPARATOR_PREFIX = b"PRIVACY_POOL_V1_"
DOMAIN_SEPARATORS = {
    "merkle_node": DOMAIN_SEPARATOR_PREFIX + b"MERKLE_NODE",
    "mock_proof": DOMAIN_SEPARATOR_PREFIX + b"MOCK_PROOF",
}

# ============================================================================
# WITHDRAWAL PROOFS
# ============================================================================

# Groth16 proof: a (2 words), b (2x2 words), c (2 words)
PROOF_WORDS = 8
WORD_BYTES = 32
PROOF_BYTES = PROOF_WORDS * WORD_BYTES

# root, nullifier_hash, recipient, relayer, fee, refund
PUBLIC_INPUT_COUNT = 6

VERIFIER_BACKENDS = ("mock", "snark")
DEFAULT_VERIFIER_BACKEND = "mock"
VERIFIER_ENV_VAR = "PRIVACY_POOL_VERIFIER"

# Native Groth16 verifier module and its public-input header
DEFAULT_VERIFIER_MODULE = "withdraw_py"
WITHDRAW_SCHEMA_VERSION = 1
WITHDRAW_STATEMENT_TYPE = 4
WITHDRAW_STATEMENT_VERSION = 1

# ============================================================================
# ACCESS GATE
# ============================================================================

PERIOD_SECONDS = 24 * 60 * 60
FEE_DENOMINATOR = 10_000
MAX_FEE_BPS = FEE_DENOMINATOR

ADDRESS_BYTES = 20

# ============================================================================
# SERIALIZATION
# ============================================================================

RECORD_VERSION = 1
SETTINGS_VERSION = 2


# ============================================================================
# VALIDATION
# ============================================================================


def validate_config() -> bool:
    """
    Validate protocol parameters.

    Returns:
        True if configuration is valid

    Raises:
        AssertionError: If configuration is invalid
    """
    assert 0 < ZERO_VALUE < FIELD_SIZE, "Zero leaf must be a field element"
    assert FIELD_SIZE.bit_length() == FIELD_BITS, "Unexpected field size"
    assert 0 < DEFAULT_TREE_HEIGHT < MAX_TREE_HEIGHT, "Invalid default height"
    assert ROOT_HISTORY_SIZE > 0, "Root history must hold at least one root"
    assert PROOF_BYTES == 256, "Groth16 proofs are eight 32-byte words"
    assert DEFAULT_VERIFIER_BACKEND in VERIFIER_BACKENDS, "Unknown default verifier"
    assert MAX_FEE_BPS <= FEE_DENOMINATOR, "Fee rate cannot exceed 100%"
    assert PERIOD_SECONDS > 0, "Rate limit period must be positive"

    return True


# Auto-validate on import
validate_config()
