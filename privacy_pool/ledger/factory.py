"""
Proof verifier selection and router assembly.

The backend comes from the ``verifier`` settings section, and the
``PRIVACY_POOL_VERIFIER`` environment variable overrides it for one process.

WARNING: the ``mock`` verifier accepts proofs anyone can compute. It is the
default so that simulations and tests run without a native verifier module;
deployments must select ``snark`` explicitly.
"""


from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Callable, Dict, Optional

from .config import VERIFIER_BACKENDS, VERIFIER_ENV_VAR
from .exceptions import ConfigurationError
from .gate import AccessGate
from .interfaces import (
    AssetTransfer,
    AttestationOracle,
    BalanceSource,
    ProofVerifier,
    TokenTransfer,
)
from .merkle import Hasher, hash_left_right
from .pool import PoolLedger
from .settings import RouterSettings, VerifierSettings
from .types import AssetKind
from .verifiers import MockProofVerifier, SnarkModuleVerifier

logger = logging.getLogger(__name__)


def _build_mock(config: VerifierSettings) -> ProofVerifier:
    logger.warning("using the mock proof verifier; withdrawal proofs are forgeable")
    return MockProofVerifier()


def _build_snark(config: VerifierSettings) -> ProofVerifier:
    if config.vk_path is None:
        raise ConfigurationError("the snark verifier needs verifier.vk_path")
    if not Path(config.vk_path).is_file():
        raise ConfigurationError(f"verifying key not found: {config.vk_path}")
    return SnarkModuleVerifier(config.vk_path, module_name=config.module)


VERIFIER_BUILDERS: Dict[str, Callable[[VerifierSettings], ProofVerifier]] = {
    "mock": _build_mock,
    "snark": _build_snark,
}


def resolve_verifier_backend(config: VerifierSettings) -> str:
    """
    Backend named by ``PRIVACY_POOL_VERIFIER`` if set, else by the settings.

    Raises:
        ConfigurationError: If the environment names an unknown backend
    """
    backend = os.getenv(VERIFIER_ENV_VAR) or config.backend
    if backend not in VERIFIER_BACKENDS:
        raise ConfigurationError(
            f"Invalid verifier backend {backend!r} from {VERIFIER_ENV_VAR}. "
            f"Valid options: {', '.join(VERIFIER_BACKENDS)}"
        )
    return backend


def get_proof_verifier(config: Optional[VerifierSettings] = None) -> ProofVerifier:
    """
    Build the withdrawal proof verifier described by ``config``.

    Raises:
        ConfigurationError: If the backend is unknown, or ``snark`` is
            selected without a readable verifying key
    """
    config = config or VerifierSettings()
    backend = resolve_verifier_backend(config)
    verifier = VERIFIER_BUILDERS[backend](config)
    logger.debug("selected proof verifier %s", backend)
    return verifier


def build_router(
    settings: RouterSettings,
    *,
    transfer: AssetTransfer,
    verifier: Optional[ProofVerifier] = None,
    token_transfer: Optional[TokenTransfer] = None,
    attestation_oracle: Optional[AttestationOracle] = None,
    governance_token: Optional[BalanceSource] = None,
    hasher: Hasher = hash_left_right,
    clock: Callable[[], float] = time.time,
) -> AccessGate:
    """
    Assemble an access gate and one ledger per configured pool.

    Native pools pay out and the gate forwards fees through ``transfer``.
    Token pools collect and pay the denomination through ``token_transfer``
    and refund through ``transfer``.

    Returns:
        AccessGate with every pool registered; ledgers via ``gate.ledger(id)``
    """
    if verifier is None:
        verifier = get_proof_verifier(settings.verifier)

    gate = AccessGate(
        address=settings.gate_address,
        manager=settings.manager,
        fee_transfer=transfer,
        fee_bps=settings.fee_bps,
        fee_recipient=settings.fee_recipient,
        attestation_oracle=attestation_oracle,
        governance_token=governance_token,
        clock=clock,
        period_seconds=settings.period_seconds,
    )

    for pool in settings.pools:
        if pool.asset is AssetKind.TOKEN:
            if token_transfer is None:
                raise ConfigurationError(
                    f"pool {pool.pool_id!r} is a token pool but no token transfer was given"
                )
            ledger = PoolLedger(
                pool.denomination,
                verifier,
                token_transfer,
                access_gate=gate.address,
                asset=AssetKind.TOKEN,
                refund_transfer=transfer,
                height=settings.tree_height,
                root_history_size=settings.root_history_size,
                hasher=hasher,
                clock=clock,
                name=f"pool[{pool.pool_id}]",
            )
        else:
            ledger = PoolLedger(
                pool.denomination,
                verifier,
                transfer,
                access_gate=gate.address,
                height=settings.tree_height,
                root_history_size=settings.root_history_size,
                hasher=hasher,
                clock=clock,
                name=f"pool[{pool.pool_id}]",
            )
        gate.register_pool(
            settings.manager,
            pool.pool_id,
            ledger,
            enabled=pool.enabled,
            deposit_limit=pool.deposit_limit,
            gated=pool.gated,
            per_address_limit=pool.per_address_limit,
            token_requirement=pool.token_requirement,
        )
    return gate
