"""
Versioned deployment settings for the access gate and its pools.

Settings are a YAML document with a top-level ``version``. Older versions
are upgraded in memory by a chain of explicit migration functions before
parsing, so a deployment can keep an old file until it is rewritten with
``dump_settings``.

Version 1:
    gate_address, manager, fee_bps, fee_recipient,
    pools: [{id, denomination, daily_limit, enabled}]

Version 2 (current):
    adds tree_height, root_history_size, period_seconds; pools gain
    gated, per_address_limit, token_requirement, asset; ``daily_limit`` is
    renamed ``deposit_limit`` (null = unlimited). An optional ``verifier``
    section names the proof backend, its verifying key and native module.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, Union

import yaml

from .config import (
    DEFAULT_TREE_HEIGHT,
    DEFAULT_VERIFIER_BACKEND,
    DEFAULT_VERIFIER_MODULE,
    MAX_FEE_BPS,
    MAX_TREE_HEIGHT,
    PERIOD_SECONDS,
    ROOT_HISTORY_SIZE,
    SETTINGS_VERSION,
    VERIFIER_BACKENDS,
)
from .exceptions import ConfigurationError, ValidationError
from .types import AssetKind, normalize_address


@dataclass(frozen=True)
class PoolSettings:
    pool_id: str
    denomination: int
    enabled: bool = True
    deposit_limit: Optional[int] = None
    gated: bool = False
    per_address_limit: bool = False
    token_requirement: int = 0
    asset: AssetKind = AssetKind.NATIVE


@dataclass(frozen=True)
class VerifierSettings:
    backend: str = DEFAULT_VERIFIER_BACKEND
    vk_path: Optional[str] = None
    module: str = DEFAULT_VERIFIER_MODULE


@dataclass(frozen=True)
class RouterSettings:
    gate_address: str
    manager: str
    fee_bps: int = 0
    fee_recipient: Optional[str] = None
    tree_height: int = DEFAULT_TREE_HEIGHT
    root_history_size: int = ROOT_HISTORY_SIZE
    period_seconds: int = PERIOD_SECONDS
    pools: Tuple[PoolSettings, ...] = field(default_factory=tuple)
    verifier: VerifierSettings = field(default_factory=VerifierSettings)
    version: int = SETTINGS_VERSION

    def pool(self, pool_id: str) -> PoolSettings:
        for pool in self.pools:
            if pool.pool_id == pool_id:
                return pool
        raise KeyError(pool_id)


# ============================================================================
# MIGRATIONS
# ============================================================================


def migrate_v1_to_v2(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Add accumulator parameters and per-pool tier flags."""
    data = copy.deepcopy(raw)
    data["version"] = 2
    data.setdefault("tree_height", DEFAULT_TREE_HEIGHT)
    data.setdefault("root_history_size", ROOT_HISTORY_SIZE)
    data.setdefault("period_seconds", PERIOD_SECONDS)

    pools = []
    for pool in data.get("pools") or []:
        if not isinstance(pool, dict):
            raise ConfigurationError("each pool entry must be a mapping")
        pool = dict(pool)
        pool["deposit_limit"] = pool.pop("daily_limit", None)
        pool.setdefault("gated", False)
        pool.setdefault("per_address_limit", False)
        pool.setdefault("token_requirement", 0)
        pool.setdefault("asset", AssetKind.NATIVE.value)
        pools.append(pool)
    data["pools"] = pools
    return data


MIGRATIONS: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    1: migrate_v1_to_v2,
}


def migrate(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Upgrade a raw settings mapping to ``SETTINGS_VERSION``.

    Raises:
        ConfigurationError: If the version is missing, unknown or newer
            than this release understands
    """
    if not isinstance(raw, dict):
        raise ConfigurationError("settings must be a mapping")
    version = raw.get("version")
    if not isinstance(version, int) or isinstance(version, bool):
        raise ConfigurationError("settings must declare an integer version")
    if version > SETTINGS_VERSION:
        raise ConfigurationError(
            f"settings version {version} is newer than supported {SETTINGS_VERSION}"
        )

    data = raw
    while version < SETTINGS_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            raise ConfigurationError(f"no migration from settings version {version}")
        data = step(data)
        version = data["version"]
    return data


# ============================================================================
# PARSING
# ============================================================================


def _require(data: Dict[str, Any], key: str, context: str) -> Any:
    if key not in data:
        raise ConfigurationError(f"{context}: missing required key {key!r}")
    return data[key]


def _as_int(value: Any, label: str, *, minimum: int = 0) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigurationError(f"{label} must be an integer")
    if value < minimum:
        raise ConfigurationError(f"{label} must be >= {minimum}")
    return value


def _as_bool(value: Any, label: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigurationError(f"{label} must be true or false")
    return value


def _as_address(value: Any, label: str) -> str:
    try:
        return normalize_address(value)
    except ValidationError as exc:
        raise ConfigurationError(f"{label}: {exc}") from exc


def _parse_pool(raw: Any, index: int) -> PoolSettings:
    context = f"pools[{index}]"
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{context} must be a mapping")

    pool_id = _require(raw, "id", context)
    # Unquoted YAML ids such as 0.10 load as floats
    if not isinstance(pool_id, str) or not pool_id:
        raise ConfigurationError(f"{context}.id must be a quoted, non-empty string")

    limit = raw.get("deposit_limit")
    try:
        asset = AssetKind(raw.get("asset", AssetKind.NATIVE.value))
    except ValueError as exc:
        raise ConfigurationError(f"{context}.asset is not a known asset kind") from exc

    return PoolSettings(
        pool_id=pool_id,
        denomination=_as_int(
            _require(raw, "denomination", context), f"{context}.denomination", minimum=1
        ),
        enabled=_as_bool(raw.get("enabled", True), f"{context}.enabled"),
        deposit_limit=None if limit is None else _as_int(limit, f"{context}.deposit_limit"),
        gated=_as_bool(raw.get("gated", False), f"{context}.gated"),
        per_address_limit=_as_bool(
            raw.get("per_address_limit", False), f"{context}.per_address_limit"
        ),
        token_requirement=_as_int(
            raw.get("token_requirement", 0), f"{context}.token_requirement"
        ),
        asset=asset,
    )


def _parse_verifier(raw: Any) -> VerifierSettings:
    if raw is None:
        return VerifierSettings()
    if not isinstance(raw, dict):
        raise ConfigurationError("verifier must be a mapping")

    backend = raw.get("backend", DEFAULT_VERIFIER_BACKEND)
    if backend not in VERIFIER_BACKENDS:
        raise ConfigurationError(
            f"verifier.backend must be one of {', '.join(VERIFIER_BACKENDS)}"
        )
    vk_path = raw.get("vk_path")
    if vk_path is not None and (not isinstance(vk_path, str) or not vk_path):
        raise ConfigurationError("verifier.vk_path must be a non-empty string")
    if backend == "snark" and vk_path is None:
        raise ConfigurationError("verifier.vk_path is required for the snark backend")
    module = raw.get("module", DEFAULT_VERIFIER_MODULE)
    if not isinstance(module, str) or not module:
        raise ConfigurationError("verifier.module must be a non-empty string")

    return VerifierSettings(backend=backend, vk_path=vk_path, module=module)


def parse_settings(raw: Dict[str, Any]) -> RouterSettings:
    """Migrate and validate a raw settings mapping."""
    data = migrate(raw)

    fee_bps = _as_int(data.get("fee_bps", 0), "fee_bps")
    if fee_bps > MAX_FEE_BPS:
        raise ConfigurationError(f"fee_bps must be <= {MAX_FEE_BPS}")

    tree_height = _as_int(data.get("tree_height", DEFAULT_TREE_HEIGHT), "tree_height", minimum=1)
    if tree_height >= MAX_TREE_HEIGHT:
        raise ConfigurationError(f"tree_height must be < {MAX_TREE_HEIGHT}")

    fee_recipient = data.get("fee_recipient")
    raw_pools = data.get("pools") or []
    if not isinstance(raw_pools, list):
        raise ConfigurationError("pools must be a list")
    pools = tuple(_parse_pool(pool, i) for i, pool in enumerate(raw_pools))

    seen = set()
    for pool in pools:
        if pool.pool_id in seen:
            raise ConfigurationError(f"duplicate pool id {pool.pool_id!r}")
        seen.add(pool.pool_id)

    return RouterSettings(
        gate_address=_as_address(_require(data, "gate_address", "settings"), "gate_address"),
        manager=_as_address(_require(data, "manager", "settings"), "manager"),
        fee_bps=fee_bps,
        fee_recipient=(
            None if fee_recipient is None else _as_address(fee_recipient, "fee_recipient")
        ),
        tree_height=tree_height,
        root_history_size=_as_int(
            data.get("root_history_size", ROOT_HISTORY_SIZE), "root_history_size", minimum=1
        ),
        period_seconds=_as_int(
            data.get("period_seconds", PERIOD_SECONDS), "period_seconds", minimum=1
        ),
        pools=pools,
        verifier=_parse_verifier(data.get("verifier")),
        version=data["version"],
    )


def load_settings(path: Union[str, Path]) -> RouterSettings:
    """
    Read, migrate and validate a YAML settings file.

    A relative ``verifier.vk_path`` is taken relative to the file.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"cannot read settings file {path}: {exc}") from exc
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML in {path}: {exc}") from exc

    settings = parse_settings(raw)
    vk_path = settings.verifier.vk_path
    if vk_path is not None and not Path(vk_path).is_absolute():
        resolved = str(Path(path).parent / vk_path)
        settings = replace(settings, verifier=replace(settings.verifier, vk_path=resolved))
    return settings


def settings_to_dict(settings: RouterSettings) -> Dict[str, Any]:
    return {
        "version": settings.version,
        "gate_address": settings.gate_address,
        "manager": settings.manager,
        "fee_bps": settings.fee_bps,
        "fee_recipient": settings.fee_recipient,
        "tree_height": settings.tree_height,
        "root_history_size": settings.root_history_size,
        "period_seconds": settings.period_seconds,
        "pools": [
            {
                "id": pool.pool_id,
                "denomination": pool.denomination,
                "enabled": pool.enabled,
                "deposit_limit": pool.deposit_limit,
                "gated": pool.gated,
                "per_address_limit": pool.per_address_limit,
                "token_requirement": pool.token_requirement,
                "asset": pool.asset.value,
            }
            for pool in settings.pools
        ],
        "verifier": {
            "backend": settings.verifier.backend,
            "vk_path": settings.verifier.vk_path,
            "module": settings.verifier.module,
        },
    }


def dump_settings(settings: RouterSettings) -> str:
    """Serialize settings as current-version YAML."""
    return yaml.safe_dump(settings_to_dict(settings), sort_keys=False)
