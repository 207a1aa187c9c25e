"""Shared fixtures for CLI and end-to-end tests."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
import yaml

GATE = "0x00000000000000000000000000000000000a11ce"
MANAGER = "0x000000000000000000000000000000000000b0b0"
TREASURY = "0x00000000000000000000000000000000000fee5e"


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logger = logging.getLogger("privacy_pool")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def settings_dict() -> dict:
    return {
        "version": 2,
        "gate_address": GATE,
        "manager": MANAGER,
        "fee_bps": 50,
        "fee_recipient": TREASURY,
        "tree_height": 6,
        "root_history_size": 8,
        "pools": [
            {"id": "0.1", "denomination": 10**17, "deposit_limit": 100},
            {
                "id": "1",
                "denomination": 10**18,
                "deposit_limit": 1,
                "gated": True,
                "per_address_limit": True,
            },
            {"id": "10", "denomination": 10**19, "enabled": False},
        ],
    }


@pytest.fixture
def settings_file(tmp_path: Path, settings_dict: dict) -> Path:
    path = tmp_path / "pools.yaml"
    path.write_text(yaml.safe_dump(settings_dict), encoding="utf-8")
    return path
