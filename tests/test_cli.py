"""CLI tests for the privacy-pool commands."""

from __future__ import annotations

from pathlib import Path

import yaml
from click.testing import CliRunner

from privacy_pool import cli
from privacy_pool.ledger.config import ZERO_VALUE
from privacy_pool.ledger.merkle import zero_hashes
from privacy_pool.ledger.types import to_hex32


def invoke(*args: str):
    return CliRunner().invoke(cli.main, list(args))


def test_help_lists_commands() -> None:
    result = invoke("--help")
    assert result.exit_code == 0
    for command in ("config-check", "config-migrate", "zero-hashes", "simulate"):
        assert command in result.output


def test_zero_hashes() -> None:
    result = invoke("zero-hashes", "--height", "3")
    assert result.exit_code == 0
    lines = result.output.strip().splitlines()
    assert len(lines) == 4
    assert to_hex32(ZERO_VALUE) in lines[0]
    assert lines[-1].startswith("root")
    assert to_hex32(zero_hashes(3)[3]) in lines[-1]


def test_zero_hashes_rejects_bad_height() -> None:
    assert invoke("zero-hashes", "--height", "32").exit_code != 0
    assert invoke("zero-hashes", "--height", "0").exit_code != 0


def test_config_check(settings_file: Path) -> None:
    result = invoke("config-check", str(settings_file))
    assert result.exit_code == 0
    assert "Settings valid" in result.output
    assert "Tree height: 6" in result.output
    assert "Verifier: mock" in result.output


def test_config_check_rejects_invalid(tmp_path: Path, settings_dict: dict) -> None:
    settings_dict["fee_bps"] = 20_000
    path = tmp_path / "bad.yaml"
    path.write_text(yaml.safe_dump(settings_dict), encoding="utf-8")

    result = invoke("config-check", str(path))
    assert result.exit_code == 1
    assert "fee_bps" in result.output


def test_config_migrate_to_stdout(tmp_path: Path) -> None:
    path = tmp_path / "v1.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "version": 1,
                "gate_address": "0x" + "11" * 20,
                "manager": "0x" + "22" * 20,
                "fee_bps": 10,
                "pools": [{"id": "a", "denomination": 5, "daily_limit": 3}],
            }
        ),
        encoding="utf-8",
    )

    result = invoke("config-migrate", str(path))
    assert result.exit_code == 0
    migrated = yaml.safe_load(result.output)
    assert migrated["version"] == 2
    assert migrated["pools"][0]["deposit_limit"] == 3


def test_config_migrate_to_file(tmp_path: Path, settings_file: Path) -> None:
    output = tmp_path / "out.yaml"
    result = invoke("config-migrate", str(settings_file), "--output", str(output))
    assert result.exit_code == 0
    assert "Migrated v2 -> v2" in result.output
    assert yaml.safe_load(output.read_text(encoding="utf-8"))["fee_bps"] == 50


def test_simulate(settings_file: Path) -> None:
    result = invoke("simulate", str(settings_file), "--deposits", "3", "--withdrawals", "1")
    assert result.exit_code == 0, result.output
    assert "Leaves: 3/64" in result.output
    assert f"Custody balance: {2 * 10**17}" in result.output
    assert f"Fees collected: {3 * 10**17 * 50 // 10_000}" in result.output


def test_simulate_gated_pool(settings_file: Path) -> None:
    result = invoke(
        "--verbose", "simulate", str(settings_file), "--pool", "1", "--deposits", "2",
        "--withdrawals", "0",
    )
    assert result.exit_code == 0, result.output
    assert "Leaves: 2/64" in result.output


def test_simulate_disabled_pool(settings_file: Path) -> None:
    result = invoke("simulate", str(settings_file), "--pool", "10", "--deposits", "2")
    assert result.exit_code == 0
    assert "Leaves: 0/64" in result.output
    assert "Custody balance: 0" in result.output


def test_simulate_unknown_pool(settings_file: Path) -> None:
    result = invoke("simulate", str(settings_file), "--pool", "999")
    assert result.exit_code == 1
