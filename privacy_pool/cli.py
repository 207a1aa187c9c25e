"""
Command-Line Interface for the privacy pool ledger

Validates and migrates deployment settings, prints accumulator constants and
runs in-memory deposit/withdraw simulations.
"""

import hashlib
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click
import yaml
from rich.console import Console
from rich.table import Table

from privacy_pool import __version__
from privacy_pool.ledger.adapters import InMemoryVault
from privacy_pool.ledger.config import DEFAULT_TREE_HEIGHT, FIELD_SIZE, MAX_TREE_HEIGHT
from privacy_pool.ledger.exceptions import ConfigurationError, PrivacyPoolError
from privacy_pool.ledger.factory import build_router
from privacy_pool.ledger.merkle import zero_hashes
from privacy_pool.ledger.settings import (
    RouterSettings,
    dump_settings,
    load_settings,
    parse_settings,
)
from privacy_pool.ledger.types import AssetKind, address_to_int, short_hex, to_hex32
from privacy_pool.ledger.verifiers import MockProofVerifier, mock_prove
from privacy_pool.logging_config import setup_logging

Event = Tuple[str, str, str]


def _fail(message: str) -> None:
    click.echo(click.style(f"✗ {message}", fg="red"), err=True)
    sys.exit(1)


def _load_or_exit(path: str) -> RouterSettings:
    try:
        return load_settings(path)
    except ConfigurationError as e:
        _fail(str(e))


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Log ledger activity at INFO level")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Also write logs to a rotating file",
)
def main(verbose: bool, log_file: Optional[str]):
    """
    Privacy Pool Ledger

    Fixed-denomination privacy pools behind a compliance access gate.

    ⚠️  Simulations use the mock proof verifier, which accepts forgeable proofs.
    """
    setup_logging(logging.INFO if verbose else logging.WARNING, log_file)


@main.command("config-check")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def config_check(path: str):
    """Validate a settings file and list its pools."""
    settings = _load_or_exit(path)
    console = Console()

    table = Table(title=f"Pools (settings v{settings.version})")
    table.add_column("Pool", style="cyan")
    table.add_column("Denomination", justify="right")
    table.add_column("Asset")
    table.add_column("Enabled")
    table.add_column("Limit", justify="right")
    table.add_column("Gated")
    table.add_column("Per address")
    table.add_column("Token req.", justify="right")
    for pool in settings.pools:
        table.add_row(
            pool.pool_id,
            str(pool.denomination),
            pool.asset.value,
            "yes" if pool.enabled else "no",
            "unlimited" if pool.deposit_limit is None else str(pool.deposit_limit),
            "yes" if pool.gated else "no",
            "yes" if pool.per_address_limit else "no",
            str(pool.token_requirement),
        )
    console.print(table)

    click.echo(f"Manager: {settings.manager}")
    click.echo(f"Fee: {settings.fee_bps} bps -> {settings.fee_recipient or 'unset'}")
    click.echo(
        f"Tree height: {settings.tree_height}, root history: {settings.root_history_size}"
    )
    verifier = settings.verifier
    click.echo(
        f"Verifier: {verifier.backend}"
        + (f" (key {verifier.vk_path}, module {verifier.module})" if verifier.vk_path else "")
    )
    click.echo(click.style("✓ Settings valid", fg="green"))


@main.command("config-migrate")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False),
    help="Write the migrated settings here (default: stdout)",
)
def config_migrate(path: str, output: Optional[str]):
    """Rewrite a settings file at the current version."""
    try:
        raw = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        _fail(f"invalid YAML in {path}: {e}")
    original_version = raw.get("version") if isinstance(raw, dict) else None

    try:
        settings = parse_settings(raw)
    except ConfigurationError as e:
        _fail(str(e))

    rendered = dump_settings(settings)
    if output:
        Path(output).write_text(rendered, encoding="utf-8")
        click.echo(
            click.style(
                f"✓ Migrated v{original_version} -> v{settings.version}: {output}",
                fg="green",
            )
        )
    else:
        click.echo(rendered, nl=False)


@main.command("zero-hashes")
@click.option(
    "--height",
    type=click.IntRange(1, MAX_TREE_HEIGHT - 1),
    default=DEFAULT_TREE_HEIGHT,
    show_default=True,
    help="Tree height",
)
def zero_hashes_command(height: int):
    """Print the empty-subtree hash for every level."""
    for level, value in enumerate(zero_hashes(height)):
        label = "root" if level == height else f"{level:>4}"
        click.echo(f"{label}  {to_hex32(value)}")


def _sim_address(tag: int) -> str:
    return "0x" + f"{tag:040x}"


def _sim_field(label: bytes, index: int) -> int:
    digest = hashlib.sha256(label + index.to_bytes(4, "big")).digest()
    return int.from_bytes(digest, "big") % FIELD_SIZE


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--pool", "pool_id", help="Pool to exercise (default: first configured)")
@click.option("--deposits", type=click.IntRange(0), default=4, show_default=True)
@click.option("--withdrawals", type=click.IntRange(0), default=2, show_default=True)
def simulate(path: str, pool_id: Optional[str], deposits: int, withdrawals: int):
    """Run deposits and withdrawals against an in-memory deployment."""
    settings = _load_or_exit(path)
    if not settings.pools:
        _fail("settings define no pools")
    if pool_id is None:
        pool_id = settings.pools[0].pool_id
    try:
        pool_settings = settings.pool(pool_id)
    except KeyError:
        _fail(f"unknown pool: {pool_id}")

    vault = InMemoryVault()
    try:
        gate = build_router(
            settings,
            transfer=vault,
            token_transfer=vault,
            verifier=MockProofVerifier(),
        )
    except PrivacyPoolError as e:
        _fail(str(e))
    ledger = gate.ledger(pool_id)

    depositors = [_sim_address(0x1000 + i) for i in range(deposits)]
    if pool_settings.gated and depositors:
        gate.set_allow_list_batch(
            settings.manager, depositors, True, ["simulation"] * len(depositors)
        )
    if pool_settings.asset is AssetKind.TOKEN:
        for depositor in depositors:
            vault.balances[depositor] = ledger.denomination

    events: List[Event] = []
    for i, depositor in enumerate(depositors):
        commitment = _sim_field(b"commitment", i)
        try:
            record = gate.deposit(
                pool_id, commitment, sender=depositor, value=gate.required_value(pool_id)
            )
        except PrivacyPoolError as e:
            events.append(("deposit", short_hex(commitment), f"rejected: {e.reason}"))
        else:
            events.append(("deposit", short_hex(commitment), f"leaf {record.leaf_index}"))

    relayer = _sim_address(0x3000)
    fee = ledger.denomination // 100
    for j in range(withdrawals):
        nullifier = _sim_field(b"nullifier", j)
        recipient = _sim_address(0x2000 + j)
        root = ledger.last_root
        proof = mock_prove(
            [root, nullifier, address_to_int(recipient), address_to_int(relayer), fee, 0]
        )
        try:
            ledger.withdraw(proof, root, nullifier, recipient, relayer, fee)
        except PrivacyPoolError as e:
            events.append(("withdraw", short_hex(nullifier), f"rejected: {e.reason}"))
        else:
            events.append(("withdraw", short_hex(nullifier), f"paid {recipient}"))

    console = Console()
    table = Table(title=f"Simulation: pool {pool_id}")
    table.add_column("#", justify="right")
    table.add_column("Event", style="cyan")
    table.add_column("Id")
    table.add_column("Outcome")
    for n, (kind, ident, outcome) in enumerate(events, start=1):
        table.add_row(str(n), kind, ident, outcome)
    console.print(table)

    click.echo(f"Leaves: {ledger.next_index}/{ledger.capacity}")
    click.echo(f"Root: {to_hex32(ledger.last_root)}")
    click.echo(f"Custody balance: {ledger.balance}")
    if settings.fee_recipient is not None:
        click.echo(f"Fees collected: {vault.balance_of(settings.fee_recipient)}")


if __name__ == "__main__":
    main()
