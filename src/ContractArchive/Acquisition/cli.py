"""Typer-based CLI for the contract acquisition pipeline."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .addresses import to_checksum_address
from .archive import ArchiveStore
from .config import ArchiveConfig, ChainConfig, export_config_schema, load_config
from .errors import ArchiveError, RunAbortedError
from .inputs import read_addresses, select_addresses, validate_address_list
from .integrity import audit_contract_dir
from .logging_config import setup_logging
from .orchestrator import Orchestrator, RunSummary
from .provenance import ProvenanceTracker

console = Console()
app = typer.Typer(help="Contract metadata archive: acquisition pipeline")

LOGGER = logging.getLogger(__name__)

_CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to YAML/JSON config file (chains.json accepted)",
    envvar="CARCHIVE_CONFIG",
)


def _load(config: Optional[str], overrides: Optional[Dict[str, Any]], verbose: bool) -> ArchiveConfig:
    cfg = load_config(path=config, cli_overrides=overrides)
    if verbose:
        cfg.logging.level = "DEBUG"
    setup_logging(cfg.logging)
    return cfg


def _chains(cfg: ArchiveConfig, names: Optional[List[str]]) -> List[ChainConfig]:
    if names:
        return [cfg.get_chain(name) for name in names]
    return list(cfg.chains.values())


def _print_summary(summary: RunSummary) -> None:
    colour = "red" if summary.breaker_tripped or summary.aborted else "green"
    console.print(
        Panel(
            f"[bold {colour}]Run {summary.run_id}[/bold {colour}]\n"
            f"Processed: {summary.processed}\n"
            f"Successful: {summary.successful}\n"
            f"Skipped: {summary.skipped}\n"
            f"Planned (dry-run): {summary.planned}\n"
            f"Failed: {summary.failed}\n"
            f"Failure rate: {summary.failure_rate:.0%}",
            title="Fetch Summary",
        )
    )
    if summary.failures:
        table = Table(title="Failures")
        table.add_column("Chain")
        table.add_column("Address")
        table.add_column("Error")
        for failure in summary.failures:
            table.add_row(failure.chain_name, failure.address, f"{failure.error_type}: {failure.message}")
        console.print(table)


@app.command()
def fetch(
    config: Optional[str] = _CONFIG_OPTION,
    chain: Optional[List[str]] = typer.Option(None, "--chain", help="Chain name or id (repeatable)"),
    address: Optional[str] = typer.Option(None, "--address", help="Single address to fetch"),
    start: Optional[int] = typer.Option(None, "--from", help="Start index in the address list"),
    end: Optional[int] = typer.Option(None, "--to", help="End index (exclusive)"),
    limit: Optional[int] = typer.Option(None, "--limit", help="Maximum addresses per chain"),
    force: bool = typer.Option(False, "--force", help="Refetch even when provenance is fresh"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Plan only, write nothing"),
    strict: bool = typer.Option(False, "--strict", help="Abort on the first failure"),
    no_verify: bool = typer.Option(False, "--no-verify", help="Skip bytecode verification"),
    sweep_orphans: bool = typer.Option(
        False, "--sweep-orphans", help="Mark archived contracts missing from the inputs"
    ),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose"),
) -> None:
    """Fetch contract metadata for every listed address."""
    overrides: Dict[str, Any] = {"run": {"force": force, "dry_run": dry_run, "strict": strict}}
    if no_verify:
        overrides["run"]["verify_bytecode"] = False
    try:
        cfg = _load(config, overrides, verbose)
        chains = _chains(cfg, chain)
    except ArchiveError as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        raise typer.Exit(code=1)

    targets: List[Tuple[ChainConfig, str]] = []
    inputs: Dict[str, List[str]] = {}
    for chain_cfg in chains:
        try:
            listed = read_addresses(cfg.paths.chains_root, chain_cfg.name)
            selected = select_addresses(listed, address=address, start=start, end=end, limit=limit)
        except ArchiveError as e:
            console.print(f"[red]✗ {chain_cfg.name}: {e}[/red]")
            raise typer.Exit(code=1)
        if address and not selected:
            console.print(f"[yellow]⚠ {address} not listed for {chain_cfg.name}[/yellow]")
        inputs[chain_cfg.name] = listed
        targets.extend((chain_cfg, a) for a in selected)
        console.print(f"[cyan]{chain_cfg.name}[/cyan]: {len(selected)} address(es)")

    with Orchestrator.build(cfg) as orchestrator:
        try:
            summary = orchestrator.run(targets)
        except RunAbortedError as e:
            if e.summary is not None:
                _print_summary(e.summary)
            console.print(f"[red]✗ {e}[/red]")
            raise typer.Exit(code=1)

        if sweep_orphans and address is None and start is None and end is None and limit is None:
            for chain_cfg in chains:
                marked = orchestrator.sweep_orphans(chain_cfg, inputs[chain_cfg.name])
                if marked:
                    console.print(f"[yellow]Orphaned on {chain_cfg.name}: {len(marked)}[/yellow]")

    _print_summary(summary)
    if summary.breaker_tripped:
        console.print(
            f"[red]✗ High failure rate ({summary.failure_rate:.0%}), exiting with error[/red]"
        )
        raise typer.Exit(code=1)


@app.command()
def verify(
    config: Optional[str] = _CONFIG_OPTION,
    chain: Optional[List[str]] = typer.Option(None, "--chain", help="Chain name or id"),
    address: Optional[str] = typer.Option(None, "--address", help="Single archived address"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose"),
) -> None:
    """Audit archived contracts against their checksum manifests."""
    try:
        cfg = _load(config, None, verbose)
        store = ArchiveStore(cfg.paths.archive_root)
        chain_names = [c.name for c in _chains(cfg, chain)] if chain else store.list_chains()
        if address:
            directories = [store.contract_dir(name, to_checksum_address(address)) for name in chain_names]
            directories = [d for d in directories if d.is_dir()]
        else:
            directories = list(store.iter_contract_dirs(chain_names))
    except ArchiveError as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        raise typer.Exit(code=1)

    table = Table(title="Archive Verification")
    table.add_column("Contract")
    table.add_column("Status")
    table.add_column("Details")
    invalid = 0
    for directory in directories:
        report = audit_contract_dir(directory)
        if not report.valid:
            invalid += 1
        status = "[green]valid[/green]" if report.valid else "[red]invalid[/red]"
        details = "; ".join(report.errors + report.warnings)
        table.add_row(f"{directory.parent.name}/{directory.name}", status, details)
    console.print(table)
    console.print(f"{len(directories) - invalid}/{len(directories)} valid")
    if invalid:
        raise typer.Exit(code=1)


@app.command("validate-input")
def validate_input(
    config: Optional[str] = _CONFIG_OPTION,
    chain: Optional[List[str]] = typer.Option(None, "--chain", help="Chain name or id"),
) -> None:
    """Check address lists for malformed and duplicate entries."""
    try:
        cfg = load_config(path=config)
        chains = _chains(cfg, chain)
    except ArchiveError as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        raise typer.Exit(code=1)

    ok = True
    for chain_cfg in chains:
        report = validate_address_list(cfg.paths.chains_root, chain_cfg.name)
        colour = "green" if report.valid else "red"
        console.print(f"[{colour}]{chain_cfg.name}[/{colour}]: {report.total} address(es) in {report.path}")
        for number, value in report.invalid:
            console.print(f"  line {number}: invalid address {value!r}")
        for number, value in report.duplicates:
            console.print(f"  line {number}: duplicate {value}")
        for number, value in report.not_checksummed:
            console.print(f"  [yellow]line {number}: not checksummed {value}[/yellow]")
        ok = ok and report.valid
    if not ok:
        raise typer.Exit(code=1)


@app.command()
def status(config: Optional[str] = _CONFIG_OPTION) -> None:
    """Show input and archive counts per chain."""
    try:
        cfg = load_config(path=config)
    except ArchiveError as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        raise typer.Exit(code=1)

    store = ArchiveStore(cfg.paths.archive_root)
    tracker = ProvenanceTracker(store, staleness_threshold_s=cfg.run.staleness_threshold_s)
    table = Table(title="Archive Status")
    for column in ("Chain", "Chain ID", "Inputs", "Archived", "Stale", "Orphaned"):
        table.add_column(column)
    for chain_cfg in cfg.chains.values():
        archived = store.list_contracts(chain_cfg.name)
        stale = orphaned = 0
        for address in archived:
            try:
                check = tracker.check_staleness(chain_cfg.name, address)
            except ArchiveError as e:
                LOGGER.warning("Unreadable provenance for %s/%s: %s", chain_cfg.name, address, e)
                stale += 1
                continue
            stale += int(check.is_stale)
            orphaned += int(bool(check.prior_record and check.prior_record.orphaned))
        inputs = len(read_addresses(cfg.paths.chains_root, chain_cfg.name))
        table.add_row(
            chain_cfg.name,
            str(chain_cfg.chain_id),
            str(inputs),
            str(len(archived)),
            str(stale),
            str(orphaned),
        )
    console.print(table)


@app.command("print-config")
def print_config(config: Optional[str] = _CONFIG_OPTION) -> None:
    """Print merged effective config."""
    try:
        cfg = load_config(path=config)
    except ArchiveError as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        raise typer.Exit(code=1)
    typer.echo(json.dumps(cfg.model_dump(mode="json"), indent=2))
    console.print(f"Config hash: {cfg.config_hash()[:8]}...")


@app.command("config-schema")
def config_schema(
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Write the JSON Schema here instead of stdout"
    ),
) -> None:
    """Export the configuration JSON Schema for editors and validators.

    Example:
        contract-archive config-schema -o config-schema.json
    """
    document = json.dumps(export_config_schema(), indent=2, sort_keys=True)
    if output is None:
        typer.echo(document)
        return
    try:
        output.write_text(document + "\n", encoding="utf-8")
    except OSError as e:
        console.print(f"[red]✗ Error exporting schema: {e}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ Schema exported to {output}[/green]")


if __name__ == "__main__":
    app()
