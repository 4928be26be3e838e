"""Command-line interface for mail-triage.

Provides commands for configuration validation, pipeline runs, triage,
prioritisation and inspection of stored partitions.

Usage:
    python -m mailtriage validate-config
    python -m mailtriage init-db
    python -m mailtriage run --file data/emails.json
    python -m mailtriage triage --preview
    python -m mailtriage counts
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Coroutine
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
from rich.console import Console
from rich.table import Table

from mailtriage.config import validate_config_file
from mailtriage.core.logging import configure_logging

if TYPE_CHECKING:
    from mailtriage.config_schema import AppConfig
    from mailtriage.db.partitions import PartitionRegistry
    from mailtriage.db.store import DatabaseStore

console = Console()

LEVEL_COLORS = {
    "NO_ACTION": "dim",
    "SIMPLE": "green",
    "LOW_COMPLEX": "yellow",
    "HIGH_COMPLEX": "red",
}


@dataclass(frozen=True, slots=True)
class CLIDeps:
    """Shared dependencies initialized by _init_cli_deps()."""

    config: AppConfig
    store: DatabaseStore
    registry: PartitionRegistry


async def _init_cli_deps() -> CLIDeps:
    """Load config, open the database and build the partition registry.

    Prints actionable error messages and calls sys.exit(1) on failure.
    """
    from mailtriage.config import get_config
    from mailtriage.core.errors import ConfigLoadError, ConfigValidationError, DatabaseError
    from mailtriage.db.partitions import PartitionRegistry
    from mailtriage.db.store import DatabaseStore

    try:
        config = get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Create config/config.yaml (see config/config.yaml.example) or set "
            "[cyan]MAILTRIAGE_CONFIG_PATH[/cyan]."
        )
        sys.exit(1)

    # Re-apply logging now that the config's level and format are known
    ctx = click.get_current_context(silent=True)
    options = ctx.find_object(dict) if ctx else None
    configure_logging(config.logging, debug=bool(options and options.get("debug")))

    db_path = Path(config.storage.db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    store = DatabaseStore(db_path)
    try:
        await store.initialize()
    except DatabaseError as e:
        console.print(f"[red]Database error:[/red] {e}")
        sys.exit(1)

    return CLIDeps(
        config=config,
        store=store,
        registry=PartitionRegistry(store, config.category_names()),
    )


def _run_command(coro: Coroutine[Any, Any, None]) -> None:
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(1)


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """mail-triage - rule-driven email classification and triage."""
    ctx.ensure_object(dict)["debug"] = debug
    configure_logging(debug=debug)


@cli.command("validate-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file.

    Checks that the file exists and passes schema validation.
    Reports specific errors for invalid fields.
    """
    console.print(f"Validating config: [cyan]{config_path or 'config/config.yaml'}[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    else:
        console.print(f"\n[red]✗[/red] {message}")
        sys.exit(1)


@cli.command("init-db")
def init_db() -> None:
    """Create the database and its tables."""
    _run_command(_run_init_db())


async def _run_init_db() -> None:
    deps = await _init_cli_deps()
    console.print(f"[green]✓[/green] Database ready at [cyan]{deps.config.storage.db_path}[/cyan]")
    console.print(f"  {len(deps.registry)} category partitions registered")


@cli.command("run")
@click.option(
    "--file",
    "file_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read emails from a JSON file instead of the configured source",
)
def run(file_path: Path | None) -> None:
    """Run the pipeline once: check, fetch, store, prioritise, triage."""
    _run_command(_run_pipeline(file_path))


async def _run_pipeline(file_path: Path | None) -> None:
    from mailtriage.engine.pipeline import PipelineOrchestrator
    from mailtriage.fetch.sources import JsonFileFetcher, create_fetcher

    deps = await _init_cli_deps()
    if file_path:
        fetcher = JsonFileFetcher(file_path, exclude_senders=deps.config.fetch.exclude_senders)
    else:
        fetcher = create_fetcher(deps.config.fetch)

    orchestrator = PipelineOrchestrator.from_config(deps.config, deps.store, fetcher)
    summary = await orchestrator.run()

    console.print(f"\n[bold]Pipeline Run Summary[/bold] (run {summary.run_id[:8]}...)")
    if summary.status == "skipped":
        console.print(f"  [yellow]Skipped:[/yellow] {summary.reason}")
        for error in summary.errors:
            console.print(f"    [dim]{error}[/dim]")
        sys.exit(2)

    console.print(f"  Duration:    {summary.duration_ms}ms")
    console.print(f"  Fetched:     {summary.fetched}")
    console.print(f"  Inbound:     {summary.inbound}")
    console.print(f"  Raw:         {summary.raw_stored}")
    console.print(f"  Filtered:    {summary.filtered_stored}")
    for category, count in sorted(summary.route_stats.items()):
        console.print(f"    {category}: {count}")
    console.print(f"  Triaged:     {summary.triage_totals['total']}")
    for level, count in summary.triage_totals["by_level"].items():
        console.print(f"    [{LEVEL_COLORS[level]}]{level}[/{LEVEL_COLORS[level]}]: {count}")
    if summary.partial:
        console.print(f"  [yellow]Partial run: {len(summary.errors)} failed writes[/yellow]")
        for error in summary.errors:
            console.print(f"    [dim]{error}[/dim]")


@cli.command("triage")
@click.option("--preview", is_flag=True, help="Show decisions without writing them")
@click.option(
    "--include-triaged", is_flag=True, help="Re-decide records that were already triaged"
)
@click.option("--close-no-action", is_flag=True, help="Close NO_ACTION records after applying")
@click.option(
    "--queue-low-complex", is_flag=True, help="Queue LOW_COMPLEX records after applying"
)
def triage(
    preview: bool, include_triaged: bool, close_no_action: bool, queue_low_complex: bool
) -> None:
    """Triage the filtered partition."""
    _run_command(_run_triage(preview, include_triaged, close_no_action, queue_low_complex))


async def _run_triage(
    preview: bool, include_triaged: bool, close_no_action: bool, queue_low_complex: bool
) -> None:
    from mailtriage.engine.triage import TriageEngine

    deps = await _init_cli_deps()
    engine = TriageEngine(deps.registry, deps.config.triage)

    decisions, skipped = await engine.triage_partition(include_triaged=include_triaged)

    table = Table(box=None, padding=(0, 2))
    table.add_column("Key", style="cyan")
    table.add_column("Level")
    table.add_column("Suggested action")
    table.add_column("Reason", style="dim")
    for d in decisions:
        color = LEVEL_COLORS[d.level]
        table.add_row(d.key, f"[{color}]{d.level}[/{color}]", d.suggested_action or "-", d.reason)
    console.print(table)

    totals = engine.summarise(decisions)
    by_level = "  ".join(f"{level}: {count}" for level, count in totals["by_level"].items())
    console.print(f"\nTotal: [cyan]{totals['total']}[/cyan]  {by_level}")
    if skipped:
        console.print(f"[yellow]Skipped {len(skipped)} malformed records[/yellow]")

    if preview:
        console.print("[cyan]Preview mode:[/cyan] nothing written")
        return

    errors = await engine.apply(decisions)
    if close_no_action:
        closed = await engine.close_no_action()
        console.print(f"Closed {len(closed.moved)} NO_ACTION records")
        errors.extend(closed.errors)
    if queue_low_complex:
        queued = await engine.queue_low_complex()
        console.print(f"Queued {len(queued.moved)} LOW_COMPLEX records")
        errors.extend(queued.errors)
    for error in errors:
        console.print(f"  [red]{error}[/red]")


@cli.command("sort")
@click.option("--preview", is_flag=True, help="Show the ranking without writing it")
@click.option("--limit", default=None, type=int, help="Maximum rows to show")
def sort_records(preview: bool, limit: int | None) -> None:
    """Prioritise filtered records with the whitelist engine."""
    _run_command(_run_sort(preview, limit))


async def _run_sort(preview: bool, limit: int | None) -> None:
    from mailtriage.classifier.whitelist import WhitelistEngine, build_whitelist
    from mailtriage.engine.prioritize import PrioritizationPass

    deps = await _init_cli_deps()
    engine = WhitelistEngine(build_whitelist(deps.config), deps.config.scoring)
    result = await PrioritizationPass(engine, deps.registry).run(apply=not preview)

    table = Table(box=None, padding=(0, 2))
    table.add_column("Key", style="cyan")
    table.add_column("Priority")
    table.add_column("Score", justify="right")
    table.add_column("Category")
    table.add_column("Rule", style="dim")
    for item in result.ranked[:limit]:
        table.add_row(
            item.key,
            item.result.priority,
            str(item.result.score),
            item.result.category,
            item.result.rule_id or "-",
        )
    console.print(table)
    console.print(
        "\n" + "  ".join(f"{priority}: {count}" for priority, count in result.by_priority.items())
    )
    if preview:
        console.print("[cyan]Preview mode:[/cyan] nothing written")
    for error in result.errors:
        console.print(f"  [red]{error}[/red]")


@cli.command("counts")
def counts() -> None:
    """Show record counts per partition."""
    _run_command(_run_counts())


async def _run_counts() -> None:
    deps = await _init_cli_deps()
    table = Table(box=None, padding=(0, 2))
    table.add_column("Partition", style="cyan")
    table.add_column("Records", justify="right")
    for name, count in (await deps.registry.counts()).items():
        table.add_row(name, str(count))
    console.print(table)


@cli.command("list")
@click.argument("partition")
@click.option("--prefix", default=None, help="Only keys starting with this prefix")
@click.option("--limit", default=50, type=int, help="Maximum keys to show")
def list_keys(partition: str, prefix: str | None, limit: int) -> None:
    """List keys in a partition (raw, filtered or a category)."""
    _run_command(_run_list(partition, prefix, limit))


async def _run_list(partition: str, prefix: str | None, limit: int) -> None:
    from mailtriage.core.errors import UnknownPartitionError

    deps = await _init_cli_deps()
    try:
        handle = deps.registry.resolve(partition)
    except UnknownPartitionError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    keys = await handle.list(prefix)
    for key in keys[:limit]:
        console.print(key)
    console.print(f"\n[dim]{len(keys)} keys in {handle.name}[/dim]")


@cli.command("whitelist")
@click.option("--category", default=None, help="Only entries for this category")
def whitelist(category: str | None) -> None:
    """Show the effective whitelist (generated plus manual entries)."""
    from mailtriage.classifier.whitelist import build_whitelist
    from mailtriage.config import get_config
    from mailtriage.config_schema import normalize_category
    from mailtriage.core.errors import ConfigLoadError, ConfigValidationError

    try:
        config = get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(f"[red]Config error:[/red] {e}")
        sys.exit(1)

    entries = build_whitelist(config)
    if category:
        wanted = normalize_category(category)
        entries = [e for e in entries if wanted in e.categories]

    table = Table(box=None, padding=(0, 2))
    table.add_column("Pattern", style="cyan")
    table.add_column("Type")
    table.add_column("Priority")
    table.add_column("Category")
    table.add_column("Partitions", style="dim")
    for entry in entries:
        table.add_row(
            entry.pattern,
            entry.match_type,
            entry.priority,
            entry.category,
            ", ".join(entry.tags.partitions),
        )
    console.print(table)
    console.print(f"\n[dim]{len(entries)} entries[/dim]")


@cli.command("check-address")
@click.argument("address")
def check_address(address: str) -> None:
    """Report whether an address is whitelisted and where it belongs."""
    from mailtriage.classifier.whitelist import WhitelistEngine, build_whitelist
    from mailtriage.config import get_config
    from mailtriage.core.errors import ConfigLoadError, ConfigValidationError

    try:
        config = get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(f"[red]Config error:[/red] {e}")
        sys.exit(1)

    lookup = WhitelistEngine(build_whitelist(config), config.scoring).lookup_address(address)
    if lookup.entry is None:
        console.print(f"[yellow]{address}[/yellow] is not whitelisted ({lookup.partition})")
        sys.exit(1)

    status = "[green]allowed[/green]" if lookup.allowed else "[red]blocked[/red]"
    console.print(f"[cyan]{address}[/cyan] is {status}")
    console.print(f"  Entry:      {lookup.entry.pattern} ({lookup.entry.match_type})")
    console.print(f"  Categories: {', '.join(lookup.categories) or '-'}")
    console.print(f"  Partition:  {lookup.partition}")
    tags = lookup.tags
    if tags:
        console.print(f"  Legal type: {tags.legal_type or '-'}")
        console.print(f"  Jurisdiction: {tags.jurisdiction or '-'}")
        console.print(f"  Institution: {tags.institution or '-'}")
        console.print(f"  Priority:   {tags.priority}")


@cli.command("business-triage")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def business_triage(file_path: Path) -> None:
    """Pre-classify business emails from a JSON file."""
    from mailtriage.classifier.business import BusinessClassifier
    from mailtriage.config import get_config
    from mailtriage.core.errors import ConfigLoadError, ConfigValidationError, FetchError
    from mailtriage.fetch.sources import JsonFileFetcher

    try:
        config = get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(f"[red]Config error:[/red] {e}")
        sys.exit(1)

    try:
        emails = JsonFileFetcher(file_path).fetch_emails().emails
    except FetchError as e:
        console.print(f"[red]Read error:[/red] {e}")
        sys.exit(1)

    classifier = BusinessClassifier(config.business)
    table = Table(box=None, padding=(0, 2))
    table.add_column("Subject", style="cyan")
    table.add_column("Level")
    table.add_column("Category")
    table.add_column("Confidence", justify="right")
    table.add_column("Reasoning", style="dim")
    for email in emails:
        result = classifier.classify(email, emails)
        color = LEVEL_COLORS[result.level]
        table.add_row(
            email.subject,
            f"[{color}]{result.level}[/{color}]",
            result.category,
            f"{result.confidence:.0%}",
            result.reasoning,
        )
    console.print(table)

    first = classifier.select_by_priority(emails)
    if first is not None:
        console.print(f'\nMost urgent: [bold]"{first.subject}"[/bold] from {first.sender}')


@cli.command("purge-raw")
@click.option(
    "--days",
    default=None,
    type=int,
    help="Retention in days (default: storage.raw_retention_days)",
)
def purge_raw(days: int | None) -> None:
    """Delete raw records older than the retention window."""
    _run_command(_run_purge_raw(days))


async def _run_purge_raw(days: int | None) -> None:
    from datetime import UTC, datetime, timedelta

    deps = await _init_cli_deps()
    retention = days if days is not None else deps.config.storage.raw_retention_days
    if not retention:
        console.print(
            "[yellow]No retention configured.[/yellow] "
            "Pass --days or set storage.raw_retention_days."
        )
        sys.exit(1)

    cutoff = datetime.now(UTC) - timedelta(days=retention)
    purged = await deps.store.purge_before(deps.registry.raw.name, cutoff)
    console.print(f"Purged [cyan]{purged}[/cyan] raw records older than {retention} days")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
