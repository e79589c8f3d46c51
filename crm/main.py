#!/usr/bin/env python3
"""
CRM duplicate engine - command line entry point.

Offline review of duplicates for a single tenant: batch scans, one-off
checks, merge previews and merges, and the matching settings.

Usage:
    python -m crm.main scan contacts --tenant <uuid>
    python -m crm.main check companies --tenant <uuid> --name "Acme" --website acme.com
    python -m crm.main preview contacts <survivor> <loser> --tenant <uuid>
    python -m crm.main merge contacts <survivor> <loser> --tenant <uuid> --user <uuid>
    python -m crm.main settings show --tenant <uuid>
"""

import sys
import uuid
from pathlib import Path

import click
from loguru import logger
from rich.console import Console
from rich.table import Table

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from crm.database import get_session
from crm.deduplication import (
    DedupeError,
    DuplicateDetectionService,
    EntityType,
    MatchingConfigStore,
    MergeService,
    PreviewService,
    RequestContext,
)

console = Console()

ENTITY_TYPES = click.Choice([e.value for e in EntityType])

# Read-only commands do not act on behalf of a user
SYSTEM_USER = uuid.UUID(int=0)


def _fail(error: DedupeError):
    console.print(f"[red]{type(error).__name__}: {error}[/red]")
    sys.exit(1)


def _parse_selections(pairs: tuple[str, ...]) -> dict:
    selections = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"Expected FIELD=VALUE, got '{pair}'", param_hint="--set")
        key, value = pair.split("=", 1)
        selections[key.strip()] = value
    return selections


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def cli(debug):
    """CRM Duplicate Detection & Merge"""
    if debug:
        from crm.utils.logging import setup_logging
        setup_logging(level="DEBUG")


@cli.command()
@click.argument("entity_type", type=ENTITY_TYPES)
@click.option("--tenant", type=click.UUID, required=True, help="Tenant id")
@click.option("--threshold", type=click.IntRange(0, 100), default=None, help="Override the tenant threshold")
@click.option("--page", type=click.IntRange(min=1), default=1)
@click.option("--page-size", type=click.IntRange(min=1), default=20)
def scan(entity_type: str, tenant: uuid.UUID, threshold, page: int, page_size: int):
    """Batch scan for duplicate pairs."""
    ctx = RequestContext(tenant_id=tenant, user_id=SYSTEM_USER)
    try:
        with get_session() as session:
            result = DuplicateDetectionService(session).scan_for_duplicates(
                ctx, entity_type, threshold=threshold, page=page, page_size=page_size
            )
    except DedupeError as e:
        _fail(e)

    console.print(f"\n[bold blue]Duplicate {entity_type}[/bold blue] (page {result.page}, {result.total_count} pairs)\n")

    table = Table()
    table.add_column("Score", justify="right")
    table.add_column("Record A")
    table.add_column("Record B")
    table.add_column("Ids")

    for pair in result.items:
        color = "green" if pair.score >= 90 else "yellow"
        table.add_row(
            f"[{color}]{pair.score}[/{color}]",
            f"{pair.record_a.primary}\n[dim]{pair.record_a.secondary or '-'}[/dim]",
            f"{pair.record_b.primary}\n[dim]{pair.record_b.secondary or '-'}[/dim]",
            f"{pair.record_a.entity_id}\n{pair.record_b.entity_id}",
        )

    console.print(table)


@cli.command()
@click.argument("entity_type", type=ENTITY_TYPES)
@click.option("--tenant", type=click.UUID, required=True, help="Tenant id")
@click.option("--first-name", default=None)
@click.option("--last-name", default=None)
@click.option("--email", default=None)
@click.option("--name", default=None, help="Company name")
@click.option("--website", default=None, help="Company website")
def check(entity_type: str, tenant: uuid.UUID, **fields):
    """Check a field set against existing records."""
    ctx = RequestContext(tenant_id=tenant, user_id=SYSTEM_USER)
    query = {k: v for k, v in fields.items() if v is not None}

    try:
        with get_session() as session:
            matches = DuplicateDetectionService(session).find_matches(ctx, entity_type, query)
    except DedupeError as e:
        _fail(e)

    if not matches:
        console.print("[yellow]No matches[/yellow]")
        return

    table = Table()
    table.add_column("Score", justify="right")
    table.add_column("Id")
    table.add_column("Name")
    table.add_column("Email / Website")
    for match in matches:
        table.add_row(str(match.score), str(match.entity_id), match.primary, match.secondary or "-")
    console.print(table)


@cli.command()
@click.argument("entity_type", type=ENTITY_TYPES)
@click.argument("survivor_id", type=click.UUID)
@click.argument("loser_id", type=click.UUID)
@click.option("--tenant", type=click.UUID, required=True, help="Tenant id")
def preview(entity_type: str, survivor_id: uuid.UUID, loser_id: uuid.UUID, tenant: uuid.UUID):
    """Show what a merge would transfer."""
    ctx = RequestContext(tenant_id=tenant, user_id=SYSTEM_USER)
    try:
        with get_session() as session:
            result = PreviewService(session).preview(ctx, entity_type, survivor_id, loser_id)
    except DedupeError as e:
        _fail(e)

    table = Table()
    table.add_column("Relationship")
    table.add_column("Count", justify="right")
    for name, count in result.counts_by_type.items():
        table.add_row(name, str(count) if count else "[dim]0[/dim]")
    table.add_row("[bold]Total[/bold]", f"[bold]{result.total_count}[/bold]")
    console.print(table)


@cli.command()
@click.argument("entity_type", type=ENTITY_TYPES)
@click.argument("survivor_id", type=click.UUID)
@click.argument("loser_id", type=click.UUID)
@click.option("--tenant", type=click.UUID, required=True, help="Tenant id")
@click.option("--user", type=click.UUID, required=True, help="Acting user id (recorded in the audit log)")
@click.option("--set", "selections", multiple=True, help="Field value for the survivor, FIELD=VALUE")
@click.confirmation_option(prompt="Merging cannot be undone. Continue?")
def merge(entity_type: str, survivor_id: uuid.UUID, loser_id: uuid.UUID, tenant: uuid.UUID, user: uuid.UUID, selections):
    """Merge LOSER_ID into SURVIVOR_ID."""
    ctx = RequestContext(tenant_id=tenant, user_id=user)
    field_selections = _parse_selections(selections)

    try:
        with get_session() as session:
            result = MergeService(session, entity_type).merge(ctx, survivor_id, loser_id, field_selections)
    except DedupeError as e:
        _fail(e)

    console.print(f"[green]Merged {result.loser_id} into {result.survivor_id}[/green]")
    for name, count in result.transfer_counts.items():
        console.print(f"  {name}: {count}")
    logger.debug(f"Merge completed at {result.merged_at.isoformat()}")


@cli.group()
def settings():
    """Duplicate matching settings."""
    pass


@settings.command("show")
@click.option("--tenant", type=click.UUID, required=True, help="Tenant id")
def settings_show(tenant: uuid.UUID):
    """Show the tenant's settings for every entity type."""
    ctx = RequestContext(tenant_id=tenant, user_id=SYSTEM_USER)
    with get_session() as session:
        configs = MatchingConfigStore(session).list_all(ctx)

    table = Table()
    table.add_column("Entity type")
    table.add_column("Threshold", justify="right")
    table.add_column("Auto-detect")
    for config in configs:
        enabled = "[green]on[/green]" if config.auto_detection_enabled else "[dim]off[/dim]"
        table.add_row(config.entity_type, str(config.similarity_threshold), enabled)
    console.print(table)


@settings.command("set")
@click.argument("entity_type", type=ENTITY_TYPES)
@click.option("--tenant", type=click.UUID, required=True, help="Tenant id")
@click.option("--threshold", type=click.IntRange(0, 100), required=True)
@click.option("--auto-detect/--no-auto-detect", default=True)
def settings_set(entity_type: str, tenant: uuid.UUID, threshold: int, auto_detect: bool):
    """Update the tenant's settings for one entity type."""
    ctx = RequestContext(tenant_id=tenant, user_id=SYSTEM_USER)
    try:
        with get_session() as session:
            config = MatchingConfigStore(session).update(ctx, entity_type, threshold, auto_detect)
    except DedupeError as e:
        _fail(e)

    console.print(
        f"[green]{config.entity_type}: threshold={config.similarity_threshold}, "
        f"auto_detect={config.auto_detection_enabled}[/green]"
    )


if __name__ == "__main__":
    cli()
