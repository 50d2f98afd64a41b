"""CLI for forgedb: verify and maintain the application database."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

import asyncpg
import click

from forgedb import __version__
from forgedb.config import ConfigError, ForgeConfig, load_config
from forgedb.core.logging import configure_logging, set_target_context
from forgedb.db import Database
from forgedb.functions import attach_updated_at_trigger, install_utility_functions
from forgedb.identifiers import MaintenanceError
from forgedb.retention import cleanup_old_records, run_retention_cleanup
from forgedb.stats import analyze_tables, get_database_stats, get_table_stats
from forgedb.validators import validate_api_key_format
from forgedb.verification import format_result, verify_schema

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _State:
    config: ForgeConfig


def _open_database(config: ForgeConfig) -> Database:
    db_config = config.database
    pool_sizes = {
        "min_pool_size": db_config.min_pool_size,
        "max_pool_size": db_config.max_pool_size,
    }
    if db_config.url:
        return Database.from_url(db_config.url, schema=db_config.schema, **pool_sizes)
    return Database.from_env(schema=db_config.schema, **pool_sizes)


async def _with_database(config: ForgeConfig, action: Callable[[Database], Awaitable[T]]) -> T:
    db = _open_database(config)
    set_target_context(db.db_name)
    await db.connect()
    try:
        return await action(db)
    finally:
        await db.close()


def _run(ctx: click.Context, action: Callable[[Database], Awaitable[T]]) -> T:
    """Run *action* against a connected database, mapping maintenance errors to exit 1."""
    state: _State = ctx.obj
    try:
        return asyncio.run(_with_database(state.config, action))
    except MaintenanceError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    except (OSError, asyncpg.PostgresError) as exc:
        click.echo(f"Database error: {exc}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to forgedb.toml (defaults to ./forgedb.toml when present)",
)
@click.option("--log-level", default=None, help="Override logging.level")
@click.option(
    "--log-format",
    type=click.Choice(["text", "json"]),
    default=None,
    help="Override logging.format",
)
@click.pass_context
def cli(
    ctx: click.Context, config_path: Path | None, log_level: str | None, log_format: str | None
) -> None:
    """forgedb: maintenance tooling for the application PostgreSQL schema."""
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(2)

    log_config = config.logging
    configure_logging(
        level=log_level or log_config.level,
        fmt=log_format or log_config.format,
        log_root=Path(log_config.log_root) if log_config.log_root else None,
    )
    ctx.obj = _State(config=config)


@cli.command()
@click.pass_context
def verify(ctx: click.Context) -> None:
    """Run the schema checklist and the function smoke test."""
    config: ForgeConfig = ctx.obj.config
    report = _run(
        ctx,
        lambda db: verify_schema(db, config.verification, schema=config.database.schema),
    )

    for result in report.results:
        click.echo(format_result(result))
    for line in report.diagnostics:
        click.echo(line)

    if not report.passed:
        click.echo(f"{len(report.failures)} check(s) failed")
        sys.exit(1)


@cli.command()
@click.argument("table")
@click.option("--days", type=click.IntRange(min=0), default=30, show_default=True)
@click.option("--dry-run", is_flag=True, help="Count matching rows without deleting")
@click.option("--yes", is_flag=True, help="Confirm --days 0, which removes every row")
@click.pass_context
def cleanup(ctx: click.Context, table: str, days: int, dry_run: bool, yes: bool) -> None:
    """Delete rows of TABLE older than --days days."""
    if days == 0 and not dry_run and not yes:
        click.echo("--days 0 deletes every row in the table; pass --yes to confirm", err=True)
        sys.exit(1)

    config: ForgeConfig = ctx.obj.config
    maintenance = config.maintenance
    count = _run(
        ctx,
        lambda db: cleanup_old_records(
            db,
            table,
            days,
            schema=config.database.schema,
            trusted_tables=maintenance.trusted_tables,
            timestamp_column=maintenance.timestamp_column,
            dry_run=dry_run,
        ),
    )
    verb = "Would delete" if dry_run else "Deleted"
    click.echo(f"{verb} {count} row(s) from {table}")


@cli.command()
@click.option("--dry-run", is_flag=True, help="Count rows the policies would remove")
@click.pass_context
def maintain(ctx: click.Context, dry_run: bool) -> None:
    """ANALYZE every table, then apply the configured retention policies."""
    config: ForgeConfig = ctx.obj.config
    maintenance = config.maintenance
    schema = config.database.schema

    async def _maintain(db: Database) -> tuple[list[str], dict[str, int]]:
        analyzed = await analyze_tables(db, schema)
        counts = await run_retention_cleanup(
            db,
            maintenance.retention,
            schema=schema,
            trusted_tables=maintenance.trusted_tables,
            timestamp_column=maintenance.timestamp_column,
            dry_run=dry_run,
        )
        return analyzed, counts

    analyzed, counts = _run(ctx, _maintain)
    click.echo(f"Analyzed {len(analyzed)} table(s)")
    verb = "Would delete" if dry_run else "Deleted"
    for table, count in counts.items():
        click.echo(f"  {verb} {count} row(s) from {table}")


@cli.command()
@click.argument("table")
@click.pass_context
def stats(ctx: click.Context, table: str) -> None:
    """Show the row count and timestamp range of TABLE."""
    config: ForgeConfig = ctx.obj.config
    result = _run(
        ctx,
        lambda db: get_table_stats(
            db,
            table,
            schema=config.database.schema,
            trusted_tables=config.maintenance.trusted_tables,
            timestamp_column=config.maintenance.timestamp_column,
        ),
    )
    click.echo(f"Table:  {result.table}")
    click.echo(f"Rows:   {result.total_rows}")
    click.echo(f"Oldest: {result.oldest_record or '-'}")
    click.echo(f"Newest: {result.newest_record or '-'}")


@cli.command("db-stats")
@click.pass_context
def db_stats(ctx: click.Context) -> None:
    """List every table in the schema with its size."""
    config: ForgeConfig = ctx.obj.config
    sizes = _run(ctx, lambda db: get_database_stats(db, config.database.schema))
    if not sizes:
        click.echo(f"No tables found in schema {config.database.schema}")
        return

    click.echo(f"{'Table':<28} {'Rows':>10} {'Table':>10} {'Indexes':>10} {'Total':>10}")
    click.echo("-" * 72)
    for size in sizes:
        click.echo(
            f"{size.table:<28} {size.row_estimate:>10} {size.table_size:>10} "
            f"{size.index_size:>10} {size.total_size:>10}"
        )


@cli.command("install-functions")
@click.option(
    "--trigger",
    "trigger_tables",
    multiple=True,
    help="Also attach the updated_at trigger to this table (repeatable)",
)
@click.pass_context
def install_functions(ctx: click.Context, trigger_tables: tuple[str, ...]) -> None:
    """Create or replace the utility stored functions."""
    config: ForgeConfig = ctx.obj.config
    schema = config.database.schema
    trusted = config.maintenance.trusted_tables

    async def _install(db: Database) -> tuple[list[str], list[str]]:
        names = await install_utility_functions(db, schema=schema, trusted_tables=trusted)
        triggers = [
            await attach_updated_at_trigger(db, table, schema=schema, trusted_tables=trusted)
            for table in trigger_tables
        ]
        return names, triggers

    names, triggers = _run(ctx, _install)
    click.echo(f"Installed {len(names)} function(s) in schema {schema}")
    for trigger in triggers:
        click.echo(f"  trigger: {trigger}")


@cli.command("validate-key")
@click.argument("provider")
@click.argument("key")
def validate_key(provider: str, key: str) -> None:
    """Check that KEY has the format PROVIDER issues (offline)."""
    if validate_api_key_format(provider, key):
        click.echo(f"valid {provider} key format")
        return
    click.echo(f"invalid {provider} key format")
    sys.exit(1)
