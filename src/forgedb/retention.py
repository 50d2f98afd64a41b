"""Retention-based cleanup for timestamped application tables.

Deletes rows whose creation timestamp is older than a retention window.
The routine is generic over the table: the name is resolved through
:func:`forgedb.identifiers.resolve_table`, so it must be on the trusted
allow-list, must exist, and must carry the timestamp column. A table
without the column raises :class:`SchemaMismatchError` instead of quietly
deleting nothing.

Deletion is permanent. ``dry_run`` counts matching rows without deleting
and is off by default.

SECURITY NOTE:
Cleanup is meant to run with a role that can delete from every trusted
table regardless of row-level security (table owner or a BYPASSRLS role).
The allow-list is what keeps that privilege from being pointed at
arbitrary tables; configure it, never derive it from request input.

Concurrent cleanups of the same table are safe. A row removed by one
caller is simply not matched by the other.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable
from dataclasses import dataclass
from typing import Any

from forgedb.core.telemetry import maintenance_span
from forgedb.identifiers import TableRef, render, resolve_table
from forgedb.schema import APPLICATION_TABLES, DEFAULT_SCHEMA, TIMESTAMP_COLUMN

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30


def affected_rows(status: str | None) -> int:
    """Extract the row count from a command status tag such as ``DELETE 42``."""
    if not status:
        return 0
    tail = status.rsplit(" ", 1)[-1]
    return int(tail) if tail.isdigit() else 0


def _check_retention_days(retention_days: int) -> int:
    if isinstance(retention_days, bool) or not isinstance(retention_days, int):
        raise TypeError(f"retention_days must be an int, got {type(retention_days).__name__}")
    if retention_days < 0:
        raise ValueError(f"retention_days must be >= 0, got {retention_days}")
    return retention_days


@dataclass
class RetentionPolicy:
    """How long rows of one table may live before cleanup removes them.

    ``retention_days=0`` removes every row stamped at or before now.
    """

    table: str
    retention_days: int = DEFAULT_RETENTION_DAYS

    def __post_init__(self) -> None:
        _check_retention_days(self.retention_days)


def _cutoff_condition(retention_days: int) -> str:
    # Cutoff is computed by the server so the comparison uses the database clock
    # and works for both timestamp and timestamptz columns.
    if retention_days == 0:
        return "{column} <= now()"
    return "{column} < now() - make_interval(days => $1)"


async def cleanup_old_records(
    pool: Any,
    table: str | TableRef,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    *,
    schema: str = DEFAULT_SCHEMA,
    trusted_tables: Collection[str] = APPLICATION_TABLES,
    timestamp_column: str = TIMESTAMP_COLUMN,
    dry_run: bool = False,
) -> int:
    """Delete rows of *table* older than *retention_days*.

    Parameters
    ----------
    pool:
        asyncpg connection pool (or :class:`forgedb.db.Database`).
    table:
        Table name; must be on *trusted_tables*.
    retention_days:
        Rows whose timestamp is strictly earlier than ``now - retention_days``
        are deleted. ``0`` deletes everything stamped at or before now.
    schema:
        Schema containing the table.
    trusted_tables:
        Allow-list of tables this routine may delete from.
    timestamp_column:
        Creation-timestamp column the cutoff applies to.
    dry_run:
        If True, return the number of matching rows without deleting.

    Returns
    -------
    int
        Rows deleted, as reported by the server (or matched, in dry-run mode).

    Raises
    ------
    InvalidIdentifierError
        If the table or column name is not a plain identifier, or the table
        is not trusted. Raised before any query is issued.
    SchemaMismatchError
        If the table does not exist or has no *timestamp_column*.
    """
    _check_retention_days(retention_days)
    target = await resolve_table(
        pool,
        table,
        schema=schema,
        trusted_tables=trusted_tables,
        required_column=timestamp_column,
    )

    if retention_days == 0:
        logger.warning(
            "retention_days=0 on %s: every row stamped at or before now is eligible",
            target,
        )

    condition = _cutoff_condition(retention_days)
    args: tuple[int, ...] = () if retention_days == 0 else (retention_days,)

    with maintenance_span(
        "cleanup", table=str(target), retention_days=retention_days, dry_run=dry_run
    ):
        if dry_run:
            query = render(
                "SELECT COUNT(*) FROM {table} WHERE " + condition,
                target,
                column=timestamp_column,
            )
            count = int(await pool.fetchval(query, *args) or 0)
            logger.info(
                "DRY RUN: would delete %d rows from %s (retention=%dd)",
                count,
                target,
                retention_days,
            )
            return count

        query = render("DELETE FROM {table} WHERE " + condition, target, column=timestamp_column)
        status = await pool.execute(query, *args)

    deleted = affected_rows(status)
    logger.info("Deleted %d rows from %s (retention=%dd)", deleted, target, retention_days)
    return deleted


async def run_retention_cleanup(
    pool: Any,
    policies: Iterable[RetentionPolicy],
    *,
    schema: str = DEFAULT_SCHEMA,
    trusted_tables: Collection[str] = APPLICATION_TABLES,
    timestamp_column: str = TIMESTAMP_COLUMN,
    dry_run: bool = False,
) -> dict[str, int]:
    """Apply every policy in turn and return ``{table: rows}``.

    Policies run sequentially; the first error propagates and later
    policies are not applied.
    """
    policies = list(policies)
    logger.info(
        "Starting retention cleanup of %d table(s) (dry_run=%s)", len(policies), dry_run
    )

    counts: dict[str, int] = {}
    for policy in policies:
        counts[policy.table] = await cleanup_old_records(
            pool,
            policy.table,
            policy.retention_days,
            schema=schema,
            trusted_tables=trusted_tables,
            timestamp_column=timestamp_column,
            dry_run=dry_run,
        )

    logger.info("Retention cleanup complete: %s", counts)
    return counts
