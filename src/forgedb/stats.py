"""Read-only table statistics and planner maintenance."""

from __future__ import annotations

import logging
from collections.abc import Collection
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from forgedb.core.telemetry import maintenance_span
from forgedb.identifiers import InvalidIdentifierError, TableRef, render, resolve_table
from forgedb.schema import APPLICATION_TABLES, DEFAULT_SCHEMA, TIMESTAMP_COLUMN

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TableStats:
    """Row count and creation-time range of one table.

    Both timestamps are ``None`` when the table is empty.
    """

    table: str
    total_rows: int
    oldest_record: datetime | None = None
    newest_record: datetime | None = None

    @property
    def empty(self) -> bool:
        return self.total_rows == 0


@dataclass(frozen=True)
class TableSize:
    """Size summary of one table as reported by the statistics collector."""

    table: str
    row_estimate: int
    table_size: str
    index_size: str
    total_size: str


async def get_table_stats(
    pool: Any,
    table: str | TableRef,
    *,
    schema: str = DEFAULT_SCHEMA,
    trusted_tables: Collection[str] = APPLICATION_TABLES,
    timestamp_column: str = TIMESTAMP_COLUMN,
) -> TableStats:
    """Count rows of *table* and find its oldest and newest timestamps.

    Runs a single aggregate query. Raises the same errors as
    :func:`forgedb.identifiers.resolve_table`.
    """
    target = await resolve_table(
        pool,
        table,
        schema=schema,
        trusted_tables=trusted_tables,
        required_column=timestamp_column,
    )
    query = render(
        """
        SELECT COUNT(*) AS total_rows,
               MIN({column}) AS oldest_record,
               MAX({column}) AS newest_record
        FROM {table}
        """,
        target,
        column=timestamp_column,
    )
    with maintenance_span("stats", table=str(target)):
        row = await pool.fetchrow(query)

    total = int(row["total_rows"]) if row is not None else 0
    if total == 0:
        return TableStats(table=str(target), total_rows=0)
    return TableStats(
        table=str(target),
        total_rows=total,
        oldest_record=row["oldest_record"],
        newest_record=row["newest_record"],
    )


@maintenance_span("database_stats")
async def get_database_stats(pool: Any, schema: str = DEFAULT_SCHEMA) -> list[TableSize]:
    """Return size statistics for every table in *schema*, largest first.

    ``row_estimate`` is the collector's live-tuple estimate, not an exact
    count; use :func:`get_table_stats` for that.
    """
    rows = await pool.fetch(
        """
        SELECT c.relname AS table_name,
               COALESCE(s.n_live_tup, 0) AS row_estimate,
               pg_size_pretty(pg_relation_size(c.oid)) AS table_size,
               pg_size_pretty(pg_indexes_size(c.oid)) AS index_size,
               pg_size_pretty(pg_total_relation_size(c.oid)) AS total_size
        FROM pg_class c
        JOIN pg_namespace n ON n.oid = c.relnamespace
        LEFT JOIN pg_stat_user_tables s ON s.relid = c.oid
        WHERE n.nspname = $1
          AND c.relkind IN ('r', 'p')
        ORDER BY pg_total_relation_size(c.oid) DESC, c.relname
        """,
        schema,
    )
    return [
        TableSize(
            table=row["table_name"],
            row_estimate=int(row["row_estimate"]),
            table_size=row["table_size"],
            index_size=row["index_size"],
            total_size=row["total_size"],
        )
        for row in rows
    ]


async def analyze_tables(pool: Any, schema: str = DEFAULT_SCHEMA) -> list[str]:
    """Run ``ANALYZE`` on every table in *schema* and return the tables analyzed.

    Tables whose names are not plain identifiers are skipped with a warning.
    """
    rows = await pool.fetch(
        "SELECT tablename FROM pg_tables WHERE schemaname = $1 ORDER BY tablename",
        schema,
    )
    analyzed: list[str] = []
    for row in rows:
        try:
            target = TableRef.parse(row["tablename"], schema)
        except InvalidIdentifierError as exc:
            logger.warning("Skipping ANALYZE: %s", exc)
            continue
        with maintenance_span("analyze", table=str(target)):
            await pool.execute(f"ANALYZE {target.sql}")
        analyzed.append(target.name)

    logger.info("Analyzed %d table(s) in schema %s", len(analyzed), schema)
    return analyzed
