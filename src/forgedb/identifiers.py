"""Identifier-safe SQL construction for metadata-driven maintenance routines.

Table names arrive from callers, config files and the command line. They
are never interpolated as text: a name is first parsed into a
:class:`TableRef`, which only accepts plain SQL identifiers, and is then
rendered with PostgreSQL identifier quoting. Values (cutoffs, schema names
used in catalog lookups) are always bound as ``$n`` parameters.

Routines that run with elevated privileges additionally resolve the table
against a trusted allow-list and against ``information_schema`` before any
statement touches it.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Collection
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# NAMEDATALEN - 1; longer names are silently truncated by the server.
MAX_IDENTIFIER_LENGTH = 63

# PostgreSQL keywords that are reserved in every context.
RESERVED_WORDS = frozenset(
    {
        "all", "analyse", "analyze", "and", "any", "array", "as", "asc",
        "asymmetric", "both", "case", "cast", "check", "collate", "column",
        "constraint", "create", "current_catalog", "current_date",
        "current_role", "current_time", "current_timestamp", "current_user",
        "default", "deferrable", "desc", "distinct", "do", "else", "end",
        "except", "false", "fetch", "for", "foreign", "from", "grant",
        "group", "having", "in", "initially", "intersect", "into", "lateral",
        "leading", "limit", "localtime", "localtimestamp", "not", "null",
        "offset", "on", "only", "or", "order", "placing", "primary",
        "references", "returning", "select", "session_user", "some",
        "symmetric", "system_user", "table", "then", "to", "trailing", "true",
        "union", "unique", "user", "using", "variadic", "when", "where",
        "window", "with",
    }
)


class MaintenanceError(Exception):
    """Base class for errors raised by the maintenance routines."""


class InvalidIdentifierError(MaintenanceError):
    """Raised when a caller-supplied name cannot be used as a SQL identifier.

    Raised before any statement is sent to the database.
    """

    def __init__(self, name: object, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid identifier {name!r}: {reason}")


class SchemaMismatchError(MaintenanceError):
    """Raised when a target table is absent or lacks a required column."""

    def __init__(self, table: TableRef, reason: str) -> None:
        self.table = table
        self.reason = reason
        super().__init__(f"{table}: {reason}")


def validate_identifier(name: object) -> str:
    """Return *name* unchanged if it is a plain SQL identifier.

    Raises
    ------
    InvalidIdentifierError
        For non-strings, empty names, names longer than 63 characters,
        anything outside ``[A-Za-z0-9_]`` (quotes, semicolons, whitespace,
        dots, dashes), a leading digit, or a reserved keyword.
    """
    if not isinstance(name, str):
        raise InvalidIdentifierError(name, "expected a string")
    if not name:
        raise InvalidIdentifierError(name, "empty name")
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise InvalidIdentifierError(name, f"longer than {MAX_IDENTIFIER_LENGTH} characters")
    if _IDENTIFIER_PATTERN.fullmatch(name) is None:
        raise InvalidIdentifierError(name, "only letters, digits and underscores are allowed")
    if name.lower() in RESERVED_WORDS:
        raise InvalidIdentifierError(name, "reserved SQL keyword")
    return name


def quote_ident(name: object) -> str:
    """Validate *name* and return it as a double-quoted SQL identifier."""
    validated = validate_identifier(name)
    return '"' + validated.replace('"', '""') + '"'


@dataclass(frozen=True)
class TableRef:
    """A validated, schema-qualified table name.

    Build instances with :meth:`parse`; the constructor performs the same
    validation so a ``TableRef`` can never hold an unchecked name.
    """

    schema: str
    name: str

    def __post_init__(self) -> None:
        validate_identifier(self.schema)
        validate_identifier(self.name)

    @classmethod
    def parse(cls, name: str | TableRef, schema: str = "public") -> TableRef:
        if isinstance(name, TableRef):
            return name
        return cls(schema=schema, name=name)

    @property
    def sql(self) -> str:
        """Quoted ``"schema"."name"`` form, safe to embed in statement text."""
        return f"{quote_ident(self.schema)}.{quote_ident(self.name)}"

    def __str__(self) -> str:
        return f"{self.schema}.{self.name}"


def render(template: str, table: TableRef, **identifiers: str) -> str:
    """Substitute identifiers into a statement template.

    ``{table}`` becomes the quoted qualified table name; any other
    ``{placeholder}`` must be supplied as a keyword and is quoted as a
    single identifier. Literal braces in the template must be doubled.
    """
    quoted = {key: quote_ident(value) for key, value in identifiers.items()}
    return template.format(table=table.sql, **quoted)


async def table_columns(pool: Any, table: TableRef) -> set[str]:
    """Return the column names of *table*, or an empty set if it does not exist."""
    rows = await pool.fetch(
        """
        SELECT column_name
        FROM information_schema.columns
        WHERE table_schema = $1
          AND table_name = $2
        """,
        table.schema,
        table.name,
    )
    return {row["column_name"] for row in rows}


async def resolve_table(
    pool: Any,
    name: str | TableRef,
    *,
    schema: str = "public",
    trusted_tables: Collection[str] | None,
    required_column: str | None = None,
) -> TableRef:
    """Turn caller input into a :class:`TableRef` that is safe to act on.

    Parameters
    ----------
    pool:
        asyncpg pool (or :class:`forgedb.db.Database`).
    name:
        Table name as supplied by the caller.
    schema:
        Schema the table lives in.
    trusted_tables:
        Allow-list of table names. ``None`` disables the allow-list check and
        must only be used by read-only callers.
    required_column:
        Column the caller's statement depends on.

    Raises
    ------
    InvalidIdentifierError
        If the name is not a plain identifier or is not on the allow-list.
        No query is issued in that case.
    SchemaMismatchError
        If the table does not exist or lacks *required_column*.
    """
    table = TableRef.parse(name, schema)
    if required_column is not None:
        validate_identifier(required_column)
    if trusted_tables is not None and table.name not in trusted_tables:
        raise InvalidIdentifierError(table.name, "not in the trusted table allow-list")

    columns = await table_columns(pool, table)
    if not columns:
        raise SchemaMismatchError(table, "table does not exist")
    if required_column is not None and required_column not in columns:
        raise SchemaMismatchError(table, f"missing required column {required_column!r}")

    logger.debug("Resolved maintenance target %s", table)
    return table
