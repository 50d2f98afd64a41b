"""Shared test fixtures for the forgedb test suite.

``MockPool`` is an in-memory stand-in for an asyncpg pool. It understands
exactly the statements forgedb issues: catalog lookups, the aggregate and
count queries over ``"schema"."table"`` targets, retention deletes, ANALYZE,
and calls to the utility functions used by the smoke test.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from forgedb.schema import APPLICATION_TABLES, CORE_FUNCTIONS, SEED_MINIMUMS


_TARGET_PATTERN = re.compile(r'(?:FROM|ANALYZE)\s+"(\w+)"\."(\w+)"')
_COLUMN_PATTERN = re.compile(r'WHERE\s+"(\w+)"')


@dataclass
class MockTable:
    columns: set[str] = field(default_factory=lambda: {"id", "created_at"})
    rows: list[dict[str, Any]] = field(default_factory=list)
    rls: bool = True


class MockPool:
    """Mock asyncpg pool backed by in-memory tables."""

    def __init__(self, schema: str = "public", now: datetime | None = None) -> None:
        self.schema = schema
        self.now = now or datetime.now(UTC)
        self.tables: dict[str, MockTable] = {}
        self.functions: set[str] = set()
        self.indexes: list[str] = []
        self.executed_queries: list[tuple[str, str, tuple]] = []
        # Substring of a query -> exception raised when that query runs.
        self.failures: dict[str, Exception] = {}
        self.transactions = 0

    # -- Setup helpers -----------------------------------------------------

    def add_table(
        self,
        name: str,
        *,
        ages_days: Sequence[float] = (),
        columns: set[str] | None = None,
        rls: bool = True,
        rows: int = 0,
    ) -> MockTable:
        """Add a table with one row per entry of *ages_days* plus *rows* fresh rows."""
        table = MockTable(columns=columns or {"id", "created_at"}, rls=rls)
        for age in ages_days:
            table.rows.append({"created_at": self.now - timedelta(days=age)})
        for _ in range(rows):
            table.rows.append({"created_at": self.now})
        self.tables[name] = table
        return table

    def provision_complete_schema(self) -> None:
        """Populate a schema that satisfies every default verification check."""
        for name in APPLICATION_TABLES:
            self.add_table(name, rows=SEED_MINIMUMS.get(name, 0))
        self.functions = set(CORE_FUNCTIONS)
        self.indexes = [f"idx_{n}" for n in range(20)]

    # -- Introspection -----------------------------------------------------

    def queries(self, kind: str | None = None) -> list[str]:
        return [q for k, q, _ in self.executed_queries if kind is None or k == kind]

    # -- Query dispatch ----------------------------------------------------

    def _record(self, kind: str, query: str, args: tuple) -> None:
        self.executed_queries.append((kind, query, args))
        for fragment, exc in self.failures.items():
            if fragment in query:
                raise exc

    def _target(self, query: str) -> MockTable:
        match = _TARGET_PATTERN.search(query)
        assert match is not None, f"no table target in {query!r}"
        assert match.group(1) == self.schema
        return self.tables[match.group(2)]

    def _matches_cutoff(self, query: str, args: tuple) -> Any:
        column = _COLUMN_PATTERN.search(query).group(1)
        if "make_interval" in query:
            cutoff = self.now - timedelta(days=args[0])
            return lambda row: row[column] < cutoff
        return lambda row: row[column] <= self.now

    async def fetch(self, query: str, *args: Any) -> list[dict[str, Any]]:
        self._record("fetch", query, args)

        if "information_schema.columns" in query:
            schema, name = args
            table = self.tables.get(name) if schema == self.schema else None
            return [{"column_name": column} for column in sorted(table.columns)] if table else []

        if "FROM pg_tables" in query:
            return [{"tablename": name} for name in sorted(self.tables)]

        if "pg_total_relation_size" in query:
            return [
                {
                    "table_name": name,
                    "row_estimate": len(table.rows),
                    "table_size": "8192 bytes",
                    "index_size": "16 kB",
                    "total_size": "24 kB",
                }
                for name, table in sorted(self.tables.items())
            ]

        return []

    async def fetchrow(self, query: str, *args: Any) -> dict[str, Any] | None:
        self._record("fetchrow", query, args)

        if "MIN(" in query:
            table = self._target(query)
            stamps = [row["created_at"] for row in table.rows]
            return {
                "total_rows": len(stamps),
                "oldest_record": min(stamps) if stamps else None,
                "newest_record": max(stamps) if stamps else None,
            }
        return None

    async def fetchval(self, query: str, *args: Any) -> Any:
        self._record("fetchval", query, args)

        if "information_schema.tables" in query:
            return sum(1 for name in args[1] if name in self.tables)
        if "information_schema.routines" in query:
            return len(set(args[1]) & self.functions)
        if "rowsecurity" in query:
            return sum(1 for name in args[1] if name in self.tables and self.tables[name].rls)
        if "pg_indexes" in query:
            return sum(1 for name in self.indexes if name.startswith(args[1]))

        if "generate_uuid_v4()" in query:
            return uuid.uuid4()
        if "is_user_authenticated()" in query:
            return False
        if "validate_api_key_format(" in query:
            return True

        if query.startswith("SELECT COUNT(*) FROM"):
            table = self._target(query)
            if "WHERE" not in query:
                return len(table.rows)
            matches = self._matches_cutoff(query, args)
            return sum(1 for row in table.rows if matches(row))

        return None

    async def execute(self, query: str, *args: Any) -> str:
        self._record("execute", query, args)

        if query.startswith("DELETE FROM"):
            table = self._target(query)
            matches = self._matches_cutoff(query, args)
            before = len(table.rows)
            table.rows = [row for row in table.rows if not matches(row)]
            return f"DELETE {before - len(table.rows)}"
        if query.startswith("ANALYZE"):
            self._target(query)
            return "ANALYZE"
        if query.startswith("CREATE OR REPLACE FUNCTION"):
            self.functions.add(re.search(r"\.(\w+)\(", query).group(1))
            return "CREATE FUNCTION"
        if query.startswith("DROP TRIGGER"):
            return "DROP TRIGGER"
        if query.startswith("CREATE TRIGGER"):
            return "CREATE TRIGGER"
        return "OK"

    # -- Connection/transaction support ------------------------------------

    @asynccontextmanager
    async def acquire(self):
        yield self

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        yield


class MockDatabase(MockPool):
    """MockPool with the ``connect``/``close`` lifecycle of ``forgedb.db.Database``."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.db_name = "forge_test"
        self.connected = False
        self.closed = False

    async def connect(self) -> MockDatabase:
        self.connected = True
        return self

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def mock_pool() -> MockPool:
    return MockPool()


@pytest.fixture
def mock_database(monkeypatch: pytest.MonkeyPatch) -> MockDatabase:
    """Route every CLI database connection to one in-memory database."""
    db = MockDatabase()
    monkeypatch.setattr("forgedb.cli._open_database", lambda config: db)
    return db
