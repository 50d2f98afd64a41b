"""Schema verification checklist.

Compares a live schema against an :class:`ExpectedSchema`: which tables and
utility functions exist, which tables have row-level security enabled, how
many conventionally named indexes exist, and whether the reference catalogs
are seeded. Every check is a read over catalog views or a plain row count.

Checks are independent. A check whose query fails (missing table,
permission denied, absent view) becomes a FAIL result carrying the error
text; the remaining checks still run.

A separate smoke-test step calls a few utility functions to confirm they
execute. Its outcome is reported as diagnostics only and never changes the
overall verdict.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from forgedb.core.telemetry import maintenance_span
from forgedb.identifiers import MaintenanceError, TableRef, quote_ident, render
from forgedb.schema import (
    APPLICATION_TABLES,
    CORE_FUNCTIONS,
    DEFAULT_SCHEMA,
    INDEX_PREFIX,
    MIN_FUNCTIONS,
    MIN_INDEXES,
    MIN_RLS_TABLES,
    SEED_MINIMUMS,
)

logger = logging.getLogger(__name__)

SMOKE_TEST_API_KEY = "sk-test123456789012345678901234567890"
SMOKE_TEST_OK = "All basic functions are working correctly"


class CheckStatus(enum.StrEnum):
    PASS = "PASS"
    FAIL = "FAIL"


class CheckExecutionError(Exception):
    """Raised when the query behind a verification check fails."""

    def __init__(self, check: str, cause: BaseException) -> None:
        self.check = check
        self.cause = cause
        super().__init__(f"{type(cause).__name__}: {cause}")


class SmokeTestError(Exception):
    """Raised when a utility function invoked by the smoke test throws."""

    def __init__(self, function: str, cause: BaseException) -> None:
        self.function = function
        self.cause = cause
        super().__init__(f"{function}: {cause}")


@dataclass
class ExpectedSchema:
    """What a fully provisioned schema contains."""

    tables: tuple[str, ...] = APPLICATION_TABLES
    functions: tuple[str, ...] = CORE_FUNCTIONS
    min_functions: int = MIN_FUNCTIONS
    min_rls_tables: int = MIN_RLS_TABLES
    index_prefix: str = INDEX_PREFIX
    min_indexes: int = MIN_INDEXES
    seed_minimums: dict[str, int] = field(default_factory=lambda: dict(SEED_MINIMUMS))


@dataclass(frozen=True)
class CheckResult:
    name: str
    status: CheckStatus
    detail: str
    deficit: int = 0

    @property
    def passed(self) -> bool:
        return self.status is CheckStatus.PASS


@dataclass
class VerificationReport:
    """Ordered check results plus smoke-test diagnostics."""

    results: list[CheckResult] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(result.passed for result in self.results)

    @property
    def failures(self) -> list[CheckResult]:
        return [result for result in self.results if not result.passed]


def _threshold_result(
    name: str,
    count: int,
    required: int,
    *,
    exact: bool = False,
    pass_detail: str,
    fail_label: str,
) -> CheckResult:
    ok = count == required if exact else count >= required
    if ok:
        return CheckResult(name, CheckStatus.PASS, pass_detail)
    deficit = max(required - count, 0)
    if exact and deficit == 0:
        return CheckResult(
            name, CheckStatus.FAIL, f"{fail_label}: expected {required}, found {count}"
        )
    return CheckResult(name, CheckStatus.FAIL, f"{fail_label}: {deficit}", deficit=deficit)


async def _count(pool: Any, check: str, query: str, *args: Any) -> int:
    try:
        value = await pool.fetchval(query, *args)
    except Exception as exc:
        raise CheckExecutionError(check, exc) from exc
    return int(value or 0)


async def check_tables(pool: Any, expected: ExpectedSchema, schema: str) -> CheckResult:
    count = await _count(
        pool,
        "tables",
        """
        SELECT COUNT(*)
        FROM information_schema.tables
        WHERE table_schema = $1
          AND table_name = ANY($2::text[])
        """,
        schema,
        list(expected.tables),
    )
    return _threshold_result(
        "tables",
        count,
        len(expected.tables),
        exact=True,
        pass_detail="All expected tables exist",
        fail_label="Missing tables",
    )


async def check_functions(pool: Any, expected: ExpectedSchema, schema: str) -> CheckResult:
    count = await _count(
        pool,
        "functions",
        """
        SELECT COUNT(DISTINCT routine_name)
        FROM information_schema.routines
        WHERE routine_schema = $1
          AND routine_name = ANY($2::text[])
        """,
        schema,
        list(expected.functions),
    )
    return _threshold_result(
        "functions",
        count,
        expected.min_functions,
        pass_detail="Core functions exist",
        fail_label="Missing functions",
    )


async def check_row_level_security(
    pool: Any, expected: ExpectedSchema, schema: str
) -> CheckResult:
    count = await _count(
        pool,
        "rls",
        """
        SELECT COUNT(*)
        FROM pg_tables
        WHERE schemaname = $1
          AND rowsecurity
          AND tablename = ANY($2::text[])
        """,
        schema,
        list(expected.tables),
    )
    return _threshold_result(
        "rls",
        count,
        expected.min_rls_tables,
        pass_detail="RLS enabled on tables",
        fail_label="RLS not enabled on all tables",
    )


async def check_indexes(pool: Any, expected: ExpectedSchema, schema: str) -> CheckResult:
    # Prefix compared literally; LIKE would treat "_" as a wildcard.
    count = await _count(
        pool,
        "indexes",
        """
        SELECT COUNT(*)
        FROM pg_indexes
        WHERE schemaname = $1
          AND left(indexname, length($2::text)) = $2::text
        """,
        schema,
        expected.index_prefix,
    )
    return _threshold_result(
        "indexes",
        count,
        expected.min_indexes,
        pass_detail="Indexes created",
        fail_label="Missing indexes",
    )


async def check_seed_rows(pool: Any, table: str, minimum: int, schema: str) -> CheckResult:
    name = f"seed:{table}"
    target = TableRef.parse(table, schema)
    count = await _count(pool, name, render("SELECT COUNT(*) FROM {table}", target))
    return _threshold_result(
        name,
        count,
        minimum,
        pass_detail=f"{table} seeded",
        fail_label=f"Missing {table} rows",
    )


async def _run_check(name: str, check: Callable[[], Awaitable[CheckResult]]) -> CheckResult:
    with maintenance_span("check", check=name):
        try:
            result = await check()
        except (CheckExecutionError, MaintenanceError) as exc:
            logger.warning("Check %s could not run: %s", name, exc)
            return CheckResult(name, CheckStatus.FAIL, f"Check failed to run: {exc}")
    log = logger.info if result.passed else logger.warning
    log("Check %s: %s - %s", name, result.status, result.detail)
    return result


async def run_checks(
    pool: Any,
    expected: ExpectedSchema | None = None,
    *,
    schema: str = DEFAULT_SCHEMA,
) -> list[CheckResult]:
    """Run the full battery of checks and return results in presentation order."""
    expected = expected or ExpectedSchema()

    checks: list[tuple[str, Callable[[], Awaitable[CheckResult]]]] = [
        ("tables", lambda: check_tables(pool, expected, schema)),
        ("functions", lambda: check_functions(pool, expected, schema)),
        ("rls", lambda: check_row_level_security(pool, expected, schema)),
        ("indexes", lambda: check_indexes(pool, expected, schema)),
    ]
    for table, minimum in expected.seed_minimums.items():
        checks.append(
            (
                f"seed:{table}",
                lambda table=table, minimum=minimum: check_seed_rows(pool, table, minimum, schema),
            )
        )

    return [await _run_check(name, check) for name, check in checks]


async def _invoke(pool: Any, function: str, query: str, *args: Any) -> Any:
    try:
        return await pool.fetchval(query, *args)
    except Exception as exc:
        raise SmokeTestError(function, exc) from exc


async def run_smoke_tests(pool: Any, *, schema: str = DEFAULT_SCHEMA) -> list[str]:
    """Call a few utility functions and describe the outcome.

    Returns diagnostic lines. Never raises for a failing function.
    """
    try:
        qualified = quote_ident(schema)
    except MaintenanceError as exc:
        logger.warning("Error testing functions: %s", exc)
        return [f"Error testing functions: {exc}"]

    calls: list[tuple[str, str, tuple[Any, ...]]] = [
        ("generate_uuid_v4", f"SELECT {qualified}.generate_uuid_v4()", ()),
        ("is_user_authenticated", f"SELECT {qualified}.is_user_authenticated()", ()),
        (
            "validate_api_key_format",
            f"SELECT {qualified}.validate_api_key_format($1, $2)",
            ("openai", SMOKE_TEST_API_KEY),
        ),
    ]

    diagnostics: list[str] = []
    for function, query, args in calls:
        try:
            await _invoke(pool, function, query, *args)
        except SmokeTestError as exc:
            logger.warning("Error testing functions: %s", exc)
            diagnostics.append(f"Error testing functions: {exc}")

    if not diagnostics:
        diagnostics.append(SMOKE_TEST_OK)
        logger.info(SMOKE_TEST_OK)
    return diagnostics


async def verify_schema(
    pool: Any,
    expected: ExpectedSchema | None = None,
    *,
    schema: str = DEFAULT_SCHEMA,
) -> VerificationReport:
    """Run the checklist followed by the smoke test."""
    results = await run_checks(pool, expected, schema=schema)
    diagnostics = await run_smoke_tests(pool, schema=schema)
    report = VerificationReport(results=results, diagnostics=diagnostics)
    logger.info(
        "Verification finished: %d passed, %d failed",
        len(results) - len(report.failures),
        len(report.failures),
    )
    return report


def format_result(result: CheckResult) -> str:
    """Render one result as a single status line."""
    return f"{result.status.value:<4}  {result.name:<24} {result.detail}"
