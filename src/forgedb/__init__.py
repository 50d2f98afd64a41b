"""forgedb: maintenance utilities for the application PostgreSQL schema."""

from forgedb.identifiers import (
    InvalidIdentifierError,
    MaintenanceError,
    SchemaMismatchError,
    TableRef,
    quote_ident,
)
from forgedb.retention import RetentionPolicy, cleanup_old_records, run_retention_cleanup
from forgedb.stats import TableSize, TableStats, get_database_stats, get_table_stats
from forgedb.verification import (
    CheckExecutionError,
    CheckResult,
    CheckStatus,
    ExpectedSchema,
    SmokeTestError,
    VerificationReport,
    verify_schema,
)

__version__ = "0.1.0"

__all__ = [
    "CheckExecutionError",
    "CheckResult",
    "CheckStatus",
    "ExpectedSchema",
    "InvalidIdentifierError",
    "MaintenanceError",
    "RetentionPolicy",
    "SchemaMismatchError",
    "SmokeTestError",
    "TableRef",
    "TableSize",
    "TableStats",
    "VerificationReport",
    "cleanup_old_records",
    "get_database_stats",
    "get_table_stats",
    "quote_ident",
    "run_retention_cleanup",
    "verify_schema",
]
