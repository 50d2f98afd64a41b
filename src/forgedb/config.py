"""forgedb configuration loading and validation.

Reads ``forgedb.toml``, resolves ``${VAR}`` references against the
environment, and returns a validated :class:`ForgeConfig`. Every section is
optional; omitted values fall back to the reference layout in
:mod:`forgedb.schema`.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from forgedb.identifiers import InvalidIdentifierError, validate_identifier
from forgedb.retention import RetentionPolicy
from forgedb.schema import (
    APPLICATION_TABLES,
    DEFAULT_RETENTION_DAYS,
    DEFAULT_SCHEMA,
    TIMESTAMP_COLUMN,
)
from forgedb.verification import ExpectedSchema

DEFAULT_CONFIG_FILE = Path("forgedb.toml")

# Matches ${VAR_NAME}; names are letters, digits and underscores.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class DatabaseConfig:
    """Connection settings from [database]."""

    url: str | None = None
    schema: str = DEFAULT_SCHEMA
    min_pool_size: int = 1
    max_pool_size: int = 5


@dataclass
class LoggingConfig:
    """Logging configuration from [logging]."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class MaintenanceConfig:
    """Allow-list and retention policies from [maintenance]."""

    trusted_tables: tuple[str, ...] = APPLICATION_TABLES
    timestamp_column: str = TIMESTAMP_COLUMN
    retention: list[RetentionPolicy] = field(
        default_factory=lambda: [
            RetentionPolicy(table=table, retention_days=days)
            for table, days in DEFAULT_RETENTION_DAYS.items()
        ]
    )


@dataclass
class ForgeConfig:
    """Parsed and validated configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    maintenance: MaintenanceConfig = field(default_factory=MaintenanceConfig)
    verification: ExpectedSchema = field(default_factory=ExpectedSchema)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaf values are returned
    unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _identifier(value: Any, key: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string")
    try:
        return validate_identifier(value.strip())
    except InvalidIdentifierError as exc:
        raise ConfigError(f"Invalid {key}: {exc}") from exc


def _identifier_list(value: Any, key: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a list of strings")
    names = tuple(_identifier(item, key) for item in value)
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ConfigError(f"{key} lists {', '.join(duplicates)} more than once")
    return names


def _int(value: Any, key: str, *, minimum: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    if value < minimum:
        raise ConfigError(f"{key} must be >= {minimum}, got {value}")
    return value


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    section = data.get(key, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{key}] must be a table")
    return section


def _parse_database(section: dict[str, Any]) -> DatabaseConfig:
    url = section.get("url")
    if url is not None and (not isinstance(url, str) or not url.strip()):
        raise ConfigError("database.url must be a non-empty string when set")
    min_size = _int(section.get("min_pool_size", 1), "database.min_pool_size", minimum=1)
    max_size = _int(section.get("max_pool_size", 5), "database.max_pool_size", minimum=1)
    if max_size < min_size:
        raise ConfigError("database.max_pool_size must be >= database.min_pool_size")
    return DatabaseConfig(
        url=url.strip() if url else None,
        schema=_identifier(section.get("schema", DEFAULT_SCHEMA), "database.schema"),
        min_pool_size=min_size,
        max_pool_size=max_size,
    )


def _parse_logging(section: dict[str, Any]) -> LoggingConfig:
    log_format = str(section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(f"Invalid logging.format: {log_format!r}. Expected 'text' or 'json'.")
    return LoggingConfig(
        level=str(section.get("level", "INFO")).upper(),
        format=log_format,
        log_root=section.get("log_root"),
    )


def _parse_retention(entries: Any) -> list[RetentionPolicy]:
    if not isinstance(entries, list):
        raise ConfigError("[[maintenance.retention]] must be an array of tables")
    policies: list[RetentionPolicy] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict) or "table" not in entry:
            raise ConfigError(f"maintenance.retention[{index}] requires a 'table' key")
        key = f"maintenance.retention[{index}]"
        policies.append(
            RetentionPolicy(
                table=_identifier(entry["table"], f"{key}.table"),
                retention_days=_int(entry.get("days", 30), f"{key}.days"),
            )
        )
    return policies


def _parse_maintenance(section: dict[str, Any]) -> MaintenanceConfig:
    defaults = MaintenanceConfig()
    trusted = defaults.trusted_tables
    if "trusted_tables" in section:
        trusted = _identifier_list(section["trusted_tables"], "maintenance.trusted_tables")
    retention = defaults.retention
    if "retention" in section:
        retention = _parse_retention(section["retention"])

    untrusted = sorted({policy.table for policy in retention} - set(trusted))
    if untrusted:
        raise ConfigError(
            "Retention policies name tables outside maintenance.trusted_tables: "
            + ", ".join(untrusted)
        )

    return MaintenanceConfig(
        trusted_tables=trusted,
        timestamp_column=_identifier(
            section.get("timestamp_column", TIMESTAMP_COLUMN), "maintenance.timestamp_column"
        ),
        retention=retention,
    )


def _parse_verification(section: dict[str, Any]) -> ExpectedSchema:
    defaults = ExpectedSchema()
    seed_section = section.get("seed")
    seed_minimums = defaults.seed_minimums
    if seed_section is not None:
        if not isinstance(seed_section, dict):
            raise ConfigError("[verification.seed] must be a table")
        seed_minimums = {
            _identifier(table, "verification.seed"): _int(minimum, f"verification.seed.{table}")
            for table, minimum in seed_section.items()
        }

    index_prefix = section.get("index_prefix", defaults.index_prefix)
    if not isinstance(index_prefix, str):
        raise ConfigError("verification.index_prefix must be a string")

    return ExpectedSchema(
        tables=_identifier_list(
            section.get("expected_tables", list(defaults.tables)), "verification.expected_tables"
        ),
        functions=_identifier_list(
            section.get("expected_functions", list(defaults.functions)),
            "verification.expected_functions",
        ),
        min_functions=_int(
            section.get("min_functions", defaults.min_functions), "verification.min_functions"
        ),
        min_rls_tables=_int(
            section.get("min_rls_tables", defaults.min_rls_tables), "verification.min_rls_tables"
        ),
        index_prefix=index_prefix,
        min_indexes=_int(
            section.get("min_indexes", defaults.min_indexes), "verification.min_indexes"
        ),
        seed_minimums=seed_minimums,
    )


def parse_config(data: dict[str, Any]) -> ForgeConfig:
    """Validate an already-parsed TOML document."""
    data = resolve_env_vars(data)
    return ForgeConfig(
        database=_parse_database(_section(data, "database")),
        logging=_parse_logging(_section(data, "logging")),
        maintenance=_parse_maintenance(_section(data, "maintenance")),
        verification=_parse_verification(_section(data, "verification")),
    )


def load_config(config_path: Path | None = None) -> ForgeConfig:
    """Load and validate configuration.

    Parameters
    ----------
    config_path:
        Path to a TOML file. When ``None``, ``./forgedb.toml`` is used if it
        exists, otherwise built-in defaults.

    Raises
    ------
    ConfigError
        If an explicit file is missing, contains invalid TOML, or holds
        invalid values.
    """
    if config_path is None:
        if not DEFAULT_CONFIG_FILE.exists():
            return ForgeConfig()
        config_path = DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        data = tomllib.loads(config_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc

    return parse_config(data)
