"""Reference layout of the PromptCraft Forge application schema.

These names describe what a fully provisioned database is expected to
contain. They seed the defaults in :mod:`forgedb.config`; deployments can
override every one of them in ``forgedb.toml``.
"""

from __future__ import annotations

DEFAULT_SCHEMA = "public"

# Column every maintained table stamps on insert.
TIMESTAMP_COLUMN = "created_at"

APPLICATION_TABLES: tuple[str, ...] = (
    "user_profiles",
    "user_preferences",
    "api_providers",
    "api_configurations",
    "api_usage_logs",
    "prompt_frameworks",
    "prompt_history",
    "prompt_templates",
    "feedback",
)

CORE_FUNCTIONS: tuple[str, ...] = (
    "update_updated_at_column",
    "generate_uuid_v4",
    "get_current_user_id",
    "is_user_authenticated",
    "validate_api_key_format",
    "encrypt_sensitive_data",
    "decrypt_sensitive_data",
)

MIN_FUNCTIONS = 7
MIN_RLS_TABLES = 8

INDEX_PREFIX = "idx_"
MIN_INDEXES = 20

# Reference catalogs populated at setup time: table -> minimum row count.
SEED_MINIMUMS: dict[str, int] = {
    "api_providers": 3,
    "prompt_frameworks": 9,
}

# Retention applied by ``forgedb maintain`` when the config names none.
DEFAULT_RETENTION_DAYS: dict[str, int] = {
    "api_usage_logs": 90,
}
