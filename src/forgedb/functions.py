"""Installer for the schema's utility stored functions.

Creates (or replaces) the helper functions the application schema relies
on: the ``updated_at`` trigger function, UUID generation, auth-context
lookups, format validators, the base64 placeholder codec, and the
definer-privileged ``cleanup_old_records``/``get_table_stats`` routines.

The definer routines embed the trusted table allow-list at install time
and quote the table name with ``%I``, so granting EXECUTE on them does not
grant DELETE on arbitrary tables. Who may execute them is left to the
deployment's GRANTs.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from typing import Any

from forgedb.core.telemetry import maintenance_span
from forgedb.identifiers import (
    InvalidIdentifierError,
    TableRef,
    quote_ident,
    render,
    resolve_table,
    validate_identifier,
)
from forgedb.schema import APPLICATION_TABLES, DEFAULT_SCHEMA

logger = logging.getLogger(__name__)

# Literal braces are doubled: templates are rendered with str.format.
_TEMPLATES: dict[str, str] = {
    "update_updated_at_column": r"""
CREATE OR REPLACE FUNCTION {schema}.update_updated_at_column()
RETURNS TRIGGER AS $$
BEGIN
    NEW.updated_at = timezone('utc'::text, now());
    RETURN NEW;
END;
$$ LANGUAGE plpgsql
""",
    "generate_uuid_v4": r"""
CREATE OR REPLACE FUNCTION {schema}.generate_uuid_v4()
RETURNS UUID AS $$
    SELECT gen_random_uuid();
$$ LANGUAGE sql VOLATILE
""",
    "get_current_user_id": r"""
CREATE OR REPLACE FUNCTION {schema}.get_current_user_id()
RETURNS UUID AS $$
BEGIN
    RETURN auth.uid();
END;
$$ LANGUAGE plpgsql STABLE SECURITY DEFINER SET search_path = pg_catalog, pg_temp
""",
    "is_user_authenticated": r"""
CREATE OR REPLACE FUNCTION {schema}.is_user_authenticated()
RETURNS BOOLEAN AS $$
BEGIN
    RETURN auth.uid() IS NOT NULL;
END;
$$ LANGUAGE plpgsql STABLE SECURITY DEFINER SET search_path = pg_catalog, pg_temp
""",
    "is_valid_email": r"""
CREATE OR REPLACE FUNCTION {schema}.is_valid_email(email TEXT)
RETURNS BOOLEAN AS $$
    SELECT email ~* '^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{{2,}}$';
$$ LANGUAGE sql IMMUTABLE
""",
    "validate_api_key_format": r"""
CREATE OR REPLACE FUNCTION {schema}.validate_api_key_format(provider_name TEXT, api_key TEXT)
RETURNS BOOLEAN AS $$
BEGIN
    CASE provider_name
        WHEN 'openai' THEN
            RETURN api_key ~ '^sk-(proj-)?[a-zA-Z0-9_-]{{32,}}$';
        WHEN 'gemini' THEN
            RETURN api_key ~ '^AIza[a-zA-Z0-9_-]{{35}}$';
        WHEN 'anthropic' THEN
            RETURN api_key ~ '^sk-ant-[a-zA-Z0-9]{{32,}}$';
        ELSE
            RETURN FALSE;
    END CASE;
END;
$$ LANGUAGE plpgsql IMMUTABLE
""",
    # Placeholder only: base64, no key, no cipher.
    "encrypt_sensitive_data": r"""
CREATE OR REPLACE FUNCTION {schema}.encrypt_sensitive_data(data TEXT)
RETURNS TEXT AS $$
BEGIN
    RETURN encode(convert_to(data, 'UTF8'), 'base64');
END;
$$ LANGUAGE plpgsql IMMUTABLE
""",
    # NULL for malformed input, '' only for empty input.
    "decrypt_sensitive_data": r"""
CREATE OR REPLACE FUNCTION {schema}.decrypt_sensitive_data(encrypted_data TEXT)
RETURNS TEXT AS $$
BEGIN
    RETURN convert_from(decode(encrypted_data, 'base64'), 'UTF8');
EXCEPTION
    WHEN invalid_parameter_value OR character_not_in_repertoire THEN
        RETURN NULL;
END;
$$ LANGUAGE plpgsql IMMUTABLE
""",
    "cleanup_old_records": r"""
CREATE OR REPLACE FUNCTION {schema}.cleanup_old_records(
    target_table TEXT,
    retention_days INTEGER DEFAULT 30
)
RETURNS INTEGER AS $$
DECLARE
    deleted_count INTEGER;
BEGIN
    IF retention_days IS NULL OR retention_days < 0 THEN
        RAISE EXCEPTION 'retention_days must be >= 0, got %', retention_days
            USING ERRCODE = 'invalid_parameter_value';
    END IF;
    IF NOT (target_table = ANY({trusted})) THEN
        RAISE EXCEPTION 'table % is not in the trusted table allow-list', target_table
            USING ERRCODE = 'insufficient_privilege';
    END IF;
    IF NOT EXISTS (
        SELECT 1
        FROM information_schema.columns
        WHERE table_schema = '{schema_name}'
          AND table_name = target_table
          AND column_name = 'created_at'
    ) THEN
        RAISE EXCEPTION 'table %.% has no created_at column', '{schema_name}', target_table
            USING ERRCODE = 'undefined_column';
    END IF;

    IF retention_days = 0 THEN
        EXECUTE format(
            'DELETE FROM %I.%I WHERE created_at <= now()',
            '{schema_name}', target_table
        );
    ELSE
        EXECUTE format(
            'DELETE FROM %I.%I WHERE created_at < now() - make_interval(days => $1)',
            '{schema_name}', target_table
        ) USING retention_days;
    END IF;
    GET DIAGNOSTICS deleted_count = ROW_COUNT;
    RETURN deleted_count;
END;
$$ LANGUAGE plpgsql SECURITY DEFINER SET search_path = pg_catalog, pg_temp
""",
    "get_table_stats": r"""
CREATE OR REPLACE FUNCTION {schema}.get_table_stats(target_table TEXT)
RETURNS TABLE(
    total_rows BIGINT,
    oldest_record TIMESTAMP WITH TIME ZONE,
    newest_record TIMESTAMP WITH TIME ZONE
) AS $$
BEGIN
    IF NOT (target_table = ANY({trusted})) THEN
        RAISE EXCEPTION 'table % is not in the trusted table allow-list', target_table
            USING ERRCODE = 'insufficient_privilege';
    END IF;
    RETURN QUERY EXECUTE format(
        'SELECT COUNT(*), MIN(created_at)::timestamptz, MAX(created_at)::timestamptz FROM %I.%I',
        '{schema_name}', target_table
    );
END;
$$ LANGUAGE plpgsql STABLE SECURITY DEFINER SET search_path = pg_catalog, pg_temp
""",
}

UTILITY_FUNCTION_NAMES: tuple[str, ...] = tuple(_TEMPLATES)


def _text_array(names: Collection[str]) -> str:
    # Names are validated identifiers, so they cannot contain quotes.
    literals = ", ".join(f"'{validate_identifier(name)}'" for name in names)
    return f"ARRAY[{literals}]::text[]"


def utility_function_ddl(
    schema: str = DEFAULT_SCHEMA,
    trusted_tables: Collection[str] = APPLICATION_TABLES,
) -> dict[str, str]:
    """Return ``{function name: CREATE OR REPLACE statement}`` for *schema*."""
    values = {
        "schema": quote_ident(schema),
        "schema_name": validate_identifier(schema),
        "trusted": _text_array(sorted(trusted_tables)),
    }
    return {name: template.format(**values).strip() for name, template in _TEMPLATES.items()}


@maintenance_span("install_functions")
async def install_utility_functions(
    pool: Any,
    *,
    schema: str = DEFAULT_SCHEMA,
    trusted_tables: Collection[str] = APPLICATION_TABLES,
) -> list[str]:
    """Create or replace every utility function in one transaction.

    Returns the installed function names in creation order.
    """
    statements = utility_function_ddl(schema, trusted_tables)
    async with pool.acquire() as conn:
        async with conn.transaction():
            for name, ddl in statements.items():
                logger.debug("Installing %s.%s", schema, name)
                await conn.execute(ddl)
    logger.info("Installed %d utility functions in schema %s", len(statements), schema)
    return list(statements)


async def attach_updated_at_trigger(
    pool: Any,
    table: str | TableRef,
    *,
    schema: str = DEFAULT_SCHEMA,
    trusted_tables: Collection[str] = APPLICATION_TABLES,
) -> str:
    """(Re)create the ``BEFORE UPDATE`` trigger that maintains ``updated_at``.

    Returns the trigger name.
    """
    target = await resolve_table(
        pool,
        table,
        schema=schema,
        trusted_tables=trusted_tables,
        required_column="updated_at",
    )
    trigger = f"update_{target.name}_updated_at"
    try:
        validate_identifier(trigger)
    except InvalidIdentifierError as exc:
        raise InvalidIdentifierError(target.name, f"trigger name unusable ({exc.reason})") from exc

    function = f"{quote_ident(target.schema)}.update_updated_at_column()"
    async with pool.acquire() as conn:
        async with conn.transaction():
            await conn.execute(
                render("DROP TRIGGER IF EXISTS {trigger} ON {table}", target, trigger=trigger)
            )
            await conn.execute(
                render(
                    "CREATE TRIGGER {trigger} BEFORE UPDATE ON {table} "
                    "FOR EACH ROW EXECUTE FUNCTION " + function,
                    target,
                    trigger=trigger,
                )
            )
    logger.info("Attached %s to %s", trigger, target)
    return trigger
