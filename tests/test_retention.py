"""Tests for retention cleanup.

Rows are seeded at known ages relative to the mock pool's clock so the
cutoff boundary can be asserted exactly.
"""

from __future__ import annotations

import logging

import pytest

from forgedb.identifiers import InvalidIdentifierError, SchemaMismatchError
from forgedb.retention import (
    RetentionPolicy,
    affected_rows,
    cleanup_old_records,
    run_retention_cleanup,
)

pytestmark = pytest.mark.unit

TRUSTED = ("api_usage_logs", "prompt_history", "feedback", "api_providers")


class TestRetentionPolicy:
    def test_default_window(self):
        policy = RetentionPolicy(table="api_usage_logs")
        assert policy.retention_days == 30

    def test_zero_is_allowed(self):
        assert RetentionPolicy(table="feedback", retention_days=0).retention_days == 0

    def test_negative_rejected(self):
        with pytest.raises(ValueError, match="must be >= 0"):
            RetentionPolicy(table="feedback", retention_days=-1)

    def test_non_integer_rejected(self):
        with pytest.raises(TypeError):
            RetentionPolicy(table="feedback", retention_days="30")


class TestCleanupOldRecords:
    async def test_deletes_only_rows_older_than_cutoff(self, mock_pool):
        table = mock_pool.add_table("api_usage_logs", ages_days=[1, 10, 29.9, 30.1, 45, 400])

        deleted = await cleanup_old_records(
            mock_pool, "api_usage_logs", 30, trusted_tables=TRUSTED
        )

        assert deleted == 3
        remaining = sorted((mock_pool.now - row["created_at"]).days for row in table.rows)
        assert remaining == [1, 10, 29]

    async def test_binds_retention_days_as_parameter(self, mock_pool):
        mock_pool.add_table("api_usage_logs", ages_days=[100])
        await cleanup_old_records(mock_pool, "api_usage_logs", 90, trusted_tables=TRUSTED)

        kind, query, args = mock_pool.executed_queries[-1]
        assert kind == "execute"
        assert query.startswith('DELETE FROM "public"."api_usage_logs"')
        assert '"created_at" < now() - make_interval(days => $1)' in query
        assert args == (90,)

    async def test_zero_days_deletes_everything_up_to_now(self, mock_pool, caplog):
        table = mock_pool.add_table("feedback", ages_days=[0, 0.5, 7], rows=2)

        with caplog.at_level(logging.WARNING, logger="forgedb.retention"):
            deleted = await cleanup_old_records(mock_pool, "feedback", 0, trusted_tables=TRUSTED)

        assert deleted == 5
        assert table.rows == []
        _, query, args = mock_pool.executed_queries[-1]
        assert '"created_at" <= now()' in query
        assert args == ()
        assert "retention_days=0" in caplog.text

    async def test_dry_run_counts_without_deleting(self, mock_pool):
        table = mock_pool.add_table("prompt_history", ages_days=[5, 40, 50])

        count = await cleanup_old_records(
            mock_pool, "prompt_history", 30, trusted_tables=TRUSTED, dry_run=True
        )

        assert count == 2
        assert len(table.rows) == 3
        assert mock_pool.queries("execute") == []

    async def test_nothing_to_delete(self, mock_pool):
        mock_pool.add_table("api_usage_logs", ages_days=[1, 2])
        assert await cleanup_old_records(mock_pool, "api_usage_logs", trusted_tables=TRUSTED) == 0

    async def test_table_without_timestamp_column_raises(self, mock_pool):
        mock_pool.add_table("api_providers", columns={"id", "name"})

        with pytest.raises(SchemaMismatchError, match="created_at"):
            await cleanup_old_records(mock_pool, "api_providers", 30, trusted_tables=TRUSTED)
        assert mock_pool.queries("execute") == []

    async def test_missing_table_raises(self, mock_pool):
        with pytest.raises(SchemaMismatchError, match="does not exist"):
            await cleanup_old_records(mock_pool, "feedback", 30, trusted_tables=TRUSTED)

    async def test_untrusted_table_rejected_before_any_query(self, mock_pool):
        mock_pool.add_table("user_profiles", ages_days=[100])

        with pytest.raises(InvalidIdentifierError, match="allow-list"):
            await cleanup_old_records(mock_pool, "user_profiles", 30, trusted_tables=TRUSTED)
        assert mock_pool.executed_queries == []

    async def test_injection_attempt_rejected_before_any_query(self, mock_pool):
        with pytest.raises(InvalidIdentifierError):
            await cleanup_old_records(
                mock_pool, "api_usage_logs; DROP TABLE users", 30, trusted_tables=None
            )
        assert mock_pool.executed_queries == []

    async def test_negative_days_rejected_before_any_query(self, mock_pool):
        with pytest.raises(ValueError):
            await cleanup_old_records(mock_pool, "api_usage_logs", -5, trusted_tables=TRUSTED)
        assert mock_pool.executed_queries == []

    async def test_custom_timestamp_column(self, mock_pool):
        table = mock_pool.add_table("feedback", columns={"id", "logged_at"})
        table.rows = [{"logged_at": mock_pool.now}]

        await cleanup_old_records(
            mock_pool, "feedback", 7, trusted_tables=TRUSTED, timestamp_column="logged_at"
        )
        assert '"logged_at" < now()' in mock_pool.queries("execute")[0]

    async def test_repeated_cleanup_is_idempotent(self, mock_pool):
        mock_pool.add_table("api_usage_logs", ages_days=[60, 61])

        first = await cleanup_old_records(mock_pool, "api_usage_logs", 30, trusted_tables=TRUSTED)
        second = await cleanup_old_records(mock_pool, "api_usage_logs", 30, trusted_tables=TRUSTED)

        assert (first, second) == (2, 0)


class TestRunRetentionCleanup:
    async def test_applies_every_policy(self, mock_pool):
        mock_pool.add_table("api_usage_logs", ages_days=[10, 100, 200])
        mock_pool.add_table("prompt_history", ages_days=[10, 40])

        counts = await run_retention_cleanup(
            mock_pool,
            [
                RetentionPolicy("api_usage_logs", 90),
                RetentionPolicy("prompt_history", 30),
            ],
            trusted_tables=TRUSTED,
        )

        assert counts == {"api_usage_logs": 2, "prompt_history": 1}

    async def test_dry_run_propagates(self, mock_pool):
        mock_pool.add_table("api_usage_logs", ages_days=[100])

        counts = await run_retention_cleanup(
            mock_pool, [RetentionPolicy("api_usage_logs", 90)], trusted_tables=TRUSTED, dry_run=True
        )

        assert counts == {"api_usage_logs": 1}
        assert len(mock_pool.tables["api_usage_logs"].rows) == 1

    async def test_first_error_stops_later_policies(self, mock_pool):
        mock_pool.add_table("prompt_history", ages_days=[100])

        with pytest.raises(SchemaMismatchError):
            await run_retention_cleanup(
                mock_pool,
                [RetentionPolicy("feedback", 30), RetentionPolicy("prompt_history", 30)],
                trusted_tables=TRUSTED,
            )
        assert len(mock_pool.tables["prompt_history"].rows) == 1


@pytest.mark.parametrize(
    ("status", "expected"),
    [("DELETE 42", 42), ("DELETE 0", 0), ("ANALYZE", 0), ("", 0), (None, 0)],
)
def test_affected_rows(status, expected):
    assert affected_rows(status) == expected
