"""
Integration tests for read-only enforcement at the database level.

Generated statements run inside READ ONLY transactions, behind the
safety validator. These tests check the second layer on its own.

Usage:
    pytest tests/integration/test_read_only_enforcement.py -v

Requirements:
    - DATABASE__DATABASE_URL must be set in .env
    - DATABASE__ENFORCE_READ_ONLY_DEFAULT=true (default)
"""

import pytest

from studyroom_ai.config import get_settings
from studyroom_ai.domain.errors import DatabaseQueryError
from studyroom_ai.infrastructure.database_client import DatabaseClient
from studyroom_ai.repositories.sql_execution import QueryExecutor


@pytest.fixture
def database_config():
    return get_settings().database


@pytest.fixture
async def db_client(database_config):
    client = DatabaseClient(database_config)
    try:
        await client.connect()
    except Exception as e:
        pytest.skip(f"Database not reachable: {e}")
    yield client
    if client.is_connected():
        await client.close()


@pytest.mark.integration
class TestReadOnlyEnforcement:

    async def test_reads_allowed(self, db_client):
        rows = await db_client.execute_query(
            "SELECT table_name FROM information_schema.tables WHERE table_schema = 'public' LIMIT 1",
            read_only=True,
        )
        assert isinstance(rows, list)

    async def test_writes_rejected(self, db_client):
        with pytest.raises(DatabaseQueryError, match="read-only"):
            await db_client.execute_query("CREATE TEMP TABLE ro_check (id INT) ", read_only=True)

    async def test_writes_allowed_when_not_read_only(self, db_client):
        rows = await db_client.execute_query(
            "CREATE TEMP TABLE IF NOT EXISTS rw_check AS SELECT 1 AS id",
            read_only=False,
        )
        assert rows == []

    async def test_config_default(self, db_client):
        if not db_client.config.enforce_read_only_default:
            pytest.skip("Read-only default disabled in configuration")
        with pytest.raises(DatabaseQueryError):
            await db_client.execute_query("CREATE TEMP TABLE default_check (id INT)")

    async def test_executor_always_read_only(self, db_client):
        """Even if a write slipped past validation, the transaction would reject it."""
        result = await QueryExecutor(db_client).execute("SELECT 1 AS one FROM information_schema.tables", "one")

        assert result.success
        assert result.sql.endswith("LIMIT 100")

    async def test_statement_timeout(self, db_client):
        with pytest.raises(DatabaseQueryError, match="timeout"):
            await db_client.execute_query("SELECT pg_sleep(3)", timeout=1)
