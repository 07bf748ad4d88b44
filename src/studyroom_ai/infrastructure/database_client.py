"""
Database client for the study room PostgreSQL database using asyncpg.

This module provides an async database client with connection pooling,
read-only execution of generated statements and error mapping that
keeps the driver's message text intact for the correction loop.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import asyncpg

from ..config import DatabaseConfig
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id
from ..domain.errors import DatabaseConnectionError, DatabaseQueryError


logger = get_module_logger()


class DatabaseClient:
    """
    Low-level async PostgreSQL client using asyncpg.

    This is a thin infrastructure layer. Schema introspection, statement
    safety and result shaping live in the repository layer.

    Features:
    - Connection pooling with asyncpg
    - Generated statements run inside READ ONLY transactions
    - Per-statement timeout via SET LOCAL statement_timeout
    - Structured logging with trace IDs

    Usage:
        client = DatabaseClient(config)
        await client.connect()

        rows = await client.execute_query("SELECT * FROM students LIMIT 10")

        # Writes (query frequency bookkeeping) opt out of read-only mode
        await client.execute_command(
            "DELETE FROM query_frequency WHERE user_id = $1",
            params=[user_id],
        )

        await client.close()
    """

    def __init__(self, config: DatabaseConfig):
        """
        Initialize database client with configuration.

        Args:
            config: Database configuration
        """
        self.config = config
        self._pool: Optional[asyncpg.Pool] = None
        self._is_connected = False

        logger.info(
            "DatabaseClient initialized",
            default_schema=config.default_schema,
            connection_pool_size=config.connection_pool_max_size,
            query_timeout_seconds=config.query_timeout_seconds,
            application_name=config.application_name
        )

    async def connect(self) -> None:
        """
        Establish connection pool to the database.

        Raises:
            DatabaseConnectionError: If connection fails
        """
        if self._is_connected:
            logger.warning("Database client already connected")
            return

        trace_id = current_trace_id()
        logger.info("Establishing database connection", trace_id=trace_id)

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.config.database_url,
                min_size=self.config.connection_pool_min_size,
                max_size=self.config.connection_pool_max_size,
                command_timeout=self.config.query_timeout_seconds,
                timeout=self.config.connection_timeout_seconds,
                server_settings={
                    'application_name': self.config.application_name,
                    'search_path': self.config.default_schema,
                }
            )

            async with self._pool.acquire() as conn:
                result = await conn.fetchval("SELECT 1")
                if result != 1:
                    raise DatabaseConnectionError("Connection test query failed")

            self._is_connected = True
            logger.info(
                "Database connection established successfully",
                pool_size=self.config.connection_pool_max_size,
                default_schema=self.config.default_schema,
                trace_id=trace_id
            )

        except asyncpg.InvalidCatalogNameError as e:
            error_msg = f"Database does not exist: {e}"
            logger.error(error_msg, trace_id=trace_id)
            raise DatabaseConnectionError(error_msg) from e

        except asyncpg.InvalidPasswordError as e:
            error_msg = f"Authentication failed: {e}"
            logger.error(error_msg, trace_id=trace_id)
            raise DatabaseConnectionError(error_msg) from e

        except DatabaseConnectionError:
            raise

        except Exception as e:
            error_msg = f"Failed to connect to database: {e}"
            logger.error(error_msg, error_type=type(e).__name__, trace_id=trace_id)
            raise DatabaseConnectionError(error_msg) from e

    async def close(self) -> None:
        """Close database connection pool."""
        trace_id = current_trace_id()
        logger.info("Closing database connection", trace_id=trace_id)

        if self._pool:
            await self._pool.close()

        self._is_connected = False
        self._pool = None

        logger.info("Database connection closed", trace_id=trace_id)

    def is_connected(self) -> bool:
        """Check if database client is connected."""
        return self._is_connected and self._pool is not None

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform health check on database connection.

        Returns:
            Dictionary with status and connection details

        Example:
            {
                "status": "healthy",
                "connected": True,
                "pool_size": 5,
                "current_schema": "public"
            }
        """
        trace_id = current_trace_id()

        if not self.is_connected():
            return {
                "status": "unhealthy",
                "connected": False,
                "error": "Database client not connected"
            }

        try:
            async with self.acquire_connection() as conn:
                current_schema = await conn.fetchval("SELECT current_schema()")

            logger.info("Database health check passed", trace_id=trace_id)
            return {
                "status": "healthy",
                "connected": True,
                "pool_size": self.config.connection_pool_max_size,
                "current_schema": current_schema
            }

        except Exception as e:
            logger.error(
                "Database health check failed",
                error=str(e),
                error_type=type(e).__name__,
                trace_id=trace_id
            )
            return {
                "status": "unhealthy",
                "connected": True,
                "error": str(e)
            }

    @asynccontextmanager
    async def acquire_connection(self):
        """
        Context manager to acquire a database connection from the pool.

        Yields:
            asyncpg.Connection: Database connection
        """
        if not self.is_connected() or self._pool is None:
            raise DatabaseConnectionError("Database client is not connected")

        async with self._pool.acquire() as connection:
            yield connection

    async def execute_query(
        self,
        query: str,
        params: Optional[List[Any]] = None,
        timeout: Optional[int] = None,
        read_only: Optional[bool] = None
    ) -> List[Dict[str, Any]]:
        """
        Execute a SQL query and return results as list of dictionaries.

        Args:
            query: SQL query string
            params: Optional query parameters
            timeout: Optional statement timeout in seconds
            read_only: Run inside a READ ONLY transaction
                (defaults to config.enforce_read_only_default)

        Returns:
            List of dictionaries containing query results

        Raises:
            DatabaseConnectionError: Pool unavailable or connection dropped
            DatabaseQueryError: The database rejected the statement; the
                message keeps the driver's own text
        """
        if not self.is_connected() or self._pool is None:
            raise DatabaseConnectionError("Database client is not connected")

        trace_id = current_trace_id()
        if read_only is None:
            read_only = self.config.enforce_read_only_default
        effective_timeout = timeout or self.config.query_timeout_seconds

        logger.info(
            "Executing database query",
            query=query[:200],
            read_only=read_only,
            trace_id=trace_id
        )

        try:
            async with self.acquire_connection() as conn:
                async with conn.transaction(readonly=read_only):
                    await conn.execute(f"SET LOCAL statement_timeout = {int(effective_timeout * 1000)}")
                    if params is not None:
                        rows = await conn.fetch(query, *params)
                    else:
                        rows = await conn.fetch(query)

            results = [dict(row) for row in rows]

            logger.info(
                "Query executed successfully",
                row_count=len(results),
                trace_id=trace_id
            )
            return results

        except asyncpg.QueryCanceledError as e:
            error_msg = f"Query timeout exceeded: {e}"
            logger.error(error_msg, query=query[:200], trace_id=trace_id)
            raise DatabaseQueryError(error_msg) from e

        except asyncpg.ReadOnlySQLTransactionError as e:
            error_msg = f"Write rejected by read-only transaction: {e}"
            logger.error(error_msg, query=query[:200], trace_id=trace_id)
            raise DatabaseQueryError(error_msg) from e

        except asyncpg.PostgresError as e:
            # syntax error at or near "LIMIT", column "x" does not exist, ...
            error_msg = str(e)
            logger.error(
                "Query execution failed",
                error=error_msg,
                error_type=type(e).__name__,
                query=query[:200],
                trace_id=trace_id
            )
            raise DatabaseQueryError(error_msg, details={"sqlstate": getattr(e, "sqlstate", None)}) from e

        except (asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
            error_msg = f"Database connection error: {e}"
            logger.error(error_msg, error_type=type(e).__name__, trace_id=trace_id)
            raise DatabaseConnectionError(error_msg) from e

    async def execute_command(
        self,
        query: str,
        params: Optional[List[Any]] = None
    ) -> str:
        """
        Execute a write statement outside read-only mode.

        Only used for the service's own bookkeeping tables, never for
        generated statements.

        Returns:
            asyncpg status string (e.g. "INSERT 0 1")
        """
        if not self.is_connected():
            raise DatabaseConnectionError("Database client is not connected")

        trace_id = current_trace_id()

        try:
            async with self.acquire_connection() as conn:
                if params is not None:
                    status = await conn.execute(query, *params)
                else:
                    status = await conn.execute(query)

            logger.debug("Command executed", status=status, trace_id=trace_id)
            return status

        except asyncpg.PostgresError as e:
            error_msg = f"Command execution failed: {e}"
            logger.error(error_msg, query=query[:200], trace_id=trace_id)
            raise DatabaseQueryError(error_msg) from e
