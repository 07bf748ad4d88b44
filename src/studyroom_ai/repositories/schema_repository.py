"""
Schema Repository and Schema Snapshot Loader.

SchemaRepository reads table, column and foreign key metadata from
PostgreSQL's information_schema. SchemaSnapshotLoader caches the resulting
SchemaSnapshot with a time-based expiry.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from ..infrastructure.database_client import DatabaseClient
from ..utils.clock import Clock, SystemClock
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id
from ..domain.errors import SchemaLoadError
from ..domain.schema import SchemaSnapshot


logger = get_module_logger()


_COLUMNS_QUERY = """
    SELECT
        c.table_name,
        c.column_name,
        c.data_type,
        c.is_nullable
    FROM information_schema.columns c
    JOIN information_schema.tables t
        ON t.table_schema = c.table_schema
       AND t.table_name = c.table_name
    WHERE c.table_schema = $1
      AND t.table_type = 'BASE TABLE'
      AND c.table_name NOT LIKE '%\\_history' ESCAPE '\\'
    ORDER BY c.table_name, c.ordinal_position
"""

_FOREIGN_KEYS_QUERY = """
    SELECT
        kcu.table_name,
        kcu.column_name,
        ccu.table_name AS foreign_table_name,
        ccu.column_name AS foreign_column_name
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
        ON tc.constraint_name = kcu.constraint_name
       AND tc.table_schema = kcu.table_schema
    JOIN information_schema.constraint_column_usage ccu
        ON ccu.constraint_name = tc.constraint_name
       AND ccu.table_schema = tc.table_schema
    WHERE tc.constraint_type = 'FOREIGN KEY'
      AND tc.table_schema = $1
"""


class SchemaIntrospector(Protocol):
    async def introspect(self) -> Dict[str, Any]:
        ...


class SchemaRepository:
    """
    Repository for schema metadata.

    Usage:
        schema_repo = SchemaRepository(db_client)
        payload = await schema_repo.introspect()
        # {"tables": [{"name": "students", "columns": [{"name", "type", "nullable", "references"?}]}]}
    """

    def __init__(self, db_client: DatabaseClient, schema: Optional[str] = None):
        """
        Initialize schema repository.

        Args:
            db_client: DatabaseClient instance for database operations
            schema: PostgreSQL schema to introspect (defaults to the client's default schema)
        """
        self.db_client = db_client
        self.schema = schema or db_client.config.default_schema
        logger.info("SchemaRepository initialized", schema=self.schema)

    async def introspect(self) -> Dict[str, Any]:
        """
        Fetch base tables, their columns in ordinal order and foreign keys.

        Audit tables (``*_history``) are excluded.

        Raises:
            DatabaseError: If either metadata query fails
        """
        trace_id = current_trace_id()
        logger.info("Introspecting schema", schema=self.schema, trace_id=trace_id)

        column_rows = await self.db_client.execute_query(_COLUMNS_QUERY, params=[self.schema])
        fk_rows = await self.db_client.execute_query(_FOREIGN_KEYS_QUERY, params=[self.schema])

        references = {
            (row["table_name"], row["column_name"]): {
                "table": row["foreign_table_name"],
                "column": row["foreign_column_name"],
            }
            for row in fk_rows
        }

        tables: Dict[str, List[Dict[str, Any]]] = {}
        for row in column_rows:
            column: Dict[str, Any] = {
                "name": row["column_name"],
                "type": row["data_type"],
                "nullable": row["is_nullable"] == "YES",
            }
            reference = references.get((row["table_name"], row["column_name"]))
            if reference:
                column["references"] = reference
            tables.setdefault(row["table_name"], []).append(column)

        logger.info(
            "Schema introspected",
            table_count=len(tables),
            foreign_key_count=len(references),
            trace_id=trace_id
        )

        return {"tables": [{"name": name, "columns": columns} for name, columns in tables.items()]}


class SchemaSnapshotLoader:
    """
    Caches one SchemaSnapshot for ``ttl_seconds``.

    The cache is replaced by a single reference assignment once a rebuild
    completes, so concurrent readers see either the old or the new snapshot.
    A failed rebuild raises and never hands out the expired snapshot.
    """

    def __init__(
        self,
        introspector: SchemaIntrospector,
        ttl_seconds: int = 3600,
        clock: Optional[Clock] = None
    ):
        self.introspector = introspector
        self.ttl_seconds = ttl_seconds
        self.clock = clock or SystemClock()
        self._snapshot: Optional[SchemaSnapshot] = None
        self._expires_at: float = 0.0

    @property
    def cached(self) -> Optional[SchemaSnapshot]:
        return self._snapshot

    def invalidate(self) -> None:
        self._expires_at = 0.0

    async def load(self) -> SchemaSnapshot:
        """
        Return the cached snapshot, rebuilding it when expired.

        Raises:
            SchemaLoadError: If metadata cannot be read or is empty
        """
        now = self.clock.now()
        if self._snapshot is not None and now < self._expires_at:
            return self._snapshot

        trace_id = current_trace_id()
        try:
            payload = await self.introspector.introspect()
            snapshot = SchemaSnapshot.from_introspection(payload, loaded_at=datetime.now(timezone.utc))
        except Exception as e:
            logger.error(
                "Schema load failed",
                error=str(e),
                error_type=type(e).__name__,
                trace_id=trace_id
            )
            raise SchemaLoadError("Unable to load database schema", details={"reason": str(e)}) from e

        if not snapshot.tables:
            logger.error("Schema load returned no tables", trace_id=trace_id)
            raise SchemaLoadError("Database schema contains no tables")

        self._snapshot = snapshot
        self._expires_at = now + self.ttl_seconds

        logger.info(
            "Schema snapshot refreshed",
            table_count=len(snapshot.tables),
            ttl_seconds=self.ttl_seconds,
            trace_id=trace_id
        )
        return snapshot
