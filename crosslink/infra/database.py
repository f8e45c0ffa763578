"""Database connection management for KùzuDB."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from ..domain.exceptions import DatabaseError

if TYPE_CHECKING:
    import kuzu

logger = logging.getLogger(__name__)

# Node tables share one shape: a primary key, a few filterable key columns
# and the JSON payload of the domain model.
_NODE_TABLES: dict[str, tuple[str, ...]] = {
    "IndexedRecord": ("module", "record_id"),
    "LinkRule": ("source_module", "target_module"),
    "Suggestion": ("status", "source_ref", "target_ref"),
    "RecordLink": ("validation_status", "source_ref", "target_ref"),
}


class DatabaseConnection:
    """Manages the KùzuDB database used as Crosslink's journal.

    The database and connection are opened lazily; the schema is created
    on first write access. Queries are serialized because one kuzu
    Connection must not be used from several threads at once.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the database connection.

        Args:
            db_path: Path to the database directory.
        """
        self._db_path = db_path
        self._db: kuzu.Database | None = None
        self._conn: kuzu.Connection | None = None
        self._initialized = False
        self._lock = threading.RLock()

    @property
    def db(self) -> kuzu.Database:
        """Get the database instance, creating if needed."""
        if self._db is None:
            import kuzu

            logger.info(f"Initializing database at: {self._db_path}")
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            try:
                self._db = kuzu.Database(str(self._db_path))
            except RuntimeError as e:
                raise DatabaseError(f"Cannot open database at {self._db_path}: {e}") from e
        return self._db

    @property
    def conn(self) -> kuzu.Connection:
        """Get a database connection, initializing schema if needed."""
        if self._conn is None:
            import kuzu

            self._conn = kuzu.Connection(self.db)
            if not self._initialized:
                self._init_schema()
                self._initialized = True
        return self._conn

    def _init_schema(self) -> None:
        """Initialize the database schema."""
        logger.info("Initializing database schema...")
        for table, columns in _NODE_TABLES.items():
            key_columns = "".join(f"                {column} STRING,\n" for column in columns)
            self._conn.execute(f"""
            CREATE NODE TABLE IF NOT EXISTS {table} (
                id STRING,
{key_columns}                payload STRING,
                schema_version INT64,
                updated_at TIMESTAMP,
                PRIMARY KEY (id)
            )
            """)
        logger.info("Database schema initialized successfully")

    def execute(self, query: str, parameters: dict | None = None) -> kuzu.QueryResult:
        """Execute a query on the database.

        Args:
            query: Cypher query string.
            parameters: Optional query parameters.

        Returns:
            Query result.

        Raises:
            DatabaseError: If the query fails.
        """
        with self._lock:
            try:
                if parameters:
                    return self.conn.execute(query, parameters=parameters)
                return self.conn.execute(query)
            except RuntimeError as e:
                logger.error(f"Query failed: {e}")
                raise DatabaseError(str(e)) from e

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            if self._db is not None:
                self._db.close()
                self._db = None
        logger.info("Database connection closed")
