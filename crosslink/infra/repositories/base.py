"""Base repository mixin with common functionality.

This module provides the foundation for all repository operations including:
- Query execution
- Payload encoding with a schema version
- Generic upsert / delete / load of payload nodes
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ...domain.exceptions import DatabaseError
from ..database import DatabaseConnection

if TYPE_CHECKING:
    import kuzu

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

ModelT = TypeVar("ModelT", bound=BaseModel)


class BaseRepositoryMixin:
    """Base mixin providing common repository functionality.

    All other repository mixins inherit from this class to access the
    shared payload helpers.
    """

    # Set by __init__ in the concrete class
    _db: DatabaseConnection

    def _init_base(self, db: DatabaseConnection) -> None:
        """Initialize base repository attributes.

        Args:
            db: Database connection.
        """
        self._db = db

    # =========================================================================
    # Query Execution
    # =========================================================================

    def _execute(self, query: str, parameters: dict | None = None) -> kuzu.QueryResult:
        return self._db.execute(query, parameters=parameters)

    # =========================================================================
    # Payload Encoding
    # =========================================================================

    @staticmethod
    def _encode(model: BaseModel) -> str:
        return json.dumps(model.model_dump(mode="json"), sort_keys=True)

    @staticmethod
    def _decode(model_cls: type[ModelT], payload: str, version: int | None) -> ModelT:
        if version is not None and version > SCHEMA_VERSION:
            raise DatabaseError(
                f"{model_cls.__name__} payload has schema version {version}, "
                f"newer than supported {SCHEMA_VERSION}"
            )
        try:
            return model_cls.model_validate_json(payload)
        except PydanticValidationError as e:
            raise DatabaseError(f"Corrupt {model_cls.__name__} payload: {e}") from e

    # =========================================================================
    # Generic Node Operations
    # =========================================================================

    def _upsert_node(
        self, table: str, node_id: str, columns: dict[str, Any], model: BaseModel
    ) -> None:
        """Insert or replace a payload node."""
        values = {
            **columns,
            "payload": self._encode(model),
            "schema_version": SCHEMA_VERSION,
            "updated_at": datetime.now(timezone.utc),
        }
        assignments = ", ".join(f"n.{name} = ${name}" for name in values)
        self._execute(
            f"""
            MERGE (n:{table} {{id: $id}})
            ON CREATE SET {assignments}
            ON MATCH SET {assignments}
            """,
            parameters={"id": node_id, **values},
        )

    def _delete_node(self, table: str, node_id: str) -> None:
        self._execute(
            f"MATCH (n:{table} {{id: $id}}) DELETE n",
            parameters={"id": node_id},
        )

    def _load_nodes(
        self,
        table: str,
        model_cls: type[ModelT],
        where: str = "",
        parameters: dict | None = None,
    ) -> list[ModelT]:
        """Load and decode every payload node of a table."""
        result = self._execute(
            f"""
            MATCH (n:{table})
            {where}
            RETURN n.payload, n.schema_version
            ORDER BY n.id
            """,
            parameters=parameters,
        )
        models: list[ModelT] = []
        while result.has_next():
            row = result.get_next()
            models.append(self._decode(model_cls, row[0], row[1]))
        return models

    def _count_nodes(self, table: str) -> int:
        result = self._execute(f"MATCH (n:{table}) RETURN count(n)")
        return result.get_next()[0] if result.has_next() else 0
