"""Indexed record surrogate persistence."""

from __future__ import annotations

import logging

from ...domain.models import LinkableRecord
from .base import BaseRepositoryMixin

logger = logging.getLogger(__name__)


class RecordMixin(BaseRepositoryMixin):
    """Mixin for IndexedRecord nodes."""

    def save_record(self, record: LinkableRecord) -> None:
        self._upsert_node(
            "IndexedRecord",
            record.id,
            {"module": record.module, "record_id": record.record_id},
            record,
        )

    def delete_record(self, record_key: str) -> None:
        self._delete_node("IndexedRecord", record_key)

    def load_records(self, module: str | None = None) -> list[LinkableRecord]:
        """Load indexed surrogates, optionally for one module."""
        if module is None:
            return self._load_nodes("IndexedRecord", LinkableRecord)
        return self._load_nodes(
            "IndexedRecord",
            LinkableRecord,
            where="WHERE n.module = $module",
            parameters={"module": module},
        )
