"""Record link persistence.

Links are stored as payload nodes rather than relationships between
IndexedRecord nodes: a broken link must outlive the records it joined.
"""

from __future__ import annotations

import logging

from ...domain.models import RecordLink
from .base import BaseRepositoryMixin

logger = logging.getLogger(__name__)


class LinkMixin(BaseRepositoryMixin):
    """Mixin for RecordLink nodes."""

    def save_link(self, link: RecordLink) -> None:
        key = link.key
        self._upsert_node(
            "RecordLink",
            link.id,
            {
                "validation_status": link.validation_status.value,
                "source_ref": key.source_ref,
                "target_ref": key.target_ref,
            },
            link,
        )

    def delete_link(self, link_id: str) -> None:
        self._delete_node("RecordLink", link_id)

    def load_links(self) -> list[RecordLink]:
        return self._load_nodes("RecordLink", RecordLink)

    def load_links_for_ref(self, ref: str) -> list[RecordLink]:
        """Load links with either endpoint equal to '<module>:<record_id>'."""
        return self._load_nodes(
            "RecordLink",
            RecordLink,
            where="WHERE n.source_ref = $ref OR n.target_ref = $ref",
            parameters={"ref": ref},
        )
