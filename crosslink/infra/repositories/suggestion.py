"""Link suggestion persistence."""

from __future__ import annotations

import logging

from ...domain.models import LinkSuggestion, SuggestionStatus
from .base import BaseRepositoryMixin

logger = logging.getLogger(__name__)


class SuggestionMixin(BaseRepositoryMixin):
    """Mixin for Suggestion nodes."""

    def save_suggestion(self, suggestion: LinkSuggestion) -> None:
        key = suggestion.key
        self._upsert_node(
            "Suggestion",
            suggestion.id,
            {
                "status": suggestion.status.value,
                "source_ref": key.source_ref,
                "target_ref": key.target_ref,
            },
            suggestion,
        )

    def load_suggestions(
        self, status: SuggestionStatus | None = None
    ) -> list[LinkSuggestion]:
        """Load suggestions, optionally only those in one status."""
        if status is None:
            return self._load_nodes("Suggestion", LinkSuggestion)
        return self._load_nodes(
            "Suggestion",
            LinkSuggestion,
            where="WHERE n.status = $status",
            parameters={"status": status.value},
        )
