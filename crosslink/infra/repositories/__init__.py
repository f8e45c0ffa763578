"""Repository pattern implementation using Mixin-based composition.

This package provides a modular journal for Crosslink state:
- base.py: Common functionality (query execution, payload encoding)
- record.py: Indexed record surrogates
- rule.py: Link rules
- suggestion.py: Link suggestions
- link.py: Record links

The GraphRepository class combines all mixins into a single facade.
"""

from __future__ import annotations

import logging
from typing import Any

from ..database import DatabaseConnection
from .base import SCHEMA_VERSION, BaseRepositoryMixin
from .link import LinkMixin
from .record import RecordMixin
from .rule import RuleMixin
from .suggestion import SuggestionMixin

logger = logging.getLogger(__name__)


class GraphRepository(
    RecordMixin,
    RuleMixin,
    SuggestionMixin,
    LinkMixin,
    BaseRepositoryMixin,
):
    """Write-through journal for Crosslink state.

    Uses Mixin composition to combine functionality from multiple modules:
    - RecordMixin: save_record, delete_record, load_records
    - RuleMixin: save_rule, delete_rule, load_rules
    - SuggestionMixin: save_suggestion, load_suggestions
    - LinkMixin: save_link, delete_link, load_links

    All mixins share common methods from BaseRepositoryMixin.
    """

    def __init__(self, db: DatabaseConnection) -> None:
        """Initialize the repository.

        Args:
            db: Database connection.
        """
        self._init_base(db)

    def get_stats(self) -> dict[str, Any]:
        """Count persisted nodes per table."""
        return {
            "records": self._count_nodes("IndexedRecord"),
            "rules": self._count_nodes("LinkRule"),
            "suggestions": self._count_nodes("Suggestion"),
            "links": self._count_nodes("RecordLink"),
        }


__all__ = ["GraphRepository", "SCHEMA_VERSION"]
