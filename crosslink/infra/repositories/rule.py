"""Link rule persistence."""

from __future__ import annotations

import logging

from ...domain.models import RecordLinkRule
from .base import BaseRepositoryMixin

logger = logging.getLogger(__name__)


class RuleMixin(BaseRepositoryMixin):
    """Mixin for LinkRule nodes."""

    def save_rule(self, rule: RecordLinkRule) -> None:
        self._upsert_node(
            "LinkRule",
            rule.id,
            {"source_module": rule.source_module, "target_module": rule.target_module},
            rule,
        )

    def delete_rule(self, rule_id: str) -> None:
        self._delete_node("LinkRule", rule_id)

    def load_rules(self) -> list[RecordLinkRule]:
        return self._load_nodes("LinkRule", RecordLinkRule)
