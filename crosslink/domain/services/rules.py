"""Rule Store - operator-authored link rules."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import RuleNotFoundError, ValidationError
from ..models import RecordLinkRule, RuleUsageStatistics

if TYPE_CHECKING:
    from ...infra.repositories import GraphRepository

logger = logging.getLogger(__name__)

# Fields an update may never overwrite
_IMMUTABLE_FIELDS = {"id", "created_at", "created_by", "usage_statistics"}


class RuleStore:
    """Holds RecordLinkRule definitions.

    Rules are replaced on every change (copy-on-write), so a scan that has
    already fetched a rule keeps evaluating a consistent definition.
    """

    def __init__(self, journal: GraphRepository | None = None) -> None:
        self._journal = journal
        self._lock = threading.RLock()
        self._rules: dict[str, RecordLinkRule] = {}
        self._version = 0

    @property
    def version(self) -> int:
        """Counter bumped on every rule definition change."""
        return self._version

    def __len__(self) -> int:
        return len(self._rules)

    # =========================================================================
    # Administration
    # =========================================================================

    def create_rule(self, rule: RecordLinkRule | Mapping[str, Any]) -> RecordLinkRule:
        """Validate and store a new rule.

        Raises:
            ValidationError: If the threshold is outside [0, 1], a weight is
                negative, or any other field is malformed.
        """
        validated = self._validate(rule)
        with self._lock:
            if validated.id in self._rules:
                raise ValidationError(f"Rule with ID '{validated.id}' already exists")
            self._store(validated)
        self._log_weight_warning(validated)
        logger.info(
            f"Created rule '{validated.name}' ({validated.id}): "
            f"{validated.source_module} -> {validated.target_module}"
        )
        return validated

    def update_rule(self, rule_id: str, changes: Mapping[str, Any]) -> RecordLinkRule:
        """Apply a partial update to a rule.

        Identity, audit and usage fields are preserved; `last_modified` is
        refreshed.

        Raises:
            RuleNotFoundError: If the rule does not exist.
            ValidationError: If the updated rule is invalid.
        """
        with self._lock:
            current = self.require(rule_id)
            merged = current.model_dump()
            merged.update({k: v for k, v in changes.items() if k not in _IMMUTABLE_FIELDS})
            merged["last_modified"] = datetime.now(timezone.utc)
            updated = self._validate(merged)
            self._store(updated)
        self._log_weight_warning(updated)
        logger.info(f"Updated rule '{updated.name}' ({rule_id})")
        return updated

    def disable_rule(self, rule_id: str) -> RecordLinkRule:
        """Disable a rule; pending suggestions it produced are kept."""
        return self._set_enabled(rule_id, False)

    def enable_rule(self, rule_id: str) -> RecordLinkRule:
        return self._set_enabled(rule_id, True)

    def delete_rule(self, rule_id: str) -> RecordLinkRule:
        """Delete a rule.

        Raises:
            RuleNotFoundError: If the rule does not exist.
        """
        with self._lock:
            rule = self.require(rule_id)
            if self._journal is not None:
                self._journal.delete_rule(rule_id)
            del self._rules[rule_id]
            self._version += 1
        logger.info(f"Deleted rule '{rule.name}' ({rule_id})")
        return rule

    def replace_statistics(
        self, rule_id: str, statistics: RuleUsageStatistics
    ) -> RecordLinkRule:
        """Write accumulated usage statistics back onto a rule.

        Does not bump the definition version: statistics never change what
        a scan would produce.
        """
        with self._lock:
            rule = self.require(rule_id).model_copy(update={"usage_statistics": statistics})
            if self._journal is not None:
                self._journal.save_rule(rule)
            self._rules[rule_id] = rule
        return rule

    def restore(self, rules: Iterable[RecordLinkRule]) -> None:
        """Load rules from the journal without writing back."""
        with self._lock:
            count = 0
            for rule in rules:
                self._rules[rule.id] = rule
                count += 1
            self._version += 1
        logger.info(f"Restored {count} link rules")

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, rule_id: str) -> RecordLinkRule | None:
        return self._rules.get(rule_id)

    def require(self, rule_id: str) -> RecordLinkRule:
        """Get a rule or raise RuleNotFoundError."""
        rule = self._rules.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    def list_rules(self, include_disabled: bool = True) -> list[RecordLinkRule]:
        """All rules ordered by creation time."""
        with self._lock:
            rules = list(self._rules.values())
        if not include_disabled:
            rules = [r for r in rules if r.is_enabled]
        return sorted(rules, key=lambda r: (r.created_at, r.id))

    def enabled_rules(self, rule_ids: Iterable[str] | None = None) -> list[RecordLinkRule]:
        """Enabled rules, optionally restricted to the given IDs.

        Raises:
            RuleNotFoundError: If a requested rule ID does not exist.
        """
        if rule_ids is None:
            return self.list_rules(include_disabled=False)
        rules = [self.require(rule_id) for rule_id in rule_ids]
        return [r for r in rules if r.is_enabled]

    def find(
        self, source_module: str | None = None, target_module: str | None = None
    ) -> list[RecordLinkRule]:
        """Rules scoped to a module pair; either side may be left open."""
        return [
            r
            for r in self.list_rules()
            if (source_module is None or r.source_module == source_module)
            and (target_module is None or r.target_module == target_module)
        ]

    # =========================================================================
    # Internals
    # =========================================================================

    def _set_enabled(self, rule_id: str, enabled: bool) -> RecordLinkRule:
        with self._lock:
            current = self.require(rule_id)
            if current.is_enabled == enabled:
                return current
            rule = current.model_copy(
                update={"is_enabled": enabled, "last_modified": datetime.now(timezone.utc)}
            )
            self._store(rule)
        logger.info(f"{'Enabled' if enabled else 'Disabled'} rule '{rule.name}' ({rule_id})")
        return rule

    def _store(self, rule: RecordLinkRule) -> None:
        if self._journal is not None:
            self._journal.save_rule(rule)
        self._rules[rule.id] = rule
        self._version += 1

    @staticmethod
    def _validate(rule: RecordLinkRule | Mapping[str, Any]) -> RecordLinkRule:
        try:
            data = rule.model_dump() if isinstance(rule, RecordLinkRule) else dict(rule)
            return RecordLinkRule.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid rule: {e}") from e

    @staticmethod
    def _log_weight_warning(rule: RecordLinkRule) -> None:
        if rule.auto_link_conditions and rule.total_weight <= 0:
            logger.warning(
                f"Rule '{rule.name}' ({rule.id}) has zero total condition weight"
            )
