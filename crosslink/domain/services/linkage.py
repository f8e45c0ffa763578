"""Linkage Service - the facade in front of the linking components.

This is the main service class behind the MCP tools and the dashboard.
It coordinates:
- RecordIndex: surrogates pushed by collaborator modules
- RuleStore: operator-authored link rules
- SuggestionManager: scans and the review workflow
- LinkStore: the accepted link graph
- UsageAggregator: rule statistics and reviewer feedback
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from ..exceptions import ValidationError
from ..matching import Scorer
from ..models import (
    IndexRecordResult,
    LinkableRecord,
    LinkContext,
    LinkKey,
    LinkStrength,
    LinkSuggestion,
    LinkType,
    RecordLink,
    RecordLinkRule,
    RelationshipCategory,
    RemoveRecordResult,
    ResolutionDecision,
    RuleFeedbackSummary,
    RuleUsageStatistics,
    ScanReport,
    SuggestionFeedback,
    SuggestionStatus,
    ValidationSweepResult,
)
from .concurrency import CancellationToken
from .index import RecordIndex
from .links import LinkStore
from .rules import RuleStore
from .suggestions import SuggestionManager
from .usage import UsageAggregator

logger = logging.getLogger(__name__)


class LinkageService:
    """Service for cross-module record linking.

    This class acts as a facade/coordinator, delegating to the dedicated
    stores and the suggestion manager while keeping a simple public
    interface.
    """

    def __init__(
        self,
        index: RecordIndex,
        rules: RuleStore,
        links: LinkStore,
        suggestions: SuggestionManager,
        usage: UsageAggregator,
        scorer: Scorer,
        scan_on_index: bool = True,
        broken_link_retention_days: int = 30,
    ) -> None:
        """Initialize the service.

        Args:
            index: Record index.
            rules: Rule store.
            links: Link store.
            suggestions: Suggestion manager.
            usage: Usage/feedback aggregator.
            scorer: Scorer (exposes misconfigured rules).
            scan_on_index: Run an incremental scan after a record changes.
            broken_link_retention_days: Default age for purging broken links.
        """
        self._index = index
        self._rules = rules
        self._links = links
        self._suggestions = suggestions
        self._usage = usage
        self._scorer = scorer
        self._scan_on_index = scan_on_index
        self._retention = timedelta(days=broken_link_retention_days)

        self._scan_lock = threading.Lock()
        self._scanned_versions: tuple[int, int] | None = None

    @property
    def index(self) -> RecordIndex:
        return self._index

    @property
    def rules(self) -> RuleStore:
        return self._rules

    @property
    def links(self) -> LinkStore:
        return self._links

    @property
    def suggestions(self) -> SuggestionManager:
        return self._suggestions

    @property
    def usage(self) -> UsageAggregator:
        return self._usage

    # =========================================================================
    # Record events
    # =========================================================================

    def index_record(
        self,
        module: str,
        record_id: str,
        fields: Mapping[str, Any],
        scan: bool | None = None,
    ) -> IndexRecordResult:
        """Index (or re-index) a module record.

        Args:
            module: Owning module name.
            record_id: Record ID within the module.
            fields: Raw field values supplied by the module.
            scan: Run an incremental scan for the record. Defaults to the
                service's scan-on-index setting; skipped when the content
                is unchanged.

        Returns:
            IndexRecordResult with the stored surrogate.

        Raises:
            ValidationError: If module or record ID is missing or malformed.
        """
        if not isinstance(fields, Mapping):
            raise ValidationError("Record fields must be a mapping")
        record, changed = self._index.index(module, record_id, fields)

        report = None
        run_scan = self._scan_on_index if scan is None else scan
        if changed and run_scan:
            report = self._suggestions.scan(focus=record)

        return IndexRecordResult(record=record, changed=changed, scan=report)

    def remove_record(self, module: str, record_id: str) -> RemoveRecordResult:
        """Remove a record: expire its pending suggestions, break its links.

        Raises:
            RecordNotFoundError: If the record is not indexed.
        """
        self._index.remove(module, record_id)
        expired = self._suggestions.expire_for_record(module, record_id)
        broken = self._links.mark_broken(module, record_id)
        return RemoveRecordResult(
            module=module,
            record_id=record_id,
            expired_suggestions=expired,
            broken_links=broken,
        )

    def get_record(self, module: str, record_id: str) -> LinkableRecord:
        """Get an indexed surrogate.

        Raises:
            RecordNotFoundError: If the record is not indexed.
        """
        return self._index.require(module, record_id)

    def search_records(
        self, module: str | None = None, keywords: list[str] | None = None, limit: int = 50
    ) -> list[LinkableRecord]:
        """Keyword search over indexed surrogates."""
        results: list[LinkableRecord] = []
        for record in self._index.query(module=module, keywords=keywords):
            if len(results) >= limit:
                break
            results.append(record)
        return results

    # =========================================================================
    # Suggestions
    # =========================================================================

    def list_suggestions(
        self,
        record_id: str,
        module: str | None = None,
        status: SuggestionStatus | None = SuggestionStatus.PENDING,
    ) -> list[LinkSuggestion]:
        """Suggestions involving a record; pending ones by default."""
        return self._suggestions.list_for_record(record_id, module=module, status=status)

    def get_suggestion(self, suggestion_id: str) -> LinkSuggestion:
        return self._suggestions.require(suggestion_id)

    def resolve_suggestion(
        self,
        suggestion_id: str,
        decision: ResolutionDecision | str,
        reviewer_id: str,
        feedback: SuggestionFeedback | None = None,
    ) -> RecordLink | None:
        """Accept or reject a pending suggestion.

        Returns:
            The created RecordLink when accepted, None when rejected.

        Raises:
            ValidationError: If the decision or reviewer is invalid.
            SuggestionNotFoundError: If the suggestion does not exist.
            InvalidTransitionError: If the suggestion is not pending.
            ConflictError: If an active link for the key already exists.
        """
        if not reviewer_id or not reviewer_id.strip():
            raise ValidationError("Reviewer ID cannot be empty")
        try:
            decision = ResolutionDecision(str(getattr(decision, "value", decision)).lower())
        except ValueError as e:
            raise ValidationError(
                f"Invalid decision: {decision!r}. Must be 'accept' or 'reject'"
            ) from e

        if decision is ResolutionDecision.ACCEPT:
            return self._suggestions.accept(suggestion_id, reviewer_id, feedback)
        self._suggestions.reject(suggestion_id, reviewer_id, feedback)
        return None

    def run_scan(
        self,
        rule_ids: list[str] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ScanReport:
        """Run a full scan over the index."""
        versions = (self._index.version, self._rules.version)
        with self._scan_lock:
            report = self._suggestions.scan(rule_ids=rule_ids, cancel_token=cancel_token)
            if rule_ids is None and not report.cancelled:
                self._scanned_versions = versions
        return report

    def scan_if_changed(
        self, cancel_token: CancellationToken | None = None
    ) -> ScanReport | None:
        """Run a full scan unless neither index nor rules changed since the last one."""
        if self._scanned_versions == (self._index.version, self._rules.version):
            logger.debug("Index and rules unchanged since last scan, skipping")
            return None
        return self.run_scan(cancel_token=cancel_token)

    def expire_suggestions(self, now: datetime | None = None) -> list[str]:
        """Expire pending suggestions older than the TTL."""
        return self._suggestions.expire_stale(now)

    # =========================================================================
    # Links
    # =========================================================================

    def list_links(
        self,
        record_id: str,
        link_type: LinkType | None = None,
        module: str | None = None,
    ) -> list[RecordLink]:
        """Links where the record is either endpoint."""
        return self._links.list_for_record(record_id, module=module, link_type=link_type)

    def link_records(
        self,
        source_module: str,
        source_record_id: str,
        target_module: str,
        target_record_id: str,
        link_type: LinkType,
        created_by: str,
        relationship_category: RelationshipCategory = RelationshipCategory.CONTEXTUAL,
        link_strength: LinkStrength = LinkStrength.MODERATE,
        bidirectional: bool = False,
        context: LinkContext | None = None,
    ) -> RecordLink:
        """Create a manual link between two indexed records.

        Raises:
            ValidationError: If created_by is empty.
            RecordNotFoundError: If either record is not indexed.
            SelfLinkError: If source and target are the same record.
            DuplicateLinkError: If an active link with the same key exists.
        """
        if not created_by or not created_by.strip():
            raise ValidationError("created_by cannot be empty")
        self._index.require(source_module, source_record_id)
        self._index.require(target_module, target_record_id)

        link = RecordLink(
            source_module=source_module,
            source_record_id=source_record_id,
            target_module=target_module,
            target_record_id=target_record_id,
            link_type=link_type,
            relationship_category=relationship_category,
            link_strength=link_strength,
            bidirectional=bidirectional,
            context_metadata=context or LinkContext(),
            created_by=created_by,
            automatically_created=False,
        )
        return self._suggestions.insert_link(link)

    def unlink_records(self, link_id: str) -> RecordLink:
        """Delete a link.

        Raises:
            LinkNotFoundError: If the link does not exist.
        """
        return self._links.remove(link_id)

    def validate_links(self) -> ValidationSweepResult:
        return self._links.validate_all()

    def purge_broken_links(self, older_than_days: int | None = None) -> list[str]:
        """Delete links broken for longer than the retention window."""
        retention = (
            timedelta(days=older_than_days) if older_than_days is not None else self._retention
        )
        return self._links.purge_broken(datetime.now(timezone.utc) - retention)

    def find_link(self, key: LinkKey) -> RecordLink | None:
        return self._links.find_active(key)

    # =========================================================================
    # Rule administration
    # =========================================================================

    def create_rule(self, rule: RecordLinkRule | Mapping[str, Any]) -> RecordLinkRule:
        return self._rules.create_rule(rule)

    def update_rule(self, rule_id: str, changes: Mapping[str, Any]) -> RecordLinkRule:
        rule = self._rules.update_rule(rule_id, changes)
        if rule.total_weight > 0:
            self._scorer.forget(rule.id)
        return rule

    def disable_rule(self, rule_id: str) -> RecordLinkRule:
        return self._rules.disable_rule(rule_id)

    def enable_rule(self, rule_id: str) -> RecordLinkRule:
        return self._rules.enable_rule(rule_id)

    def delete_rule(self, rule_id: str) -> RecordLinkRule:
        rule = self._rules.delete_rule(rule_id)
        self._scorer.forget(rule_id)
        return rule

    def get_rule(self, rule_id: str) -> RecordLinkRule:
        return self._rules.require(rule_id)

    def list_rules(
        self,
        include_disabled: bool = True,
        source_module: str | None = None,
        target_module: str | None = None,
    ) -> list[RecordLinkRule]:
        """Rules ordered by creation time, optionally scoped to a module pair."""
        rules = self._rules.find(source_module=source_module, target_module=target_module)
        if not include_disabled:
            rules = [r for r in rules if r.is_enabled]
        return rules

    def rule_summary(self, rule_id: str) -> RuleFeedbackSummary:
        return self._usage.summary(rule_id)

    def reset_rule_statistics(self, rule_id: str) -> RuleUsageStatistics:
        return self._usage.reset(rule_id)

    # =========================================================================
    # Statistics
    # =========================================================================

    def stats(self) -> dict[str, Any]:
        """Overview of the index, rules, suggestions and link graph."""
        rules = self._rules.list_rules()
        return {
            "records": len(self._index),
            "records_by_module": self._index.modules(),
            "index_version": self._index.version,
            "rules": len(rules),
            "enabled_rules": sum(1 for r in rules if r.is_enabled),
            "misconfigured_rules": sorted(self._scorer.misconfigured_rules),
            "suggestions": self._suggestions.status_counts(),
            "links": len(self._links),
            "links_by_status": self._links.status_counts(),
        }
