"""Suggestion Manager - scanning, deduplication and the review state machine.

A scan pairs indexed records within each enabled rule's module scope,
scores the pairs and upserts one pending LinkSuggestion per
(source, target, link_type) key. Review moves a suggestion out of PENDING
exactly once:

    PENDING -> ACCEPTED | REJECTED | EXPIRED | SUPERSEDED

Upserts, resolutions and manual links for one pair are serialized by a
striped key lock. Acceptance inserts the link first and only then marks
the suggestion; a duplicate link turns the suggestion SUPERSEDED, and a
failure to mark it ACCEPTED removes the link again.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from itertools import islice
from typing import TYPE_CHECKING

from ..exceptions import (
    ConflictError,
    DuplicateLinkError,
    InvalidTransitionError,
    SuggestionNotFoundError,
)
from ..matching import Scorer
from ..models import (
    LinkableRecord,
    LinkContext,
    LinkKey,
    LinkStrength,
    LinkSuggestion,
    RecordLink,
    RecordLinkRule,
    ScanReport,
    ScoreResult,
    SuggestionFeedback,
    SuggestionStatus,
)
from .concurrency import CancellationToken, KeyedLock

if TYPE_CHECKING:
    from ...infra.repositories import GraphRepository
    from .index import RecordIndex
    from .links import LinkStore
    from .rules import RuleStore
    from .usage import UsageAggregator

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[SuggestionStatus, frozenset[SuggestionStatus]] = {
    SuggestionStatus.PENDING: frozenset(
        {
            SuggestionStatus.ACCEPTED,
            SuggestionStatus.REJECTED,
            SuggestionStatus.EXPIRED,
            SuggestionStatus.SUPERSEDED,
        }
    ),
    SuggestionStatus.ACCEPTED: frozenset(),
    SuggestionStatus.REJECTED: frozenset(),
    SuggestionStatus.EXPIRED: frozenset(),
    SuggestionStatus.SUPERSEDED: frozenset(),
}

CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"
SUPERSEDED = "superseded"
SKIPPED = "skipped"


def evidence_differs(
    old: dict[str, float], new: dict[str, float], epsilon: float
) -> bool:
    """True when any per-condition strength moved by more than epsilon.

    A condition present on only one side counts as strength 0 on the other.
    """
    for condition_id in old.keys() | new.keys():
        if abs(old.get(condition_id, 0.0) - new.get(condition_id, 0.0)) > epsilon:
            return True
    return False


class SuggestionManager:
    """Creates, deduplicates and resolves LinkSuggestions."""

    def __init__(
        self,
        index: RecordIndex,
        rules: RuleStore,
        links: LinkStore,
        scorer: Scorer,
        usage: UsageAggregator,
        journal: GraphRepository | None = None,
        evidence_epsilon: float = 0.05,
        suggestion_ttl: timedelta = timedelta(hours=168),
        rejection_cooldown: timedelta = timedelta(hours=720),
        scan_workers: int = 4,
        scan_batch_size: int = 256,
    ) -> None:
        """Initialize the manager.

        Args:
            index: Record index providing candidate records.
            rules: Rule store providing enabled rules.
            links: Link store receiving accepted links.
            scorer: Scorer for candidate pairs.
            usage: Aggregator for rule statistics and feedback.
            journal: Optional write-through repository.
            evidence_epsilon: Strength delta above which evidence is
                materially different.
            suggestion_ttl: Age after which pending suggestions expire.
            rejection_cooldown: How long a rejection suppresses regeneration.
            scan_workers: Thread pool size for scoring.
            scan_batch_size: Candidate pairs scored per batch.
        """
        self._index = index
        self._rules = rules
        self._links = links
        self._scorer = scorer
        self._usage = usage
        self._journal = journal
        self._epsilon = evidence_epsilon
        self._ttl = suggestion_ttl
        self._cooldown = rejection_cooldown
        self._workers = max(1, scan_workers)
        self._batch_size = max(1, scan_batch_size)

        self._lock = threading.RLock()
        self._key_locks = KeyedLock()
        self._suggestions: dict[str, LinkSuggestion] = {}
        self._pending_by_key: dict[LinkKey, str] = {}
        self._rejected_by_key: dict[LinkKey, str] = {}
        self._by_record: dict[str, set[str]] = {}

    def __len__(self) -> int:
        return len(self._suggestions)

    # =========================================================================
    # Scanning
    # =========================================================================

    def scan(
        self,
        rule_ids: Iterable[str] | None = None,
        focus: LinkableRecord | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ScanReport:
        """Evaluate enabled rules over the index and upsert suggestions.

        Args:
            rule_ids: Restrict the scan to these rules.
            focus: Only evaluate pairs involving this record.
            cancel_token: Checked between candidate pairs; suggestions
                already upserted are kept when the scan is cancelled.

        Returns:
            ScanReport summarizing the scan.
        """
        report = ScanReport()
        rules = self._rules.enabled_rules(rule_ids)
        if focus is not None:
            rules = [
                r for r in rules if focus.module in (r.source_module, r.target_module)
            ]
        if not rules:
            return report

        with ThreadPoolExecutor(
            max_workers=self._workers, thread_name_prefix="crosslink-scan"
        ) as executor:
            for rule in rules:
                if cancel_token is not None and cancel_token.cancelled:
                    report.cancelled = True
                    break
                self._scan_rule(rule, focus, cancel_token, executor, report)
                if report.cancelled:
                    break

        logger.info(
            f"Scan finished: {report.rules_evaluated} rules, "
            f"{report.pairs_evaluated} pairs, {report.created} created, "
            f"{report.updated} updated, {report.superseded} superseded"
            + (" (cancelled)" if report.cancelled else "")
        )
        return report

    def _scan_rule(
        self,
        rule: RecordLinkRule,
        focus: LinkableRecord | None,
        cancel_token: CancellationToken | None,
        executor: ThreadPoolExecutor,
        report: ScanReport,
    ) -> None:
        started = time.perf_counter()
        results: list[tuple[ScoreResult, LinkableRecord, LinkableRecord]] = []

        def score(pair: tuple[LinkableRecord, LinkableRecord]) -> ScoreResult | None:
            if cancel_token is not None and cancel_token.cancelled:
                return None
            return self._scorer.score(rule, pair[0], pair[1])

        pairs = self._candidate_pairs(rule, focus)
        while True:
            batch = list(islice(pairs, self._batch_size))
            if not batch:
                break
            for pair, result in zip(batch, executor.map(score, batch)):
                if result is None:
                    continue
                report.pairs_evaluated += 1
                if result.matched:
                    results.append((result, pair[0], pair[1]))
            if cancel_token is not None and cancel_token.cancelled:
                report.cancelled = True
                logger.info(f"Scan cancelled while evaluating rule {rule.id}")
                return

        report.rules_evaluated += 1
        report.matches += len(results)
        results.sort(key=lambda item: item[0].confidence, reverse=True)

        # Pairs skipped for cool-down or a fresh link do not count against the cap
        surfaced: list[float] = []
        for result, source, target in results:
            if len(surfaced) >= rule.max_suggestions:
                break
            outcome, suggestion = self._upsert(rule, result, source, target)
            if outcome != SKIPPED:
                surfaced.append(result.confidence)
            if outcome == CREATED:
                report.created += 1
                report.created_ids.append(suggestion.id)
            elif outcome == SUPERSEDED:
                report.superseded += 1
                report.created += 1
                report.created_ids.append(suggestion.id)
            elif outcome == UPDATED:
                report.updated += 1
            elif outcome == UNCHANGED:
                report.unchanged += 1
            else:
                report.skipped += 1

        self._usage.record_execution(rule.id, time.perf_counter() - started, surfaced)

    def _candidate_pairs(
        self, rule: RecordLinkRule, focus: LinkableRecord | None
    ) -> Iterator[tuple[LinkableRecord, LinkableRecord]]:
        if focus is not None:
            sources: Iterable[LinkableRecord] = self._index.query(module=rule.source_module)
            if focus.module == rule.source_module:
                yield from self._pairs_for(rule, [focus], self._index.query(rule.target_module))
            if focus.module == rule.target_module:
                for source in sources:
                    # Already yielded above when focus sits on both sides
                    if focus.module == rule.source_module and source.id == focus.id:
                        continue
                    yield from self._pairs_for(rule, [source], [focus])
            return
        yield from self._pairs_for(
            rule,
            self._index.query(module=rule.source_module),
            self._index.query(module=rule.target_module),
        )

    def _pairs_for(
        self,
        rule: RecordLinkRule,
        sources: Iterable[LinkableRecord],
        targets: Iterable[LinkableRecord],
    ) -> Iterator[tuple[LinkableRecord, LinkableRecord]]:
        for source in sources:
            if not rule.can_see(source):
                continue
            for target in targets:
                if source.id == target.id or not rule.can_see(target):
                    continue
                key = LinkKey(
                    source.module,
                    source.record_id,
                    target.module,
                    target.record_id,
                    rule.link_type,
                )
                if self._links.has_active(key, rule.bidirectional):
                    continue
                yield source, target

    def _upsert(
        self,
        rule: RecordLinkRule,
        result: ScoreResult,
        source: LinkableRecord,
        target: LinkableRecord,
    ) -> tuple[str, LinkSuggestion | None]:
        key = LinkKey(
            source.module, source.record_id, target.module, target.record_id, rule.link_type
        )
        new_strengths = {
            (item.condition_id or item.description): item.strength for item in result.evidence
        }

        with self._key_locks.hold_all((key, key.reversed())):
            # The pair may have been linked while it was being scored
            if self._links.has_active(key, rule.bidirectional):
                return SKIPPED, None
            existing_id = self._pending_by_key.get(key)
            if existing_id is not None:
                existing = self._suggestions[existing_id]
                old_strengths = existing.evidence_strengths()
                if evidence_differs(old_strengths, new_strengths, self._epsilon):
                    self._transition(existing, SuggestionStatus.SUPERSEDED)
                    return SUPERSEDED, self._create(rule, result, key)
                if (
                    old_strengths == new_strengths
                    and existing.confidence_score == result.confidence
                    and existing.suggestion_reason is result.reason
                ):
                    return UNCHANGED, existing
                updated = existing.model_copy(
                    update={
                        "confidence_score": result.confidence,
                        "supporting_evidence": result.evidence,
                        "suggestion_reason": result.reason,
                    }
                )
                self._save(updated)
                return UPDATED, updated

            if self._in_cooldown(key, new_strengths):
                return SKIPPED, None
            return CREATED, self._create(rule, result, key)

    def _create(
        self, rule: RecordLinkRule, result: ScoreResult, key: LinkKey
    ) -> LinkSuggestion:
        suggestion = LinkSuggestion(
            rule_id=rule.id,
            source_module=key.source_module,
            source_record_id=key.source_record_id,
            target_module=key.target_module,
            target_record_id=key.target_record_id,
            suggestion_reason=result.reason,
            confidence_score=result.confidence,
            suggested_link_type=key.link_type,
            supporting_evidence=result.evidence,
        )
        self._save(suggestion)
        logger.info(
            f"Suggested {key.source_ref} -> {key.target_ref} "
            f"({key.link_type.value}, confidence {result.confidence:.3f})"
        )
        return suggestion

    def _in_cooldown(self, key: LinkKey, strengths: dict[str, float]) -> bool:
        rejected_id = self._rejected_by_key.get(key)
        if rejected_id is None:
            return False
        rejected = self._suggestions.get(rejected_id)
        if rejected is None or rejected.reviewed_at is None:
            return False
        if datetime.now(timezone.utc) - rejected.reviewed_at > self._cooldown:
            return False
        return not evidence_differs(rejected.evidence_strengths(), strengths, self._epsilon)

    # =========================================================================
    # Resolution
    # =========================================================================

    def accept(
        self,
        suggestion_id: str,
        reviewer: str,
        feedback: SuggestionFeedback | None = None,
    ) -> RecordLink:
        """Accept a pending suggestion, creating exactly one RecordLink.

        Raises:
            SuggestionNotFoundError: If the suggestion does not exist.
            InvalidTransitionError: If the suggestion is not pending.
            ConflictError: If an active link for the key already exists; the
                suggestion is marked SUPERSEDED.
        """
        key = self.require(suggestion_id).key
        with self._key_locks.hold_all((key, key.reversed())):
            suggestion = self.require(suggestion_id)
            self._check_transition(suggestion, SuggestionStatus.ACCEPTED)

            rule = self._rules.get(suggestion.rule_id) if suggestion.rule_id else None
            link = RecordLink(
                source_module=suggestion.source_module,
                source_record_id=suggestion.source_record_id,
                target_module=suggestion.target_module,
                target_record_id=suggestion.target_record_id,
                link_type=suggestion.suggested_link_type,
                link_strength=LinkStrength.from_confidence(suggestion.confidence_score),
                bidirectional=rule.bidirectional if rule else False,
                context_metadata=LinkContext(
                    description=f"Accepted suggestion {suggestion.id}",
                    metadata={
                        "suggestion_id": suggestion.id,
                        "suggestion_reason": suggestion.suggestion_reason.value,
                        **({"rule_id": suggestion.rule_id} if suggestion.rule_id else {}),
                    },
                ),
                created_by=reviewer,
                automatically_created=True,
                confidence_score=suggestion.confidence_score,
            )
            if rule is not None:
                link = link.model_copy(
                    update={"relationship_category": rule.relationship_category}
                )

            try:
                self._links.upsert(link)
            except DuplicateLinkError as e:
                self._transition(suggestion, SuggestionStatus.SUPERSEDED, reviewer=reviewer)
                logger.warning(
                    f"Suggestion {suggestion_id} conflicts with link {e.existing_link_id}; "
                    "marked superseded"
                )
                raise ConflictError(suggestion_id, e.existing_link_id) from e

            try:
                self._transition(
                    suggestion, SuggestionStatus.ACCEPTED, reviewer=reviewer, feedback=feedback
                )
            except Exception:
                self._links.remove(link.id)
                raise

        self._usage.record_acceptance(suggestion.rule_id, feedback)
        logger.info(f"Suggestion {suggestion_id} accepted by {reviewer} -> link {link.id}")
        return link

    def insert_link(self, link: RecordLink) -> RecordLink:
        """Insert a manual link, serialized with scans and acceptance of the pair.

        Raises:
            SelfLinkError: If source and target are the same record.
            DuplicateLinkError: If an active link with the same key exists.
        """
        key = link.key
        with self._key_locks.hold_all((key, key.reversed())):
            return self._links.upsert(link)

    def reject(
        self,
        suggestion_id: str,
        reviewer: str,
        feedback: SuggestionFeedback | None = None,
    ) -> LinkSuggestion:
        """Reject a pending suggestion and record reviewer feedback.

        Raises:
            SuggestionNotFoundError: If the suggestion does not exist.
            InvalidTransitionError: If the suggestion is not pending.
        """
        key = self.require(suggestion_id).key
        with self._key_locks.hold(key):
            suggestion = self.require(suggestion_id)
            rejected = self._transition(
                suggestion, SuggestionStatus.REJECTED, reviewer=reviewer, feedback=feedback
            )
        self._usage.record_rejection(suggestion.rule_id, feedback)
        logger.info(f"Suggestion {suggestion_id} rejected by {reviewer}")
        return rejected

    def expire(self, suggestion_id: str) -> LinkSuggestion:
        """Expire one pending suggestion.

        Raises:
            SuggestionNotFoundError: If the suggestion does not exist.
            InvalidTransitionError: If the suggestion is not pending.
        """
        key = self.require(suggestion_id).key
        with self._key_locks.hold(key):
            return self._transition(self.require(suggestion_id), SuggestionStatus.EXPIRED)

    def expire_stale(self, now: datetime | None = None) -> list[str]:
        """Expire pending suggestions older than the TTL.

        Returns:
            IDs of the expired suggestions.
        """
        cutoff = (now or datetime.now(timezone.utc)) - self._ttl
        expired: list[str] = []
        for suggestion in self.list_pending():
            if suggestion.generated_at > cutoff:
                continue
            if self._expire_if_pending(suggestion):
                expired.append(suggestion.id)
        if expired:
            logger.info(f"Expired {len(expired)} stale suggestions")
        return expired

    def expire_for_record(self, module: str, record_id: str) -> int:
        """Expire pending suggestions referencing a removed record."""
        count = 0
        for suggestion in self.list_for_record(
            record_id, module=module, status=SuggestionStatus.PENDING
        ):
            if self._expire_if_pending(suggestion):
                count += 1
        if count:
            logger.info(f"Expired {count} suggestions for removed record {module}:{record_id}")
        return count

    def _expire_if_pending(self, suggestion: LinkSuggestion) -> bool:
        with self._key_locks.hold(suggestion.key):
            current = self._suggestions.get(suggestion.id)
            if current is None or current.status is not SuggestionStatus.PENDING:
                return False
            self._transition(current, SuggestionStatus.EXPIRED)
            return True

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, suggestion_id: str) -> LinkSuggestion | None:
        return self._suggestions.get(suggestion_id)

    def require(self, suggestion_id: str) -> LinkSuggestion:
        """Get a suggestion or raise SuggestionNotFoundError."""
        suggestion = self._suggestions.get(suggestion_id)
        if suggestion is None:
            raise SuggestionNotFoundError(suggestion_id)
        return suggestion

    def find_pending(self, key: LinkKey) -> LinkSuggestion | None:
        suggestion_id = self._pending_by_key.get(key)
        return self._suggestions.get(suggestion_id) if suggestion_id else None

    def list_for_record(
        self,
        record_id: str,
        module: str | None = None,
        status: SuggestionStatus | None = None,
    ) -> list[LinkSuggestion]:
        """Suggestions where the record is source or target, best first."""
        with self._lock:
            suggestions = [self._suggestions[i] for i in self._by_record.get(record_id, ())]
        if module is not None:
            suggestions = [
                s
                for s in suggestions
                if (s.source_module == module and s.source_record_id == record_id)
                or (s.target_module == module and s.target_record_id == record_id)
            ]
        if status is not None:
            suggestions = [s for s in suggestions if s.status is status]
        return sorted(suggestions, key=lambda s: (-s.confidence_score, s.generated_at))

    def list_pending(self, rule_id: str | None = None) -> list[LinkSuggestion]:
        with self._lock:
            suggestions = [self._suggestions[i] for i in self._pending_by_key.values()]
        if rule_id is not None:
            suggestions = [s for s in suggestions if s.rule_id == rule_id]
        return sorted(suggestions, key=lambda s: (-s.confidence_score, s.generated_at))

    def all_suggestions(self) -> list[LinkSuggestion]:
        with self._lock:
            return list(self._suggestions.values())

    def status_counts(self) -> dict[str, int]:
        """Number of suggestions per status."""
        counts = {status.value: 0 for status in SuggestionStatus}
        for suggestion in self.all_suggestions():
            counts[suggestion.status.value] += 1
        return counts

    def restore(self, suggestions: Iterable[LinkSuggestion]) -> None:
        """Load suggestions from the journal without writing back."""
        count = 0
        with self._lock:
            for suggestion in suggestions:
                self._index_suggestion(suggestion)
                count += 1
        logger.info(f"Restored {count} link suggestions")

    # =========================================================================
    # State machine
    # =========================================================================

    @staticmethod
    def _check_transition(suggestion: LinkSuggestion, status: SuggestionStatus) -> None:
        if status not in _TRANSITIONS[suggestion.status]:
            raise InvalidTransitionError(
                suggestion.id, suggestion.status.value, status.value
            )

    def _transition(
        self,
        suggestion: LinkSuggestion,
        status: SuggestionStatus,
        reviewer: str | None = None,
        feedback: SuggestionFeedback | None = None,
    ) -> LinkSuggestion:
        self._check_transition(suggestion, status)
        update: dict[str, object] = {"status": status}
        if reviewer is not None:
            update["reviewed_by"] = reviewer
            update["reviewed_at"] = datetime.now(timezone.utc)
        if feedback is not None:
            update["feedback"] = feedback
        moved = suggestion.model_copy(update=update)
        self._save(moved)
        logger.debug(f"Suggestion {suggestion.id}: {suggestion.status.value} -> {status.value}")
        return moved

    def _save(self, suggestion: LinkSuggestion) -> None:
        if self._journal is not None:
            self._journal.save_suggestion(suggestion)
        with self._lock:
            self._index_suggestion(suggestion)

    def _index_suggestion(self, suggestion: LinkSuggestion) -> None:
        self._suggestions[suggestion.id] = suggestion
        key = suggestion.key
        if suggestion.status is SuggestionStatus.PENDING:
            self._pending_by_key[key] = suggestion.id
        elif self._pending_by_key.get(key) == suggestion.id:
            del self._pending_by_key[key]
        if suggestion.status is SuggestionStatus.REJECTED:
            latest_id = self._rejected_by_key.get(key)
            latest = self._suggestions.get(latest_id) if latest_id else None
            if latest is None or (latest.reviewed_at or latest.generated_at) <= (
                suggestion.reviewed_at or suggestion.generated_at
            ):
                self._rejected_by_key[key] = suggestion.id
        self._by_record.setdefault(suggestion.source_record_id, set()).add(suggestion.id)
        self._by_record.setdefault(suggestion.target_record_id, set()).add(suggestion.id)
