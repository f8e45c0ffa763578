"""Scorer - aggregates weighted condition scores into one confidence."""

from __future__ import annotations

import logging
import threading

from ..models import (
    EvidenceItem,
    EvidenceType,
    LinkableRecord,
    RecordLinkRule,
    ScoreResult,
    SuggestionReason,
)
from .evaluator import ConditionEvaluator

logger = logging.getLogger(__name__)

_REASON_BY_EVIDENCE = {
    EvidenceType.TEXT_SIMILARITY: SuggestionReason.SEMANTIC_SIMILARITY,
    EvidenceType.DATE_SIMILARITY: SuggestionReason.TEMPORAL_PROXIMITY,
}


class Scorer:
    """Computes confidence and evidence for a candidate pair under a rule.

    confidence = sum(weight * score) / sum(weight), clamped to [0, 1]. A rule
    whose weights sum to zero always scores 0 and is flagged as
    misconfigured.
    """

    def __init__(self, evaluator: ConditionEvaluator | None = None) -> None:
        self._evaluator = evaluator or ConditionEvaluator()
        self._misconfigured: set[str] = set()
        self._lock = threading.Lock()

    @property
    def evaluator(self) -> ConditionEvaluator:
        return self._evaluator

    @property
    def misconfigured_rules(self) -> set[str]:
        """IDs of rules last scored with a zero total weight."""
        with self._lock:
            return set(self._misconfigured)

    def score(
        self, rule: RecordLinkRule, source: LinkableRecord, target: LinkableRecord
    ) -> ScoreResult:
        """Score one candidate pair.

        Args:
            rule: Rule whose conditions are evaluated.
            source: Record from the rule's source module.
            target: Record from the rule's target module.

        Returns:
            ScoreResult with confidence, one evidence item per condition that
            contributed, the derived suggestion reason, and whether the
            confidence reaches the rule's threshold.
        """
        total_weight = rule.total_weight
        if total_weight <= 0:
            self._flag_misconfigured(rule)
            return ScoreResult(
                rule_id=rule.id,
                source_id=source.id,
                target_id=target.id,
                confidence=0.0,
            )

        if rule.id in self._misconfigured:
            self.forget(rule.id)

        weighted = 0.0
        evidence: list[EvidenceItem] = []
        dominant: tuple[float, EvidenceType] | None = None

        for condition in rule.auto_link_conditions:
            outcome = self._evaluator.evaluate_detailed(
                condition, source, target, rule.linking_algorithm
            )
            contribution = condition.weight * outcome.score
            if contribution <= 0:
                continue
            weighted += contribution
            evidence.append(
                EvidenceItem(
                    evidence_type=outcome.evidence_type,
                    description=outcome.detail,
                    strength=round(outcome.score, 6),
                    metadata={
                        "condition_id": condition.id,
                        "field_name": condition.field_name,
                        "operator": condition.operator.value,
                        "weight": str(condition.weight),
                    },
                )
            )
            if dominant is None or contribution > dominant[0]:
                dominant = (contribution, outcome.evidence_type)

        confidence = round(min(1.0, max(0.0, weighted / total_weight)), 6)
        reason = SuggestionReason.FIELD_MATCH
        if dominant is not None:
            reason = _REASON_BY_EVIDENCE.get(dominant[1], SuggestionReason.FIELD_MATCH)

        return ScoreResult(
            rule_id=rule.id,
            source_id=source.id,
            target_id=target.id,
            confidence=confidence,
            evidence=evidence,
            reason=reason,
            matched=confidence >= rule.confidence_threshold,
        )

    def forget(self, rule_id: str) -> None:
        """Clear the misconfigured flag of a fixed or deleted rule."""
        with self._lock:
            self._misconfigured.discard(rule_id)

    def _flag_misconfigured(self, rule: RecordLinkRule) -> None:
        with self._lock:
            if rule.id in self._misconfigured:
                return
            self._misconfigured.add(rule.id)
        logger.warning(
            f"Rule '{rule.name}' ({rule.id}) has zero total condition weight; "
            "its confidence is always 0"
        )
