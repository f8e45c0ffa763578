"""Usage/Feedback Aggregator - accumulates rule statistics and reviewer feedback."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from ..exceptions import RuleNotFoundError
from ..models import RuleFeedbackSummary, RuleUsageStatistics, SuggestionFeedback

if TYPE_CHECKING:
    from .rules import RuleStore

logger = logging.getLogger(__name__)


def _running_mean(mean: float, count: int, value: float) -> float:
    """Fold `value` into a mean over `count` previous samples."""
    return mean + (value - mean) / (count + 1)


class UsageAggregator:
    """Accumulates RuleUsageStatistics and SuggestionFeedback per rule.

    Statistics are monotonic and only reset explicitly. They are written
    back onto the rule through the RuleStore so they persist with it.
    """

    def __init__(self, rule_store: RuleStore) -> None:
        self._rules = rule_store
        self._lock = threading.Lock()
        self._feedback: dict[str, list[SuggestionFeedback]] = {}

    def record_execution(
        self, rule_id: str, elapsed: float, confidences: list[float] | None = None
    ) -> RuleUsageStatistics | None:
        """Record one rule execution and the confidences it produced."""
        with self._lock:
            stats = self._current(rule_id)
            if stats is None:
                return None
            average_confidence = stats.average_confidence
            samples = stats.confidence_samples
            for confidence in confidences or []:
                average_confidence = _running_mean(average_confidence, samples, confidence)
                samples += 1
            updated = stats.model_copy(
                update={
                    "execution_count": stats.execution_count + 1,
                    "average_execution_time": _running_mean(
                        stats.average_execution_time, stats.execution_count, elapsed
                    ),
                    "average_confidence": average_confidence,
                    "confidence_samples": samples,
                    "last_executed": datetime.now(timezone.utc),
                }
            )
            return self._write(rule_id, updated)

    def record_acceptance(
        self, rule_id: str | None, feedback: SuggestionFeedback | None = None
    ) -> RuleUsageStatistics | None:
        """Record that a suggestion produced by the rule was accepted."""
        if rule_id is None:
            return None
        with self._lock:
            self._add_feedback(rule_id, feedback)
            stats = self._current(rule_id)
            if stats is None:
                return None
            updated = stats.model_copy(update={"successful_links": stats.successful_links + 1})
            return self._write(rule_id, updated)

    def record_rejection(
        self, rule_id: str | None, feedback: SuggestionFeedback | None = None
    ) -> RuleUsageStatistics | None:
        """Record that a suggestion produced by the rule was rejected."""
        if rule_id is None:
            return None
        with self._lock:
            self._add_feedback(rule_id, feedback)
            stats = self._current(rule_id)
            if stats is None:
                return None
            updated = stats.model_copy(
                update={"rejected_suggestions": stats.rejected_suggestions + 1}
            )
            return self._write(rule_id, updated)

    def restore_feedback(self, rule_id: str, feedback: SuggestionFeedback) -> None:
        """Re-attach persisted reviewer feedback at startup."""
        with self._lock:
            self._add_feedback(rule_id, feedback)

    def statistics(self, rule_id: str) -> RuleUsageStatistics:
        """Get a rule's statistics.

        Raises:
            RuleNotFoundError: If the rule does not exist.
        """
        return self._rules.require(rule_id).usage_statistics

    def feedback(self, rule_id: str) -> list[SuggestionFeedback]:
        with self._lock:
            return list(self._feedback.get(rule_id, []))

    def summary(self, rule_id: str) -> RuleFeedbackSummary:
        """Roll statistics and feedback up into one summary.

        Raises:
            RuleNotFoundError: If the rule does not exist.
        """
        stats = self.statistics(rule_id)
        feedback = self.feedback(rule_id)

        reviewed = stats.successful_links + stats.rejected_suggestions
        improvements: list[str] = []
        for item in feedback:
            for suggestion in item.improvement_suggestions:
                if suggestion not in improvements:
                    improvements.append(suggestion)

        return RuleFeedbackSummary(
            rule_id=rule_id,
            execution_count=stats.execution_count,
            successful_links=stats.successful_links,
            rejected_suggestions=stats.rejected_suggestions,
            acceptance_rate=stats.successful_links / reviewed if reviewed else None,
            average_confidence=stats.average_confidence,
            feedback_count=len(feedback),
            average_rating=(
                sum(f.rating for f in feedback) / len(feedback) if feedback else None
            ),
            helpful_ratio=(
                sum(1 for f in feedback if f.was_helpful) / len(feedback) if feedback else None
            ),
            improvement_suggestions=improvements,
        )

    def reset(self, rule_id: str) -> RuleUsageStatistics:
        """Explicitly reset a rule's statistics and feedback.

        Raises:
            RuleNotFoundError: If the rule does not exist.
        """
        with self._lock:
            self._rules.require(rule_id)
            self._feedback.pop(rule_id, None)
            stats = self._write(rule_id, RuleUsageStatistics())
        logger.info(f"Reset usage statistics for rule {rule_id}")
        return stats

    # =========================================================================
    # Internals
    # =========================================================================

    def _current(self, rule_id: str) -> RuleUsageStatistics | None:
        rule = self._rules.get(rule_id)
        if rule is None:
            logger.warning(f"Usage recorded for unknown rule {rule_id}; ignoring")
            return None
        return rule.usage_statistics

    def _write(self, rule_id: str, stats: RuleUsageStatistics) -> RuleUsageStatistics | None:
        try:
            return self._rules.replace_statistics(rule_id, stats).usage_statistics
        except RuleNotFoundError:
            logger.warning(f"Rule {rule_id} was deleted before its statistics were saved")
            return None

    def _add_feedback(self, rule_id: str, feedback: SuggestionFeedback | None) -> None:
        if feedback is not None:
            self._feedback.setdefault(rule_id, []).append(feedback)
