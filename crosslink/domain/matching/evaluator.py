"""Condition Evaluator - scores one condition against a candidate pair.

Every operator tests the target record's field value against a comparand.
The comparand is the condition's literal `value` when set, otherwise the
source record's value for the same field. Missing values score 0.0; a
condition that cannot be evaluated (bad regex, unregistered matcher,
malformed range, failing matcher) also scores 0.0 and is logged as a
rule-configuration warning once per condition. Nothing raised here aborts
a rule.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from functools import lru_cache
from typing import Any

from pydantic import BaseModel

from ..exceptions import ConditionEvaluationError
from ..models import (
    AutoLinkCondition,
    ConditionOperator,
    EvidenceType,
    LinkableRecord,
    LinkingAlgorithm,
)
from .matchers import MatcherRegistry, normalize_text

logger = logging.getLogger(__name__)

# Bare field names that resolve to surrogate attributes rather than `fields`.
_ATTRIBUTE_FIELDS: dict[str, tuple[str, ...]] = {
    "id": ("id",),
    "title": ("title",),
    "description": ("description",),
    "module": ("module",),
    "recordId": ("record_id",),
    "record_id": ("record_id",),
    "recordType": ("record_type",),
    "record_type": ("record_type",),
    "categories": ("metadata", "categories"),
    "searchKeywords": ("metadata", "search_keywords"),
    "search_keywords": ("metadata", "search_keywords"),
    "priority": ("metadata", "priority"),
    "primaryKey": ("metadata", "primary_key"),
    "primary_key": ("metadata", "primary_key"),
}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


@dataclass(frozen=True)
class ConditionOutcome:
    """Score and explanation for one evaluated condition."""

    score: float
    evidence_type: EvidenceType
    detail: str


def _to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def _walk(current: Any, parts: list[str]) -> Any:
    for part in parts:
        if current is None:
            return None
        if isinstance(current, BaseModel):
            attr = part if part in type(current).model_fields else _to_snake(part)
            current = getattr(current, attr, None)
        elif isinstance(current, dict):
            current = current.get(part)
        else:
            return None
    return current


def resolve_field(record: LinkableRecord, field_name: str) -> Any:
    """Look a field up on a record surrogate.

    Resolution order: dotted path, surrogate attribute, `fields`,
    business identifiers, foreign keys. Returns None when absent or empty.
    """
    if "." in field_name:
        value = _walk(record, field_name.split("."))
    elif field_name in _ATTRIBUTE_FIELDS:
        value = _walk(record, list(_ATTRIBUTE_FIELDS[field_name]))
    elif field_name in record.fields:
        value = record.fields[field_name]
    elif field_name in record.metadata.business_identifiers:
        value = record.metadata.business_identifiers[field_name]
    else:
        value = record.metadata.foreign_keys.get(field_name)

    if isinstance(value, Enum):
        # Enum members compare by their wire value
        value = value.value
    return None if _is_missing(value) else value


def _texts(value: Any) -> list[str]:
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value if not _is_missing(v)]
    return [str(value)]


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _ordinal(value: Any) -> tuple[str, Any] | None:
    """Parse a value for ordering: ('number', float) or ('date', datetime)."""
    number = _as_number(value)
    if number is not None:
        return "number", number
    moment = _as_datetime(value)
    if moment is not None:
        return "date", moment
    return None


def _values_equal(left: Any, right: Any) -> bool:
    left_number, right_number = _as_number(left), _as_number(right)
    if left_number is not None and right_number is not None:
        return left_number == right_number
    return normalize_text(str(left)) == normalize_text(str(right))


@lru_cache(maxsize=256)
def _compile(pattern: str) -> tuple[re.Pattern[str] | None, str | None]:
    """Compile a pattern once; invalid patterns cache their error message."""
    try:
        return re.compile(pattern), None
    except re.error as e:
        return None, f"Invalid regex {pattern!r}: {e}"


class ConditionEvaluator:
    """Evaluates AutoLinkConditions against candidate record pairs."""

    def __init__(self, matchers: MatcherRegistry | None = None) -> None:
        self._matchers = matchers or MatcherRegistry()
        self._warned: set[str] = set()
        self._warned_lock = threading.Lock()

    @property
    def matchers(self) -> MatcherRegistry:
        return self._matchers

    def evaluate(
        self,
        condition: AutoLinkCondition,
        source: LinkableRecord,
        target: LinkableRecord,
        algorithm: LinkingAlgorithm = LinkingAlgorithm.SIMILARITY,
    ) -> float:
        """Score one condition for a candidate pair, in [0, 1]."""
        return self.evaluate_detailed(condition, source, target, algorithm).score

    def evaluate_detailed(
        self,
        condition: AutoLinkCondition,
        source: LinkableRecord,
        target: LinkableRecord,
        algorithm: LinkingAlgorithm = LinkingAlgorithm.SIMILARITY,
    ) -> ConditionOutcome:
        """Score one condition and describe how the score was reached."""
        evidence_type = self._evidence_type(condition)
        try:
            score, detail, is_date = self._evaluate(condition, source, target, algorithm)
        except ConditionEvaluationError as e:
            self._report(condition, e)
            return ConditionOutcome(0.0, evidence_type, str(e))

        if is_date:
            evidence_type = EvidenceType.DATE_SIMILARITY
        return ConditionOutcome(min(1.0, max(0.0, score)), evidence_type, detail)

    def _report(self, condition: AutoLinkCondition, error: ConditionEvaluationError) -> None:
        with self._warned_lock:
            first = condition.id not in self._warned
            self._warned.add(condition.id)
        message = (
            f"Rule condition {condition.id} ({condition.field_name} "
            f"{condition.operator.value}) could not be evaluated: {error}"
        )
        if first:
            logger.warning(message)
        else:
            logger.debug(message)

    # =========================================================================
    # Operator dispatch
    # =========================================================================

    def _evaluate(
        self,
        condition: AutoLinkCondition,
        source: LinkableRecord,
        target: LinkableRecord,
        algorithm: LinkingAlgorithm,
    ) -> tuple[float, str, bool]:
        op = condition.operator
        field = condition.field_name
        target_value = resolve_field(target, field)

        if op is ConditionOperator.REGEX:
            return self._regex(condition, target_value)
        if op is ConditionOperator.BETWEEN:
            return self._between(condition, target_value)

        literal = condition.value.strip()
        comparand = literal if literal else resolve_field(source, field)
        if target_value is None or comparand is None:
            return 0.0, f"{field} missing", False

        if op is ConditionOperator.EQUALS:
            hit = any(
                _values_equal(t, c) for t in _texts(target_value) for c in _texts(comparand)
            )
            return (1.0 if hit else 0.0), f"{field} equals {comparand!r}", False

        if op in (
            ConditionOperator.CONTAINS,
            ConditionOperator.STARTS_WITH,
            ConditionOperator.ENDS_WITH,
        ):
            return self._substring(op, field, target_value, comparand)

        if op is ConditionOperator.SIMILAR_TO:
            matcher = self._matchers.get(algorithm)
            try:
                score = max(
                    float(matcher.similarity(t, c))
                    for t in _texts(target_value)
                    for c in _texts(comparand)
                )
            except Exception as e:
                raise ConditionEvaluationError(
                    f"{algorithm.value} matcher failed: {type(e).__name__}: {e}"
                ) from e
            return score, f"{field} similar to {comparand!r} ({algorithm.value})", False

        if op in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
            return self._compare(op, field, target_value, comparand)

        raise ConditionEvaluationError(f"Unsupported operator {op.value}")

    def _substring(
        self, op: ConditionOperator, field: str, target_value: Any, comparand: Any
    ) -> tuple[float, str, bool]:
        checks = {
            ConditionOperator.CONTAINS: lambda t, c: c in t,
            ConditionOperator.STARTS_WITH: lambda t, c: t.startswith(c),
            ConditionOperator.ENDS_WITH: lambda t, c: t.endswith(c),
        }
        check = checks[op]
        hit = any(
            check(normalize_text(t), normalize_text(c))
            for t in _texts(target_value)
            for c in _texts(comparand)
        )
        verb = op.value.lower().replace("_", " ")
        return (1.0 if hit else 0.0), f"{field} {verb} {comparand!r}", False

    def _regex(
        self, condition: AutoLinkCondition, target_value: Any
    ) -> tuple[float, str, bool]:
        if not condition.value:
            raise ConditionEvaluationError("REGEX condition has an empty pattern")
        pattern, error = _compile(condition.value)
        if pattern is None:
            raise ConditionEvaluationError(error)
        if target_value is None:
            return 0.0, f"{condition.field_name} missing", False
        hit = any(pattern.search(t) for t in _texts(target_value))
        detail = f"{condition.field_name} matches /{condition.value}/"
        return (1.0 if hit else 0.0), detail, False

    def _compare(
        self, op: ConditionOperator, field: str, target_value: Any, comparand: Any
    ) -> tuple[float, str, bool]:
        left, right = _ordinal(target_value), _ordinal(comparand)
        if left is None or right is None or left[0] != right[0]:
            return 0.0, f"{field} not comparable", False
        if op is ConditionOperator.GREATER_THAN:
            hit = left[1] > right[1]
            detail = f"{field} greater than {comparand!r}"
        else:
            hit = left[1] < right[1]
            detail = f"{field} less than {comparand!r}"
        return (1.0 if hit else 0.0), detail, left[0] == "date"

    def _between(
        self, condition: AutoLinkCondition, target_value: Any
    ) -> tuple[float, str, bool]:
        bounds = [part.strip() for part in condition.value.split(",")]
        if len(bounds) != 2 or not all(bounds):
            raise ConditionEvaluationError(
                f"BETWEEN expects 'low,high', got {condition.value!r}"
            )
        low, high = _ordinal(bounds[0]), _ordinal(bounds[1])
        if low is None or high is None or low[0] != high[0]:
            raise ConditionEvaluationError(f"BETWEEN bounds not comparable: {condition.value!r}")
        field = condition.field_name
        value = _ordinal(target_value) if target_value is not None else None
        if value is None or value[0] != low[0]:
            return 0.0, f"{field} not comparable", False
        hit = low[1] <= value[1] <= high[1]
        return (1.0 if hit else 0.0), f"{field} between {condition.value}", low[0] == "date"

    @staticmethod
    def _evidence_type(condition: AutoLinkCondition) -> EvidenceType:
        if condition.operator is ConditionOperator.SIMILAR_TO:
            return EvidenceType.TEXT_SIMILARITY
        if condition.field_name.split(".")[-1] == "categories":
            return EvidenceType.CATEGORY_MATCH
        return EvidenceType.SYSTEM_RULE
