"""Matching algorithms for graded (similarTo) conditions.

Each algorithm is a Matcher with a single `similarity` method returning a
deterministic, symmetric score in [0, 1]. The MatcherRegistry maps a rule's
LinkingAlgorithm onto a Matcher; SEMANTIC, NEURAL and CUSTOM have no built-in
matcher and must be registered by a collaborator.
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol

from rapidfuzz import fuzz
from rapidfuzz.distance import Levenshtein

from ..exceptions import ConditionEvaluationError
from ..models import LinkingAlgorithm

logger = logging.getLogger(__name__)


def normalize_text(value: str) -> str:
    """Lower-case and collapse whitespace."""
    return " ".join(value.casefold().split())


class Matcher(Protocol):
    """A pluggable string matcher."""

    def similarity(self, left: str, right: str) -> float:
        """Return a symmetric similarity score in [0, 1]."""
        ...


class ExactMatcher:
    """1.0 when the normalized strings are identical, else 0.0."""

    def similarity(self, left: str, right: str) -> float:
        return 1.0 if normalize_text(left) == normalize_text(right) else 0.0


class SimilarityMatcher:
    """Normalized edit-distance similarity: 1 - distance / max_len."""

    def similarity(self, left: str, right: str) -> float:
        a, b = normalize_text(left), normalize_text(right)
        if not a and not b:
            return 1.0
        return float(Levenshtein.normalized_similarity(a, b))


class FuzzyMatcher:
    """Token-order insensitive ratio, so 'Acme Corp' matches 'corp acme'."""

    def similarity(self, left: str, right: str) -> float:
        a, b = normalize_text(left), normalize_text(right)
        if not a and not b:
            return 1.0
        return float(fuzz.token_sort_ratio(a, b)) / 100.0


class MatcherRegistry:
    """Dispatch table from LinkingAlgorithm to Matcher."""

    def __init__(self, matchers: dict[LinkingAlgorithm, Matcher] | None = None) -> None:
        self._lock = threading.Lock()
        self._matchers: dict[LinkingAlgorithm, Matcher] = {
            LinkingAlgorithm.EXACT: ExactMatcher(),
            LinkingAlgorithm.SIMILARITY: SimilarityMatcher(),
            LinkingAlgorithm.FUZZY: FuzzyMatcher(),
        }
        if matchers:
            self._matchers.update(matchers)

    def register(self, algorithm: LinkingAlgorithm, matcher: Matcher) -> None:
        """Register (or replace) the matcher for an algorithm."""
        with self._lock:
            self._matchers[algorithm] = matcher
        logger.info(f"Registered matcher for {algorithm.value}: {type(matcher).__name__}")

    def get(self, algorithm: LinkingAlgorithm) -> Matcher:
        """Get the matcher for an algorithm.

        Raises:
            ConditionEvaluationError: If no matcher is registered.
        """
        matcher = self._matchers.get(algorithm)
        if matcher is None:
            raise ConditionEvaluationError(
                f"No matcher registered for linking algorithm {algorithm.value}"
            )
        return matcher

    def __contains__(self, algorithm: object) -> bool:
        return algorithm in self._matchers

    @property
    def algorithms(self) -> list[LinkingAlgorithm]:
        return list(self._matchers)
