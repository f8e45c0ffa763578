"""Unit tests for the matcher registry and built-in matchers."""

from __future__ import annotations

import pytest

from crosslink.domain.exceptions import ConditionEvaluationError
from crosslink.domain.matching import (
    ExactMatcher,
    FuzzyMatcher,
    MatcherRegistry,
    SimilarityMatcher,
)
from crosslink.domain.models import LinkingAlgorithm


class TestExactMatcher:
    """Tests for ExactMatcher."""

    def test_identical_after_normalization(self):
        assert ExactMatcher().similarity("Acme  Corp", "acme corp") == 1.0

    def test_different(self):
        assert ExactMatcher().similarity("Acme", "Acne") == 0.0


class TestSimilarityMatcher:
    """Tests for SimilarityMatcher."""

    def test_identical(self):
        assert SimilarityMatcher().similarity("invoice", "invoice") == 1.0

    def test_one_edit(self):
        score = SimilarityMatcher().similarity("invoice", "invoices")
        assert score == pytest.approx(1 - 1 / 8)

    def test_symmetric(self):
        matcher = SimilarityMatcher()
        assert matcher.similarity("kitten", "sitting") == matcher.similarity(
            "sitting", "kitten"
        )

    def test_both_empty(self):
        assert SimilarityMatcher().similarity("", "  ") == 1.0


class TestFuzzyMatcher:
    """Tests for FuzzyMatcher."""

    def test_token_order_insensitive(self):
        assert FuzzyMatcher().similarity("Acme Corp", "corp acme") == 1.0

    def test_unrelated_scores_low(self):
        assert FuzzyMatcher().similarity("Acme Corp", "Globex") < 0.5


class TestMatcherRegistry:
    """Tests for MatcherRegistry."""

    def test_builtin_algorithms(self):
        registry = MatcherRegistry()

        assert LinkingAlgorithm.EXACT in registry
        assert LinkingAlgorithm.SIMILARITY in registry
        assert LinkingAlgorithm.FUZZY in registry
        assert LinkingAlgorithm.SEMANTIC not in registry

    def test_unregistered_algorithm_raises(self):
        with pytest.raises(ConditionEvaluationError):
            MatcherRegistry().get(LinkingAlgorithm.NEURAL)

    def test_register_custom_matcher(self):
        class Always:
            def similarity(self, left: str, right: str) -> float:
                return 0.42

        registry = MatcherRegistry()
        registry.register(LinkingAlgorithm.CUSTOM, Always())

        assert registry.get(LinkingAlgorithm.CUSTOM).similarity("a", "b") == 0.42
        assert LinkingAlgorithm.CUSTOM in registry.algorithms
