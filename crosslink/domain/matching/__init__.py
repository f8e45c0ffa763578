"""Matching engine: condition evaluation, matchers and scoring."""

from .evaluator import ConditionEvaluator, ConditionOutcome, resolve_field
from .matchers import (
    ExactMatcher,
    FuzzyMatcher,
    Matcher,
    MatcherRegistry,
    SimilarityMatcher,
)
from .scorer import Scorer

__all__ = [
    "ConditionEvaluator",
    "ConditionOutcome",
    "resolve_field",
    "Matcher",
    "MatcherRegistry",
    "ExactMatcher",
    "SimilarityMatcher",
    "FuzzyMatcher",
    "Scorer",
]
