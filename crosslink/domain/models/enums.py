"""Enumeration types for Crosslink domain models."""

from __future__ import annotations

from enum import Enum


class LinkType(str, Enum):
    """Type of relationship between two records."""

    RELATED_TO = "RELATED_TO"
    DEPENDS_ON = "DEPENDS_ON"
    AFFECTS = "AFFECTS"
    CONTAINS = "CONTAINS"
    PART_OF = "PART_OF"
    ASSIGNED_TO = "ASSIGNED_TO"
    CAUSED_BY = "CAUSED_BY"
    RESOLVED_BY = "RESOLVED_BY"
    REFERENCES = "REFERENCES"
    DUPLICATE_OF = "DUPLICATE_OF"
    DERIVED_FROM = "DERIVED_FROM"
    TRIGGERED_BY = "TRIGGERED_BY"
    BLOCKS = "BLOCKS"
    ENABLED_BY = "ENABLED_BY"

    @property
    def display_name(self) -> str:
        """Human readable name, e.g. 'Related To'."""
        return self.value.replace("_", " ").title()


class RelationshipCategory(str, Enum):
    """Broad category of a relationship."""

    HIERARCHICAL = "HIERARCHICAL"
    PEER = "PEER"
    DEPENDENCY = "DEPENDENCY"
    CAUSAL = "CAUSAL"
    TEMPORAL = "TEMPORAL"
    SPATIAL = "SPATIAL"
    CONTEXTUAL = "CONTEXTUAL"
    FUNCTIONAL = "FUNCTIONAL"
    STRUCTURAL = "STRUCTURAL"


class LinkStrength(str, Enum):
    """Qualitative strength of a link."""

    WEAK = "WEAK"
    MODERATE = "MODERATE"
    STRONG = "STRONG"
    CRITICAL = "CRITICAL"

    @property
    def numeric_value(self) -> float:
        return {
            LinkStrength.WEAK: 0.25,
            LinkStrength.MODERATE: 0.5,
            LinkStrength.STRONG: 0.75,
            LinkStrength.CRITICAL: 1.0,
        }[self]

    @classmethod
    def from_confidence(cls, confidence: float) -> LinkStrength:
        """Map a [0,1] confidence onto the nearest strength bucket."""
        if confidence >= 0.95:
            return cls.CRITICAL
        if confidence >= 0.75:
            return cls.STRONG
        if confidence >= 0.5:
            return cls.MODERATE
        return cls.WEAK


class ValidationStatus(str, Enum):
    """Validation state of a link's endpoints."""

    VALID = "VALID"
    INVALID = "INVALID"
    PENDING = "PENDING"
    STALE = "STALE"
    BROKEN = "BROKEN"


class RecordPriority(str, Enum):
    """Business priority of an indexed record."""

    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ConditionOperator(str, Enum):
    """Comparison operator of an auto-link condition."""

    EQUALS = "EQUALS"
    CONTAINS = "CONTAINS"
    STARTS_WITH = "STARTS_WITH"
    ENDS_WITH = "ENDS_WITH"
    REGEX = "REGEX"
    SIMILAR_TO = "SIMILAR_TO"
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    BETWEEN = "BETWEEN"


class LinkingAlgorithm(str, Enum):
    """Matching algorithm used for graded (similarTo) conditions.

    EXACT, SIMILARITY and FUZZY ship with Crosslink. SEMANTIC, NEURAL and
    CUSTOM are slots for matchers registered by collaborators.
    """

    EXACT = "EXACT"
    SIMILARITY = "SIMILARITY"
    FUZZY = "FUZZY"
    SEMANTIC = "SEMANTIC"
    NEURAL = "NEURAL"
    CUSTOM = "CUSTOM"


class SuggestionStatus(str, Enum):
    """Review state of a link suggestion.

    PENDING is the only non-terminal state.
    """

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    SUPERSEDED = "SUPERSEDED"

    @property
    def is_terminal(self) -> bool:
        return self is not SuggestionStatus.PENDING


class SuggestionReason(str, Enum):
    """Why a suggestion was generated."""

    FIELD_MATCH = "FIELD_MATCH"
    SEMANTIC_SIMILARITY = "SEMANTIC_SIMILARITY"
    TEMPORAL_PROXIMITY = "TEMPORAL_PROXIMITY"
    USER_BEHAVIOR = "USER_BEHAVIOR"
    BUSINESS_RULE = "BUSINESS_RULE"
    MACHINE_LEARNING = "MACHINE_LEARNING"
    EXTERNAL_SOURCE = "EXTERNAL_SOURCE"


class EvidenceType(str, Enum):
    """Kind of evidence supporting a suggestion."""

    TEXT_SIMILARITY = "TEXT_SIMILARITY"
    DATE_SIMILARITY = "DATE_SIMILARITY"
    CATEGORY_MATCH = "CATEGORY_MATCH"
    USER_ACTION = "USER_ACTION"
    SYSTEM_RULE = "SYSTEM_RULE"
    EXTERNAL_REFERENCE = "EXTERNAL_REFERENCE"


class ResolutionDecision(str, Enum):
    """Reviewer decision passed to ResolveSuggestion."""

    ACCEPT = "accept"
    REJECT = "reject"
