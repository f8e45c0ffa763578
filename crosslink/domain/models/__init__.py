"""Domain models for Crosslink.

This package provides all domain models, organized by concern:
- enums: LinkType, SuggestionStatus, ConditionOperator, ...
- record: LinkableRecord, RecordMetadata
- rule: RecordLinkRule, AutoLinkCondition, RuleUsageStatistics
- suggestion: LinkSuggestion, EvidenceItem, SuggestionFeedback
- link: RecordLink, LinkContext, LinkKey
- results: ScoreResult, ScanReport, IndexRecordResult, RuleFeedbackSummary, ...
"""

from .enums import (
    ConditionOperator,
    EvidenceType,
    LinkingAlgorithm,
    LinkStrength,
    LinkType,
    RecordPriority,
    RelationshipCategory,
    ResolutionDecision,
    SuggestionReason,
    SuggestionStatus,
    ValidationStatus,
)
from .link import LinkContext, LinkKey, RecordLink
from .record import LinkableRecord, RecordMetadata
from .results import (
    IndexRecordResult,
    RemoveRecordResult,
    RuleFeedbackSummary,
    ScanReport,
    ScoreResult,
    ValidationSweepResult,
)
from .rule import AutoLinkCondition, RecordLinkRule, RuleUsageStatistics
from .suggestion import EvidenceItem, LinkSuggestion, SuggestionFeedback

__all__ = [
    # Enums
    "ConditionOperator",
    "EvidenceType",
    "LinkingAlgorithm",
    "LinkStrength",
    "LinkType",
    "RecordPriority",
    "RelationshipCategory",
    "ResolutionDecision",
    "SuggestionReason",
    "SuggestionStatus",
    "ValidationStatus",
    # Record models
    "LinkableRecord",
    "RecordMetadata",
    # Rule models
    "AutoLinkCondition",
    "RecordLinkRule",
    "RuleUsageStatistics",
    # Suggestion models
    "EvidenceItem",
    "LinkSuggestion",
    "SuggestionFeedback",
    # Link models
    "LinkContext",
    "LinkKey",
    "RecordLink",
    # Result models
    "IndexRecordResult",
    "RemoveRecordResult",
    "RuleFeedbackSummary",
    "ScanReport",
    "ScoreResult",
    "ValidationSweepResult",
]
