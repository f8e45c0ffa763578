"""Result models for service operations."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import SuggestionReason
from .record import LinkableRecord
from .suggestion import EvidenceItem


class ScoreResult(BaseModel):
    """Outcome of scoring one candidate pair under one rule."""

    rule_id: str
    source_id: str
    target_id: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    evidence: list[EvidenceItem] = Field(default_factory=list)
    reason: SuggestionReason = SuggestionReason.FIELD_MATCH
    matched: bool = False


class ScanReport(BaseModel):
    """Summary of one scan over the index."""

    rules_evaluated: int = 0
    pairs_evaluated: int = 0
    matches: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    superseded: int = 0
    skipped: int = Field(
        default=0, description="Matches suppressed by a rejection cool-down"
    )
    cancelled: bool = False
    created_ids: list[str] = Field(default_factory=list)


class ValidationSweepResult(BaseModel):
    """Summary of a link revalidation sweep."""

    checked: int = 0
    valid: int = 0
    stale: int = 0
    broken: int = 0
    validated_at: datetime | None = None


class RuleFeedbackSummary(BaseModel):
    """Feedback and usage rolled up for one rule."""

    rule_id: str
    execution_count: int = 0
    successful_links: int = 0
    rejected_suggestions: int = 0
    acceptance_rate: float | None = Field(
        None, description="accepted / (accepted + rejected), None if unreviewed"
    )
    average_confidence: float = 0.0
    feedback_count: int = 0
    average_rating: float | None = None
    helpful_ratio: float | None = None
    improvement_suggestions: list[str] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API response."""
        return self.model_dump(mode="json")


class IndexRecordResult(BaseModel):
    """Result of indexing one module record."""

    record: LinkableRecord
    changed: bool = Field(..., description="False when the content was identical")
    scan: ScanReport | None = Field(None, description="Incremental scan, if one ran")


class RemoveRecordResult(BaseModel):
    """Result of removing one module record from the index."""

    module: str
    record_id: str
    expired_suggestions: int = 0
    broken_links: int = 0
