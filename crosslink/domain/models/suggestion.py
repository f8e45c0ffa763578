"""Link suggestion and evidence models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from .enums import EvidenceType, LinkType, SuggestionReason, SuggestionStatus
from .link import LinkKey


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class EvidenceItem(BaseModel):
    """One condition's contribution to a suggestion's confidence."""

    id: str = Field(default_factory=_new_id)
    evidence_type: EvidenceType
    description: str
    strength: float = Field(..., ge=0.0, le=1.0)
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def condition_id(self) -> str | None:
        return self.metadata.get("condition_id")


class SuggestionFeedback(BaseModel):
    """Reviewer feedback on a suggestion."""

    rating: int = Field(..., ge=1, le=5)
    comment: str | None = None
    improvement_suggestions: list[str] = Field(default_factory=list)
    was_helpful: bool = True


class LinkSuggestion(BaseModel):
    """A proposed link awaiting review.

    Only the SuggestionManager changes a suggestion, and only through its
    state machine.
    """

    id: str = Field(default_factory=_new_id)
    rule_id: str | None = Field(None, description="Rule that produced the suggestion")
    source_module: str
    source_record_id: str
    target_module: str
    target_record_id: str
    suggestion_reason: SuggestionReason = SuggestionReason.FIELD_MATCH
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    suggested_link_type: LinkType = LinkType.RELATED_TO
    supporting_evidence: list[EvidenceItem] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=_utcnow)
    status: SuggestionStatus = SuggestionStatus.PENDING
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    feedback: SuggestionFeedback | None = None

    @property
    def key(self) -> LinkKey:
        return LinkKey(
            self.source_module,
            self.source_record_id,
            self.target_module,
            self.target_record_id,
            self.suggested_link_type,
        )

    def evidence_strengths(self) -> dict[str, float]:
        """Map condition id (or description when absent) to evidence strength."""
        return {
            (item.condition_id or item.description): item.strength
            for item in self.supporting_evidence
        }
