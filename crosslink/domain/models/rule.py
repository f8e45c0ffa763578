"""Link rule models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from .enums import ConditionOperator, LinkingAlgorithm, LinkType, RelationshipCategory
from .record import LinkableRecord


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class AutoLinkCondition(BaseModel):
    """One weighted condition of a link rule.

    The target record's `field_name` value is tested against a comparand:
    `value` when it is non-empty, otherwise the source record's value for the
    same field.
    """

    id: str = Field(default_factory=_new_id)
    field_name: str = Field(..., min_length=1)
    operator: ConditionOperator
    value: str = Field(default="", description="Literal comparand, pattern or 'low,high'")
    weight: float = Field(default=1.0, ge=0.0)


class RuleUsageStatistics(BaseModel):
    """Accumulated usage of a rule. Only reset explicitly."""

    execution_count: int = 0
    successful_links: int = 0
    rejected_suggestions: int = 0
    average_confidence: float = 0.0
    # number of confidences folded into average_confidence
    confidence_samples: int = 0
    last_executed: datetime | None = None
    average_execution_time: float = Field(default=0.0, description="Seconds")


class RecordLinkRule(BaseModel):
    """Matching policy between a source module and a target module."""

    id: str = Field(default_factory=_new_id)
    name: str = Field(..., min_length=1)
    description: str | None = None
    source_module: str = Field(..., min_length=1)
    target_module: str = Field(..., min_length=1)
    auto_link_conditions: list[AutoLinkCondition] = Field(default_factory=list)
    linking_algorithm: LinkingAlgorithm = LinkingAlgorithm.SIMILARITY
    confidence_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    max_suggestions: int = Field(default=10, ge=1)
    is_enabled: bool = True
    link_type: LinkType = LinkType.RELATED_TO
    relationship_category: RelationshipCategory = RelationshipCategory.CONTEXTUAL
    bidirectional: bool = False
    required_permissions: list[str] = Field(
        default_factory=list,
        description="Permissions covering the access restrictions of paired records",
    )
    created_by: str = "system"
    created_at: datetime = Field(default_factory=_utcnow)
    last_modified: datetime = Field(default_factory=_utcnow)
    usage_statistics: RuleUsageStatistics = Field(default_factory=RuleUsageStatistics)

    @property
    def total_weight(self) -> float:
        return sum(c.weight for c in self.auto_link_conditions)

    def can_see(self, record: LinkableRecord) -> bool:
        """Whether every access restriction of the record is covered by this rule."""
        return set(record.access_restrictions) <= set(self.required_permissions)
