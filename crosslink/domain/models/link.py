"""Record link (graph edge) models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import NamedTuple

from pydantic import BaseModel, Field

from .enums import LinkStrength, LinkType, RelationshipCategory, ValidationStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LinkKey(NamedTuple):
    """Identity of a directed edge between two module records."""

    source_module: str
    source_record_id: str
    target_module: str
    target_record_id: str
    link_type: LinkType

    def reversed(self) -> LinkKey:
        return LinkKey(
            self.target_module,
            self.target_record_id,
            self.source_module,
            self.source_record_id,
            self.link_type,
        )

    @property
    def source_ref(self) -> str:
        return f"{self.source_module}:{self.source_record_id}"

    @property
    def target_ref(self) -> str:
        return f"{self.target_module}:{self.target_record_id}"


class LinkContext(BaseModel):
    """Free-form context attached to a link."""

    description: str | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, str] = Field(default_factory=dict)
    business_rules: list[str] = Field(default_factory=list)
    expiration_date: datetime | None = None


class RecordLink(BaseModel):
    """A durable, validated edge in the cross-module relationship graph."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source_module: str = Field(..., min_length=1)
    source_record_id: str = Field(..., min_length=1)
    target_module: str = Field(..., min_length=1)
    target_record_id: str = Field(..., min_length=1)
    link_type: LinkType
    relationship_category: RelationshipCategory = RelationshipCategory.CONTEXTUAL
    link_strength: LinkStrength = LinkStrength.MODERATE
    bidirectional: bool = False
    context_metadata: LinkContext = Field(default_factory=LinkContext)
    created_by: str
    created_at: datetime = Field(default_factory=_utcnow)
    last_validated: datetime = Field(default_factory=_utcnow)
    validation_status: ValidationStatus = ValidationStatus.VALID
    automatically_created: bool = False
    confidence_score: float | None = Field(default=None, ge=0.0, le=1.0)
    is_active: bool = True
    broken_since: datetime | None = None

    @property
    def key(self) -> LinkKey:
        return LinkKey(
            self.source_module,
            self.source_record_id,
            self.target_module,
            self.target_record_id,
            self.link_type,
        )

    def involves(self, module: str, record_id: str) -> bool:
        """Check whether the record is either endpoint of this link."""
        return (self.source_module == module and self.source_record_id == record_id) or (
            self.target_module == module and self.target_record_id == record_id
        )
