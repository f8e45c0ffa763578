"""Indexed record surrogate models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from .enums import RecordPriority


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordMetadata(BaseModel):
    """Structured key facts about a record, used for matching."""

    primary_key: str | None = Field(None, description="Primary key in the owning module")
    foreign_keys: dict[str, str] = Field(
        default_factory=dict, description="References to records in other modules"
    )
    business_identifiers: dict[str, str] = Field(
        default_factory=dict,
        description="Business identifiers (vendor number, PO number, ...)",
    )
    display_fields: list[str] = Field(default_factory=list)
    search_keywords: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    priority: RecordPriority = Field(default=RecordPriority.NORMAL)
    last_modified: datetime = Field(default_factory=_utcnow)
    modified_by: str | None = None


class LinkableRecord(BaseModel):
    """Normalized, matchable surrogate of a business record.

    One surrogate exists per live record. It is replaced (never mutated) when
    the source record changes, so readers always hold a consistent snapshot.
    """

    id: str = Field(..., description="Content address: '<module>:<record_id>'")
    record_id: str = Field(..., description="Record ID in the owning module")
    module: str = Field(..., description="Owning module name (tasks, vendors, ...)")
    record_type: str = Field(..., description="Record type within the module")
    title: str = Field(..., description="Display title")
    description: str | None = Field(None, description="Optional long description")
    metadata: RecordMetadata = Field(default_factory=RecordMetadata)
    searchable_fields: list[str] = Field(
        default_factory=list, description="Names of fields used by keyword queries"
    )
    fields: dict[str, Any] = Field(
        default_factory=dict, description="Normalized field values from the module"
    )
    last_indexed: datetime = Field(default_factory=_utcnow)
    index_version: int = Field(default=1, description="Bumped on every content change")
    access_restrictions: list[str] = Field(default_factory=list)
    fingerprint: str = Field(default="", description="Hash of the indexed content")

    @staticmethod
    def make_id(module: str, record_id: str) -> str:
        """Build the content address for a module record."""
        return f"{module}:{record_id}"
