"""MCP Server for Crosslink."""

from __future__ import annotations

import logging
import re
from typing import Any

from mcp.server.fastmcp import FastMCP

from .container import get_container
from .domain.exceptions import ConflictError, CrosslinkError, DuplicateLinkError, ValidationError
from .domain.models import (
    LinkContext,
    LinkStrength,
    LinkSuggestion,
    LinkType,
    RecordLink,
    RecordLinkRule,
    RelationshipCategory,
    SuggestionFeedback,
    SuggestionStatus,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Helper Functions
# =============================================================================

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")

# camelCase keys accepted in rule and condition payloads
_RULE_KEYS = {
    "sourceModule": "source_module",
    "targetModule": "target_module",
    "autoLinkConditions": "auto_link_conditions",
    "conditions": "auto_link_conditions",
    "linkingAlgorithm": "linking_algorithm",
    "confidenceThreshold": "confidence_threshold",
    "maxSuggestions": "max_suggestions",
    "isEnabled": "is_enabled",
    "linkType": "link_type",
    "relationshipCategory": "relationship_category",
    "createdBy": "created_by",
    "requiredPermissions": "required_permissions",
    "fieldName": "field_name",
}

_ENUM_KEYS = {"operator", "linking_algorithm", "link_type", "relationship_category"}


def _enum_name(value: str) -> str:
    """Normalize 'similarTo', 'similar_to' or 'SIMILAR_TO' to 'SIMILAR_TO'."""
    return _CAMEL_BOUNDARY.sub("_", value.strip()).upper()


def _normalize_payload(data: dict[str, Any]) -> dict[str, Any]:
    """Convert a rule or condition payload to model field names and enum values."""
    normalized: dict[str, Any] = {}
    for key, value in data.items():
        name = _RULE_KEYS.get(key, key)
        if name in _ENUM_KEYS and isinstance(value, str):
            value = _enum_name(value)
        elif name == "auto_link_conditions" and isinstance(value, list):
            value = [_normalize_payload(c) if isinstance(c, dict) else c for c in value]
        normalized[name] = value
    return normalized


def _parse_enum(enum_cls, value: str | None, label: str):
    """Parse an enum value, raising ValidationError with the valid choices."""
    if value is None:
        return None
    try:
        return enum_cls(_enum_name(value))
    except ValueError as e:
        raise ValidationError(
            f"Invalid {label}: {value!r}. Valid values: {[m.value for m in enum_cls]}"
        ) from e


def _error(e: Exception) -> dict[str, Any]:
    return {"success": False, "error": str(e), "error_type": type(e).__name__}


def _format_suggestion(suggestion: LinkSuggestion) -> dict[str, Any]:
    return {
        "id": suggestion.id,
        "rule_id": suggestion.rule_id,
        "source": f"{suggestion.source_module}:{suggestion.source_record_id}",
        "target": f"{suggestion.target_module}:{suggestion.target_record_id}",
        "link_type": suggestion.suggested_link_type.value,
        "reason": suggestion.suggestion_reason.value,
        "confidence": round(suggestion.confidence_score, 3),
        "status": suggestion.status.value,
        "evidence": [
            {
                "type": item.evidence_type.value,
                "description": item.description,
                "strength": round(item.strength, 3),
            }
            for item in suggestion.supporting_evidence
        ],
        "generated_at": suggestion.generated_at.isoformat(),
    }


def _format_link(link: RecordLink) -> dict[str, Any]:
    return {
        "id": link.id,
        "source": f"{link.source_module}:{link.source_record_id}",
        "target": f"{link.target_module}:{link.target_record_id}",
        "link_type": link.link_type.value,
        "relationship_category": link.relationship_category.value,
        "link_strength": link.link_strength.value,
        "bidirectional": link.bidirectional,
        "validation_status": link.validation_status.value,
        "automatically_created": link.automatically_created,
        "confidence": link.confidence_score,
        "created_by": link.created_by,
        "created_at": link.created_at.isoformat(),
    }


def _format_rule(rule: RecordLinkRule) -> dict[str, Any]:
    return {
        "id": rule.id,
        "name": rule.name,
        "description": rule.description,
        "source_module": rule.source_module,
        "target_module": rule.target_module,
        "linking_algorithm": rule.linking_algorithm.value,
        "confidence_threshold": rule.confidence_threshold,
        "max_suggestions": rule.max_suggestions,
        "is_enabled": rule.is_enabled,
        "link_type": rule.link_type.value,
        "bidirectional": rule.bidirectional,
        "required_permissions": rule.required_permissions,
        "conditions": [
            {
                "id": c.id,
                "field_name": c.field_name,
                "operator": c.operator.value,
                "value": c.value,
                "weight": c.weight,
            }
            for c in rule.auto_link_conditions
        ],
    }


# =============================================================================
# Server Instructions
# =============================================================================

SERVER_INSTRUCTIONS = """\
Crosslink links records that live in separate business modules (tasks,
vendors, reports, goals, ...) into one relationship graph and proposes new
links using configurable matching rules.

## Workflow
1. Modules push records with `cl_index_record` (and `cl_remove_record` on delete).
2. Operators define matching rules with `cl_create_rule`.
3. Scans (on index, on schedule, or via `cl_run_scan`) create pending suggestions.
4. Review suggestions with `cl_list_suggestions` and resolve them with
   `cl_resolve_suggestion` (decision `accept` or `reject`).
5. Accepted suggestions become links; browse them with `cl_list_links`.

## Rule conditions
Each condition tests the target record's field against the condition value,
or against the source record's same field when the value is empty.
Operators: equals, contains, startsWith, endsWith, regex, similarTo,
greaterThan, lessThan, between ("low,high").
"""

# =============================================================================
# Server Setup
# =============================================================================

mcp = FastMCP(
    "crosslink",
    instructions=SERVER_INSTRUCTIONS,
)


# =============================================================================
# Prompts
# =============================================================================


@mcp.prompt()
def review_guide() -> str:
    """Guide for reviewing link suggestions."""
    return """\
# Reviewing Link Suggestions

- Read the evidence: each item names the field, the operator and its strength.
- Accept when the evidence reflects a real business relationship.
- Reject with feedback (rating 1-5, improvement suggestions) when the rule
  is too loose; feedback is aggregated per rule in `cl_rule_stats`.
- A `ConflictError` on accept means someone linked the records already;
  the suggestion is marked superseded.
"""


# =============================================================================
# Health Check Tools
# =============================================================================


@mcp.tool(name="cl_ping")
def ping() -> dict[str, Any]:
    """Health check - verify Crosslink is running."""
    return {"status": "ok", "message": "Crosslink is operational"}


@mcp.tool(name="cl_get_stats")
def get_stats() -> dict[str, Any]:
    """Get statistics about indexed records, rules, suggestions and links."""
    container = get_container()
    return {"success": True, **container.linkage_service.stats()}


# =============================================================================
# Record Tools
# =============================================================================


@mcp.tool(name="cl_index_record")
def index_record(
    module: str,
    record_id: str,
    fields: dict[str, Any],
    scan: bool | None = None,
) -> dict[str, Any]:
    """Index (create or update) a module record for matching.

    Args:
        module: Owning module name (e.g. "vendors").
        record_id: Record ID within the module.
        fields: Field values. `title`/`name`, `description`, `recordType`,
            `categories`, `searchKeywords`, `businessIdentifiers` and
            `foreignKeys` are recognized; other keys are matchable fields.
        scan: Run an incremental scan for this record (default: server setting).

    Returns:
        The indexed record id, whether it changed and any scan summary.
    """
    container = get_container()
    try:
        result = container.linkage_service.index_record(module, record_id, fields, scan=scan)
    except CrosslinkError as e:
        return _error(e)

    response: dict[str, Any] = {
        "success": True,
        "id": result.record.id,
        "changed": result.changed,
        "index_version": result.record.index_version,
    }
    if result.scan is not None:
        response["scan"] = result.scan.model_dump(mode="json")
    return response


@mcp.tool(name="cl_remove_record")
def remove_record(module: str, record_id: str) -> dict[str, Any]:
    """Remove a record: its pending suggestions expire, its links become BROKEN.

    Args:
        module: Owning module name.
        record_id: Record ID within the module.
    """
    container = get_container()
    try:
        result = container.linkage_service.remove_record(module, record_id)
    except CrosslinkError as e:
        return _error(e)
    return {"success": True, **result.model_dump(mode="json")}


@mcp.tool(name="cl_search_records")
def search_records(
    module: str | None = None,
    keywords: list[str] | None = None,
    limit: int = 20,
) -> dict[str, Any]:
    """Search indexed records by module and keywords (all keywords must match)."""
    container = get_container()
    records = container.linkage_service.search_records(module, keywords, limit=limit)
    return {
        "success": True,
        "records": [
            {"id": r.id, "module": r.module, "record_id": r.record_id, "title": r.title}
            for r in records
        ],
        "total": len(records),
    }


# =============================================================================
# Suggestion Tools
# =============================================================================


@mcp.tool(name="cl_list_suggestions")
def list_suggestions(
    record_id: str,
    module: str | None = None,
    status: str | None = "pending",
) -> dict[str, Any]:
    """List suggestions involving a record, best first.

    Args:
        record_id: Record ID (as source or target).
        module: Optional module to disambiguate the record ID.
        status: pending, accepted, rejected, expired, superseded, or "all".
    """
    container = get_container()
    try:
        status_filter = (
            None
            if status is None or status.lower() == "all"
            else _parse_enum(SuggestionStatus, status, "status")
        )
    except ValidationError as e:
        return _error(e)

    suggestions = container.linkage_service.list_suggestions(
        record_id, module=module, status=status_filter
    )
    return {
        "success": True,
        "suggestions": [_format_suggestion(s) for s in suggestions],
        "total": len(suggestions),
    }


@mcp.tool(name="cl_resolve_suggestion")
def resolve_suggestion(
    suggestion_id: str,
    decision: str,
    reviewer_id: str,
    rating: int | None = None,
    comment: str | None = None,
    improvement_suggestions: list[str] | None = None,
    was_helpful: bool = True,
) -> dict[str, Any]:
    """Accept or reject a pending suggestion.

    Args:
        suggestion_id: Suggestion to resolve.
        decision: "accept" or "reject".
        reviewer_id: Who resolved it.
        rating: Optional feedback rating 1-5 (required to record feedback).
        comment: Optional feedback comment.
        improvement_suggestions: Optional ideas for improving the rule.
        was_helpful: Whether the suggestion was helpful.

    Returns:
        The created link on accept.
    """
    container = get_container()
    try:
        feedback = None
        if rating is not None:
            feedback = SuggestionFeedback(
                rating=rating,
                comment=comment,
                improvement_suggestions=improvement_suggestions or [],
                was_helpful=was_helpful,
            )
        link = container.linkage_service.resolve_suggestion(
            suggestion_id, decision, reviewer_id, feedback
        )
    except ConflictError as e:
        response = _error(e)
        response["existing_link_id"] = e.existing_link_id
        response["status"] = SuggestionStatus.SUPERSEDED.value
        return response
    except CrosslinkError as e:
        return _error(e)
    except ValueError as e:
        # pydantic rejects an out-of-range rating
        return {"success": False, "error": str(e), "error_type": "ValidationError"}

    if link is None:
        return {"success": True, "status": SuggestionStatus.REJECTED.value}
    return {
        "success": True,
        "status": SuggestionStatus.ACCEPTED.value,
        "link": _format_link(link),
    }


@mcp.tool(name="cl_run_scan")
def run_scan(rule_ids: list[str] | None = None) -> dict[str, Any]:
    """Run a scan over the index for all (or the given) enabled rules."""
    container = get_container()
    try:
        report = container.linkage_service.run_scan(rule_ids=rule_ids)
    except CrosslinkError as e:
        return _error(e)
    return {"success": True, "report": report.model_dump(mode="json")}


@mcp.tool(name="cl_expire_suggestions")
def expire_suggestions() -> dict[str, Any]:
    """Expire pending suggestions older than the configured TTL."""
    container = get_container()
    expired = container.linkage_service.expire_suggestions()
    return {"success": True, "expired": expired, "count": len(expired)}


# =============================================================================
# Link Tools
# =============================================================================


@mcp.tool(name="cl_list_links")
def list_links(
    record_id: str,
    link_type: str | None = None,
    module: str | None = None,
) -> dict[str, Any]:
    """List links where the record is source or target.

    Args:
        record_id: Record ID.
        link_type: Optional link type filter (e.g. RELATED_TO).
        module: Optional module to disambiguate the record ID.
    """
    container = get_container()
    try:
        type_filter = _parse_enum(LinkType, link_type, "link type")
    except ValidationError as e:
        return _error(e)
    links = container.linkage_service.list_links(record_id, link_type=type_filter, module=module)
    return {"success": True, "links": [_format_link(link) for link in links], "total": len(links)}


@mcp.tool(name="cl_link_records")
def link_records(
    source_module: str,
    source_record_id: str,
    target_module: str,
    target_record_id: str,
    created_by: str,
    link_type: str = "RELATED_TO",
    relationship_category: str = "CONTEXTUAL",
    link_strength: str = "MODERATE",
    bidirectional: bool = False,
    description: str | None = None,
) -> dict[str, Any]:
    """Manually link two indexed records."""
    container = get_container()
    try:
        link = container.linkage_service.link_records(
            source_module,
            source_record_id,
            target_module,
            target_record_id,
            link_type=_parse_enum(LinkType, link_type, "link type"),
            created_by=created_by,
            relationship_category=_parse_enum(
                RelationshipCategory, relationship_category, "relationship category"
            ),
            link_strength=_parse_enum(LinkStrength, link_strength, "link strength"),
            bidirectional=bidirectional,
            context=LinkContext(description=description),
        )
    except DuplicateLinkError as e:
        response = _error(e)
        response["existing_link_id"] = e.existing_link_id
        return response
    except CrosslinkError as e:
        return _error(e)
    return {"success": True, "link": _format_link(link)}


@mcp.tool(name="cl_unlink_records")
def unlink_records(link_id: str) -> dict[str, Any]:
    """Delete a link by its ID."""
    container = get_container()
    try:
        container.linkage_service.unlink_records(link_id)
    except CrosslinkError as e:
        return _error(e)
    return {"success": True, "message": f"Link '{link_id}' removed"}


@mcp.tool(name="cl_validate_links")
def validate_links() -> dict[str, Any]:
    """Revalidate all active links against the index (never deletes)."""
    container = get_container()
    result = container.linkage_service.validate_links()
    return {"success": True, **result.model_dump(mode="json")}


@mcp.tool(name="cl_purge_broken_links")
def purge_broken_links(older_than_days: int | None = None) -> dict[str, Any]:
    """Delete links broken for longer than the retention window."""
    container = get_container()
    purged = container.linkage_service.purge_broken_links(older_than_days)
    return {"success": True, "purged": purged, "count": len(purged)}


# =============================================================================
# Rule Administration Tools
# =============================================================================


@mcp.tool(name="cl_create_rule")
def create_rule(
    name: str,
    source_module: str,
    target_module: str,
    conditions: list[dict[str, Any]],
    linking_algorithm: str = "SIMILARITY",
    confidence_threshold: float = 0.8,
    max_suggestions: int = 10,
    link_type: str = "RELATED_TO",
    relationship_category: str = "CONTEXTUAL",
    bidirectional: bool = False,
    description: str | None = None,
    created_by: str = "system",
    required_permissions: list[str] | None = None,
) -> dict[str, Any]:
    """Create a link rule between two modules.

    Args:
        name: Rule name.
        source_module: Module of the source records.
        target_module: Module of the target records.
        conditions: List of {field_name, operator, value?, weight?}.
        linking_algorithm: EXACT, SIMILARITY or FUZZY for similarTo conditions.
        confidence_threshold: Minimum confidence in [0, 1] to suggest a link.
        max_suggestions: Maximum suggestions surfaced per rule execution.
        link_type: Link type minted on acceptance.
        relationship_category: Relationship category minted on acceptance.
        bidirectional: Whether accepted links are bidirectional.
        description: Optional description.
        created_by: Author of the rule.
        required_permissions: Permissions covering the access restrictions
            of records this rule may pair.
    """
    container = get_container()
    payload = _normalize_payload(
        {
            "name": name,
            "description": description,
            "source_module": source_module,
            "target_module": target_module,
            "auto_link_conditions": conditions,
            "linking_algorithm": linking_algorithm,
            "confidence_threshold": confidence_threshold,
            "max_suggestions": max_suggestions,
            "link_type": link_type,
            "relationship_category": relationship_category,
            "bidirectional": bidirectional,
            "created_by": created_by,
            "required_permissions": required_permissions or [],
        }
    )
    try:
        rule = container.linkage_service.create_rule(payload)
    except CrosslinkError as e:
        return _error(e)
    return {"success": True, "rule": _format_rule(rule)}


@mcp.tool(name="cl_update_rule")
def update_rule(rule_id: str, changes: dict[str, Any]) -> dict[str, Any]:
    """Update a rule. `changes` may contain any rule field (e.g. conditions)."""
    container = get_container()
    try:
        rule = container.linkage_service.update_rule(rule_id, _normalize_payload(changes))
    except CrosslinkError as e:
        return _error(e)
    return {"success": True, "rule": _format_rule(rule)}


@mcp.tool(name="cl_disable_rule")
def disable_rule(rule_id: str) -> dict[str, Any]:
    """Disable a rule. Its pending suggestions are kept."""
    container = get_container()
    try:
        rule = container.linkage_service.disable_rule(rule_id)
    except CrosslinkError as e:
        return _error(e)
    return {"success": True, "rule": _format_rule(rule)}


@mcp.tool(name="cl_enable_rule")
def enable_rule(rule_id: str) -> dict[str, Any]:
    """Re-enable a disabled rule."""
    container = get_container()
    try:
        rule = container.linkage_service.enable_rule(rule_id)
    except CrosslinkError as e:
        return _error(e)
    return {"success": True, "rule": _format_rule(rule)}


@mcp.tool(name="cl_delete_rule")
def delete_rule(rule_id: str) -> dict[str, Any]:
    """Delete a rule. Suggestions and links it produced are kept."""
    container = get_container()
    try:
        container.linkage_service.delete_rule(rule_id)
    except CrosslinkError as e:
        return _error(e)
    return {"success": True, "message": f"Rule '{rule_id}' deleted"}


@mcp.tool(name="cl_get_rule")
def get_rule(rule_id: str) -> dict[str, Any]:
    """Get a rule by its ID."""
    container = get_container()
    try:
        rule = container.linkage_service.get_rule(rule_id)
    except CrosslinkError as e:
        return _error(e)
    return {"success": True, "rule": _format_rule(rule)}


@mcp.tool(name="cl_list_rules")
def list_rules(
    include_disabled: bool = True,
    source_module: str | None = None,
    target_module: str | None = None,
) -> dict[str, Any]:
    """List link rules, optionally only those scoped to a source and/or target module."""
    container = get_container()
    rules = container.linkage_service.list_rules(
        include_disabled=include_disabled,
        source_module=source_module,
        target_module=target_module,
    )
    return {"success": True, "rules": [_format_rule(r) for r in rules], "total": len(rules)}


@mcp.tool(name="cl_rule_stats")
def rule_stats(rule_id: str) -> dict[str, Any]:
    """Get usage statistics and feedback summary for a rule."""
    container = get_container()
    try:
        summary = container.linkage_service.rule_summary(rule_id)
    except CrosslinkError as e:
        return _error(e)
    return {"success": True, "summary": summary.to_dict()}


@mcp.tool(name="cl_reset_rule_stats")
def reset_rule_stats(rule_id: str) -> dict[str, Any]:
    """Reset a rule's usage statistics and feedback."""
    container = get_container()
    try:
        container.linkage_service.reset_rule_statistics(rule_id)
    except CrosslinkError as e:
        return _error(e)
    return {"success": True, "message": f"Statistics for rule '{rule_id}' reset"}
