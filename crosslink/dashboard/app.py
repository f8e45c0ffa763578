"""Dashboard Starlette application.

Read-only JSON endpoints for operators: rule usage and feedback,
suggestion backlog and link health.
"""

from __future__ import annotations

import logging

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..container import get_container
from ..domain.exceptions import RuleNotFoundError
from ..domain.models import SuggestionStatus, ValidationStatus

logger = logging.getLogger(__name__)


def _int_param(request: Request, name: str, default: int) -> int:
    try:
        return max(0, int(request.query_params.get(name, default)))
    except ValueError:
        return default


async def api_stats(request: Request) -> JSONResponse:
    """Get index, rule, suggestion and link statistics."""
    try:
        service = get_container().linkage_service
        return JSONResponse({"success": True, "stats": service.stats()})
    except Exception as e:
        logger.exception("Error getting stats")
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)


async def api_rules(request: Request) -> JSONResponse:
    """List rules with their usage summaries."""
    try:
        service = get_container().linkage_service
        rules = []
        for rule in service.list_rules():
            summary = service.rule_summary(rule.id)
            rules.append(
                {
                    "id": rule.id,
                    "name": rule.name,
                    "source_module": rule.source_module,
                    "target_module": rule.target_module,
                    "is_enabled": rule.is_enabled,
                    "linking_algorithm": rule.linking_algorithm.value,
                    "confidence_threshold": rule.confidence_threshold,
                    "conditions": len(rule.auto_link_conditions),
                    "acceptance_rate": summary.acceptance_rate,
                    "execution_count": summary.execution_count,
                }
            )
        return JSONResponse({"success": True, "rules": rules, "total": len(rules)})
    except Exception as e:
        logger.exception("Error listing rules")
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)


async def api_rule_detail(request: Request) -> JSONResponse:
    """Get one rule with its statistics and feedback summary."""
    rule_id = request.path_params["rule_id"]
    try:
        service = get_container().linkage_service
        rule = service.get_rule(rule_id)
        return JSONResponse(
            {
                "success": True,
                "rule": rule.model_dump(mode="json"),
                "summary": service.rule_summary(rule_id).to_dict(),
            }
        )
    except RuleNotFoundError as e:
        return JSONResponse({"success": False, "error": str(e)}, status_code=404)
    except Exception as e:
        logger.exception("Error getting rule")
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)


async def api_suggestions(request: Request) -> JSONResponse:
    """List suggestions, pending by default, best first."""
    try:
        manager = get_container().linkage_service.suggestions
        status_param = request.query_params.get("status", SuggestionStatus.PENDING.value)
        try:
            status = SuggestionStatus(status_param.upper())
        except ValueError:
            return JSONResponse(
                {"success": False, "error": f"Invalid status: {status_param}"},
                status_code=400,
            )
        limit = _int_param(request, "limit", 50)
        offset = _int_param(request, "offset", 0)
        rule_id = request.query_params.get("rule_id")

        suggestions = [s for s in manager.all_suggestions() if s.status is status]
        if rule_id:
            suggestions = [s for s in suggestions if s.rule_id == rule_id]
        suggestions.sort(key=lambda s: (-s.confidence_score, s.generated_at))

        return JSONResponse(
            {
                "success": True,
                "suggestions": [
                    s.model_dump(mode="json") for s in suggestions[offset : offset + limit]
                ],
                "total": len(suggestions),
                "limit": limit,
                "offset": offset,
            }
        )
    except Exception as e:
        logger.exception("Error listing suggestions")
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)


async def api_links(request: Request) -> JSONResponse:
    """List links, optionally filtered by module or validation status."""
    try:
        links = get_container().linkage_service.links
        module = request.query_params.get("module")
        status_param = request.query_params.get("status")
        limit = _int_param(request, "limit", 50)
        offset = _int_param(request, "offset", 0)

        items = links.list_for_module(module) if module else links.all_links()
        if status_param:
            try:
                status = ValidationStatus(status_param.upper())
            except ValueError:
                return JSONResponse(
                    {"success": False, "error": f"Invalid status: {status_param}"},
                    status_code=400,
                )
            items = [link for link in items if link.validation_status is status]

        return JSONResponse(
            {
                "success": True,
                "links": [link.model_dump(mode="json") for link in items[offset : offset + limit]],
                "total": len(items),
                "limit": limit,
                "offset": offset,
            }
        )
    except Exception as e:
        logger.exception("Error listing links")
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)


async def api_health(request: Request) -> JSONResponse:
    """Link graph health: broken/stale links and misconfigured rules."""
    try:
        service = get_container().linkage_service
        stats = service.stats()
        link_counts = stats["links_by_status"]
        issues = []
        if link_counts.get(ValidationStatus.BROKEN.value):
            issues.append(
                {
                    "type": "broken_links",
                    "count": link_counts[ValidationStatus.BROKEN.value],
                    "message": "Links whose endpoint records no longer exist",
                }
            )
        if link_counts.get(ValidationStatus.STALE.value):
            issues.append(
                {
                    "type": "stale_links",
                    "count": link_counts[ValidationStatus.STALE.value],
                    "message": "Links whose endpoint records changed since validation",
                }
            )
        if stats["misconfigured_rules"]:
            issues.append(
                {
                    "type": "misconfigured_rules",
                    "count": len(stats["misconfigured_rules"]),
                    "rule_ids": stats["misconfigured_rules"],
                    "message": "Rules whose condition weights sum to zero",
                }
            )

        total = stats["links"]
        healthy = link_counts.get(ValidationStatus.VALID.value, 0)
        health_score = round(100.0 * healthy / total, 1) if total else 100.0
        return JSONResponse(
            {
                "success": True,
                "health": {"score": health_score, "issues": issues},
            }
        )
    except Exception as e:
        logger.exception("Error getting health")
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)


def create_dashboard_app() -> Starlette:
    """Create the dashboard Starlette application."""
    routes = [
        Route("/api/stats", api_stats),
        Route("/api/rules", api_rules),
        Route("/api/rules/{rule_id}", api_rule_detail),
        Route("/api/suggestions", api_suggestions),
        Route("/api/links", api_links),
        Route("/api/health", api_health),
    ]
    return Starlette(routes=routes)
