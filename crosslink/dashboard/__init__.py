"""Operator dashboard (read-only JSON API)."""

from .app import create_dashboard_app

__all__ = ["create_dashboard_app"]
