"""Infrastructure layer - KùzuDB persistence."""

from .database import DatabaseConnection
from .repositories import GraphRepository

__all__ = ["DatabaseConnection", "GraphRepository"]
