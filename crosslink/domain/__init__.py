"""Domain layer - Core business logic and models."""

from .exceptions import (
    ConflictError,
    CrosslinkError,
    DuplicateLinkError,
    InvalidTransitionError,
    LinkNotFoundError,
    RecordNotFoundError,
    RuleNotFoundError,
    SelfLinkError,
    SuggestionNotFoundError,
    ValidationError,
)
from .models import (
    AutoLinkCondition,
    LinkableRecord,
    LinkSuggestion,
    LinkType,
    RecordLink,
    RecordLinkRule,
    SuggestionStatus,
)

__all__ = [
    # Exceptions
    "CrosslinkError",
    "ValidationError",
    "RecordNotFoundError",
    "RuleNotFoundError",
    "SuggestionNotFoundError",
    "LinkNotFoundError",
    "DuplicateLinkError",
    "SelfLinkError",
    "ConflictError",
    "InvalidTransitionError",
    # Models
    "AutoLinkCondition",
    "LinkableRecord",
    "LinkSuggestion",
    "LinkType",
    "RecordLink",
    "RecordLinkRule",
    "SuggestionStatus",
]
