"""Custom exceptions for Crosslink."""

from __future__ import annotations


class CrosslinkError(Exception):
    """Base exception for Crosslink."""

    pass


class ValidationError(CrosslinkError):
    """Raised when input validation fails."""

    pass


class RecordNotFoundError(CrosslinkError):
    """Raised when an indexed record is not found."""

    def __init__(self, module: str, record_id: str) -> None:
        self.module = module
        self.record_id = record_id
        super().__init__(f"Record '{record_id}' not found in module '{module}'")


class RuleNotFoundError(CrosslinkError):
    """Raised when a link rule is not found."""

    def __init__(self, rule_id: str) -> None:
        self.rule_id = rule_id
        super().__init__(f"Rule with ID '{rule_id}' not found")


class SuggestionNotFoundError(CrosslinkError):
    """Raised when a link suggestion is not found."""

    def __init__(self, suggestion_id: str) -> None:
        self.suggestion_id = suggestion_id
        super().__init__(f"Suggestion with ID '{suggestion_id}' not found")


class LinkNotFoundError(CrosslinkError):
    """Raised when a record link is not found."""

    def __init__(self, link_id: str) -> None:
        self.link_id = link_id
        super().__init__(f"Link with ID '{link_id}' not found")


class DuplicateLinkError(CrosslinkError):
    """Raised when attempting to create a duplicate active link."""

    def __init__(
        self,
        source_id: str,
        target_id: str,
        link_type: str,
        existing_link_id: str | None = None,
    ) -> None:
        self.source_id = source_id
        self.target_id = target_id
        self.link_type = link_type
        self.existing_link_id = existing_link_id
        super().__init__(
            f"Active link already exists from '{source_id}' to '{target_id}' "
            f"with link type '{link_type}'"
        )


class SelfLinkError(CrosslinkError):
    """Raised when attempting to link a record to itself."""

    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"Cannot link record '{record_id}' to itself")


class ConflictError(CrosslinkError):
    """Raised when a suggestion loses a race against a concurrent link.

    The suggestion has been marked superseded; the reviewer should look at
    the existing link instead.
    """

    def __init__(self, suggestion_id: str, existing_link_id: str | None = None) -> None:
        self.suggestion_id = suggestion_id
        self.existing_link_id = existing_link_id
        super().__init__(
            f"Suggestion '{suggestion_id}' conflicts with an existing active link"
            + (f" '{existing_link_id}'" if existing_link_id else "")
        )


class InvalidTransitionError(CrosslinkError):
    """Raised when a suggestion status transition is not allowed."""

    def __init__(self, suggestion_id: str, current: str, requested: str) -> None:
        self.suggestion_id = suggestion_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Suggestion '{suggestion_id}' cannot move from {current} to {requested}"
        )


class ConditionEvaluationError(CrosslinkError):
    """Raised inside the evaluator when a condition cannot be evaluated.

    Never escapes the evaluator: the condition scores 0.0 and a warning is
    logged.
    """

    pass


class DatabaseError(CrosslinkError):
    """Raised when a database operation fails."""

    pass
