"""Domain services for Crosslink.

This package contains the business logic, organized by component:
- index: RecordIndex (record surrogates)
- rules: RuleStore (link rules)
- links: LinkStore (accepted link graph)
- suggestions: SuggestionManager (scan + review state machine)
- usage: UsageAggregator (rule statistics and feedback)
- linkage: LinkageService (facade)
"""

from .concurrency import CancellationToken, KeyedLock
from .index import RecordIndex, RecordQuery, normalize_record
from .linkage import LinkageService
from .links import LinkStore
from .rules import RuleStore
from .suggestions import SuggestionManager, evidence_differs
from .usage import UsageAggregator

__all__ = [
    "CancellationToken",
    "KeyedLock",
    "LinkageService",
    "LinkStore",
    "RecordIndex",
    "RecordQuery",
    "RuleStore",
    "SuggestionManager",
    "UsageAggregator",
    "evidence_differs",
    "normalize_record",
]
