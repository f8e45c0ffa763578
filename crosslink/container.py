"""Dependency injection container for Crosslink."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta

from .config import Config, get_config
from .domain.matching import ConditionEvaluator, MatcherRegistry, Scorer
from .domain.services import (
    LinkageService,
    LinkStore,
    RecordIndex,
    RuleStore,
    SuggestionManager,
    UsageAggregator,
)
from .infra.database import DatabaseConnection
from .infra.repositories import GraphRepository

logger = logging.getLogger(__name__)


@dataclass
class Container:
    """Dependency injection container.

    Manages the lifecycle of all application components with proper
    dependency injection. When persistence is enabled, the stores write
    through to the graph repository and are restored from it the first
    time the linkage service is built.
    """

    config: Config
    _database: DatabaseConnection | None = None
    _repository: GraphRepository | None = None
    _matchers: MatcherRegistry | None = None
    _scorer: Scorer | None = None
    _index: RecordIndex | None = None
    _rules: RuleStore | None = None
    _links: LinkStore | None = None
    _usage: UsageAggregator | None = None
    _suggestions: SuggestionManager | None = None
    _service: LinkageService | None = None
    _lock: threading.RLock = field(default_factory=threading.RLock)

    @classmethod
    def create(cls, config: Config | None = None) -> Container:
        """Create a new container with the given config.

        Args:
            config: Optional config. Uses global config if not provided.

        Returns:
            A new Container instance.
        """
        return cls(config=config or get_config())

    @property
    def database(self) -> DatabaseConnection:
        """Get the database connection (lazy initialization)."""
        if self._database is None:
            self._database = DatabaseConnection(db_path=self.config.db_path)
        return self._database

    @property
    def repository(self) -> GraphRepository | None:
        """Get the graph repository, or None when persistence is disabled."""
        if not self.config.persistence_enabled:
            return None
        if self._repository is None:
            self._repository = GraphRepository(db=self.database)
        return self._repository

    @property
    def matchers(self) -> MatcherRegistry:
        """Get the matcher registry (lazy initialization)."""
        if self._matchers is None:
            self._matchers = MatcherRegistry()
        return self._matchers

    @property
    def scorer(self) -> Scorer:
        if self._scorer is None:
            self._scorer = Scorer(ConditionEvaluator(self.matchers))
        return self._scorer

    @property
    def record_index(self) -> RecordIndex:
        if self._index is None:
            self._index = RecordIndex(journal=self.repository)
        return self._index

    @property
    def rule_store(self) -> RuleStore:
        if self._rules is None:
            self._rules = RuleStore(journal=self.repository)
        return self._rules

    @property
    def link_store(self) -> LinkStore:
        if self._links is None:
            self._links = LinkStore(self.record_index, journal=self.repository)
        return self._links

    @property
    def usage(self) -> UsageAggregator:
        if self._usage is None:
            self._usage = UsageAggregator(self.rule_store)
        return self._usage

    @property
    def suggestion_manager(self) -> SuggestionManager:
        if self._suggestions is None:
            self._suggestions = SuggestionManager(
                index=self.record_index,
                rules=self.rule_store,
                links=self.link_store,
                scorer=self.scorer,
                usage=self.usage,
                journal=self.repository,
                evidence_epsilon=self.config.evidence_epsilon,
                suggestion_ttl=timedelta(hours=self.config.suggestion_ttl_hours),
                rejection_cooldown=timedelta(hours=self.config.rejection_cooldown_hours),
                scan_workers=self.config.scan_workers,
                scan_batch_size=self.config.scan_batch_size,
            )
        return self._suggestions

    @property
    def linkage_service(self) -> LinkageService:
        """Get the linkage service (lazy initialization, restores state once)."""
        with self._lock:
            if self._service is None:
                service = LinkageService(
                    index=self.record_index,
                    rules=self.rule_store,
                    links=self.link_store,
                    suggestions=self.suggestion_manager,
                    usage=self.usage,
                    scorer=self.scorer,
                    scan_on_index=self.config.scan_on_index,
                    broken_link_retention_days=self.config.broken_link_retention_days,
                )
                self._restore()
                self._service = service
            return self._service

    def _restore(self) -> None:
        repository = self.repository
        if repository is None:
            return
        logger.info("Restoring state from the graph repository...")
        self.record_index.restore(repository.load_records())
        self.rule_store.restore(repository.load_rules())
        self.link_store.restore(repository.load_links())
        suggestions = repository.load_suggestions()
        self.suggestion_manager.restore(suggestions)
        for suggestion in suggestions:
            if suggestion.feedback is not None and suggestion.rule_id is not None:
                self.usage.restore_feedback(suggestion.rule_id, suggestion.feedback)

    def close(self) -> None:
        """Close all resources."""
        if self._database is not None:
            self._database.close()
            self._database = None
        self._repository = None
        self._scorer = None
        self._index = None
        self._rules = None
        self._links = None
        self._usage = None
        self._suggestions = None
        self._service = None


# Module-level container instance
_container: Container | None = None


def get_container() -> Container:
    """Get the global container instance."""
    global _container
    if _container is None:
        _container = Container.create()
    return _container


def reset_container() -> None:
    """Reset the container (for testing)."""
    global _container
    if _container is not None:
        _container.close()
    _container = None
