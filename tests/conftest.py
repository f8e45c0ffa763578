"""Pytest fixtures for Crosslink tests."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

from crosslink.config import Config, reset_config
from crosslink.container import Container, reset_container
from crosslink.domain.matching import Scorer
from crosslink.domain.models import (
    AutoLinkCondition,
    ConditionOperator,
    LinkableRecord,
    RecordLinkRule,
    RecordMetadata,
)
from crosslink.domain.services import (
    LinkageService,
    LinkStore,
    RecordIndex,
    RuleStore,
    SuggestionManager,
    UsageAggregator,
)


@pytest.fixture
def temp_data_dir() -> Generator[Path, None, None]:
    """Create a temporary data directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_data_dir: Path) -> Generator[Config, None, None]:
    """Create a test configuration."""
    config = Config(
        data_dir=temp_data_dir,
        db_name="test_db",
        evidence_epsilon=0.05,
        suggestion_ttl_hours=168,
        rejection_cooldown_hours=720,
        broken_link_retention_days=30,
        scan_workers=2,
        scan_batch_size=8,
        scan_on_index=True,
    )
    yield config


@pytest.fixture
def container(test_config: Config) -> Generator[Container, None, None]:
    """Create a test container with isolated dependencies."""
    # Reset any global state
    reset_config()
    reset_container()

    container = Container.create(test_config)
    yield container

    container.close()
    reset_container()
    reset_config()


@pytest.fixture(autouse=True)
def set_test_env(temp_data_dir: Path) -> Generator[None, None, None]:
    """Set environment variables for tests."""
    old_env = os.environ.get("CROSSLINK_DATA_DIR")
    os.environ["CROSSLINK_DATA_DIR"] = str(temp_data_dir)
    yield
    if old_env:
        os.environ["CROSSLINK_DATA_DIR"] = old_env
    else:
        os.environ.pop("CROSSLINK_DATA_DIR", None)


# =============================================================================
# In-memory service graph (no database)
# =============================================================================


@pytest.fixture
def index() -> RecordIndex:
    return RecordIndex()


@pytest.fixture
def rules() -> RuleStore:
    return RuleStore()


@pytest.fixture
def links(index: RecordIndex) -> LinkStore:
    return LinkStore(index)


@pytest.fixture
def scorer() -> Scorer:
    return Scorer()


@pytest.fixture
def usage(rules: RuleStore) -> UsageAggregator:
    return UsageAggregator(rules)


@pytest.fixture
def manager(
    index: RecordIndex,
    rules: RuleStore,
    links: LinkStore,
    scorer: Scorer,
    usage: UsageAggregator,
) -> SuggestionManager:
    return SuggestionManager(
        index=index,
        rules=rules,
        links=links,
        scorer=scorer,
        usage=usage,
        scan_workers=2,
        scan_batch_size=4,
    )


@pytest.fixture
def service(
    index: RecordIndex,
    rules: RuleStore,
    links: LinkStore,
    manager: SuggestionManager,
    usage: UsageAggregator,
    scorer: Scorer,
) -> LinkageService:
    return LinkageService(
        index=index,
        rules=rules,
        links=links,
        suggestions=manager,
        usage=usage,
        scorer=scorer,
        scan_on_index=False,
    )


@pytest.fixture
def vendor_rule(rules: RuleStore) -> RecordLinkRule:
    """Rule linking invoices to vendors by equal vendor number."""
    return rules.create_rule(
        RecordLinkRule(
            name="Invoice vendor number",
            source_module="invoices",
            target_module="vendors",
            auto_link_conditions=[
                AutoLinkCondition(
                    field_name="vendorNumber", operator=ConditionOperator.EQUALS
                )
            ],
            confidence_threshold=0.8,
        )
    )


def _make_record(
    module: str,
    record_id: str,
    title: str | None = None,
    **fields,
) -> LinkableRecord:
    """Build a LinkableRecord surrogate for tests."""
    return LinkableRecord(
        id=LinkableRecord.make_id(module, record_id),
        record_id=record_id,
        module=module,
        record_type=module,
        title=title or f"{module} {record_id}",
        metadata=RecordMetadata(),
        fields=fields,
    )


@pytest.fixture
def make_record():
    """Factory for LinkableRecord surrogates."""
    return _make_record
