"""Unit tests for the link store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from crosslink.domain.exceptions import (
    DuplicateLinkError,
    LinkNotFoundError,
    SelfLinkError,
)
from crosslink.domain.models import LinkType, RecordLink, ValidationStatus

_EARLIER = datetime.now(timezone.utc) - timedelta(minutes=5)


def _link(source=("invoices", "I-1"), target=("vendors", "V-1"), **kwargs):
    kwargs.setdefault("link_type", LinkType.RELATED_TO)
    return RecordLink(
        source_module=source[0],
        source_record_id=source[1],
        target_module=target[0],
        target_record_id=target[1],
        created_by="alice",
        **kwargs,
    )


@pytest.fixture
def indexed(index):
    index.index("invoices", "I-1", {"title": "Invoice"})
    index.index("vendors", "V-1", {"name": "Acme"})
    index.index("vendors", "V-2", {"name": "Globex"})
    return index


class TestLinkUniqueness:
    """Tests for the active link uniqueness invariant."""

    def test_insert(self, links):
        link = links.upsert(_link())

        assert links.get(link.id) == link
        assert links.find_active(link.key) == link

    def test_duplicate_rejected(self, links):
        first = links.upsert(_link())

        with pytest.raises(DuplicateLinkError) as exc_info:
            links.upsert(_link())

        assert exc_info.value.existing_link_id == first.id
        assert len(links) == 1

    def test_other_link_type_allowed(self, links):
        links.upsert(_link())
        links.upsert(_link(link_type=LinkType.DEPENDS_ON))

        assert len(links) == 2

    def test_reverse_allowed_when_directed(self, links):
        links.upsert(_link())
        links.upsert(_link(source=("vendors", "V-1"), target=("invoices", "I-1")))

        assert len(links) == 2

    def test_reverse_rejected_when_bidirectional(self, links):
        links.upsert(_link(bidirectional=True))

        with pytest.raises(DuplicateLinkError):
            links.upsert(_link(source=("vendors", "V-1"), target=("invoices", "I-1")))

    def test_self_link_rejected(self, links):
        with pytest.raises(SelfLinkError):
            links.upsert(_link(target=("invoices", "I-1")))

    def test_same_record_id_in_other_module_is_not_self(self, links):
        links.upsert(_link(source=("tasks", "1"), target=("vendors", "1")))

    def test_inactive_link_does_not_block(self, links):
        links.upsert(_link(is_active=False))
        links.upsert(_link())

        assert len(links) == 2

    def test_has_active(self, links):
        link = links.upsert(_link())

        assert links.has_active(link.key)
        assert not links.has_active(link.key.reversed())
        assert links.has_active(link.key.reversed(), bidirectional=True)

    def test_upsert_same_id_replaces(self, links):
        link = links.upsert(_link())
        links.upsert(link.model_copy(update={"created_by": "bob"}))

        assert len(links) == 1
        assert links.get(link.id).created_by == "bob"


class TestLinkRemoval:
    """Tests for unlinking and broken-link handling."""

    def test_remove(self, links):
        link = links.upsert(_link())
        links.remove(link.id)

        assert links.get(link.id) is None
        assert links.list_for_record("I-1") == []
        links.upsert(_link())

    def test_remove_unknown(self, links):
        with pytest.raises(LinkNotFoundError):
            links.remove("missing")

    def test_mark_broken(self, links):
        link = links.upsert(_link())
        links.upsert(_link(source=("tasks", "T-1"), target=("vendors", "V-9")))

        marked = links.mark_broken("vendors", "V-1")

        assert marked == 1
        broken = links.get(link.id)
        assert broken.validation_status is ValidationStatus.BROKEN
        assert broken.broken_since is not None
        assert links.mark_broken("vendors", "V-1") == 0

    def test_purge_broken(self, links):
        link = links.upsert(_link())
        links.mark_broken("vendors", "V-1")

        kept = links.purge_broken(datetime.now(timezone.utc) - timedelta(days=1))
        purged = links.purge_broken(datetime.now(timezone.utc) + timedelta(seconds=1))

        assert kept == []
        assert purged == [link.id]
        assert len(links) == 0


class TestLinkValidation:
    """Tests for link revalidation."""

    def test_valid(self, indexed, links):
        link = links.upsert(_link())

        assert links.validate(link) is ValidationStatus.VALID

    def test_broken_when_endpoint_missing(self, links):
        link = links.upsert(_link())

        assert links.validate(link) is ValidationStatus.BROKEN

    def test_stale_after_reindex(self, indexed, links):
        link = links.upsert(_link(last_validated=_EARLIER))
        indexed.index("vendors", "V-1", {"name": "Acme Corp"})

        assert links.validate(link) is ValidationStatus.STALE

    def test_validate_all(self, indexed, links):
        valid = links.upsert(_link())
        stale = links.upsert(_link(target=("vendors", "V-2"), last_validated=_EARLIER))
        broken = links.upsert(_link(target=("vendors", "V-404")))
        indexed.index("vendors", "V-2", {"name": "Globex Inc"})

        result = links.validate_all()

        assert (result.checked, result.valid, result.stale, result.broken) == (3, 1, 1, 1)
        assert links.get(valid.id).validation_status is ValidationStatus.VALID
        assert links.get(stale.id).validation_status is ValidationStatus.STALE
        assert links.get(broken.id).broken_since is not None
        assert len(links) == 3

    def test_stale_clears_on_next_sweep(self, indexed, links):
        link = links.upsert(_link(last_validated=_EARLIER))
        indexed.index("vendors", "V-1", {"name": "Acme Corp"})
        links.validate_all()

        links.validate_all()

        assert links.get(link.id).validation_status is ValidationStatus.VALID


class TestLinkQueries:
    """Tests for link listing."""

    def test_list_for_record_filters(self, links):
        links.upsert(_link())
        links.upsert(_link(link_type=LinkType.DEPENDS_ON))
        links.upsert(_link(source=("tasks", "V-1"), target=("projects", "P-1")))

        assert len(links.list_for_record("V-1")) == 3
        assert len(links.list_for_record("V-1", module="vendors")) == 2
        assert (
            len(links.list_for_record("V-1", module="vendors", link_type=LinkType.DEPENDS_ON))
            == 1
        )

    def test_list_for_module_and_counts(self, links):
        links.upsert(_link())
        links.upsert(_link(source=("tasks", "T-1"), target=("projects", "P-1")))
        links.mark_broken("projects", "P-1")

        assert len(links.list_for_module("vendors")) == 1
        counts = links.status_counts()
        assert counts["VALID"] == 1
        assert counts["BROKEN"] == 1

    @pytest.mark.parametrize("bidirectional", [True, False])
    def test_both_endpoints_list_the_same_link(self, links, bidirectional):
        link = links.upsert(_link(bidirectional=bidirectional))

        from_source = links.list_for_record("I-1", module="invoices")
        from_target = links.list_for_record("V-1", module="vendors")

        assert from_source == from_target == [link]
