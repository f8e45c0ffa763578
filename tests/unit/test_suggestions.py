"""Unit tests for the suggestion manager: scanning and review."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from crosslink.domain.exceptions import (
    ConflictError,
    DuplicateLinkError,
    InvalidTransitionError,
    SuggestionNotFoundError,
)
from crosslink.domain.matching import Scorer
from crosslink.domain.models import (
    AutoLinkCondition,
    ConditionOperator,
    LinkStrength,
    LinkType,
    RecordLink,
    RecordLinkRule,
    SuggestionFeedback,
    SuggestionStatus,
)
from crosslink.domain.services import (
    CancellationToken,
    SuggestionManager,
    evidence_differs,
)


@pytest.fixture
def invoice_and_vendor(index):
    index.index("invoices", "I-1", {"title": "Invoice 1", "vendorNumber": "V-1001"})
    index.index("vendors", "V-1", {"name": "Acme", "vendorNumber": "V-1001"})
    return index


def _two_condition_rule(rules):
    return rules.create_rule(
        RecordLinkRule(
            name="vendor and city",
            source_module="invoices",
            target_module="vendors",
            auto_link_conditions=[
                AutoLinkCondition(
                    id="number", field_name="vendorNumber", operator=ConditionOperator.EQUALS
                ),
                AutoLinkCondition(
                    id="city", field_name="city", operator=ConditionOperator.EQUALS
                ),
            ],
            confidence_threshold=0.5,
        )
    )


def _build_manager(index, rules, links, usage, **kwargs):
    return SuggestionManager(
        index=index, rules=rules, links=links, scorer=Scorer(), usage=usage, **kwargs
    )


class TestEvidenceDiffers:
    """Tests for evidence_differs."""

    def test_within_epsilon(self):
        assert not evidence_differs({"a": 0.90}, {"a": 0.94}, 0.05)

    def test_beyond_epsilon(self):
        assert evidence_differs({"a": 0.90}, {"a": 0.96}, 0.05)

    def test_missing_condition_counts_as_zero(self):
        assert evidence_differs({"a": 1.0, "b": 1.0}, {"a": 1.0}, 0.05)
        assert not evidence_differs({"a": 1.0, "b": 0.01}, {"a": 1.0}, 0.05)


class TestScan:
    """Tests for SuggestionManager.scan."""

    def test_equal_vendor_number_creates_suggestion(self, invoice_and_vendor, vendor_rule, manager):
        report = manager.scan()

        assert report.created == 1
        assert report.rules_evaluated == 1
        suggestion = manager.get(report.created_ids[0])
        assert suggestion.status is SuggestionStatus.PENDING
        assert suggestion.confidence_score == 1.0
        assert len(suggestion.supporting_evidence) == 1
        assert suggestion.supporting_evidence[0].strength == 1.0
        assert suggestion.rule_id == vendor_rule.id
        assert suggestion.source_module == "invoices"
        assert suggestion.target_record_id == "V-1"

    def test_differing_vendor_number_creates_nothing(self, index, vendor_rule, manager):
        index.index("invoices", "I-1", {"vendorNumber": "V-1001"})
        index.index("vendors", "V-1", {"vendorNumber": "V-2002"})

        report = manager.scan()

        assert report.pairs_evaluated == 1
        assert report.created == 0
        assert len(manager) == 0

    def test_rescan_is_idempotent(self, invoice_and_vendor, vendor_rule, manager):
        manager.scan()
        report = manager.scan()

        assert report.created == 0
        assert report.unchanged == 1
        assert len(manager.list_pending()) == 1

    def test_material_evidence_change_supersedes(self, index, rules, manager):
        rule = _two_condition_rule(rules)
        index.index("invoices", "I-1", {"vendorNumber": "V-1", "city": "Oslo"})
        index.index("vendors", "V-1", {"vendorNumber": "V-1", "city": "Oslo"})
        first = manager.scan(rule_ids=[rule.id])
        s1 = first.created_ids[0]

        index.index("vendors", "V-1", {"vendorNumber": "V-1", "city": "Bergen"})
        second = manager.scan(rule_ids=[rule.id])

        assert second.superseded == 1
        assert manager.get(s1).status is SuggestionStatus.SUPERSEDED
        s2 = manager.get(second.created_ids[0])
        assert s2.id != s1
        assert s2.status is SuggestionStatus.PENDING
        assert s2.confidence_score == 0.5
        assert [p.id for p in manager.list_pending()] == [s2.id]

    def test_disabled_rule_is_not_scanned(self, invoice_and_vendor, vendor_rule, rules, manager):
        rules.disable_rule(vendor_rule.id)

        report = manager.scan()

        assert report.rules_evaluated == 0
        assert len(manager) == 0

    def test_max_suggestions_caps_by_confidence(self, index, rules, manager):
        rule = _two_condition_rule(rules)
        rules.update_rule(rule.id, {"max_suggestions": 2})
        index.index("invoices", "I-1", {"vendorNumber": "V-1", "city": "Oslo"})
        index.index("vendors", "A", {"vendorNumber": "V-1", "city": "Oslo"})
        index.index("vendors", "B", {"vendorNumber": "V-1", "city": "Bergen"})
        index.index("vendors", "C", {"vendorNumber": "V-1", "city": "Oslo"})

        report = manager.scan()

        assert report.matches == 3
        assert report.created == 2
        targets = {s.target_record_id for s in manager.list_pending()}
        assert targets == {"A", "C"}

    def test_existing_link_skips_pair(self, invoice_and_vendor, vendor_rule, links, manager):
        links.upsert(
            RecordLink(
                source_module="invoices",
                source_record_id="I-1",
                target_module="vendors",
                target_record_id="V-1",
                link_type=LinkType.RELATED_TO,
                created_by="alice",
            )
        )

        report = manager.scan()

        assert report.pairs_evaluated == 0
        assert len(manager) == 0

    def test_pair_linked_while_scoring_is_skipped(
        self, invoice_and_vendor, vendor_rule, rules, links, usage
    ):
        class LinkingScorer(Scorer):
            def score(self, rule, source, target):
                result = super().score(rule, source, target)
                links.upsert(
                    RecordLink(
                        source_module=source.module,
                        source_record_id=source.record_id,
                        target_module=target.module,
                        target_record_id=target.record_id,
                        link_type=rule.link_type,
                        created_by="bob",
                    )
                )
                return result

        manager = SuggestionManager(
            index=invoice_and_vendor,
            rules=rules,
            links=links,
            scorer=LinkingScorer(),
            usage=usage,
        )

        report = manager.scan()

        assert report.matches == 1
        assert report.created == 0
        assert report.skipped == 1
        assert manager.list_pending() == []

    def test_rule_pairs_only_records_it_may_see(self, index, rules, manager):
        rule = rules.create_rule(
            RecordLinkRule(
                name="finance only",
                source_module="invoices",
                target_module="vendors",
                auto_link_conditions=[
                    AutoLinkCondition(
                        field_name="vendorNumber", operator=ConditionOperator.EQUALS
                    )
                ],
                required_permissions=["finance"],
            )
        )
        index.index("invoices", "I-1", {"vendorNumber": "V-1"})
        index.index("vendors", "V-1", {"vendorNumber": "V-1", "accessRestrictions": ["finance"]})
        index.index("vendors", "V-2", {"vendorNumber": "V-1", "accessRestrictions": ["hr"]})

        report = manager.scan(rule_ids=[rule.id])

        assert report.pairs_evaluated == 1
        assert [s.target_record_id for s in manager.list_pending()] == ["V-1"]

    def test_focus_limits_pairs(self, index, vendor_rule, manager):
        index.index("invoices", "I-1", {"vendorNumber": "V-1"})
        index.index("invoices", "I-2", {"vendorNumber": "V-1"})
        vendor, _ = index.index("vendors", "V-1", {"vendorNumber": "V-1"})
        invoice = index.get("invoices", "I-1")

        by_source = manager.scan(focus=invoice)
        assert by_source.pairs_evaluated == 1

        by_target = manager.scan(focus=vendor)
        assert by_target.pairs_evaluated == 2
        assert by_target.created == 1

    def test_focus_outside_rule_scope(self, index, vendor_rule, manager):
        task, _ = index.index("tasks", "T-1", {"vendorNumber": "V-1"})

        report = manager.scan(focus=task)

        assert report.rules_evaluated == 0

    def test_scan_records_execution(self, invoice_and_vendor, vendor_rule, rules, manager):
        manager.scan()
        manager.scan()

        stats = rules.require(vendor_rule.id).usage_statistics
        assert stats.execution_count == 2
        assert stats.average_confidence == 1.0
        assert stats.last_executed is not None


class TestCancellation:
    """Tests for cooperative scan cancellation."""

    def test_cancelled_before_start(self, invoice_and_vendor, vendor_rule, manager):
        token = CancellationToken()
        token.cancel()

        report = manager.scan(cancel_token=token)

        assert report.cancelled is True
        assert report.created == 0

    def test_cancel_keeps_finished_rules(self, index, rules, links, usage):
        first = rules.create_rule(
            RecordLinkRule(
                name="first",
                source_module="invoices",
                target_module="vendors",
                auto_link_conditions=[
                    AutoLinkCondition(
                        field_name="vendorNumber", operator=ConditionOperator.EQUALS
                    )
                ],
            )
        )
        second = rules.create_rule(
            RecordLinkRule(
                name="second",
                source_module="invoices",
                target_module="vendors",
                link_type=LinkType.REFERENCES,
                auto_link_conditions=[
                    AutoLinkCondition(
                        field_name="vendorNumber", operator=ConditionOperator.EQUALS
                    )
                ],
            )
        )
        index.index("invoices", "I-1", {"vendorNumber": "V-1"})
        index.index("vendors", "V-1", {"vendorNumber": "V-1"})
        token = CancellationToken()

        class CancellingScorer(Scorer):
            def score(self, rule, source, target):
                if rule.id == second.id:
                    token.cancel()
                return super().score(rule, source, target)

        manager = SuggestionManager(
            index=index, rules=rules, links=links, scorer=CancellingScorer(), usage=usage
        )

        report = manager.scan(rule_ids=[first.id, second.id], cancel_token=token)

        assert report.cancelled is True
        assert report.rules_evaluated == 1
        assert [s.rule_id for s in manager.list_pending()] == [first.id]


class TestResolution:
    """Tests for accept and reject."""

    def test_accept_creates_one_link(self, invoice_and_vendor, vendor_rule, links, manager):
        suggestion_id = manager.scan().created_ids[0]

        link = manager.accept(suggestion_id, "alice")

        assert links.get(link.id) == link
        assert link.link_type is LinkType.RELATED_TO
        assert link.link_strength is LinkStrength.CRITICAL
        assert link.automatically_created is True
        assert link.confidence_score == 1.0
        assert link.created_by == "alice"
        assert link.context_metadata.metadata["suggestion_id"] == suggestion_id
        accepted = manager.get(suggestion_id)
        assert accepted.status is SuggestionStatus.ACCEPTED
        assert accepted.reviewed_by == "alice"
        assert accepted.reviewed_at is not None

    def test_accept_updates_usage(self, invoice_and_vendor, vendor_rule, rules, usage, manager):
        suggestion_id = manager.scan().created_ids[0]
        feedback = SuggestionFeedback(rating=5, comment="spot on")

        manager.accept(suggestion_id, "alice", feedback)

        assert rules.require(vendor_rule.id).usage_statistics.successful_links == 1
        assert usage.feedback(vendor_rule.id) == [feedback]

    def test_accept_conflict_supersedes(self, invoice_and_vendor, vendor_rule, links, manager):
        suggestion_id = manager.scan().created_ids[0]
        manual = links.upsert(
            RecordLink(
                source_module="invoices",
                source_record_id="I-1",
                target_module="vendors",
                target_record_id="V-1",
                link_type=LinkType.RELATED_TO,
                created_by="bob",
            )
        )

        with pytest.raises(ConflictError) as exc_info:
            manager.accept(suggestion_id, "alice")

        assert exc_info.value.existing_link_id == manual.id
        assert manager.get(suggestion_id).status is SuggestionStatus.SUPERSEDED
        assert len(links) == 1

    def test_accept_rolls_back_link_when_save_fails(
        self, invoice_and_vendor, vendor_rule, rules, links, usage
    ):
        journal = MagicMock()

        def save_suggestion(suggestion):
            if suggestion.status is SuggestionStatus.ACCEPTED:
                raise RuntimeError("journal unavailable")

        journal.save_suggestion.side_effect = save_suggestion
        manager = _build_manager(invoice_and_vendor, rules, links, usage, journal=journal)
        suggestion_id = manager.scan().created_ids[0]

        with pytest.raises(RuntimeError):
            manager.accept(suggestion_id, "alice")

        assert len(links) == 0
        assert manager.get(suggestion_id).status is SuggestionStatus.PENDING

    def test_reject(self, invoice_and_vendor, vendor_rule, rules, manager):
        suggestion_id = manager.scan().created_ids[0]

        rejected = manager.reject(
            suggestion_id, "alice", SuggestionFeedback(rating=1, was_helpful=False)
        )

        assert rejected.status is SuggestionStatus.REJECTED
        assert rejected.feedback.rating == 1
        assert rules.require(vendor_rule.id).usage_statistics.rejected_suggestions == 1

    @pytest.mark.parametrize("first", ["accept", "reject", "expire"])
    def test_terminal_states_are_final(self, invoice_and_vendor, vendor_rule, manager, first):
        suggestion_id = manager.scan().created_ids[0]
        if first == "expire":
            manager.expire(suggestion_id)
        else:
            getattr(manager, first)(suggestion_id, "alice")

        with pytest.raises(InvalidTransitionError):
            manager.accept(suggestion_id, "bob")
        with pytest.raises(InvalidTransitionError):
            manager.reject(suggestion_id, "bob")

    def test_unknown_suggestion(self, manager):
        with pytest.raises(SuggestionNotFoundError):
            manager.accept("missing", "alice")


class TestConcurrentLinking:
    """Acceptance racing a manual link for the same pair."""

    def test_accept_races_manual_link(self, invoice_and_vendor, vendor_rule, links, manager):
        suggestion_id = manager.scan().created_ids[0]
        barrier = threading.Barrier(2)
        outcomes = {}

        def accept():
            barrier.wait()
            try:
                outcomes["accept"] = manager.accept(suggestion_id, "alice")
            except ConflictError as e:
                outcomes["accept"] = e

        def link_manually():
            barrier.wait()
            try:
                outcomes["manual"] = manager.insert_link(
                    RecordLink(
                        source_module="invoices",
                        source_record_id="I-1",
                        target_module="vendors",
                        target_record_id="V-1",
                        link_type=LinkType.RELATED_TO,
                        created_by="bob",
                    )
                )
            except DuplicateLinkError as e:
                outcomes["manual"] = e

        threads = [threading.Thread(target=accept), threading.Thread(target=link_manually)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        active = links.all_links(active_only=True)
        assert len(active) == 1
        status = manager.get(suggestion_id).status
        if isinstance(outcomes["accept"], ConflictError):
            assert status is SuggestionStatus.SUPERSEDED
            assert outcomes["accept"].existing_link_id == active[0].id == outcomes["manual"].id
        else:
            assert status is SuggestionStatus.ACCEPTED
            assert isinstance(outcomes["manual"], DuplicateLinkError)
            assert active[0].id == outcomes["accept"].id

    def test_insert_link_blocks_later_suggestion(
        self, invoice_and_vendor, vendor_rule, links, manager
    ):
        manager.insert_link(
            RecordLink(
                source_module="invoices",
                source_record_id="I-1",
                target_module="vendors",
                target_record_id="V-1",
                link_type=LinkType.RELATED_TO,
                created_by="bob",
            )
        )

        assert manager.scan().created == 0
        assert len(links) == 1


class TestRejectionCooldown:
    """Tests for regeneration after rejection."""

    def test_rejected_pair_is_not_resuggested(self, invoice_and_vendor, vendor_rule, manager):
        suggestion_id = manager.scan().created_ids[0]
        manager.reject(suggestion_id, "alice")

        report = manager.scan()

        assert report.skipped == 1
        assert report.created == 0
        assert manager.list_pending() == []

    def test_material_change_overrides_cooldown(self, index, rules, manager):
        rule = _two_condition_rule(rules)
        index.index("invoices", "I-1", {"vendorNumber": "V-1", "city": "Oslo"})
        index.index("vendors", "V-1", {"vendorNumber": "V-1", "city": "Bergen"})
        manager.reject(manager.scan(rule_ids=[rule.id]).created_ids[0], "alice")

        index.index("vendors", "V-1", {"vendorNumber": "V-1", "city": "Oslo"})
        report = manager.scan(rule_ids=[rule.id])

        assert report.created == 1

    def test_cooldown_elapsed(self, invoice_and_vendor, vendor_rule, rules, links, usage):
        manager = _build_manager(
            invoice_and_vendor, rules, links, usage, rejection_cooldown=timedelta(0)
        )
        manager.reject(manager.scan().created_ids[0], "alice")

        report = manager.scan()

        assert report.created == 1


    def test_cooldown_pair_does_not_use_capped_slot(self, index, rules, manager):
        rule = rules.create_rule(
            RecordLinkRule(
                name="vendor then city",
                source_module="invoices",
                target_module="vendors",
                auto_link_conditions=[
                    AutoLinkCondition(
                        field_name="vendorNumber", operator=ConditionOperator.EQUALS, weight=9
                    ),
                    AutoLinkCondition(field_name="city", operator=ConditionOperator.EQUALS),
                ],
                confidence_threshold=0.5,
                max_suggestions=1,
            )
        )
        index.index("invoices", "I-1", {"vendorNumber": "V-1001", "city": "Oslo"})
        index.index("vendors", "V-1", {"vendorNumber": "V-1001", "city": "Oslo"})
        index.index("vendors", "V-2", {"vendorNumber": "V-1001", "city": "Bergen"})
        first = manager.scan(rule_ids=[rule.id])
        assert [manager.get(i).target_record_id for i in first.created_ids] == ["V-1"]
        manager.reject(first.created_ids[0], "alice")

        report = manager.scan(rule_ids=[rule.id])

        assert report.matches == 2
        assert report.skipped == 1
        assert report.created == 1
        pending = manager.list_pending()
        assert [s.target_record_id for s in pending] == ["V-2"]
        assert pending[0].confidence_score == 0.9


class TestExpiry:
    """Tests for suggestion expiry."""

    def test_expire_stale(self, invoice_and_vendor, vendor_rule, manager):
        suggestion_id = manager.scan().created_ids[0]

        assert manager.expire_stale() == []
        later = datetime.now(timezone.utc) + timedelta(hours=169)
        assert manager.expire_stale(now=later) == [suggestion_id]
        assert manager.get(suggestion_id).status is SuggestionStatus.EXPIRED

    def test_expire_for_record(self, invoice_and_vendor, vendor_rule, manager):
        suggestion_id = manager.scan().created_ids[0]

        assert manager.expire_for_record("vendors", "V-1") == 1
        assert manager.get(suggestion_id).status is SuggestionStatus.EXPIRED
        assert manager.expire_for_record("vendors", "V-1") == 0

    def test_expired_pair_is_resuggested(self, invoice_and_vendor, vendor_rule, manager):
        suggestion_id = manager.scan().created_ids[0]
        manager.expire(suggestion_id)

        report = manager.scan()

        assert report.created == 1


class TestQueries:
    """Tests for suggestion queries."""

    def test_list_for_record(self, invoice_and_vendor, vendor_rule, manager):
        manager.scan()

        assert len(manager.list_for_record("V-1")) == 1
        assert len(manager.list_for_record("V-1", module="invoices")) == 0
        assert (
            manager.list_for_record("I-1", status=SuggestionStatus.REJECTED) == []
        )

    def test_status_counts(self, invoice_and_vendor, vendor_rule, manager):
        manager.scan()

        counts = manager.status_counts()

        assert counts["PENDING"] == 1
        assert counts["ACCEPTED"] == 0

    def test_restore(self, manager, invoice_and_vendor, vendor_rule, rules, links, usage):
        suggestion_id = manager.scan().created_ids[0]
        restored = _build_manager(invoice_and_vendor, rules, links, usage)

        restored.restore(manager.all_suggestions())

        assert restored.find_pending(manager.get(suggestion_id).key).id == suggestion_id
