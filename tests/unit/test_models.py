"""Unit tests for domain models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from crosslink.domain.models import (
    AutoLinkCondition,
    ConditionOperator,
    EvidenceItem,
    EvidenceType,
    LinkableRecord,
    LinkKey,
    LinkingAlgorithm,
    LinkStrength,
    LinkSuggestion,
    LinkType,
    RecordLink,
    RecordLinkRule,
    RuleFeedbackSummary,
    SuggestionFeedback,
    SuggestionStatus,
)


class TestEnums:
    """Tests for enumeration helpers."""

    def test_link_type_display_name(self):
        assert LinkType.RELATED_TO.display_name == "Related To"

    @pytest.mark.parametrize(
        ("confidence", "expected"),
        [
            (1.0, LinkStrength.CRITICAL),
            (0.95, LinkStrength.CRITICAL),
            (0.8, LinkStrength.STRONG),
            (0.5, LinkStrength.MODERATE),
            (0.1, LinkStrength.WEAK),
        ],
    )
    def test_link_strength_from_confidence(self, confidence, expected):
        assert LinkStrength.from_confidence(confidence) is expected

    def test_link_strength_numeric_values(self):
        assert [s.numeric_value for s in LinkStrength] == [0.25, 0.5, 0.75, 1.0]

    def test_only_pending_is_non_terminal(self):
        assert not SuggestionStatus.PENDING.is_terminal
        assert all(
            s.is_terminal for s in SuggestionStatus if s is not SuggestionStatus.PENDING
        )


class TestRecordModels:
    """Tests for LinkableRecord."""

    def test_make_id(self):
        assert LinkableRecord.make_id("vendors", "V-1") == "vendors:V-1"

    def test_defaults(self):
        record = LinkableRecord(
            id="tasks:T-1", record_id="T-1", module="tasks", record_type="task", title="T"
        )
        assert record.index_version == 1
        assert record.fields == {}
        assert record.metadata.categories == []


class TestRuleModels:
    """Tests for RecordLinkRule and AutoLinkCondition."""

    def test_rule_defaults(self):
        rule = RecordLinkRule(name="r", source_module="a", target_module="b")

        assert rule.linking_algorithm is LinkingAlgorithm.SIMILARITY
        assert rule.confidence_threshold == 0.8
        assert rule.max_suggestions == 10
        assert rule.link_type is LinkType.RELATED_TO
        assert rule.is_enabled is True

    def test_threshold_out_of_range(self):
        with pytest.raises(PydanticValidationError):
            RecordLinkRule(
                name="r", source_module="a", target_module="b", confidence_threshold=1.5
            )

    def test_negative_weight_rejected(self):
        with pytest.raises(PydanticValidationError):
            AutoLinkCondition(field_name="x", operator=ConditionOperator.EQUALS, weight=-1)

    def test_total_weight(self):
        rule = RecordLinkRule(
            name="r",
            source_module="a",
            target_module="b",
            auto_link_conditions=[
                AutoLinkCondition(field_name="x", operator=ConditionOperator.EQUALS, weight=2),
                AutoLinkCondition(field_name="y", operator=ConditionOperator.EQUALS, weight=0.5),
            ],
        )
        assert rule.total_weight == 2.5

    def test_can_see_requires_covering_permissions(self):
        rule = RecordLinkRule(
            name="r", source_module="a", target_module="b", required_permissions=["finance"]
        )
        record = LinkableRecord(
            id="a:1", record_id="1", module="a", record_type="a", title="One"
        )

        assert rule.can_see(record)
        assert rule.can_see(record.model_copy(update={"access_restrictions": ["finance"]}))
        assert not rule.can_see(
            record.model_copy(update={"access_restrictions": ["finance", "hr"]})
        )


class TestLinkModels:
    """Tests for LinkKey and RecordLink."""

    def test_key_reversed(self):
        key = LinkKey("a", "1", "b", "2", LinkType.RELATED_TO)

        assert key.reversed() == LinkKey("b", "2", "a", "1", LinkType.RELATED_TO)
        assert key.source_ref == "a:1"
        assert key.target_ref == "b:2"

    def test_link_involves(self):
        link = RecordLink(
            source_module="a",
            source_record_id="1",
            target_module="b",
            target_record_id="2",
            link_type=LinkType.DEPENDS_ON,
            created_by="alice",
        )

        assert link.involves("a", "1")
        assert link.involves("b", "2")
        assert not link.involves("a", "2")
        assert link.key.link_type is LinkType.DEPENDS_ON


class TestSuggestionModels:
    """Tests for LinkSuggestion and feedback."""

    def test_evidence_strengths_keyed_by_condition(self):
        suggestion = LinkSuggestion(
            source_module="a",
            source_record_id="1",
            target_module="b",
            target_record_id="2",
            confidence_score=0.9,
            supporting_evidence=[
                EvidenceItem(
                    evidence_type=EvidenceType.SYSTEM_RULE,
                    description="x equals",
                    strength=1.0,
                    metadata={"condition_id": "c1"},
                ),
                EvidenceItem(
                    evidence_type=EvidenceType.TEXT_SIMILARITY,
                    description="title similar",
                    strength=0.8,
                ),
            ],
        )

        assert suggestion.evidence_strengths() == {"c1": 1.0, "title similar": 0.8}
        assert suggestion.key == LinkKey("a", "1", "b", "2", LinkType.RELATED_TO)

    def test_feedback_rating_range(self):
        with pytest.raises(PydanticValidationError):
            SuggestionFeedback(rating=6)

    def test_feedback_summary_to_dict(self):
        summary = RuleFeedbackSummary(rule_id="r-1", acceptance_rate=0.5)

        data = summary.to_dict()
        assert data["rule_id"] == "r-1"
        assert data["acceptance_rate"] == 0.5
