"""Tests for match rule evaluation and rule management."""

from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import get_args
from uuid import uuid4

import pytest

from bankrec.models import ConfidenceTier, MatchSource, RuleAction
from bankrec.schemas.rules import (
    AmountCriterion,
    Criterion,
    DateCriterion,
    DescriptionCriterion,
    MatchRuleCreate,
    MatchRuleUpdate,
    ReferenceCriterion,
)
from bankrec.services import rules as rule_engine
from bankrec.services.errors import NotFoundError
from tests.factories import BankTransactionFactory, MatchRuleFactory
from tests.fakes import make_record

T0 = datetime(2024, 1, 1, tzinfo=UTC)


def _txn(**kwargs):
    defaults = {"amount": 10000, "txn_date": date(2024, 3, 15), "description": "ACH ACME CORP 0315"}
    defaults.update(kwargs)
    return BankTransactionFactory.build(**defaults)


def _rule(criteria, **kwargs):
    return MatchRuleFactory.build(criteria=criteria, **kwargs)


class TestTextHelpers:
    def test_normalize_text_strips_punctuation(self):
        assert rule_engine.normalize_text("  ACME, Corp.  #123 ") == "acme corp 123"

    def test_normalize_reference(self):
        assert rule_engine.normalize_reference("INV-001 a") == rule_engine.normalize_reference("inv001A")

    def test_description_similarity_bounds(self):
        assert rule_engine.description_similarity("Acme Corp", "ACME CORP!") == Decimal("1")
        assert rule_engine.description_similarity("", "anything") == Decimal("0")


class TestCriteria:
    def test_exact_amount(self, matching_config):
        record = make_record(amount=10000)
        assert rule_engine.criterion_closeness(AmountCriterion(), _txn(), record, matching_config)[0] == 1
        assert rule_engine.criterion_closeness(AmountCriterion(), _txn(amount=10001), record, matching_config) is None

    def test_amount_range_scales_linearly(self, matching_config):
        criterion = AmountCriterion(mode="range", tolerance=100)
        closeness, _ = rule_engine.criterion_closeness(criterion, _txn(amount=10050), make_record(), matching_config)
        assert closeness == Decimal("0.75")
        assert rule_engine.criterion_closeness(criterion, _txn(amount=10101), make_record(), matching_config) is None

    def test_amount_percentage_uses_larger_amount(self, matching_config):
        criterion = AmountCriterion(mode="percentage", percentage=Decimal("0.01"))
        assert rule_engine.criterion_closeness(criterion, _txn(amount=10100), make_record(), matching_config)
        assert rule_engine.criterion_closeness(criterion, _txn(amount=10200), make_record(), matching_config) is None

    def test_date_range(self, matching_config):
        criterion = DateCriterion(mode="range", days_tolerance=3)
        record = make_record(record_date=date(2024, 3, 13))
        closeness, reason = rule_engine.criterion_closeness(criterion, _txn(), record, matching_config)
        assert closeness == Decimal("1") - Decimal("2") / Decimal("6")
        assert "2 day" in reason
        late = make_record(record_date=date(2024, 3, 10))
        assert rule_engine.criterion_closeness(criterion, _txn(), late, matching_config) is None

    def test_description_contains_counterparty(self, matching_config):
        criterion = DescriptionCriterion(mode="contains")
        assert rule_engine.criterion_closeness(criterion, _txn(), make_record(), matching_config)
        other = make_record(counterparty="Globex")
        assert rule_engine.criterion_closeness(criterion, _txn(), other, matching_config) is None

    def test_description_case_sensitive(self, matching_config):
        criterion = DescriptionCriterion(mode="starts_with", pattern="ach", case_sensitive=True)
        assert rule_engine.criterion_closeness(criterion, _txn(), None, matching_config) is None
        criterion = DescriptionCriterion(mode="starts_with", pattern="ach")
        assert rule_engine.criterion_closeness(criterion, _txn(), None, matching_config)

    def test_description_regex(self, matching_config):
        criterion = DescriptionCriterion(mode="regex", pattern=r"^ACH\s+ACME")
        assert rule_engine.criterion_closeness(criterion, _txn(), None, matching_config)

    def test_invalid_regex_rejected_at_validation(self):
        with pytest.raises(ValueError):
            DescriptionCriterion(mode="regex", pattern="([")

    def test_fuzzy_description_threshold(self, matching_config):
        criterion = DescriptionCriterion(mode="fuzzy", pattern="ACH ACME CORP 0315")
        closeness, _ = rule_engine.criterion_closeness(criterion, _txn(), None, matching_config)
        assert closeness == Decimal("1")
        far = DescriptionCriterion(mode="fuzzy", pattern="zzzz qqqq")
        assert rule_engine.criterion_closeness(far, _txn(), None, matching_config) is None

    def test_reference_normalized(self, matching_config):
        criterion = ReferenceCriterion()
        record = make_record(reference="inv 001")
        closeness, _ = rule_engine.criterion_closeness(criterion, _txn(reference="INV-001"), record, matching_config)
        assert closeness == Decimal("0.9")
        strict = ReferenceCriterion(normalize=False)
        assert rule_engine.criterion_closeness(strict, _txn(reference="INV-001"), record, matching_config) is None


class TestEvaluate:
    def test_every_criterion_kind_has_an_evaluator(self):
        variants = set(get_args(get_args(Criterion)[0]))
        assert variants == {AmountCriterion, DateCriterion, DescriptionCriterion, ReferenceCriterion}
        assert set(rule_engine._EVALUATORS) == variants

    def test_weighted_score(self, matching_config):
        rule = _rule(
            [{"kind": "amount", "mode": "exact"}, {"kind": "date", "mode": "range", "days_tolerance": 3}]
        )
        record = make_record(record_date=date(2024, 3, 13))

        evaluation = rule_engine.evaluate(_txn(), [record], [rule], matching_config)

        # (0.40 * 1 + 0.20 * 2/3) / 0.60 = 0.888..
        [candidate] = evaluation.candidates
        assert candidate.score == 89
        assert candidate.confidence == ConfidenceTier.HIGH
        assert candidate.source == MatchSource.RULE
        assert candidate.rule_id == rule.id
        assert candidate.requires_confirmation is True

    def test_auto_match_with_single_survivor_short_circuits(self, matching_config):
        first = _rule([{"kind": "amount", "mode": "exact"}], action=RuleAction.AUTO_MATCH, priority=1)
        later = _rule([{"kind": "date", "mode": "exact"}], priority=2)
        match = make_record("INV-1", amount=10000)
        other = make_record("INV-2", amount=5000)

        evaluation = rule_engine.evaluate(_txn(), [match, other], [later, first], matching_config)

        assert evaluation.short_circuit_rule_id == first.id
        assert [c.record.record_id for c in evaluation.candidates] == ["INV-1"]
        assert evaluation.candidates[0].score == 100
        assert evaluation.candidates[0].requires_confirmation is False
        assert later.id not in evaluation.matched_rule_ids

    def test_auto_match_with_several_survivors_accumulates(self, matching_config):
        rule = _rule([{"kind": "amount", "mode": "exact"}], action=RuleAction.AUTO_MATCH)
        records = [make_record("INV-1"), make_record("INV-2")]

        evaluation = rule_engine.evaluate(_txn(), records, [rule], matching_config)

        assert evaluation.short_circuit_rule_id is None
        assert len(evaluation.candidates) == 2

    def test_equal_priority_runs_in_creation_order(self, matching_config):
        older = _rule(
            [{"kind": "reference"}], action=RuleAction.AUTO_MATCH, created_at=T0, priority=5
        )
        newer = _rule(
            [{"kind": "amount", "mode": "exact"}],
            action=RuleAction.AUTO_MATCH,
            created_at=T0 + timedelta(days=1),
            priority=5,
        )
        by_reference = make_record("INV-REF", amount=999, reference="R-1")
        by_amount = make_record("INV-AMT", amount=10000)

        evaluation = rule_engine.evaluate(
            _txn(reference="R-1"), [by_reference, by_amount], [newer, older], matching_config
        )

        assert evaluation.short_circuit_rule_id == older.id
        assert evaluation.candidates[0].record.record_id == "INV-REF"

    def test_inactive_and_filtered_rules_are_ignored(self, matching_config):
        inactive = _rule([{"kind": "amount", "mode": "exact"}], is_active=False)
        bills_only = _rule([{"kind": "amount", "mode": "exact"}], record_types=["bill"])
        other_account = _rule([{"kind": "amount", "mode": "exact"}], account_ids=[str(uuid4())])

        evaluation = rule_engine.evaluate(
            _txn(), [make_record()], [inactive, bills_only, other_account], matching_config
        )

        assert evaluation.candidates == []
        assert evaluation.matched_rule_ids == []

    def test_malformed_rule_is_skipped(self, matching_config):
        broken = _rule([{"kind": "sentiment"}], priority=1)
        good = _rule([{"kind": "amount", "mode": "exact"}], priority=2)

        evaluation = rule_engine.evaluate(_txn(), [make_record()], [broken, good], matching_config)

        assert evaluation.skipped_rule_ids == [broken.id]
        assert len(evaluation.candidates) == 1

    def test_tag_rule_sets_category_without_candidates(self, matching_config):
        tag = _rule(
            [{"kind": "description", "mode": "contains", "pattern": "acme"}],
            action=RuleAction.TAG,
            category="receivables",
        )
        evaluation = rule_engine.evaluate(_txn(), [make_record()], [tag], matching_config)

        assert evaluation.tags == ["receivables"]
        assert evaluation.candidates == []

    def test_tag_rule_needs_transaction_only_criteria(self, matching_config):
        tag = _rule([{"kind": "amount", "mode": "exact"}], action=RuleAction.TAG, category="x")
        evaluation = rule_engine.evaluate(_txn(), [make_record()], [tag], matching_config)
        assert evaluation.tags == []


class TestReferenceCandidates:
    def test_exact_and_normalized(self, matching_config):
        exact = make_record("INV-1", reference="INV-001")
        normalized = make_record("INV-2", reference="inv 001")
        unrelated = make_record("INV-3", reference="INV-999")

        candidates = rule_engine.reference_candidates(
            _txn(reference="INV-001"), [exact, normalized, unrelated], matching_config
        )

        scores = {c.record.record_id: (c.score, c.confidence) for c in candidates}
        assert scores == {
            "INV-1": (100, ConfidenceTier.EXACT),
            "INV-2": (90, ConfidenceTier.HIGH),
        }

    def test_no_reference_no_candidates(self, matching_config):
        assert rule_engine.reference_candidates(_txn(), [make_record(reference="X")], matching_config) == []


class TestRuleStore:
    @pytest.mark.asyncio
    async def test_create_and_list_in_priority_order(self, db, test_user_id):
        low = await rule_engine.create_rule(
            db,
            MatchRuleCreate(name="late", priority=50, criteria=[AmountCriterion()]),
            user_id=test_user_id,
        )
        high = await rule_engine.create_rule(
            db,
            MatchRuleCreate(name="early", priority=10, criteria=[ReferenceCriterion()]),
            user_id=test_user_id,
        )

        rules = await rule_engine.list_rules(db, user_id=test_user_id)

        assert [r.id for r in rules] == [high.id, low.id]
        assert high.criteria == [{"kind": "reference", "normalize": True}]

    @pytest.mark.asyncio
    async def test_tag_rule_requires_category(self):
        with pytest.raises(ValueError):
            MatchRuleCreate(name="t", action=RuleAction.TAG, criteria=[DescriptionCriterion(pattern="x")])

    @pytest.mark.asyncio
    async def test_update_and_deactivate(self, db, test_user_id):
        rule = await rule_engine.create_rule(
            db, MatchRuleCreate(name="r", criteria=[AmountCriterion()]), user_id=test_user_id
        )

        updated = await rule_engine.update_rule(
            db,
            rule.id,
            MatchRuleUpdate(priority=3, criteria=[DateCriterion(mode="range", days_tolerance=2)]),
            user_id=test_user_id,
        )
        assert updated.priority == 3
        assert updated.criteria[0]["days_tolerance"] == 2

        await rule_engine.set_rule_active(db, rule.id, user_id=test_user_id, is_active=False)
        assert await rule_engine.list_rules(db, user_id=test_user_id, active_only=True) == []

    @pytest.mark.asyncio
    async def test_rules_are_scoped_to_owner(self, db, test_user_id):
        rule = await rule_engine.create_rule(
            db, MatchRuleCreate(name="r", criteria=[AmountCriterion()]), user_id=test_user_id
        )
        with pytest.raises(NotFoundError):
            await rule_engine.get_rule(db, rule.id, user_id=uuid4())

    @pytest.mark.asyncio
    async def test_delete(self, db, test_user_id):
        rule = await rule_engine.create_rule(
            db, MatchRuleCreate(name="r", criteria=[AmountCriterion()]), user_id=test_user_id
        )
        await rule_engine.delete_rule(db, rule.id, user_id=test_user_id)
        with pytest.raises(NotFoundError):
            await rule_engine.get_rule(db, rule.id, user_id=test_user_id)

    @pytest.mark.asyncio
    async def test_record_rule_hits_and_statistics(self, db, test_user_id):
        rule = await rule_engine.create_rule(
            db, MatchRuleCreate(name="r", criteria=[AmountCriterion()]), user_id=test_user_id
        )

        await rule_engine.record_rule_hits(db, [rule.id, rule.id], user_id=test_user_id)
        await db.flush()

        [stats] = await rule_engine.rule_statistics(db, user_id=test_user_id)
        assert stats.times_matched == 1
        assert stats.last_matched_at is not None
        assert stats.confirmed_matches == 0
