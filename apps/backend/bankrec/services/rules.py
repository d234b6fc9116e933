"""Match rule engine: rule CRUD and evaluation of rules against a candidate pool."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID

import pydantic
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from thefuzz import fuzz

from bankrec.logger import get_logger, log_exception
from bankrec.models import (
    AUTO_ACTIONS,
    BankTransaction,
    BankTransactionMatch,
    MatchRule,
    MatchSource,
    MatchStatus,
    RuleAction,
)
from bankrec.schemas.rules import (
    CRITERIA_ADAPTER,
    AmountCriterion,
    Criterion,
    DateCriterion,
    DescriptionCriterion,
    MatchRuleCreate,
    MatchRuleUpdate,
    ReferenceCriterion,
    RuleStatistics,
)
from bankrec.services.candidates import CandidateMatch, confidence_for, to_score
from bankrec.services.collaborators import CandidateRecord
from bankrec.services.errors import NotFoundError
from bankrec.services.matching_config import MatchingConfig

logger = get_logger(__name__)

ONE = Decimal("1")
Closeness = tuple[Decimal, str]


def normalize_text(value: str) -> str:
    """Lower-case, strip punctuation, collapse whitespace."""
    cleaned = re.sub(r"[^a-z0-9]+", " ", value.lower()).strip()
    return re.sub(r"\s+", " ", cleaned)


def normalize_reference(value: str) -> str:
    return re.sub(r"[-_\s]", "", value).casefold()


def description_similarity(a: str, b: str) -> Decimal:
    """Normalized edit-distance similarity in [0, 1]."""
    norm_a = normalize_text(a)
    norm_b = normalize_text(b)
    if not norm_a or not norm_b:
        return Decimal("0")
    return Decimal(fuzz.ratio(norm_a, norm_b)) / Decimal("100")


def _linear_closeness(diff: Decimal, tolerance: Decimal) -> Decimal:
    # 1.0 at zero difference, 0.5 at the edge of the tolerance window
    if tolerance <= 0:
        return ONE
    return ONE - diff / (2 * tolerance)


# =============================================================================
# Criterion evaluation
# =============================================================================


def _amount_closeness(
    criterion: AmountCriterion, txn: BankTransaction, record: CandidateRecord | None, config: MatchingConfig
) -> Closeness | None:
    if record is None:
        return None
    diff = abs(txn.amount - record.amount)
    if criterion.mode == "exact":
        return (ONE, "amount equal") if diff == 0 else None
    tolerance = max(Decimal(criterion.tolerance), criterion.percentage * max(txn.amount, record.amount))
    if diff > tolerance:
        return None
    return _linear_closeness(Decimal(diff), tolerance), f"amount within tolerance (off by {diff})"


def _date_closeness(
    criterion: DateCriterion, txn: BankTransaction, record: CandidateRecord | None, config: MatchingConfig
) -> Closeness | None:
    if record is None:
        return None
    days = abs((txn.txn_date - record.record_date).days)
    if criterion.mode == "exact":
        return (ONE, "same date") if days == 0 else None
    if days > criterion.days_tolerance:
        return None
    return _linear_closeness(Decimal(days), Decimal(criterion.days_tolerance)), f"date within {days} day(s)"


def _description_closeness(
    criterion: DescriptionCriterion, txn: BankTransaction, record: CandidateRecord | None, config: MatchingConfig
) -> Closeness | None:
    if criterion.pattern is not None:
        target = criterion.pattern
    elif record is not None and record.label:
        target = record.label
    else:
        return None

    subject = txn.description or ""
    if criterion.mode == "regex":
        flags = 0 if criterion.case_sensitive else re.IGNORECASE
        if re.search(target, subject, flags):
            return ONE, f"description matches /{target}/"
        return None

    if criterion.mode == "fuzzy":
        minimum = criterion.min_similarity if criterion.min_similarity is not None else config.fuzzy_min_similarity
        similarity = description_similarity(subject, target)
        if similarity < minimum:
            return None
        return similarity, f"description similar to '{target}' ({similarity:.2f})"

    if not criterion.case_sensitive:
        subject = subject.casefold()
        target = target.casefold()
    subject = subject.strip()
    target = target.strip()
    tests: dict[str, Callable[[], bool]] = {
        "exact": lambda: subject == target,
        "contains": lambda: target in subject,
        "starts_with": lambda: subject.startswith(target),
        "ends_with": lambda: subject.endswith(target),
    }
    if target and tests[criterion.mode]():
        return ONE, f"description {criterion.mode.replace('_', ' ')} '{target}'"
    return None


def _reference_closeness(
    criterion: ReferenceCriterion, txn: BankTransaction, record: CandidateRecord | None, config: MatchingConfig
) -> Closeness | None:
    if record is None or not txn.reference or not record.reference:
        return None
    if txn.reference == record.reference:
        return ONE, "reference equal"
    if criterion.normalize and normalize_reference(txn.reference) == normalize_reference(record.reference):
        return Decimal("0.9"), "reference equal after normalization"
    return None


_EVALUATORS: dict[type, Callable[..., Closeness | None]] = {
    AmountCriterion: _amount_closeness,
    DateCriterion: _date_closeness,
    DescriptionCriterion: _description_closeness,
    ReferenceCriterion: _reference_closeness,
}


def _criterion_weight(criterion: Criterion, config: MatchingConfig) -> Decimal:
    weights = {
        AmountCriterion: config.weight_amount,
        DateCriterion: config.weight_date,
        DescriptionCriterion: config.weight_description,
        ReferenceCriterion: config.weight_reference,
    }
    return weights[type(criterion)]


def criterion_closeness(
    criterion: Criterion,
    txn: BankTransaction,
    record: CandidateRecord | None,
    config: MatchingConfig,
) -> Closeness | None:
    """Return (closeness in [0, 1], reason) when the criterion holds, else None."""
    return _EVALUATORS[type(criterion)](criterion, txn, record, config)


# =============================================================================
# Rule evaluation
# =============================================================================


@dataclass
class RuleEvaluation:
    candidates: list[CandidateMatch] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    short_circuit_rule_id: UUID | None = None
    skipped_rule_ids: list[UUID] = field(default_factory=list)
    matched_rule_ids: list[UUID] = field(default_factory=list)


def _creation_key(value: datetime | None) -> datetime:
    if value is None:
        return datetime.max
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value


def ordered_rules(rules: Iterable[MatchRule]) -> list[MatchRule]:
    """Active rules in evaluation order: priority, then creation order."""
    active = [rule for rule in rules if rule.is_active]
    return sorted(active, key=lambda rule: (rule.priority, _creation_key(rule.created_at), str(rule.id)))


def parse_criteria(rule: MatchRule) -> list[Criterion]:
    return CRITERIA_ADAPTER.validate_python(rule.criteria)


def _rule_applies(rule: MatchRule, txn: BankTransaction, record: CandidateRecord) -> bool:
    if rule.record_types and record.record_type not in rule.record_types:
        return False
    if rule.account_ids and str(txn.account_id) not in {str(account_id) for account_id in rule.account_ids}:
        return False
    return True


def _score_record(
    criteria: list[Criterion],
    txn: BankTransaction,
    record: CandidateRecord | None,
    config: MatchingConfig,
) -> tuple[int, list[str]] | None:
    weighted = Decimal("0")
    total_weight = Decimal("0")
    reasons: list[str] = []
    for criterion in criteria:
        result = criterion_closeness(criterion, txn, record, config)
        if result is None:
            return None
        closeness, reason = result
        weight = _criterion_weight(criterion, config)
        weighted += weight * closeness
        total_weight += weight
        reasons.append(reason)
    if total_weight == 0:
        return None
    return to_score(Decimal("100") * weighted / total_weight), reasons


def _evaluate_tag_rule(
    rule: MatchRule, criteria: list[Criterion], txn: BankTransaction, config: MatchingConfig
) -> bool:
    if not all(isinstance(c, DescriptionCriterion) and c.transaction_only for c in criteria):
        return False
    return _score_record(criteria, txn, None, config) is not None


def evaluate(
    txn: BankTransaction,
    pool: list[CandidateRecord],
    rules: Iterable[MatchRule],
    config: MatchingConfig,
) -> RuleEvaluation:
    """Evaluate active rules against the candidate pool.

    The first auto-match/auto-reconcile rule that leaves exactly one record
    wins outright; otherwise candidates from every rule are accumulated.
    A rule whose criteria cannot be parsed is skipped.
    """
    evaluation = RuleEvaluation()

    for rule in ordered_rules(rules):
        try:
            criteria = parse_criteria(rule)
        except pydantic.ValidationError as exc:
            log_exception(
                logger,
                exc,
                "Skipping malformed match rule",
                level="warning",
                include_traceback=False,
                rule_id=str(rule.id),
                rule_name=rule.name,
            )
            evaluation.skipped_rule_ids.append(rule.id)
            continue

        if rule.action == RuleAction.TAG:
            if rule.category and _evaluate_tag_rule(rule, criteria, txn, config):
                evaluation.tags.append(rule.category)
                evaluation.matched_rule_ids.append(rule.id)
            continue

        survivors: list[CandidateMatch] = []
        for record in pool:
            if not _rule_applies(rule, txn, record):
                continue
            scored = _score_record(criteria, txn, record, config)
            if scored is None:
                continue
            score, reasons = scored
            survivors.append(
                CandidateMatch(
                    record=record,
                    score=score,
                    confidence=confidence_for(score, config),
                    source=MatchSource.RULE,
                    reasons=[f"Rule '{rule.name}': {reason}" for reason in reasons],
                    rule_id=rule.id,
                    requires_confirmation=rule.action == RuleAction.REQUIRE_CONFIRMATION,
                )
            )

        if not survivors:
            continue
        evaluation.matched_rule_ids.append(rule.id)

        if rule.action in AUTO_ACTIONS and len(survivors) == 1:
            evaluation.candidates = survivors
            evaluation.short_circuit_rule_id = rule.id
            return evaluation
        evaluation.candidates.extend(survivors)

    return evaluation


def reference_candidates(
    txn: BankTransaction,
    pool: list[CandidateRecord],
    config: MatchingConfig,
) -> list[CandidateMatch]:
    """Built-in pass pairing records whose reference equals the transaction's."""
    if not txn.reference:
        return []
    candidates: list[CandidateMatch] = []
    normalized = normalize_reference(txn.reference)
    for record in pool:
        if not record.reference:
            continue
        if record.reference == txn.reference:
            score, reason = config.reference_exact_score, f"reference {record.reference} equal"
        elif normalize_reference(record.reference) == normalized:
            score, reason = config.reference_normalized_score, f"reference {record.reference} equal after normalization"
        else:
            continue
        candidates.append(
            CandidateMatch(
                record=record,
                score=score,
                confidence=confidence_for(score, config),
                source=MatchSource.REFERENCE,
                reasons=[reason],
            )
        )
    return candidates


# =============================================================================
# Rule CRUD
# =============================================================================


async def list_rules(
    db: AsyncSession,
    *,
    user_id: UUID,
    active_only: bool = False,
) -> list[MatchRule]:
    """Rules in evaluation order."""
    query = select(MatchRule).where(MatchRule.user_id == user_id)
    if active_only:
        query = query.where(MatchRule.is_active.is_(True))
    query = query.order_by(MatchRule.priority, MatchRule.created_at, MatchRule.id)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_rule(db: AsyncSession, rule_id: UUID, *, user_id: UUID) -> MatchRule:
    result = await db.execute(select(MatchRule).where(MatchRule.id == rule_id).where(MatchRule.user_id == user_id))
    rule = result.scalar_one_or_none()
    if not rule:
        raise NotFoundError("Rule not found")
    return rule


def _dump_criteria(criteria: list[Criterion]) -> list[dict]:
    return [criterion.model_dump(mode="json") for criterion in criteria]


async def create_rule(db: AsyncSession, data: MatchRuleCreate, *, user_id: UUID) -> MatchRule:
    rule = MatchRule(
        user_id=user_id,
        name=data.name,
        description=data.description,
        priority=data.priority,
        is_active=data.is_active,
        criteria=_dump_criteria(data.criteria),
        record_types=list(data.record_types),
        account_ids=[str(account_id) for account_id in data.account_ids],
        action=data.action,
        category=data.category,
    )
    db.add(rule)
    await db.flush()
    await db.refresh(rule)
    logger.info("Match rule created", rule_id=str(rule.id), priority=rule.priority, action=rule.action.value)
    return rule


async def update_rule(db: AsyncSession, rule_id: UUID, data: MatchRuleUpdate, *, user_id: UUID) -> MatchRule:
    rule = await get_rule(db, rule_id, user_id=user_id)
    updates = data.model_dump(exclude_unset=True)
    if "criteria" in updates and data.criteria is not None:
        updates["criteria"] = _dump_criteria(data.criteria)
    if "account_ids" in updates and data.account_ids is not None:
        updates["account_ids"] = [str(account_id) for account_id in data.account_ids]
    for name, value in updates.items():
        setattr(rule, name, value)
    await db.flush()
    await db.refresh(rule)
    return rule


async def set_rule_active(db: AsyncSession, rule_id: UUID, *, user_id: UUID, is_active: bool) -> MatchRule:
    rule = await get_rule(db, rule_id, user_id=user_id)
    rule.is_active = is_active
    await db.flush()
    return rule


async def delete_rule(db: AsyncSession, rule_id: UUID, *, user_id: UUID) -> None:
    rule = await get_rule(db, rule_id, user_id=user_id)
    await db.delete(rule)
    await db.flush()


async def record_rule_hits(db: AsyncSession, rule_ids: Iterable[UUID], *, user_id: UUID) -> None:
    """Bump hit counters for rules that produced candidates."""
    ids = list(dict.fromkeys(rule_ids))
    if not ids:
        return
    result = await db.execute(select(MatchRule).where(MatchRule.id.in_(ids)).where(MatchRule.user_id == user_id))
    now = datetime.now(UTC)
    for rule in result.scalars():
        rule.times_matched += 1
        rule.last_matched_at = now


async def rule_statistics(db: AsyncSession, *, user_id: UUID) -> list[RuleStatistics]:
    rules = await list_rules(db, user_id=user_id)
    counts_result = await db.execute(
        select(BankTransactionMatch.rule_id, BankTransactionMatch.status, func.count(BankTransactionMatch.id))
        .join(MatchRule, MatchRule.id == BankTransactionMatch.rule_id)
        .where(MatchRule.user_id == user_id)
        .group_by(BankTransactionMatch.rule_id, BankTransactionMatch.status)
    )
    counts: dict[tuple[UUID, MatchStatus], int] = {
        (rule_id, status): count for rule_id, status, count in counts_result.all()
    }
    return [
        RuleStatistics(
            rule_id=rule.id,
            name=rule.name,
            priority=rule.priority,
            is_active=rule.is_active,
            times_matched=rule.times_matched,
            last_matched_at=rule.last_matched_at,
            confirmed_matches=counts.get((rule.id, MatchStatus.CONFIRMED), 0)
            + counts.get((rule.id, MatchStatus.AUTO_CONFIRMED), 0),
            rejected_matches=counts.get((rule.id, MatchStatus.REJECTED), 0),
        )
        for rule in rules
    ]
