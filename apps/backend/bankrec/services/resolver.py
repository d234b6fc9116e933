"""Match resolver: ranks candidates, auto-confirms or queues suggestions, and
drives confirm / reject / unmatch against the owning record services."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bankrec.logger import async_log_timing, get_logger, log_exception
from bankrec.models import (
    ACTIVE_MATCH_STATUSES,
    BankAccount,
    BankTransaction,
    BankTransactionMatch,
    ConfidenceTier,
    LedgerEventKind,
    MatchSource,
    MatchSplit,
    MatchStatus,
    TransactionStatus,
)
from bankrec.schemas.matching import SplitAllocation
from bankrec.services import rules as rule_engine
from bankrec.services.candidates import CandidateMatch, confidence_for, to_score
from bankrec.services.collaborators import CandidateRecord, RecordSource, find_source
from bankrec.services.errors import (
    ConflictError,
    DownstreamError,
    InvalidStateError,
    LockedError,
    NotFoundError,
    RecordUnavailableError,
    ValidationError,
)
from bankrec.services.events import record_event
from bankrec.services.matching_config import MatchingConfig, load_matching_config
from bankrec.services.patterns import PatternLearner, SqlPatternStore, pattern_statistics
from bankrec.services.transaction_store import get_transaction

logger = get_logger(__name__)

RESOLVABLE_STATUSES = (TransactionStatus.UNMATCHED, TransactionStatus.SUGGESTED)


# =============================================================================
# Ranking
# =============================================================================


def merge_candidates(candidates: Sequence[CandidateMatch], config: MatchingConfig) -> list[CandidateMatch]:
    """Collapse candidates targeting the same record.

    Within one source the best score wins. Scores from different sources are
    blended as ``1 - prod(1 - s/100)`` so agreement raises confidence while
    staying within 0-100.
    """
    per_record: dict[tuple[str, str], dict[MatchSource, CandidateMatch]] = {}
    for candidate in candidates:
        by_source = per_record.setdefault(candidate.key, {})
        current = by_source.get(candidate.source)
        if current is None or candidate.score > current.score:
            by_source[candidate.source] = candidate

    merged: list[CandidateMatch] = []
    for by_source in per_record.values():
        ordered = sorted(by_source.values(), key=lambda c: (-c.score, c.source.value))
        if len(ordered) == 1:
            merged.append(ordered[0])
            continue
        remaining = Decimal("1")
        for candidate in ordered:
            remaining *= Decimal("1") - Decimal(candidate.score) / Decimal("100")
        score = to_score(Decimal("100") * (Decimal("1") - remaining))
        dominant = ordered[0]
        merged.append(
            CandidateMatch(
                record=dominant.record,
                score=score,
                confidence=confidence_for(score, config),
                source=dominant.source,
                reasons=[reason for candidate in ordered for reason in candidate.reasons],
                rule_id=next((c.rule_id for c in ordered if c.rule_id is not None), None),
                requires_confirmation=any(c.requires_confirmation for c in ordered),
                sources=tuple(c.source for c in ordered),
            )
        )
    return merged


def rank_candidates(candidates: Sequence[CandidateMatch]) -> list[CandidateMatch]:
    """Score desc, then confidence tier, then most recent record date."""
    return sorted(
        candidates,
        key=lambda c: (
            -c.score,
            -c.tier_rank,
            -c.record.record_date.toordinal(),
            c.record.record_type,
            c.record.record_id,
        ),
    )


def should_auto_confirm(ranked: Sequence[CandidateMatch], config: MatchingConfig) -> bool:
    if not ranked:
        return False
    top = ranked[0]
    if top.score < config.auto_confirm_threshold or top.requires_confirmation:
        return False
    if len(ranked) > 1 and ranked[1].score >= top.score - config.tie_margin:
        return False
    return True


# =============================================================================
# Resolver
# =============================================================================


@dataclass
class ResolutionResult:
    transaction: BankTransaction
    auto_match: BankTransactionMatch | None = None
    suggestions: list[BankTransactionMatch] = field(default_factory=list)
    candidates: list[CandidateMatch] = field(default_factory=list)


def _now() -> datetime:
    return datetime.now(UTC)


class MatchResolver:
    """Per-request resolver bound to one session, actor and set of collaborators."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        user_id: UUID,
        sources: Sequence[RecordSource],
        learner: PatternLearner | None = None,
        config: MatchingConfig | None = None,
    ) -> None:
        self.db = db
        self.user_id = user_id
        self.sources = list(sources)
        self.config = config or load_matching_config()
        self.learner = learner or PatternLearner(SqlPatternStore(db, user_id), self.config)

    # -------------------------------------------------------------------------
    # Candidate pool
    # -------------------------------------------------------------------------

    async def _fetch_from(self, source: RecordSource, txn: BankTransaction) -> list[CandidateRecord]:
        try:
            return await asyncio.wait_for(source.fetch_candidates(txn), timeout=self.config.lookup_timeout_seconds)
        except TimeoutError:
            logger.warning(
                "Candidate lookup timed out",
                source=getattr(source, "name", type(source).__name__),
                transaction_id=str(txn.id),
                timeout_seconds=self.config.lookup_timeout_seconds,
            )
        except DownstreamError as exc:
            log_exception(
                logger,
                exc,
                "Candidate lookup failed",
                level="warning",
                include_traceback=False,
                source=getattr(source, "name", type(source).__name__),
                transaction_id=str(txn.id),
            )
        return []

    async def candidate_pool(self, txn: BankTransaction) -> list[CandidateRecord]:
        """Open records from every source; an unavailable source contributes nothing."""
        results = await asyncio.gather(*(self._fetch_from(source, txn) for source in self.sources))
        pool: dict[tuple[str, str], CandidateRecord] = {}
        for records in results:
            for record in records:
                pool.setdefault(record.key, record)
        return list(pool.values())

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    async def resolve(self, transaction_id: UUID) -> ResolutionResult:
        txn = await get_transaction(self.db, self.user_id, transaction_id)
        if txn.status not in RESOLVABLE_STATUSES:
            raise InvalidStateError(f"Transaction is {txn.status.value}; only unmatched or suggested lines resolve")
        if await self._pending_split(txn.id) is not None:
            raise InvalidStateError("Transaction has a manual split awaiting confirmation; confirm or reject it first")
        return await self._resolve(txn)

    async def _resolve(self, txn: BankTransaction) -> ResolutionResult:
        async with async_log_timing("resolve_transaction", logger=logger, transaction_id=str(txn.id)) as timing:
            pool = await self.candidate_pool(txn)
            rules = await rule_engine.list_rules(self.db, user_id=self.user_id, active_only=True)
            evaluation = rule_engine.evaluate(txn, pool, rules, self.config)

            if evaluation.tags:
                txn.category = evaluation.tags[0]

            candidates = list(evaluation.candidates)
            if evaluation.short_circuit_rule_id is None:
                candidates.extend(rule_engine.reference_candidates(txn, pool, self.config))
                candidates.extend(await self.learner.suggest(txn, pool))
            declined = await self._declined_records(txn.id)
            if declined:
                candidates = [c for c in candidates if c.key not in declined]
            await rule_engine.record_rule_hits(self.db, evaluation.matched_rule_ids, user_id=self.user_id)

            ranked = rank_candidates(merge_candidates(candidates, self.config))
            await self._supersede_suggestions(txn, include_splits=False)

            result = ResolutionResult(transaction=txn, candidates=ranked)
            remaining = ranked
            if should_auto_confirm(ranked, self.config):
                auto_match = await self._try_auto_confirm(txn, ranked[0])
                if auto_match is not None and auto_match.status == MatchStatus.AUTO_CONFIRMED:
                    result.auto_match = auto_match
                    timing.update(pool=len(pool), candidates=len(ranked), outcome="auto_confirmed")
                    return result
                if auto_match is not None:
                    result.suggestions.append(auto_match)
                remaining = ranked[1:]

            for candidate in remaining:
                if candidate.score < self.config.display_threshold:
                    continue
                match = self._match_from_candidate(txn, candidate)
                self.db.add(match)
                result.suggestions.append(match)

            txn.status = TransactionStatus.SUGGESTED if result.suggestions else TransactionStatus.UNMATCHED
            await self.db.flush()
            timing.update(
                pool=len(pool),
                candidates=len(ranked),
                suggestions=len(result.suggestions),
                outcome=txn.status.value,
            )
            return result

    async def resolve_unmatched(self, *, account_id: UUID | None = None, limit: int = 100) -> list[ResolutionResult]:
        """Resolve pending transactions one at a time, oldest first."""
        query = (
            select(BankTransaction)
            .join(BankAccount, BankAccount.id == BankTransaction.account_id)
            .where(BankAccount.user_id == self.user_id)
            .where(BankTransaction.status.in_(RESOLVABLE_STATUSES))
            .order_by(BankTransaction.txn_date, BankTransaction.created_at)
            .limit(limit)
        )
        if account_id:
            query = query.where(BankTransaction.account_id == account_id)
        txns = (await self.db.execute(query)).scalars().all()
        results = []
        for txn in txns:
            if await self._pending_split(txn.id) is not None:
                logger.info("Skipping transaction with pending manual split", transaction_id=str(txn.id))
                continue
            results.append(await self._resolve(txn))
        return results

    def _match_from_candidate(
        self,
        txn: BankTransaction,
        candidate: CandidateMatch,
        status: MatchStatus = MatchStatus.SUGGESTED,
    ) -> BankTransactionMatch:
        record = candidate.record
        return BankTransactionMatch(
            transaction_id=txn.id,
            record_type=record.record_type,
            record_id=record.record_id,
            record_date=record.record_date,
            record_amount=record.amount,
            record_label=(record.label or "")[:255] or None,
            matched_amount=min(txn.amount, record.amount),
            score=candidate.score,
            confidence=candidate.confidence,
            source=candidate.source,
            sources=[source.value for source in candidate.sources],
            reasons=list(candidate.reasons),
            rule_id=candidate.rule_id,
            status=status,
            is_split=False,
            needs_audit=False,
            version=1,
            splits=[],
        )

    async def _try_auto_confirm(self, txn: BankTransaction, candidate: CandidateMatch) -> BankTransactionMatch | None:
        """Commit the unique top candidate.

        A downstream failure leaves it as a suggestion; a record that no longer
        exists drops it entirely.
        """
        match = self._match_from_candidate(txn, candidate)
        self.db.add(match)
        await self.db.flush()
        try:
            await self._commit_confirmation(txn, match, MatchStatus.AUTO_CONFIRMED, actor=None)
        except RecordUnavailableError as exc:
            await self._flag_missing_record(txn, match, exc, actor=None)
            return None
        except DownstreamError as exc:
            log_exception(
                logger,
                exc,
                "Auto-confirm downstream update failed, keeping as suggestion",
                level="warning",
                include_traceback=False,
                transaction_id=str(txn.id),
                record_type=match.record_type,
                record_id=match.record_id,
            )
            return match
        logger.info(
            "Transaction auto-confirmed",
            transaction_id=str(txn.id),
            match_id=str(match.id),
            score=match.score,
            sources=match.sources,
        )
        return match

    # -------------------------------------------------------------------------
    # Downstream mutation
    # -------------------------------------------------------------------------

    @staticmethod
    def _reference_for(txn: BankTransaction) -> str:
        return txn.reference or str(txn.id)

    async def _apply(self, txn: BankTransaction, match: BankTransactionMatch) -> None:
        applied: list[tuple[str, str, int]] = []
        for record_type, record_id, amount in match.targets():
            source = find_source(self.sources, record_type)
            try:
                await source.apply_match(
                    record_type, record_id, amount=amount, transaction_reference=self._reference_for(txn)
                )
            except DownstreamError:
                await self._revert_targets(txn, match, applied)
                raise
            applied.append((record_type, record_id, amount))

    async def _revert_targets(
        self,
        txn: BankTransaction,
        match: BankTransactionMatch,
        targets: Sequence[tuple[str, str, int]],
    ) -> None:
        """Best-effort compensation; failures flag the match for audit."""
        for record_type, record_id, amount in targets:
            try:
                await find_source(self.sources, record_type).revert_match(
                    record_type, record_id, amount=amount, transaction_reference=self._reference_for(txn)
                )
            except DownstreamError as exc:
                match.needs_audit = True
                log_exception(
                    logger,
                    exc,
                    "Compensating revert failed",
                    transaction_id=str(txn.id),
                    match_id=str(match.id),
                    record_type=record_type,
                    record_id=record_id,
                )

    async def _commit_confirmation(
        self,
        txn: BankTransaction,
        match: BankTransactionMatch,
        status: MatchStatus,
        actor: UUID | None,
    ) -> None:
        """Mark confirmed, update the record service, then learn.

        Either all three happen or the match is left as a suggestion.
        """
        previous_status = txn.status
        match.status = status
        match.confirmed_by = actor
        match.confirmed_at = _now()
        match.version += 1
        txn.status = TransactionStatus.CONFIRMED
        txn.match_id = match.id
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise ConflictError("Transaction already has a confirmed match") from exc

        try:
            await self._apply(txn, match)
        except DownstreamError:
            self._restore_suggested(txn, match, previous_status)
            await self.db.flush()
            raise

        if match.is_split:
            return
        try:
            await self.learner.learn_confirmed(txn, match.record_type, match.record_label)
        except Exception as exc:
            log_exception(logger, exc, "Pattern learning failed, reverting confirmation", match_id=str(match.id))
            await self._revert_targets(txn, match, match.targets())
            self._restore_suggested(txn, match, previous_status)
            raise

    @staticmethod
    def _restore_suggested(
        txn: BankTransaction, match: BankTransactionMatch, previous_status: TransactionStatus
    ) -> None:
        match.status = MatchStatus.SUGGESTED
        match.confirmed_by = None
        match.confirmed_at = None
        match.version += 1
        txn.status = previous_status
        txn.match_id = None

    async def _flag_missing_record(
        self,
        txn: BankTransaction,
        match: BankTransactionMatch,
        exc: RecordUnavailableError,
        actor: UUID | None,
    ) -> None:
        match.status = MatchStatus.REJECTED
        match.needs_audit = True
        match.rejection_reason = f"Referenced record unavailable: {exc}"
        match.rejected_by = actor
        match.rejected_at = _now()
        match.version += 1
        txn.status = TransactionStatus.UNMATCHED
        txn.match_id = None
        await record_event(
            self.db,
            LedgerEventKind.AUDIT,
            {
                "reason": "record_unavailable",
                "transaction_id": str(txn.id),
                "match_id": str(match.id),
                "record_type": match.record_type,
                "record_id": match.record_id,
                "error": str(exc),
            },
            user_id=self.user_id,
        )
        logger.error(
            "Match references a record that no longer exists",
            transaction_id=str(txn.id),
            match_id=str(match.id),
            record_type=match.record_type,
            record_id=match.record_id,
        )

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def get_match(self, match_id: UUID) -> BankTransactionMatch:
        result = await self.db.execute(
            select(BankTransactionMatch)
            .join(BankTransaction, BankTransaction.id == BankTransactionMatch.transaction_id)
            .join(BankAccount, BankAccount.id == BankTransaction.account_id)
            .where(BankAccount.user_id == self.user_id)
            .where(BankTransactionMatch.id == match_id)
            .options(selectinload(BankTransactionMatch.transaction))
        )
        match = result.scalar_one_or_none()
        if not match:
            raise NotFoundError("Match not found")
        return match

    async def _matches_for(
        self,
        transaction_id: UUID,
        statuses: Sequence[MatchStatus],
        exclude: UUID | None = None,
    ) -> list[BankTransactionMatch]:
        query = (
            select(BankTransactionMatch)
            .where(BankTransactionMatch.transaction_id == transaction_id)
            .where(BankTransactionMatch.status.in_(statuses))
        )
        if exclude is not None:
            query = query.where(BankTransactionMatch.id != exclude)
        return list((await self.db.execute(query)).scalars().all())

    async def _supersede_suggestions(
        self,
        txn: BankTransaction,
        keep: UUID | None = None,
        *,
        include_splits: bool = True,
    ) -> None:
        for match in await self._matches_for(txn.id, [MatchStatus.SUGGESTED], exclude=keep):
            if match.is_split and not include_splits:
                continue
            match.status = MatchStatus.SUPERSEDED
            match.version += 1

    async def _pending_split(self, transaction_id: UUID) -> BankTransactionMatch | None:
        result = await self.db.execute(
            select(BankTransactionMatch)
            .where(BankTransactionMatch.transaction_id == transaction_id)
            .where(BankTransactionMatch.status == MatchStatus.SUGGESTED)
            .where(BankTransactionMatch.is_split.is_(True))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _declined_records(self, transaction_id: UUID) -> set[tuple[str, str]]:
        """Records already turned down for this transaction, by reviewer rejection or undo."""
        result = await self.db.execute(
            select(BankTransactionMatch.record_type, BankTransactionMatch.record_id)
            .where(BankTransactionMatch.transaction_id == transaction_id)
            .where(BankTransactionMatch.status.in_([MatchStatus.REJECTED, MatchStatus.UNMATCHED]))
            .where(BankTransactionMatch.record_id.is_not(None))
        )
        return {(record_type, record_id) for record_type, record_id in result.all()}

    async def _refresh_transaction_status(self, txn: BankTransaction) -> None:
        pending = await self._matches_for(txn.id, [MatchStatus.SUGGESTED])
        txn.status = TransactionStatus.SUGGESTED if pending else TransactionStatus.UNMATCHED

    @staticmethod
    def _ensure_unlocked(txn: BankTransaction) -> None:
        if txn.is_locked:
            raise LockedError("Transaction is locked by a completed reconciliation")

    def _validate_allocations(self, txn: BankTransaction, amounts: Sequence[int]) -> None:
        total = sum(amounts)
        if abs(total - txn.amount) > self.config.rounding_tolerance:
            raise ValidationError(
                f"Split amounts total {total} but the transaction amount is {txn.amount} "
                f"(tolerance {self.config.rounding_tolerance})"
            )

    # -------------------------------------------------------------------------
    # User actions
    # -------------------------------------------------------------------------

    async def confirm(self, match_id: UUID, *, actor: UUID) -> BankTransactionMatch:
        """Confirm a suggestion. Confirming an already-confirmed match is a no-op."""
        match = await self.get_match(match_id)
        if match.is_active:
            return match
        if match.status != MatchStatus.SUGGESTED:
            raise InvalidStateError(f"Cannot confirm a {match.status.value} match")

        txn = match.transaction
        self._ensure_unlocked(txn)
        if await self._matches_for(txn.id, ACTIVE_MATCH_STATUSES, exclude=match.id):
            raise ConflictError("Transaction already has a confirmed match")
        if match.is_split:
            self._validate_allocations(txn, [split.amount for split in match.splits])

        try:
            await self._commit_confirmation(txn, match, MatchStatus.CONFIRMED, actor=actor)
        except RecordUnavailableError as exc:
            await self._flag_missing_record(txn, match, exc, actor=actor)
            await self.db.flush()
            return match

        await self._supersede_suggestions(txn, keep=match.id)
        await self.db.flush()
        logger.info("Match confirmed", match_id=str(match.id), transaction_id=str(txn.id), actor=str(actor))
        return match

    async def reject(self, match_id: UUID, *, actor: UUID, reason: str | None = None) -> BankTransactionMatch:
        """Reject a suggestion. The next-ranked suggestion is not promoted."""
        match = await self.get_match(match_id)
        if match.status == MatchStatus.REJECTED:
            return match
        if match.status != MatchStatus.SUGGESTED:
            raise InvalidStateError(f"Cannot reject a {match.status.value} match")

        txn = match.transaction
        match.status = MatchStatus.REJECTED
        match.rejected_by = actor
        match.rejected_at = _now()
        match.rejection_reason = reason
        match.version += 1
        await self.db.flush()
        await self._refresh_transaction_status(txn)

        if not match.is_split:
            await self.learner.learn_rejected(txn, match.record_type, match.record_label)
        await self.db.flush()
        logger.info("Match rejected", match_id=str(match.id), transaction_id=str(txn.id), actor=str(actor))
        return match

    async def unmatch(self, match_id: UUID, *, actor: UUID, reason: str) -> BankTransactionMatch:
        """Undo a confirmed match whose transaction is not yet reconciled."""
        match = await self.get_match(match_id)
        if not match.is_active:
            raise InvalidStateError(f"Cannot unmatch a {match.status.value} match")
        txn = match.transaction
        self._ensure_unlocked(txn)

        for record_type, record_id, amount in match.targets():
            try:
                await find_source(self.sources, record_type).revert_match(
                    record_type, record_id, amount=amount, transaction_reference=self._reference_for(txn)
                )
            except RecordUnavailableError as exc:
                match.needs_audit = True
                log_exception(
                    logger,
                    exc,
                    "Record gone while unmatching",
                    level="warning",
                    include_traceback=False,
                    match_id=str(match.id),
                    record_type=record_type,
                    record_id=record_id,
                )

        match.status = MatchStatus.UNMATCHED
        match.rejected_by = actor
        match.rejected_at = _now()
        match.rejection_reason = reason
        match.version += 1
        txn.status = TransactionStatus.UNMATCHED
        txn.match_id = None
        await self.db.flush()

        if not match.is_split:
            await self.learner.learn_rejected(txn, match.record_type, match.record_label)
        await record_event(
            self.db,
            LedgerEventKind.AUDIT,
            {
                "reason": "unmatched",
                "transaction_id": str(txn.id),
                "match_id": str(match.id),
                "actor": str(actor),
                "note": reason,
            },
            user_id=self.user_id,
        )
        logger.info("Match undone", match_id=str(match.id), transaction_id=str(txn.id), actor=str(actor))
        return match

    async def create_split(
        self,
        transaction_id: UUID,
        allocations: Sequence[SplitAllocation],
        *,
        actor: UUID,
    ) -> BankTransactionMatch:
        """Register a manual allocation of one transaction across several records.

        Split matches are always created as suggestions and need an explicit
        confirmation.
        """
        txn = await get_transaction(self.db, self.user_id, transaction_id)
        self._ensure_unlocked(txn)
        if txn.status not in RESOLVABLE_STATUSES:
            raise InvalidStateError(f"Transaction is {txn.status.value}; unmatch it before splitting")
        self._validate_allocations(txn, [allocation.amount for allocation in allocations])

        targets = {(a.record_type, a.record_id) for a in allocations}
        if len(targets) != len(allocations):
            raise ValidationError("Each record may appear only once in a split")
        record_types = {a.record_type for a in allocations}

        match = BankTransactionMatch(
            transaction_id=txn.id,
            record_type=record_types.pop() if len(record_types) == 1 else "split",
            record_id=None,
            matched_amount=sum(a.amount for a in allocations),
            score=100,
            confidence=ConfidenceTier.EXACT,
            source=MatchSource.MANUAL,
            sources=[MatchSource.MANUAL.value],
            reasons=[f"Manual split across {len(allocations)} record(s)"],
            status=MatchStatus.SUGGESTED,
            is_split=True,
            needs_audit=False,
            version=1,
            splits=[
                MatchSplit(
                    position=position,
                    record_type=a.record_type,
                    record_id=a.record_id,
                    amount=a.amount,
                    note=a.note,
                )
                for position, a in enumerate(allocations)
            ],
        )
        self.db.add(match)
        txn.status = TransactionStatus.SUGGESTED
        await self.db.flush()
        logger.info(
            "Split match registered",
            match_id=str(match.id),
            transaction_id=str(txn.id),
            allocations=len(allocations),
            actor=str(actor),
        )
        return match


# =============================================================================
# Queries
# =============================================================================


def _owned_matches(user_id: UUID):
    return (
        select(BankTransactionMatch)
        .join(BankTransaction, BankTransaction.id == BankTransactionMatch.transaction_id)
        .join(BankAccount, BankAccount.id == BankTransaction.account_id)
        .where(BankAccount.user_id == user_id)
    )


async def list_matches(
    db: AsyncSession,
    *,
    user_id: UUID,
    status: MatchStatus | None = None,
    transaction_id: UUID | None = None,
    needs_audit: bool | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[BankTransactionMatch], int]:
    query = _owned_matches(user_id)
    if status:
        query = query.where(BankTransactionMatch.status == status)
    if transaction_id:
        query = query.where(BankTransactionMatch.transaction_id == transaction_id)
    if needs_audit is not None:
        query = query.where(BankTransactionMatch.needs_audit == needs_audit)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(
        query.order_by(BankTransactionMatch.created_at.desc(), BankTransactionMatch.id).limit(limit).offset(offset)
    )
    return list(result.scalars().all()), total


async def pending_suggestions(
    db: AsyncSession,
    *,
    user_id: UUID,
    account_id: UUID | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[BankTransactionMatch], int]:
    """Open suggestions, best first, for the review queue."""
    query = _owned_matches(user_id).where(BankTransactionMatch.status == MatchStatus.SUGGESTED)
    if account_id:
        query = query.where(BankTransaction.account_id == account_id)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(
        query.order_by(BankTransactionMatch.score.desc(), BankTransaction.txn_date, BankTransactionMatch.id)
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def matching_statistics(db: AsyncSession, *, user_id: UUID) -> dict:
    result = await db.execute(
        select(BankTransactionMatch.status, BankTransactionMatch.source, func.count(BankTransactionMatch.id))
        .join(BankTransaction, BankTransaction.id == BankTransactionMatch.transaction_id)
        .join(BankAccount, BankAccount.id == BankTransaction.account_id)
        .where(BankAccount.user_id == user_id)
        .group_by(BankTransactionMatch.status, BankTransactionMatch.source)
    )
    by_status: dict[str, int] = {}
    by_source: dict[str, int] = {}
    for status, source, count in result.all():
        by_status[status.value] = by_status.get(status.value, 0) + count
        by_source[source.value] = by_source.get(source.value, 0) + count

    auto = by_status.get(MatchStatus.AUTO_CONFIRMED.value, 0)
    confirmed = by_status.get(MatchStatus.CONFIRMED.value, 0) + auto
    rejected = by_status.get(MatchStatus.REJECTED.value, 0) + by_status.get(MatchStatus.UNMATCHED.value, 0)
    audit_count = await db.scalar(
        select(func.count()).select_from(
            _owned_matches(user_id).where(BankTransactionMatch.needs_audit.is_(True)).subquery()
        )
    )
    return {
        "total_matches": sum(by_status.values()),
        "by_status": by_status,
        "by_source": by_source,
        "auto_match_rate": round(auto / confirmed, 4) if confirmed else 0.0,
        "accuracy": round(confirmed / (confirmed + rejected), 4) if confirmed + rejected else 0.0,
        "pending_review": by_status.get(MatchStatus.SUGGESTED.value, 0),
        "needs_audit": audit_count or 0,
        "patterns": await pattern_statistics(db, user_id=user_id),
    }
