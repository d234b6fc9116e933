"""Match resolution API router: resolve, review queue and pattern insight."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from bankrec.deps import CurrentUserId, DbSession, MatchingConfigDep, RecordSources
from bankrec.logger import get_logger
from bankrec.models import MatchStatus, PatternType
from bankrec.schemas.matching import (
    MatchingStatistics,
    MatchListResponse,
    MatchResponse,
    PatternListResponse,
    PatternResponse,
    RejectRequest,
    ResolutionResponse,
    ResolveBatchRequest,
    ResolveBatchResponse,
    SplitMatchCreate,
    UnmatchRequest,
)
from bankrec.services.errors import ReconciliationError
from bankrec.services.patterns import list_patterns, pattern_statistics
from bankrec.services.resolver import (
    MatchResolver,
    ResolutionResult,
    list_matches,
    matching_statistics,
    pending_suggestions,
)
from bankrec.utils.exceptions import raise_domain_error

router = APIRouter(prefix="/matching", tags=["matching"])
logger = get_logger(__name__)


def _resolution_response(result: ResolutionResult) -> ResolutionResponse:
    return ResolutionResponse(
        transaction_id=result.transaction.id,
        transaction_status=result.transaction.status.value,
        category=result.transaction.category,
        auto_match=MatchResponse.model_validate(result.auto_match) if result.auto_match else None,
        suggestions=[MatchResponse.model_validate(match) for match in result.suggestions],
    )


@router.post("/transactions/{transaction_id}/resolve", response_model=ResolutionResponse)
async def resolve_transaction(
    transaction_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
    sources: RecordSources,
    config: MatchingConfigDep,
) -> ResolutionResponse:
    """Auto-confirm a unique strong candidate, or queue suggestions for review."""
    resolver = MatchResolver(db, user_id=user_id, sources=sources, config=config)
    try:
        result = await resolver.resolve(transaction_id)
        await db.commit()
    except ReconciliationError as exc:
        await db.rollback()
        raise_domain_error(exc)
    return _resolution_response(result)


@router.post("/resolve", response_model=ResolveBatchResponse)
async def resolve_unmatched(
    payload: ResolveBatchRequest,
    db: DbSession,
    user_id: CurrentUserId,
    sources: RecordSources,
    config: MatchingConfigDep,
) -> ResolveBatchResponse:
    resolver = MatchResolver(db, user_id=user_id, sources=sources, config=config)
    try:
        results = await resolver.resolve_unmatched(account_id=payload.account_id, limit=payload.limit)
        await db.commit()
    except ReconciliationError as exc:
        await db.rollback()
        raise_domain_error(exc)

    auto = sum(1 for r in results if r.auto_match is not None)
    suggested = sum(1 for r in results if r.auto_match is None and r.suggestions)
    logger.info("Batch resolution finished", processed=len(results), auto_matched=auto, suggested=suggested)
    return ResolveBatchResponse(
        processed=len(results),
        auto_matched=auto,
        suggested=suggested,
        unmatched=len(results) - auto - suggested,
    )


@router.get("/suggestions", response_model=MatchListResponse)
async def list_suggestions(
    db: DbSession,
    user_id: CurrentUserId,
    account_id: UUID | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> MatchListResponse:
    """Review queue: open suggestions, best first."""
    items, total = await pending_suggestions(db, user_id=user_id, account_id=account_id, limit=limit, offset=offset)
    return MatchListResponse(items=[MatchResponse.model_validate(m) for m in items], total=total)


@router.get("/matches", response_model=MatchListResponse)
async def get_matches(
    db: DbSession,
    user_id: CurrentUserId,
    status_filter: MatchStatus | None = Query(None, alias="status"),
    transaction_id: UUID | None = None,
    needs_audit: bool | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> MatchListResponse:
    items, total = await list_matches(
        db,
        user_id=user_id,
        status=status_filter,
        transaction_id=transaction_id,
        needs_audit=needs_audit,
        limit=limit,
        offset=offset,
    )
    return MatchListResponse(items=[MatchResponse.model_validate(m) for m in items], total=total)


@router.post("/matches/{match_id}/confirm", response_model=MatchResponse)
async def confirm_match(
    match_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
    sources: RecordSources,
    config: MatchingConfigDep,
) -> MatchResponse:
    resolver = MatchResolver(db, user_id=user_id, sources=sources, config=config)
    try:
        match = await resolver.confirm(match_id, actor=user_id)
        await db.commit()
    except ReconciliationError as exc:
        await db.rollback()
        raise_domain_error(exc)
    return MatchResponse.model_validate(match)


@router.post("/matches/{match_id}/reject", response_model=MatchResponse)
async def reject_match(
    match_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
    sources: RecordSources,
    config: MatchingConfigDep,
    payload: RejectRequest | None = None,
) -> MatchResponse:
    resolver = MatchResolver(db, user_id=user_id, sources=sources, config=config)
    try:
        match = await resolver.reject(match_id, actor=user_id, reason=payload.reason if payload else None)
        await db.commit()
    except ReconciliationError as exc:
        await db.rollback()
        raise_domain_error(exc)
    return MatchResponse.model_validate(match)


@router.post("/matches/{match_id}/unmatch", response_model=MatchResponse)
async def unmatch(
    match_id: UUID,
    payload: UnmatchRequest,
    db: DbSession,
    user_id: CurrentUserId,
    sources: RecordSources,
    config: MatchingConfigDep,
) -> MatchResponse:
    resolver = MatchResolver(db, user_id=user_id, sources=sources, config=config)
    try:
        match = await resolver.unmatch(match_id, actor=user_id, reason=payload.reason)
        await db.commit()
    except ReconciliationError as exc:
        await db.rollback()
        raise_domain_error(exc)
    return MatchResponse.model_validate(match)


@router.post("/splits", response_model=MatchResponse, status_code=status.HTTP_201_CREATED)
async def create_split(
    payload: SplitMatchCreate,
    db: DbSession,
    user_id: CurrentUserId,
    sources: RecordSources,
    config: MatchingConfigDep,
) -> MatchResponse:
    """Register a manual split; it still has to be confirmed."""
    resolver = MatchResolver(db, user_id=user_id, sources=sources, config=config)
    try:
        match = await resolver.create_split(payload.transaction_id, payload.allocations, actor=user_id)
        await db.commit()
    except ReconciliationError as exc:
        await db.rollback()
        raise_domain_error(exc)
    return MatchResponse.model_validate(match)


@router.get("/stats", response_model=MatchingStatistics)
async def stats(db: DbSession, user_id: CurrentUserId) -> MatchingStatistics:
    return MatchingStatistics(**await matching_statistics(db, user_id=user_id))


@router.get("/patterns", response_model=PatternListResponse)
async def get_patterns(
    db: DbSession,
    user_id: CurrentUserId,
    active_only: bool = False,
    pattern_type: PatternType | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> PatternListResponse:
    items, total = await list_patterns(
        db, user_id=user_id, active_only=active_only, pattern_type=pattern_type, limit=limit, offset=offset
    )
    return PatternListResponse(items=[PatternResponse.model_validate(p) for p in items], total=total)


@router.get("/patterns/stats")
async def get_pattern_stats(db: DbSession, user_id: CurrentUserId) -> dict:
    return await pattern_statistics(db, user_id=user_id)
