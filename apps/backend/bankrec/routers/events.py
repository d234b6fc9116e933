"""Outbox API router."""

from fastapi import APIRouter, Query

from bankrec.deps import CurrentUserId, DbSession, EventPublisherDep
from bankrec.schemas.events import DispatchResult, LedgerEventResponse
from bankrec.services.events import dispatch_pending_events, list_pending_events
from bankrec.utils.exceptions import raise_service_unavailable

router = APIRouter(prefix="/events", tags=["events"])


@router.get("/pending", response_model=list[LedgerEventResponse])
async def pending_events(
    db: DbSession,
    user_id: CurrentUserId,
    limit: int = Query(100, ge=1, le=1000),
) -> list[LedgerEventResponse]:
    events = await list_pending_events(db, user_id=user_id, limit=limit)
    return [LedgerEventResponse.model_validate(event) for event in events]


@router.post("/dispatch", response_model=DispatchResult)
async def dispatch_events(
    db: DbSession,
    user_id: CurrentUserId,
    publisher: EventPublisherDep,
    limit: int = Query(100, ge=1, le=1000),
) -> DispatchResult:
    """Deliver the caller's queued ledger, compliance and audit events."""
    if publisher is None:
        raise_service_unavailable("Event publisher is not configured")
    result = await dispatch_pending_events(db, publisher, user_id=user_id, limit=limit)
    await db.commit()
    return DispatchResult(**result)
