"""Transactional outbox for ledger, compliance and audit events."""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bankrec.config import settings
from bankrec.logger import get_logger
from bankrec.models import LedgerEvent, LedgerEventKind
from bankrec.services.collaborators import EventPublisher
from bankrec.services.errors import DownstreamError

logger = get_logger(__name__)


async def record_event(
    db: AsyncSession,
    kind: LedgerEventKind,
    payload: dict[str, Any],
    *,
    user_id: UUID,
) -> LedgerEvent:
    """Queue an event in the caller's transaction."""
    event = LedgerEvent(user_id=user_id, kind=kind, payload=payload, attempts=0)
    db.add(event)
    await db.flush()
    logger.info("Ledger event recorded", event_id=str(event.id), kind=kind.value)
    return event


async def list_pending_events(
    db: AsyncSession,
    *,
    user_id: UUID | None = None,
    limit: int = 100,
) -> list[LedgerEvent]:
    query = select(LedgerEvent).where(LedgerEvent.dispatched_at.is_(None))
    if user_id:
        query = query.where(LedgerEvent.user_id == user_id)
    result = await db.execute(query.order_by(LedgerEvent.created_at, LedgerEvent.id).limit(limit))
    return list(result.scalars().all())


async def dispatch_pending_events(
    db: AsyncSession,
    publisher: EventPublisher,
    *,
    user_id: UUID | None = None,
    limit: int = 100,
    max_attempts: int | None = None,
) -> dict[str, int]:
    """Publish undispatched events in creation order.

    A failed publish is counted and left pending for the next run. Once an
    event has failed ``max_attempts`` times it is no longer picked up; it stays
    in the pending list with its last error.
    """
    max_attempts = max_attempts or settings.event_max_attempts
    query = (
        select(LedgerEvent)
        .where(LedgerEvent.dispatched_at.is_(None))
        .where(LedgerEvent.attempts < max_attempts)
    )
    if user_id:
        query = query.where(LedgerEvent.user_id == user_id)
    result = await db.execute(query.order_by(LedgerEvent.created_at, LedgerEvent.id).limit(limit))

    sent = failed = abandoned = 0
    for event in result.scalars().all():
        event.attempts += 1
        try:
            await publisher.publish(event.kind.value, {"event_id": str(event.id), **event.payload})
        except DownstreamError as exc:
            event.last_error = str(exc)
            failed += 1
            gave_up = event.attempts >= max_attempts
            abandoned += gave_up
            log = logger.error if gave_up else logger.warning
            log(
                "Ledger event dispatch abandoned" if gave_up else "Ledger event dispatch failed",
                event_id=str(event.id),
                kind=event.kind.value,
                attempts=event.attempts,
                error=str(exc),
            )
            continue
        event.dispatched_at = datetime.now(UTC)
        event.last_error = None
        sent += 1
    await db.flush()
    if sent or failed:
        logger.info("Ledger events dispatched", sent=sent, failed=failed, abandoned=abandoned)
    return {"sent": sent, "failed": failed, "abandoned": abandoned}
