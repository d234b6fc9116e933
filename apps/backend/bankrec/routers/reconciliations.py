"""Reconciliation ledger API router."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from bankrec.deps import CurrentUserId, DbSession, MatchingConfigDep, TrustLedgerDep
from bankrec.models import ReconciliationStatus
from bankrec.schemas.reconciliation import (
    DiscrepancyResolve,
    DiscrepancyResponse,
    ReconciliationCreate,
    ReconciliationListResponse,
    ReconciliationReport,
    ReconciliationResponse,
    UnlockRequest,
)
from bankrec.services import ledger
from bankrec.services.errors import ReconciliationError
from bankrec.utils.exceptions import raise_domain_error

router = APIRouter(prefix="/reconciliations", tags=["reconciliations"])


@router.post("", response_model=ReconciliationResponse, status_code=status.HTTP_201_CREATED)
async def create_reconciliation(
    payload: ReconciliationCreate,
    db: DbSession,
    user_id: CurrentUserId,
) -> ReconciliationResponse:
    try:
        recon = await ledger.create_reconciliation(db, user_id, payload)
        await db.commit()
    except ReconciliationError as exc:
        await db.rollback()
        raise_domain_error(exc)
    return ReconciliationResponse.model_validate(recon)


@router.get("", response_model=ReconciliationListResponse)
async def list_reconciliations(
    db: DbSession,
    user_id: CurrentUserId,
    account_id: UUID | None = None,
    status_filter: ReconciliationStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> ReconciliationListResponse:
    items, total = await ledger.list_reconciliations(
        db, user_id, account_id=account_id, status=status_filter, limit=limit, offset=offset
    )
    return ReconciliationListResponse(
        items=[ReconciliationResponse.model_validate(recon) for recon in items],
        total=total,
    )


@router.get("/{reconciliation_id}", response_model=ReconciliationResponse)
async def get_reconciliation(
    reconciliation_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> ReconciliationResponse:
    try:
        recon = await ledger.get_reconciliation(db, user_id, reconciliation_id)
    except ReconciliationError as exc:
        raise_domain_error(exc)
    return ReconciliationResponse.model_validate(recon)


@router.get("/{reconciliation_id}/report", response_model=ReconciliationReport)
async def get_report(
    reconciliation_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> ReconciliationReport:
    """Cleared and outstanding lines with the current totals."""
    try:
        report = await ledger.reconciliation_report(db, user_id, reconciliation_id)
    except ReconciliationError as exc:
        raise_domain_error(exc)
    return ReconciliationReport.model_validate(report)


async def _transition(db, action, *args, **kwargs) -> ReconciliationResponse:
    try:
        recon = await action(db, *args, **kwargs)
        await db.commit()
    except ReconciliationError as exc:
        await db.rollback()
        raise_domain_error(exc)
    return ReconciliationResponse.model_validate(recon)


@router.post("/{reconciliation_id}/start", response_model=ReconciliationResponse)
async def start(reconciliation_id: UUID, db: DbSession, user_id: CurrentUserId) -> ReconciliationResponse:
    """Lock in the period and partition its transactions into cleared and outstanding."""
    return await _transition(db, ledger.start_reconciliation, user_id, reconciliation_id)


@router.post("/{reconciliation_id}/refresh", response_model=ReconciliationResponse)
async def refresh(reconciliation_id: UUID, db: DbSession, user_id: CurrentUserId) -> ReconciliationResponse:
    return await _transition(db, ledger.refresh_reconciliation, user_id, reconciliation_id)


@router.post("/{reconciliation_id}/items/{transaction_id}/clear", response_model=ReconciliationResponse)
async def clear_item(
    reconciliation_id: UUID,
    transaction_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> ReconciliationResponse:
    return await _transition(db, ledger.clear_item, user_id, reconciliation_id, transaction_id)


@router.post("/{reconciliation_id}/items/{transaction_id}/unclear", response_model=ReconciliationResponse)
async def unclear_item(
    reconciliation_id: UUID,
    transaction_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> ReconciliationResponse:
    return await _transition(db, ledger.unclear_item, user_id, reconciliation_id, transaction_id)


@router.post("/{reconciliation_id}/complete", response_model=ReconciliationResponse)
async def complete(
    reconciliation_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
    trust_ledger: TrustLedgerDep,
    config: MatchingConfigDep,
) -> ReconciliationResponse:
    """Close the period, or move it to exception with recorded discrepancies."""
    return await _transition(
        db,
        ledger.complete_reconciliation,
        user_id,
        reconciliation_id,
        actor=user_id,
        trust_ledger=trust_ledger,
        config=config,
    )


@router.post("/{reconciliation_id}/resume", response_model=ReconciliationResponse)
async def resume(reconciliation_id: UUID, db: DbSession, user_id: CurrentUserId) -> ReconciliationResponse:
    return await _transition(db, ledger.resume_reconciliation, user_id, reconciliation_id)


@router.post("/{reconciliation_id}/cancel", response_model=ReconciliationResponse)
async def cancel(reconciliation_id: UUID, db: DbSession, user_id: CurrentUserId) -> ReconciliationResponse:
    return await _transition(db, ledger.cancel_reconciliation, user_id, reconciliation_id)


@router.post("/{reconciliation_id}/unlock", response_model=ReconciliationResponse)
async def unlock(
    reconciliation_id: UUID,
    payload: UnlockRequest,
    db: DbSession,
    user_id: CurrentUserId,
) -> ReconciliationResponse:
    """Reopen a completed period. The reason is kept on the audit trail."""
    return await _transition(
        db, ledger.unlock_reconciliation, user_id, reconciliation_id, actor=user_id, reason=payload.reason
    )


@router.post(
    "/{reconciliation_id}/discrepancies/{discrepancy_id}/resolve",
    response_model=DiscrepancyResponse,
)
async def resolve_discrepancy(
    reconciliation_id: UUID,
    discrepancy_id: UUID,
    payload: DiscrepancyResolve,
    db: DbSession,
    user_id: CurrentUserId,
) -> DiscrepancyResponse:
    try:
        discrepancy = await ledger.resolve_discrepancy(
            db,
            user_id,
            reconciliation_id,
            discrepancy_id,
            actor=user_id,
            note=payload.note,
            category=payload.category,
        )
        await db.commit()
    except ReconciliationError as exc:
        await db.rollback()
        raise_domain_error(exc)
    return DiscrepancyResponse.model_validate(discrepancy)
