"""Bank transaction API router: statement import and lifecycle."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from bankrec.deps import CurrentUserId, DbSession
from bankrec.logger import get_logger
from bankrec.models import TransactionStatus
from bankrec.schemas.transactions import (
    BankTransactionListResponse,
    BankTransactionResponse,
    TransactionImportRequest,
    TransactionImportResponse,
    TransactionStatusSummary,
)
from bankrec.services import transaction_store
from bankrec.services.errors import ReconciliationError
from bankrec.utils.exceptions import raise_domain_error

router = APIRouter(prefix="/transactions", tags=["transactions"])
logger = get_logger(__name__)


@router.post("/import", response_model=TransactionImportResponse, status_code=status.HTTP_201_CREATED)
async def import_transactions(
    payload: TransactionImportRequest,
    db: DbSession,
    user_id: CurrentUserId,
) -> TransactionImportResponse:
    """Store a parsed statement batch; duplicates are skipped, not rejected."""
    try:
        result = await transaction_store.import_transactions(
            db, user_id, payload.account_id, payload.rows, source=payload.source
        )
        await db.commit()
    except ReconciliationError as exc:
        await db.rollback()
        raise_domain_error(exc)

    return TransactionImportResponse(
        batch_id=result.batch.id,
        imported_count=result.batch.imported_count,
        duplicate_count=result.batch.duplicate_count,
        duplicate_rows=result.duplicate_rows,
        transactions=[BankTransactionResponse.model_validate(txn) for txn in result.transactions],
    )


@router.get("", response_model=BankTransactionListResponse)
async def list_transactions(
    db: DbSession,
    user_id: CurrentUserId,
    account_id: UUID | None = None,
    status_filter: TransactionStatus | None = Query(None, alias="status"),
    date_from: date | None = None,
    date_to: date | None = None,
    min_amount: int | None = Query(None, ge=0),
    max_amount: int | None = Query(None, ge=0),
    search: str | None = Query(None, max_length=100),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> BankTransactionListResponse:
    items, total = await transaction_store.list_transactions(
        db,
        user_id,
        account_id=account_id,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        min_amount=min_amount,
        max_amount=max_amount,
        search=search,
        limit=limit,
        offset=offset,
    )
    return BankTransactionListResponse(
        items=[BankTransactionResponse.model_validate(txn) for txn in items],
        total=total,
    )


@router.get("/summary", response_model=TransactionStatusSummary)
async def transaction_summary(
    db: DbSession,
    user_id: CurrentUserId,
    account_id: UUID | None = None,
) -> TransactionStatusSummary:
    return await transaction_store.transaction_status_summary(db, user_id, account_id=account_id)


@router.get("/{transaction_id}", response_model=BankTransactionResponse)
async def get_transaction(
    transaction_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> BankTransactionResponse:
    try:
        txn = await transaction_store.get_transaction(db, user_id, transaction_id)
    except ReconciliationError as exc:
        raise_domain_error(exc)
    return BankTransactionResponse.model_validate(txn)


@router.post("/{transaction_id}/ignore", response_model=BankTransactionResponse)
async def ignore_transaction(
    transaction_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> BankTransactionResponse:
    try:
        txn = await transaction_store.ignore_transaction(db, user_id, transaction_id)
        await db.commit()
    except ReconciliationError as exc:
        await db.rollback()
        raise_domain_error(exc)
    return BankTransactionResponse.model_validate(txn)


@router.post("/{transaction_id}/restore", response_model=BankTransactionResponse)
async def restore_transaction(
    transaction_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> BankTransactionResponse:
    try:
        txn = await transaction_store.restore_transaction(db, user_id, transaction_id)
        await db.commit()
    except ReconciliationError as exc:
        await db.rollback()
        raise_domain_error(exc)
    return BankTransactionResponse.model_validate(txn)
