"""Bank account API router."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from bankrec.deps import CurrentUserId, DbSession
from bankrec.logger import get_logger
from bankrec.schemas.accounts import (
    BankAccountCreate,
    BankAccountListResponse,
    BankAccountResponse,
    BankAccountUpdate,
)
from bankrec.services import accounts as account_service
from bankrec.services.errors import ReconciliationError
from bankrec.utils.exceptions import raise_domain_error

router = APIRouter(prefix="/accounts", tags=["accounts"])
logger = get_logger(__name__)


@router.post("", response_model=BankAccountResponse, status_code=status.HTTP_201_CREATED)
async def create_account(
    account_data: BankAccountCreate,
    db: DbSession,
    user_id: CurrentUserId,
) -> BankAccountResponse:
    """Register a bank account. Trust accounts reconcile three-way."""
    account = await account_service.create_account(db, user_id, account_data)
    await db.commit()
    logger.info("Bank account created", account_id=str(account.id), is_trust=account.is_trust)
    return BankAccountResponse.model_validate(account)


@router.get("", response_model=BankAccountListResponse)
async def list_accounts(
    db: DbSession,
    user_id: CurrentUserId,
    is_active: bool | None = None,
    is_trust: bool | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> BankAccountListResponse:
    accounts, total = await account_service.list_accounts(
        db, user_id, is_active=is_active, is_trust=is_trust, limit=limit, offset=offset
    )
    return BankAccountListResponse(items=[BankAccountResponse.model_validate(a) for a in accounts], total=total)


@router.get("/{account_id}", response_model=BankAccountResponse)
async def get_account(
    account_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> BankAccountResponse:
    try:
        account = await account_service.get_account(db, user_id, account_id)
    except ReconciliationError as exc:
        logger.debug("Bank account not found", account_id=str(account_id))
        raise_domain_error(exc)
    return BankAccountResponse.model_validate(account)


@router.patch("/{account_id}", response_model=BankAccountResponse)
async def update_account(
    account_id: UUID,
    account_data: BankAccountUpdate,
    db: DbSession,
    user_id: CurrentUserId,
) -> BankAccountResponse:
    try:
        account = await account_service.update_account(db, user_id, account_id, account_data)
        await db.commit()
    except ReconciliationError as exc:
        await db.rollback()
        raise_domain_error(exc)
    return BankAccountResponse.model_validate(account)
