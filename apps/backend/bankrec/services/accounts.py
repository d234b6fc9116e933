"""Bank account management service."""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bankrec.models import BankAccount
from bankrec.schemas.accounts import BankAccountCreate, BankAccountUpdate
from bankrec.services.errors import NotFoundError


async def create_account(db: AsyncSession, user_id: UUID, account_data: BankAccountCreate) -> BankAccount:
    account = BankAccount(
        user_id=user_id,
        name=account_data.name,
        currency=account_data.currency,
        institution=account_data.institution,
        account_number_mask=account_data.account_number_mask,
        is_trust=account_data.is_trust,
        is_active=True,
    )
    db.add(account)
    await db.flush()
    await db.refresh(account)
    return account


async def list_accounts(
    db: AsyncSession,
    user_id: UUID,
    is_active: bool | None = None,
    is_trust: bool | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[BankAccount], int]:
    base_query = select(BankAccount).where(BankAccount.user_id == user_id)
    if is_active is not None:
        base_query = base_query.where(BankAccount.is_active == is_active)
    if is_trust is not None:
        base_query = base_query.where(BankAccount.is_trust == is_trust)

    total = await db.scalar(select(func.count()).select_from(base_query.subquery())) or 0
    result = await db.execute(base_query.order_by(BankAccount.name).limit(limit).offset(offset))
    return list(result.scalars().all()), total


async def get_account(db: AsyncSession, user_id: UUID, account_id: UUID) -> BankAccount:
    result = await db.execute(
        select(BankAccount).where(BankAccount.id == account_id).where(BankAccount.user_id == user_id)
    )
    account = result.scalar_one_or_none()
    if not account:
        raise NotFoundError("Bank account not found")
    return account


async def update_account(
    db: AsyncSession, user_id: UUID, account_id: UUID, account_data: BankAccountUpdate
) -> BankAccount:
    account = await get_account(db, user_id, account_id)
    for field, value in account_data.model_dump(exclude_unset=True).items():
        setattr(account, field, value)
    await db.flush()
    await db.refresh(account)
    return account
