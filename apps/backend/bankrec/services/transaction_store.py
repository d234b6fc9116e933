"""Transaction store: statement imports and the transaction lifecycle."""

import hashlib
from dataclasses import dataclass, field
from datetime import date
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from bankrec.logger import get_logger
from bankrec.models import BankAccount, BankTransaction, ImportBatch, TransactionStatus
from bankrec.schemas.transactions import (
    AccountStatusSummary,
    TransactionImportRow,
    TransactionStatusSummary,
)
from bankrec.services.accounts import get_account
from bankrec.services.errors import InvalidStateError, LockedError, NotFoundError, ValidationError

logger = get_logger(__name__)


def calculate_natural_key(account_id: UUID, txn_date: date, amount: int, reference: str | None) -> str:
    """Duplicate-detection key for a statement line.

    Hash = SHA256(account_id|date|amount|reference)
    """
    components = [
        str(account_id),
        txn_date.isoformat(),
        str(amount),
        (reference or "").strip(),
    ]
    return hashlib.sha256("|".join(components).encode("utf-8")).hexdigest()


@dataclass
class ImportResult:
    batch: ImportBatch
    transactions: list[BankTransaction] = field(default_factory=list)
    duplicate_rows: list[int] = field(default_factory=list)


async def import_transactions(
    db: AsyncSession,
    user_id: UUID,
    account_id: UUID,
    rows: list[TransactionImportRow],
    source: str | None = None,
) -> ImportResult:
    """Store a batch of parsed statement lines, skipping duplicates.

    A row is a duplicate when its natural key was already seen earlier in the
    batch or is already stored for the account.
    """
    account = await get_account(db, user_id, account_id)
    if not account.is_active:
        raise ValidationError("Cannot import into an inactive account")

    keys = [calculate_natural_key(account.id, row.txn_date, row.amount, row.reference) for row in rows]
    existing_result = await db.execute(
        select(BankTransaction.natural_key)
        .where(BankTransaction.account_id == account.id)
        .where(BankTransaction.natural_key.in_(set(keys)))
    )
    seen: set[str] = set(existing_result.scalars().all())

    batch = ImportBatch(account_id=account.id, source=source, imported_count=0, duplicate_count=0)
    db.add(batch)
    await db.flush()

    result = ImportResult(batch=batch)
    for position, (row, key) in enumerate(zip(rows, keys, strict=True)):
        if key in seen:
            result.duplicate_rows.append(position)
            continue
        seen.add(key)
        currency = row.currency or account.currency
        if currency != account.currency and row.exchange_rate is None:
            raise ValidationError(f"Row {position}: {currency} line needs an exchange rate into {account.currency}")
        txn = BankTransaction(
            account_id=account.id,
            import_batch_id=batch.id,
            txn_date=row.txn_date,
            direction=row.direction,
            amount=row.amount,
            currency=currency,
            exchange_rate=row.exchange_rate,
            description=row.description.strip(),
            reference=row.reference.strip() if row.reference else None,
            natural_key=key,
            status=TransactionStatus.UNMATCHED,
        )
        db.add(txn)
        result.transactions.append(txn)

    batch.imported_count = len(result.transactions)
    batch.duplicate_count = len(result.duplicate_rows)
    await db.flush()

    logger.info(
        "Statement batch imported",
        batch_id=str(batch.id),
        account_id=str(account.id),
        imported=batch.imported_count,
        duplicates=batch.duplicate_count,
    )
    return result


def _owned_transactions(user_id: UUID):
    return (
        select(BankTransaction)
        .join(BankAccount, BankAccount.id == BankTransaction.account_id)
        .where(BankAccount.user_id == user_id)
    )


async def get_transaction(db: AsyncSession, user_id: UUID, transaction_id: UUID) -> BankTransaction:
    result = await db.execute(_owned_transactions(user_id).where(BankTransaction.id == transaction_id))
    txn = result.scalar_one_or_none()
    if not txn:
        raise NotFoundError("Transaction not found")
    return txn


async def list_transactions(
    db: AsyncSession,
    user_id: UUID,
    account_id: UUID | None = None,
    status: TransactionStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    min_amount: int | None = None,
    max_amount: int | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[BankTransaction], int]:
    query = _owned_transactions(user_id)
    if account_id:
        query = query.where(BankTransaction.account_id == account_id)
    if status:
        query = query.where(BankTransaction.status == status)
    if date_from:
        query = query.where(BankTransaction.txn_date >= date_from)
    if date_to:
        query = query.where(BankTransaction.txn_date <= date_to)
    if min_amount is not None:
        query = query.where(BankTransaction.amount >= min_amount)
    if max_amount is not None:
        query = query.where(BankTransaction.amount <= max_amount)
    if search:
        safe = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{safe}%"
        query = query.where(
            or_(
                BankTransaction.description.ilike(pattern, escape="\\"),
                BankTransaction.reference.ilike(pattern, escape="\\"),
            )
        )

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(
        query.order_by(BankTransaction.txn_date.desc(), BankTransaction.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def ignore_transaction(db: AsyncSession, user_id: UUID, transaction_id: UUID) -> BankTransaction:
    """Exclude an unmatched line (bank fee, internal sweep) from matching."""
    txn = await get_transaction(db, user_id, transaction_id)
    if txn.is_locked:
        raise LockedError("Transaction is locked by a completed reconciliation")
    if txn.status != TransactionStatus.UNMATCHED:
        raise InvalidStateError(f"Only unmatched transactions can be ignored (status is {txn.status.value})")
    txn.status = TransactionStatus.IGNORED
    await db.flush()
    return txn


async def restore_transaction(db: AsyncSession, user_id: UUID, transaction_id: UUID) -> BankTransaction:
    txn = await get_transaction(db, user_id, transaction_id)
    if txn.status != TransactionStatus.IGNORED:
        raise InvalidStateError(f"Only ignored transactions can be restored (status is {txn.status.value})")
    txn.status = TransactionStatus.UNMATCHED
    await db.flush()
    return txn


async def transaction_status_summary(
    db: AsyncSession,
    user_id: UUID,
    account_id: UUID | None = None,
) -> TransactionStatusSummary:
    """Per-account counts by status with match and reconciliation rates.

    Ignored lines are left out of both rates.
    """
    query = (
        select(BankTransaction.account_id, BankTransaction.status, func.count(BankTransaction.id))
        .join(BankAccount, BankAccount.id == BankTransaction.account_id)
        .where(BankAccount.user_id == user_id)
        .group_by(BankTransaction.account_id, BankTransaction.status)
    )
    if account_id:
        query = query.where(BankTransaction.account_id == account_id)
    result = await db.execute(query)

    counts: dict[UUID, dict[str, int]] = {}
    for acct_id, status, count in result.all():
        counts.setdefault(acct_id, {})[status.value] = count

    summaries = []
    for acct_id, by_status in sorted(counts.items(), key=lambda item: str(item[0])):
        total = sum(by_status.values())
        considered = total - by_status.get(TransactionStatus.IGNORED.value, 0)
        matched = by_status.get(TransactionStatus.CONFIRMED.value, 0) + by_status.get(
            TransactionStatus.RECONCILED.value, 0
        )
        reconciled = by_status.get(TransactionStatus.RECONCILED.value, 0)
        summaries.append(
            AccountStatusSummary(
                account_id=acct_id,
                total=total,
                by_status=by_status,
                match_rate=round(matched / considered, 4) if considered else 0.0,
                reconciliation_rate=round(reconciled / considered, 4) if considered else 0.0,
            )
        )
    return TransactionStatusSummary(accounts=summaries)
