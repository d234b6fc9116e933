"""Reconciliation ledger: statement-period closing, including three-way trust checks.

State machine::

    pending -> in_progress -> completed
                    |    ^          |
                    v    |          | unlock (audited)
                 exception          v
                               in_progress

``cancelled`` is reachable from pending and in_progress. Completion requires
a zero difference between statement and book balance (within the rounding
tolerance); trust accounts must also tie to the client sub-ledgers.
"""

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bankrec.logger import get_logger
from bankrec.models import (
    ACTIVE_MATCH_STATUSES,
    OPEN_RECONCILIATION_STATUSES,
    BankReconciliation,
    BankTransaction,
    BankTransactionMatch,
    DiscrepancyCategory,
    DiscrepancyKind,
    LedgerEventKind,
    ReconciliationDiscrepancy,
    ReconciliationItem,
    ReconciliationStatus,
    ThreeWayReconciliation,
    TransactionDirection,
    TransactionStatus,
)
from bankrec.schemas.reconciliation import ReconciliationCreate
from bankrec.services.accounts import get_account
from bankrec.services.collaborators import TrustLedger
from bankrec.services.errors import (
    ConflictError,
    DownstreamError,
    InvalidStateError,
    NotFoundError,
)
from bankrec.services.events import record_event
from bankrec.services.matching_config import MatchingConfig, load_matching_config

logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


def _require_status(recon: BankReconciliation, *allowed: ReconciliationStatus) -> None:
    if recon.status not in allowed:
        names = ", ".join(status.value for status in allowed)
        raise InvalidStateError(f"Reconciliation is {recon.status.value}; expected one of: {names}")


def categorize_discrepancy(
    gap: int,
    *,
    outstanding_net: int,
    is_trust: bool,
    bank_balance: int,
    client_total: int | None,
) -> DiscrepancyCategory:
    """Best-guess category for a balance gap.

    - timing: the gap is exactly the net of the outstanding items
    - fraud_suspect: trust account holding less than its clients are owed
    - error: gap divisible by 9 (digit transposition)
    - unknown: anything else
    """
    if gap != 0 and gap == outstanding_net:
        return DiscrepancyCategory.TIMING
    if is_trust and client_total is not None and bank_balance < client_total:
        return DiscrepancyCategory.FRAUD_SUSPECT
    if gap != 0 and gap % 9 == 0:
        return DiscrepancyCategory.ERROR
    return DiscrepancyCategory.UNKNOWN


# =============================================================================
# Lookups
# =============================================================================


async def get_reconciliation(db: AsyncSession, user_id: UUID, reconciliation_id: UUID) -> BankReconciliation:
    result = await db.execute(
        select(BankReconciliation)
        .where(BankReconciliation.id == reconciliation_id)
        .where(BankReconciliation.user_id == user_id)
        .options(
            selectinload(BankReconciliation.items),
            selectinload(BankReconciliation.discrepancies),
        )
    )
    recon = result.scalar_one_or_none()
    if not recon:
        raise NotFoundError("Reconciliation not found")
    return recon


async def list_reconciliations(
    db: AsyncSession,
    user_id: UUID,
    account_id: UUID | None = None,
    status: ReconciliationStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[BankReconciliation], int]:
    query = select(BankReconciliation).where(BankReconciliation.user_id == user_id)
    if account_id:
        query = query.where(BankReconciliation.account_id == account_id)
    if status:
        query = query.where(BankReconciliation.status == status)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(
        query.options(selectinload(BankReconciliation.discrepancies))
        .order_by(BankReconciliation.period_end.desc(), BankReconciliation.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


# =============================================================================
# Partition
# =============================================================================


async def _period_transactions(db: AsyncSession, recon: BankReconciliation) -> list[BankTransaction]:
    result = await db.execute(
        select(BankTransaction)
        .where(BankTransaction.account_id == recon.account_id)
        .where(BankTransaction.txn_date >= recon.period_start)
        .where(BankTransaction.txn_date <= recon.period_end)
        .where(BankTransaction.status != TransactionStatus.IGNORED)
        .where(
            (BankTransaction.reconciliation_id.is_(None)) | (BankTransaction.reconciliation_id == recon.id)
        )
        .order_by(BankTransaction.txn_date, BankTransaction.created_at)
    )
    return list(result.scalars().all())


async def _cleared_transaction_ids(db: AsyncSession, recon: BankReconciliation, txn_ids: list[UUID]) -> set[UUID]:
    """Transactions whose confirmed match is dated on or before the period end."""
    if not txn_ids:
        return set()
    result = await db.execute(
        select(BankTransactionMatch.transaction_id, BankTransactionMatch.record_date)
        .where(BankTransactionMatch.transaction_id.in_(txn_ids))
        .where(BankTransactionMatch.status.in_(ACTIVE_MATCH_STATUSES))
    )
    return {
        txn_id for txn_id, record_date in result.all() if record_date is None or record_date <= recon.period_end
    }


def _recompute_totals(recon: BankReconciliation) -> None:
    cleared_credits = cleared_debits = outstanding_credits = outstanding_debits = 0
    for item in recon.items:
        txn = item.transaction
        is_credit = txn.direction == TransactionDirection.CREDIT
        if item.is_cleared:
            if is_credit:
                cleared_credits += txn.amount
            else:
                cleared_debits += txn.amount
        elif is_credit:
            outstanding_credits += txn.amount
        else:
            outstanding_debits += txn.amount

    recon.cleared_credits = cleared_credits
    recon.cleared_debits = cleared_debits
    recon.outstanding_credits = outstanding_credits
    recon.outstanding_debits = outstanding_debits
    recon.book_balance = recon.opening_balance + cleared_credits - cleared_debits
    recon.difference = recon.statement_balance - recon.book_balance


async def _partition(db: AsyncSession, recon: BankReconciliation) -> None:
    """Split the period's transactions into cleared and outstanding items.

    Manual overrides survive a re-partition.
    """
    txns = await _period_transactions(db, recon)
    cleared_ids = await _cleared_transaction_ids(db, recon, [txn.id for txn in txns])
    txn_by_id = {txn.id: txn for txn in txns}

    for item in list(recon.items):
        if item.transaction_id not in txn_by_id:
            recon.items.remove(item)

    items_by_txn = {item.transaction_id: item for item in recon.items}
    for txn in txns:
        item = items_by_txn.get(txn.id)
        if item is None:
            item = ReconciliationItem(transaction_id=txn.id, transaction=txn, is_cleared=False, is_manual=False)
            recon.items.append(item)
        if not item.is_manual:
            item.is_cleared = txn.id in cleared_ids

    _recompute_totals(recon)
    await db.flush()


# =============================================================================
# Transitions
# =============================================================================


async def create_reconciliation(
    db: AsyncSession,
    user_id: UUID,
    data: ReconciliationCreate,
) -> BankReconciliation:
    """Open a pending reconciliation; trust accounts always get the three-way variant."""
    account = await get_account(db, user_id, data.account_id)

    existing = await db.scalar(
        select(func.count(BankReconciliation.id))
        .where(BankReconciliation.account_id == account.id)
        .where(BankReconciliation.period_start == data.period_start)
        .where(BankReconciliation.period_end == data.period_end)
        .where(BankReconciliation.status.in_(OPEN_RECONCILIATION_STATUSES))
    )
    if existing:
        raise ConflictError("An open reconciliation already exists for this account and period")

    model = ThreeWayReconciliation if account.is_trust else BankReconciliation
    # three-way balances start loaded; the API serializes them
    extra = {"client_ledger_balance": None, "client_balances": None} if account.is_trust else {}
    recon = model(
        user_id=user_id,
        account_id=account.id,
        period_start=data.period_start,
        period_end=data.period_end,
        opening_balance=data.opening_balance,
        statement_balance=data.statement_balance,
        cleared_credits=0,
        cleared_debits=0,
        outstanding_credits=0,
        outstanding_debits=0,
        book_balance=data.opening_balance,
        difference=data.statement_balance - data.opening_balance,
        status=ReconciliationStatus.PENDING,
        notes=data.notes,
        reopen_count=0,
        version=1,
        items=[],
        discrepancies=[],
        **extra,
    )
    db.add(recon)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise ConflictError("An open reconciliation already exists for this account and period") from exc

    logger.info(
        "Reconciliation created",
        reconciliation_id=str(recon.id),
        account_id=str(account.id),
        kind=recon.kind,
        period_start=data.period_start.isoformat(),
        period_end=data.period_end.isoformat(),
    )
    return recon


async def start_reconciliation(db: AsyncSession, user_id: UUID, reconciliation_id: UUID) -> BankReconciliation:
    recon = await get_reconciliation(db, user_id, reconciliation_id)
    _require_status(recon, ReconciliationStatus.PENDING)
    recon.status = ReconciliationStatus.IN_PROGRESS
    recon.started_at = _now()
    recon.version += 1
    await _partition(db, recon)
    return recon


async def refresh_reconciliation(db: AsyncSession, user_id: UUID, reconciliation_id: UUID) -> BankReconciliation:
    """Re-partition after matches changed."""
    recon = await get_reconciliation(db, user_id, reconciliation_id)
    _require_status(recon, ReconciliationStatus.IN_PROGRESS)
    await _partition(db, recon)
    return recon


async def _set_item_cleared(
    db: AsyncSession,
    user_id: UUID,
    reconciliation_id: UUID,
    transaction_id: UUID,
    cleared: bool,
) -> BankReconciliation:
    recon = await get_reconciliation(db, user_id, reconciliation_id)
    _require_status(recon, ReconciliationStatus.IN_PROGRESS)
    item = next((item for item in recon.items if item.transaction_id == transaction_id), None)
    if item is None:
        raise NotFoundError("Transaction is not part of this reconciliation")
    item.is_cleared = cleared
    item.is_manual = True
    recon.version += 1
    _recompute_totals(recon)
    await db.flush()
    return recon


async def clear_item(
    db: AsyncSession, user_id: UUID, reconciliation_id: UUID, transaction_id: UUID
) -> BankReconciliation:
    return await _set_item_cleared(db, user_id, reconciliation_id, transaction_id, True)


async def unclear_item(
    db: AsyncSession, user_id: UUID, reconciliation_id: UUID, transaction_id: UUID
) -> BankReconciliation:
    return await _set_item_cleared(db, user_id, reconciliation_id, transaction_id, False)


def _outstanding_net(recon: BankReconciliation) -> int:
    return recon.outstanding_credits - recon.outstanding_debits


def _add_discrepancy(
    recon: BankReconciliation,
    kind: DiscrepancyKind,
    gap: int,
    description: str,
    client_total: int | None,
) -> ReconciliationDiscrepancy:
    discrepancy = ReconciliationDiscrepancy(
        kind=kind,
        category=categorize_discrepancy(
            gap,
            outstanding_net=_outstanding_net(recon),
            is_trust=recon.is_three_way,
            bank_balance=recon.statement_balance,
            client_total=client_total,
        ),
        amount=gap,
        description=description,
        is_resolved=False,
    )
    recon.discrepancies.append(discrepancy)
    return discrepancy


async def complete_reconciliation(
    db: AsyncSession,
    user_id: UUID,
    reconciliation_id: UUID,
    *,
    actor: UUID,
    trust_ledger: TrustLedger | None = None,
    config: MatchingConfig | None = None,
) -> BankReconciliation:
    """Close the period or record why it cannot close.

    A gap beyond the rounding tolerance moves the reconciliation to
    ``exception`` with a recorded discrepancy; it is never forced through.
    """
    config = config or load_matching_config()
    recon = await get_reconciliation(db, user_id, reconciliation_id)
    _require_status(recon, ReconciliationStatus.IN_PROGRESS, ReconciliationStatus.EXCEPTION)
    await _partition(db, recon)

    # Earlier findings are replaced by this attempt's findings.
    for previous in recon.discrepancies:
        if not previous.is_resolved:
            previous.is_resolved = True
            previous.resolved_by = actor
            previous.resolved_at = _now()
            previous.resolution_note = "Superseded by a later completion attempt"

    tolerance = config.rounding_tolerance
    client_total: int | None = None
    if isinstance(recon, ThreeWayReconciliation):
        if trust_ledger is None:
            raise DownstreamError("Trust ledger is not configured; three-way reconciliation cannot complete")
        balances = await trust_ledger.client_balances(str(recon.account_id))
        client_total = sum(balance.balance for balance in balances)
        recon.client_ledger_balance = client_total
        recon.client_balances = [
            {"client_id": balance.client_id, "name": balance.name, "balance": balance.balance} for balance in balances
        ]

    findings: list[ReconciliationDiscrepancy] = []
    if abs(recon.difference) > tolerance:
        findings.append(
            _add_discrepancy(
                recon,
                DiscrepancyKind.BANK_TO_BOOK,
                recon.difference,
                f"Statement balance {recon.statement_balance} differs from book balance {recon.book_balance}",
                client_total,
            )
        )
    if client_total is not None and abs(recon.book_balance - client_total) > tolerance:
        findings.append(
            _add_discrepancy(
                recon,
                DiscrepancyKind.BOOK_TO_CLIENT,
                recon.book_balance - client_total,
                f"Book balance {recon.book_balance} differs from client ledger total {client_total}",
                client_total,
            )
        )

    recon.version += 1
    if findings:
        recon.status = ReconciliationStatus.EXCEPTION
        await db.flush()
        if recon.is_three_way:
            await record_event(
                db,
                LedgerEventKind.BREACH_ALERT,
                {
                    "reconciliation_id": str(recon.id),
                    "account_id": str(recon.account_id),
                    "period_end": recon.period_end.isoformat(),
                    "bank_balance": recon.statement_balance,
                    "book_balance": recon.book_balance,
                    "client_ledger_balance": client_total,
                    "discrepancies": [
                        {"kind": d.kind.value, "category": d.category.value, "amount": d.amount} for d in findings
                    ],
                },
                user_id=user_id,
            )
        logger.warning(
            "Reconciliation blocked by discrepancies",
            reconciliation_id=str(recon.id),
            three_way=recon.is_three_way,
            difference=recon.difference,
            client_ledger_balance=client_total,
            discrepancies=[(d.kind.value, d.amount, d.category.value) for d in findings],
        )
        return recon

    recon.status = ReconciliationStatus.COMPLETED
    recon.completed_at = _now()
    recon.completed_by = actor
    for item in recon.items:
        if item.is_cleared:
            item.transaction.status = TransactionStatus.RECONCILED
            item.transaction.reconciliation_id = recon.id
    await db.flush()

    await record_event(
        db,
        LedgerEventKind.GL_POSTING,
        {
            "reconciliation_id": str(recon.id),
            "account_id": str(recon.account_id),
            "period_start": recon.period_start.isoformat(),
            "period_end": recon.period_end.isoformat(),
            "opening_balance": recon.opening_balance,
            "cleared_credits": recon.cleared_credits,
            "cleared_debits": recon.cleared_debits,
            "closing_balance": recon.book_balance,
        },
        user_id=user_id,
    )
    if recon.is_three_way:
        await record_event(
            db,
            LedgerEventKind.TRUST_COMPLIANCE,
            {
                "reconciliation_id": str(recon.id),
                "account_id": str(recon.account_id),
                "period_end": recon.period_end.isoformat(),
                "bank_balance": recon.statement_balance,
                "book_balance": recon.book_balance,
                "client_ledger_balance": client_total,
                "client_count": len(recon.client_balances or []),
            },
            user_id=user_id,
        )
    logger.info(
        "Reconciliation completed",
        reconciliation_id=str(recon.id),
        three_way=recon.is_three_way,
        cleared=sum(1 for item in recon.items if item.is_cleared),
        outstanding=sum(1 for item in recon.items if not item.is_cleared),
    )
    return recon


async def resume_reconciliation(db: AsyncSession, user_id: UUID, reconciliation_id: UUID) -> BankReconciliation:
    """Return an exception back to in_progress for further work."""
    recon = await get_reconciliation(db, user_id, reconciliation_id)
    _require_status(recon, ReconciliationStatus.EXCEPTION)
    recon.status = ReconciliationStatus.IN_PROGRESS
    recon.version += 1
    await db.flush()
    return recon


async def cancel_reconciliation(db: AsyncSession, user_id: UUID, reconciliation_id: UUID) -> BankReconciliation:
    """Abandon the reconciliation. Matches are left untouched."""
    recon = await get_reconciliation(db, user_id, reconciliation_id)
    _require_status(recon, ReconciliationStatus.PENDING, ReconciliationStatus.IN_PROGRESS)
    recon.status = ReconciliationStatus.CANCELLED
    recon.cancelled_at = _now()
    recon.version += 1
    await db.flush()
    logger.info("Reconciliation cancelled", reconciliation_id=str(recon.id))
    return recon


async def unlock_reconciliation(
    db: AsyncSession,
    user_id: UUID,
    reconciliation_id: UUID,
    *,
    actor: UUID,
    reason: str,
) -> BankReconciliation:
    """Reopen a completed reconciliation and release the transactions it locked."""
    recon = await get_reconciliation(db, user_id, reconciliation_id)
    _require_status(recon, ReconciliationStatus.COMPLETED)

    result = await db.execute(select(BankTransaction).where(BankTransaction.reconciliation_id == recon.id))
    released = 0
    for txn in result.scalars():
        txn.reconciliation_id = None
        txn.status = TransactionStatus.CONFIRMED if txn.match_id else TransactionStatus.UNMATCHED
        released += 1

    recon.status = ReconciliationStatus.IN_PROGRESS
    recon.completed_at = None
    recon.completed_by = None
    recon.reopened_at = _now()
    recon.reopened_by = actor
    recon.reopen_reason = reason
    recon.reopen_count += 1
    recon.version += 1
    try:
        await db.flush()
    except IntegrityError as exc:
        raise ConflictError("Another open reconciliation exists for this account and period") from exc

    await record_event(
        db,
        LedgerEventKind.AUDIT,
        {
            "reason": "reconciliation_unlocked",
            "reconciliation_id": str(recon.id),
            "account_id": str(recon.account_id),
            "actor": str(actor),
            "note": reason,
            "released_transactions": released,
        },
        user_id=user_id,
    )
    logger.warning(
        "Reconciliation unlocked",
        reconciliation_id=str(recon.id),
        actor=str(actor),
        reason=reason,
        released_transactions=released,
    )
    return recon


async def resolve_discrepancy(
    db: AsyncSession,
    user_id: UUID,
    reconciliation_id: UUID,
    discrepancy_id: UUID,
    *,
    actor: UUID,
    note: str,
    category: DiscrepancyCategory | None = None,
) -> ReconciliationDiscrepancy:
    """Record how a discrepancy was explained. Does not change balances."""
    recon = await get_reconciliation(db, user_id, reconciliation_id)
    discrepancy = next((d for d in recon.discrepancies if d.id == discrepancy_id), None)
    if discrepancy is None:
        raise NotFoundError("Discrepancy not found")
    if discrepancy.is_resolved:
        raise InvalidStateError("Discrepancy is already resolved")
    if category is not None:
        discrepancy.category = category
    discrepancy.is_resolved = True
    discrepancy.resolved_by = actor
    discrepancy.resolved_at = _now()
    discrepancy.resolution_note = note
    await db.flush()
    return discrepancy


async def reconciliation_report(db: AsyncSession, user_id: UUID, reconciliation_id: UUID) -> dict:
    recon = await get_reconciliation(db, user_id, reconciliation_id)
    lines = sorted(recon.items, key=lambda item: (item.transaction.txn_date, str(item.transaction_id)))
    return {
        "reconciliation": recon,
        "cleared": [line for line in lines if line.is_cleared],
        "outstanding": [line for line in lines if not line.is_cleared],
        "outstanding_net": _outstanding_net(recon),
    }
