"""Tests for period reconciliation and the three-way trust check."""

import dataclasses
from datetime import date
from uuid import uuid4

import pytest
import pytest_asyncio

from bankrec.models import (
    BankTransactionMatch,
    ConfidenceTier,
    DiscrepancyCategory,
    DiscrepancyKind,
    LedgerEventKind,
    MatchSource,
    MatchStatus,
    ReconciliationStatus,
    TransactionDirection,
    TransactionStatus,
)
from bankrec.schemas.reconciliation import ReconciliationCreate
from bankrec.services import ledger
from bankrec.services.collaborators import ClientBalance
from bankrec.services.errors import ConflictError, DownstreamError, InvalidStateError, NotFoundError
from bankrec.services.events import list_pending_events
from tests.factories import BankAccountFactory, BankTransactionFactory
from tests.fakes import StaticTrustLedger

MARCH = {"period_start": date(2024, 3, 1), "period_end": date(2024, 3, 31)}


async def _confirmed(db, account, amount=10000, direction=TransactionDirection.CREDIT, record_date=date(2024, 3, 14)):
    """A transaction with a confirmed match dated ``record_date``."""
    txn = await BankTransactionFactory.create_async(
        db, account_id=account.id, amount=amount, direction=direction, status=TransactionStatus.CONFIRMED
    )
    match = BankTransactionMatch(
        transaction_id=txn.id,
        record_type="invoice",
        record_id=f"INV-{uuid4().hex[:6]}",
        record_date=record_date,
        record_amount=amount,
        matched_amount=amount,
        score=100,
        confidence=ConfidenceTier.EXACT,
        source=MatchSource.MANUAL,
        sources=["manual"],
        reasons=[],
        status=MatchStatus.CONFIRMED,
        is_split=False,
        needs_audit=False,
        version=1,
        splits=[],
    )
    db.add(match)
    await db.flush()
    txn.match_id = match.id
    await db.flush()
    return txn


async def _open(db, user_id, account, *, opening=0, statement=10000):
    recon = await ledger.create_reconciliation(
        db,
        user_id,
        ReconciliationCreate(account_id=account.id, opening_balance=opening, statement_balance=statement, **MARCH),
    )
    return await ledger.start_reconciliation(db, user_id, recon.id)


@pytest_asyncio.fixture
async def account(db, test_user_id):
    return await BankAccountFactory.create_async(db, user_id=test_user_id)


@pytest_asyncio.fixture
async def trust_account(db, test_user_id):
    return await BankAccountFactory.create_async(db, user_id=test_user_id, is_trust=True, name="Client Trust")


class TestCategorize:
    def test_timing(self):
        category = ledger.categorize_discrepancy(
            500, outstanding_net=500, is_trust=False, bank_balance=0, client_total=None
        )
        assert category == DiscrepancyCategory.TIMING

    def test_trust_shortfall_is_fraud_suspect(self):
        category = ledger.categorize_discrepancy(
            -2000, outstanding_net=0, is_trust=True, bank_balance=10000, client_total=12000
        )
        assert category == DiscrepancyCategory.FRAUD_SUSPECT

    def test_transposition_is_error(self):
        # 5400 keyed as 4500
        category = ledger.categorize_discrepancy(
            900, outstanding_net=0, is_trust=False, bank_balance=0, client_total=None
        )
        assert category == DiscrepancyCategory.ERROR

    def test_unknown(self):
        category = ledger.categorize_discrepancy(
            200, outstanding_net=0, is_trust=True, bank_balance=10000, client_total=9800
        )
        assert category == DiscrepancyCategory.UNKNOWN


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_create_is_pending(self, db, test_user_id, account):
        recon = await ledger.create_reconciliation(
            db,
            test_user_id,
            ReconciliationCreate(account_id=account.id, opening_balance=100, statement_balance=400, **MARCH),
        )

        assert recon.status == ReconciliationStatus.PENDING
        assert recon.kind == "standard"
        assert recon.book_balance == 100
        assert recon.difference == 300

    @pytest.mark.asyncio
    async def test_trust_account_gets_three_way(self, db, test_user_id, trust_account):
        recon = await _open(db, test_user_id, trust_account)
        assert recon.kind == "three_way"
        assert recon.is_three_way is True

    @pytest.mark.asyncio
    async def test_one_open_reconciliation_per_period(self, db, test_user_id, account):
        await _open(db, test_user_id, account)
        with pytest.raises(ConflictError):
            await _open(db, test_user_id, account)

    @pytest.mark.asyncio
    async def test_cancelled_period_can_be_reopened(self, db, test_user_id, account):
        recon = await _open(db, test_user_id, account)
        cancelled = await ledger.cancel_reconciliation(db, test_user_id, recon.id)
        assert cancelled.status == ReconciliationStatus.CANCELLED

        again = await _open(db, test_user_id, account)
        assert again.id != recon.id

    @pytest.mark.asyncio
    async def test_start_twice_fails(self, db, test_user_id, account):
        recon = await _open(db, test_user_id, account)
        with pytest.raises(InvalidStateError):
            await ledger.start_reconciliation(db, test_user_id, recon.id)

    @pytest.mark.asyncio
    async def test_other_users_cannot_see_it(self, db, test_user_id, account):
        recon = await _open(db, test_user_id, account)
        with pytest.raises(NotFoundError):
            await ledger.get_reconciliation(db, uuid4(), recon.id)


class TestPartition:
    @pytest.mark.asyncio
    async def test_confirmed_lines_clear(self, db, test_user_id, account):
        cleared = await _confirmed(db, account)
        pending = await BankTransactionFactory.create_async(db, account_id=account.id, amount=2500)
        late = await _confirmed(db, account, amount=700, record_date=date(2024, 4, 2))
        await BankTransactionFactory.create_async(db, account_id=account.id, txn_date=date(2024, 4, 1))
        await BankTransactionFactory.create_async(db, account_id=account.id, status=TransactionStatus.IGNORED)

        recon = await _open(db, test_user_id, account)

        by_txn = {item.transaction_id: item.is_cleared for item in recon.items}
        assert by_txn == {cleared.id: True, pending.id: False, late.id: False}
        assert recon.cleared_credits == 10000
        assert recon.outstanding_credits == 3200
        assert recon.book_balance == 10000
        assert recon.difference == 0

    @pytest.mark.asyncio
    async def test_debits_reduce_book_balance(self, db, test_user_id, account):
        await _confirmed(db, account, amount=10000)
        await _confirmed(db, account, amount=2500, direction=TransactionDirection.DEBIT)

        recon = await _open(db, test_user_id, account, opening=1000, statement=8500)

        assert recon.cleared_debits == 2500
        assert recon.book_balance == 8500
        assert recon.difference == 0

    @pytest.mark.asyncio
    async def test_manual_clear_survives_refresh(self, db, test_user_id, account):
        txn = await BankTransactionFactory.create_async(db, account_id=account.id, amount=10000)
        recon = await _open(db, test_user_id, account)
        assert recon.difference == 10000

        recon = await ledger.clear_item(db, test_user_id, recon.id, txn.id)
        assert recon.difference == 0

        recon = await ledger.refresh_reconciliation(db, test_user_id, recon.id)
        [item] = recon.items
        assert item.is_cleared is True
        assert item.is_manual is True

        recon = await ledger.unclear_item(db, test_user_id, recon.id, txn.id)
        assert recon.difference == 10000

    @pytest.mark.asyncio
    async def test_clear_unknown_transaction(self, db, test_user_id, account):
        recon = await _open(db, test_user_id, account)
        with pytest.raises(NotFoundError):
            await ledger.clear_item(db, test_user_id, recon.id, uuid4())


class TestComplete:
    @pytest.mark.asyncio
    async def test_zero_difference_completes_and_locks(self, db, test_user_id, account):
        txn = await _confirmed(db, account)
        recon = await _open(db, test_user_id, account)

        done = await ledger.complete_reconciliation(db, test_user_id, recon.id, actor=test_user_id)

        assert done.status == ReconciliationStatus.COMPLETED
        assert done.completed_by == test_user_id
        assert txn.status == TransactionStatus.RECONCILED
        assert txn.reconciliation_id == recon.id
        assert txn.is_locked is True

        [event] = await list_pending_events(db, user_id=test_user_id)
        assert event.kind == LedgerEventKind.GL_POSTING
        assert event.payload["closing_balance"] == 10000

    @pytest.mark.asyncio
    async def test_gap_moves_to_exception(self, db, test_user_id, account):
        await BankTransactionFactory.create_async(db, account_id=account.id, amount=5000)
        await _confirmed(db, account)
        recon = await _open(db, test_user_id, account, statement=15000)

        result = await ledger.complete_reconciliation(db, test_user_id, recon.id, actor=test_user_id)

        assert result.status == ReconciliationStatus.EXCEPTION
        [discrepancy] = result.discrepancies
        assert discrepancy.kind == DiscrepancyKind.BANK_TO_BOOK
        assert discrepancy.amount == 5000
        assert discrepancy.category == DiscrepancyCategory.TIMING
        assert await list_pending_events(db, user_id=test_user_id) == []

    @pytest.mark.asyncio
    async def test_retry_after_exception(self, db, test_user_id, account):
        outstanding = await BankTransactionFactory.create_async(db, account_id=account.id, amount=5000)
        await _confirmed(db, account)
        recon = await _open(db, test_user_id, account, statement=15000)
        await ledger.complete_reconciliation(db, test_user_id, recon.id, actor=test_user_id)

        await ledger.resume_reconciliation(db, test_user_id, recon.id)
        await ledger.clear_item(db, test_user_id, recon.id, outstanding.id)
        done = await ledger.complete_reconciliation(db, test_user_id, recon.id, actor=test_user_id)

        assert done.status == ReconciliationStatus.COMPLETED
        [superseded] = done.discrepancies
        assert superseded.is_resolved is True

    @pytest.mark.asyncio
    async def test_rounding_tolerance(self, db, test_user_id, account, matching_config):
        await _confirmed(db, account)
        recon = await _open(db, test_user_id, account, statement=10001)
        config = dataclasses.replace(matching_config, rounding_tolerance=1)

        done = await ledger.complete_reconciliation(db, test_user_id, recon.id, actor=test_user_id, config=config)

        assert done.status == ReconciliationStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_three_way_mismatch_raises_breach_alert(self, db, test_user_id, trust_account):
        await _confirmed(db, trust_account)
        recon = await _open(db, test_user_id, trust_account)
        trust = StaticTrustLedger([ClientBalance("C-1", "Alpha", 6000), ClientBalance("C-2", "Beta", 3800)])

        result = await ledger.complete_reconciliation(
            db, test_user_id, recon.id, actor=test_user_id, trust_ledger=trust
        )

        assert result.status == ReconciliationStatus.EXCEPTION
        assert result.client_ledger_balance == 9800
        assert [b["client_id"] for b in result.client_balances] == ["C-1", "C-2"]
        [discrepancy] = result.discrepancies
        assert discrepancy.kind == DiscrepancyKind.BOOK_TO_CLIENT
        assert discrepancy.amount == 200
        assert discrepancy.category == DiscrepancyCategory.UNKNOWN

        [event] = await list_pending_events(db, user_id=test_user_id)
        assert event.kind == LedgerEventKind.BREACH_ALERT
        assert event.payload["client_ledger_balance"] == 9800

    @pytest.mark.asyncio
    async def test_three_way_shortfall_is_fraud_suspect(self, db, test_user_id, trust_account):
        await _confirmed(db, trust_account)
        recon = await _open(db, test_user_id, trust_account)
        trust = StaticTrustLedger([ClientBalance("C-1", "Alpha", 12000)])

        result = await ledger.complete_reconciliation(
            db, test_user_id, recon.id, actor=test_user_id, trust_ledger=trust
        )

        assert result.discrepancies[0].category == DiscrepancyCategory.FRAUD_SUSPECT

    @pytest.mark.asyncio
    async def test_three_way_agreement_completes(self, db, test_user_id, trust_account):
        await _confirmed(db, trust_account)
        recon = await _open(db, test_user_id, trust_account)
        trust = StaticTrustLedger([ClientBalance("C-1", "Alpha", 4000), ClientBalance("C-2", "Beta", 6000)])

        done = await ledger.complete_reconciliation(
            db, test_user_id, recon.id, actor=test_user_id, trust_ledger=trust
        )

        assert done.status == ReconciliationStatus.COMPLETED
        kinds = [e.kind for e in await list_pending_events(db, user_id=test_user_id)]
        assert kinds == [LedgerEventKind.GL_POSTING, LedgerEventKind.TRUST_COMPLIANCE]

    @pytest.mark.asyncio
    async def test_three_way_without_trust_ledger(self, db, test_user_id, trust_account):
        recon = await _open(db, test_user_id, trust_account, statement=0)
        with pytest.raises(DownstreamError):
            await ledger.complete_reconciliation(db, test_user_id, recon.id, actor=test_user_id)

    @pytest.mark.asyncio
    async def test_pending_cannot_complete(self, db, test_user_id, account):
        recon = await ledger.create_reconciliation(
            db,
            test_user_id,
            ReconciliationCreate(account_id=account.id, opening_balance=0, statement_balance=0, **MARCH),
        )
        with pytest.raises(InvalidStateError):
            await ledger.complete_reconciliation(db, test_user_id, recon.id, actor=test_user_id)


class TestUnlockAndDiscrepancies:
    @pytest.mark.asyncio
    async def test_unlock_releases_transactions(self, db, test_user_id, account):
        txn = await _confirmed(db, account)
        recon = await _open(db, test_user_id, account)
        await ledger.complete_reconciliation(db, test_user_id, recon.id, actor=test_user_id)

        reopened = await ledger.unlock_reconciliation(
            db, test_user_id, recon.id, actor=test_user_id, reason="bank correction"
        )

        assert reopened.status == ReconciliationStatus.IN_PROGRESS
        assert reopened.reopen_count == 1
        assert reopened.reopen_reason == "bank correction"
        assert reopened.completed_at is None
        assert txn.status == TransactionStatus.CONFIRMED
        assert txn.reconciliation_id is None

        events = await list_pending_events(db, user_id=test_user_id)
        assert events[-1].kind == LedgerEventKind.AUDIT
        assert events[-1].payload["released_transactions"] == 1

    @pytest.mark.asyncio
    async def test_completed_cannot_cancel(self, db, test_user_id, account):
        await _confirmed(db, account)
        recon = await _open(db, test_user_id, account)
        await ledger.complete_reconciliation(db, test_user_id, recon.id, actor=test_user_id)

        with pytest.raises(InvalidStateError):
            await ledger.cancel_reconciliation(db, test_user_id, recon.id)

    @pytest.mark.asyncio
    async def test_resolve_discrepancy(self, db, test_user_id, account):
        recon = await _open(db, test_user_id, account, statement=900)
        result = await ledger.complete_reconciliation(db, test_user_id, recon.id, actor=test_user_id)
        [discrepancy] = result.discrepancies
        assert discrepancy.category == DiscrepancyCategory.ERROR

        resolved = await ledger.resolve_discrepancy(
            db,
            test_user_id,
            recon.id,
            discrepancy.id,
            actor=test_user_id,
            note="Teller keyed 900 instead of 0",
        )

        assert resolved.is_resolved is True
        assert resolved.resolved_by == test_user_id
        assert resolved.category == DiscrepancyCategory.ERROR
        assert result.status == ReconciliationStatus.EXCEPTION

        with pytest.raises(InvalidStateError):
            await ledger.resolve_discrepancy(db, test_user_id, recon.id, discrepancy.id, actor=test_user_id, note="x")

    @pytest.mark.asyncio
    async def test_report_splits_lines(self, db, test_user_id, account):
        cleared = await _confirmed(db, account)
        outstanding = await BankTransactionFactory.create_async(
            db, account_id=account.id, amount=300, direction=TransactionDirection.DEBIT
        )
        recon = await _open(db, test_user_id, account)

        report = await ledger.reconciliation_report(db, test_user_id, recon.id)

        assert [line.transaction_id for line in report["cleared"]] == [cleared.id]
        assert [line.transaction_id for line in report["outstanding"]] == [outstanding.id]
        assert report["outstanding_net"] == -300
