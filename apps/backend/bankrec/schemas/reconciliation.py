"""Reconciliation ledger schemas."""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from bankrec.models import DiscrepancyCategory, DiscrepancyKind, ReconciliationStatus
from bankrec.schemas.base import BaseResponse, ListResponse
from bankrec.schemas.transactions import BankTransactionResponse


class ReconciliationCreate(BaseModel):
    account_id: UUID
    period_start: date
    period_end: date
    opening_balance: int = Field(description="Signed minor units")
    statement_balance: int = Field(description="Signed minor units")
    notes: str | None = None

    @model_validator(mode="after")
    def _period_order(self) -> "ReconciliationCreate":
        if self.period_end < self.period_start:
            raise ValueError("period_end must not be before period_start")
        return self


class UnlockRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class DiscrepancyResolve(BaseModel):
    note: str = Field(min_length=1, max_length=1000)
    category: DiscrepancyCategory | None = None


class DiscrepancyResponse(BaseResponse):
    id: UUID
    kind: DiscrepancyKind
    category: DiscrepancyCategory
    amount: int
    description: str | None
    is_resolved: bool
    resolved_by: UUID | None
    resolved_at: datetime | None
    resolution_note: str | None
    created_at: datetime


class ReconciliationResponse(BaseResponse):
    id: UUID
    kind: str
    account_id: UUID
    period_start: date
    period_end: date
    opening_balance: int
    statement_balance: int
    cleared_credits: int
    cleared_debits: int
    outstanding_credits: int
    outstanding_debits: int
    book_balance: int
    difference: int
    status: ReconciliationStatus
    notes: str | None
    started_at: datetime | None
    completed_at: datetime | None
    completed_by: UUID | None
    cancelled_at: datetime | None
    reopened_at: datetime | None
    reopened_by: UUID | None
    reopen_reason: str | None
    reopen_count: int
    version: int
    client_ledger_balance: int | None = None
    client_balances: list[dict[str, Any]] | None = None
    discrepancies: list[DiscrepancyResponse] = Field(default_factory=list)
    created_at: datetime


ReconciliationListResponse = ListResponse[ReconciliationResponse]


class ReconciliationLine(BaseResponse):
    transaction: BankTransactionResponse
    is_cleared: bool
    is_manual: bool


class ReconciliationReport(BaseResponse):
    reconciliation: ReconciliationResponse
    cleared: list[ReconciliationLine]
    outstanding: list[ReconciliationLine]
    outstanding_net: int
