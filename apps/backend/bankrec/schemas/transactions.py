"""Pydantic schemas for statement imports and bank transactions."""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, Field

from bankrec.models import TransactionDirection, TransactionStatus
from bankrec.schemas.base import BaseResponse, ListResponse


class TransactionImportRow(BaseModel):
    """One normalized statement line from the import feed."""

    txn_date: date = Field(alias="date")
    direction: TransactionDirection
    amount: Annotated[int, Field(gt=0, description="Minor units, always positive")]
    description: str = ""
    reference: Annotated[str | None, Field(None, max_length=100)] = None
    currency: Annotated[str | None, Field(None, pattern=r"^[A-Z]{3}$")] = None
    exchange_rate: Annotated[Decimal | None, Field(None, gt=0)] = None

    model_config = {"populate_by_name": True}


class TransactionImportRequest(BaseModel):
    account_id: UUID
    source: Annotated[str | None, Field(None, max_length=100)] = None
    rows: list[TransactionImportRow] = Field(min_length=1)


class BankTransactionResponse(BaseResponse):
    id: UUID
    account_id: UUID
    import_batch_id: UUID | None
    txn_date: date
    direction: TransactionDirection
    amount: int
    currency: str
    exchange_rate: Decimal | None
    description: str
    reference: str | None
    status: TransactionStatus
    category: str | None
    match_id: UUID | None
    reconciliation_id: UUID | None
    created_at: datetime


BankTransactionListResponse = ListResponse[BankTransactionResponse]


class TransactionImportResponse(BaseModel):
    batch_id: UUID
    imported_count: int
    duplicate_count: int
    duplicate_rows: list[int] = Field(description="Zero-based positions of skipped rows")
    transactions: list[BankTransactionResponse]


class AccountStatusSummary(BaseModel):
    account_id: UUID
    total: int
    by_status: dict[str, int]
    match_rate: float
    reconciliation_rate: float


class TransactionStatusSummary(BaseModel):
    accounts: list[AccountStatusSummary]
