"""Pydantic schemas for bank accounts."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, Field

from bankrec.schemas.base import BaseResponse


class BankAccountBase(BaseModel):
    """Base bank account schema."""

    name: Annotated[str, Field(min_length=1, max_length=200)]
    currency: Annotated[str, Field(min_length=3, max_length=3, pattern=r"^[A-Z]{3}$")] = "USD"
    institution: Annotated[str | None, Field(None, max_length=200)] = None
    account_number_mask: Annotated[str | None, Field(None, max_length=8)] = None
    is_trust: bool = False


class BankAccountCreate(BankAccountBase):
    """Schema for creating a bank account."""

    pass


class BankAccountUpdate(BaseModel):
    name: Annotated[str | None, Field(None, min_length=1, max_length=200)] = None
    institution: Annotated[str | None, Field(None, max_length=200)] = None
    is_active: bool | None = None


class BankAccountResponse(BankAccountBase, BaseResponse):
    id: UUID
    user_id: UUID
    is_active: bool
    created_at: datetime
    updated_at: datetime


class BankAccountListResponse(BaseModel):
    items: list[BankAccountResponse]
    total: int
