"""Outbox event schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from bankrec.models import LedgerEventKind
from bankrec.schemas.base import BaseResponse


class LedgerEventResponse(BaseResponse):
    id: UUID
    kind: LedgerEventKind
    payload: dict[str, Any]
    created_at: datetime
    dispatched_at: datetime | None
    attempts: int
    last_error: str | None


class DispatchResult(BaseModel):
    sent: int
    failed: int
    abandoned: int = 0
