"""Outbox of events for the general ledger, trust compliance and audit services."""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from bankrec.database import Base
from bankrec.models.base import UserOwnedMixin, UUIDMixin, enum_column, utcnow


class LedgerEventKind(str, Enum):
    GL_POSTING = "gl_posting"
    TRUST_COMPLIANCE = "trust_compliance"
    AUDIT = "audit"
    BREACH_ALERT = "breach_alert"


class LedgerEvent(UUIDMixin, UserOwnedMixin, Base):
    """Written in the same transaction as the state change it describes."""

    __tablename__ = "ledger_events"

    kind: Mapped[LedgerEventKind] = mapped_column(
        enum_column(LedgerEventKind, "ledger_event_kind_enum"), nullable=False
    )
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    dispatched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
