"""Learned matching patterns."""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from bankrec.database import Base
from bankrec.models.base import TimestampMixin, UserOwnedMixin, UUIDMixin, enum_column


class PatternType(str, Enum):
    VENDOR_AMOUNT = "vendor_amount"
    RECURRING = "recurring"
    SALARY = "salary"
    SUBSCRIPTION = "subscription"
    UTILITY = "utility"
    TAX = "tax"
    OTHER = "other"


class MatchingPattern(UUIDMixin, UserOwnedMixin, TimestampMixin, Base):
    """A fingerprint distilled from confirmed matches.

    ``pattern_key`` hashes the full feature set (transaction signature plus the
    target record type and counterparty). ``signature`` hashes only the
    transaction-side features and ``family_key`` everything except the
    description template, so near-template patterns share a family.
    Patterns are deactivated, never deleted.
    """

    __tablename__ = "matching_patterns"
    __table_args__ = (UniqueConstraint("user_id", "pattern_key", name="uq_matching_patterns_user_key"),)

    pattern_key: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    signature: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    family_key: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    pattern_type: Mapped[PatternType] = mapped_column(
        enum_column(PatternType, "pattern_type_enum"),
        nullable=False,
        default=PatternType.OTHER,
    )
    description_template: Mapped[str] = mapped_column(String(255), nullable=False)
    amount_bucket: Mapped[int] = mapped_column(Integer, nullable=False)
    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    record_type: Mapped[str] = mapped_column(String(30), nullable=False)
    counterparty: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    features: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    confirmations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rejections: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    strength: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def success_rate(self) -> float:
        total = self.confirmations + self.rejections
        if total == 0:
            return 0.0
        return self.confirmations / total
