"""Match records pairing bank transactions with accounting records."""

from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import BigInteger, Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, Uuid, text
from sqlalchemy.types import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bankrec.database import Base
from bankrec.models.base import TimestampMixin, UUIDMixin, enum_column

if TYPE_CHECKING:
    from bankrec.models.transaction import BankTransaction


class MatchStatus(str, Enum):
    """Status of a pairing between a transaction and accounting record(s)."""

    SUGGESTED = "suggested"
    CONFIRMED = "confirmed"
    AUTO_CONFIRMED = "auto_confirmed"
    REJECTED = "rejected"
    SUPERSEDED = "superseded"
    UNMATCHED = "unmatched"


ACTIVE_MATCH_STATUSES = (MatchStatus.CONFIRMED, MatchStatus.AUTO_CONFIRMED)


class MatchSource(str, Enum):
    """Where a candidate came from."""

    RULE = "rule"
    PATTERN = "pattern"
    MANUAL = "manual"
    REFERENCE = "reference"


class ConfidenceTier(str, Enum):
    """Coarse confidence bucket derived from the score."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXACT = "exact"


class BankTransactionMatch(UUIDMixin, TimestampMixin, Base):
    """A committed or pending pairing of a transaction with a record.

    The record is only referenced by ``(record_type, record_id)``; its lifecycle
    belongs to the owning service. Split matches carry their allocations in
    ``splits`` and leave ``record_id`` unset.
    """

    __tablename__ = "bank_transaction_matches"
    __table_args__ = (
        # At most one confirmed match per transaction.
        Index(
            "uq_bank_transaction_matches_active",
            "transaction_id",
            unique=True,
            postgresql_where=text("status IN ('confirmed', 'auto_confirmed')"),
            sqlite_where=text("status IN ('confirmed', 'auto_confirmed')"),
        ),
    )

    transaction_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("bank_transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    record_type: Mapped[str] = mapped_column(String(30), nullable=False)
    record_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    record_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    record_amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    record_label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    matched_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    confidence: Mapped[ConfidenceTier] = mapped_column(
        enum_column(ConfidenceTier, "match_confidence_enum"),
        nullable=False,
        default=ConfidenceTier.LOW,
    )
    source: Mapped[MatchSource] = mapped_column(enum_column(MatchSource, "match_source_enum"), nullable=False)
    sources: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    reasons: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    rule_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("match_rules.id", ondelete="SET NULL"), nullable=True
    )

    status: Mapped[MatchStatus] = mapped_column(
        enum_column(MatchStatus, "match_status_enum"),
        nullable=False,
        default=MatchStatus.SUGGESTED,
    )
    is_split: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    needs_audit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    confirmed_by: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    transaction: Mapped["BankTransaction"] = relationship("BankTransaction", back_populates="matches")
    splits: Mapped[list["MatchSplit"]] = relationship(
        "MatchSplit",
        back_populates="match",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="MatchSplit.position",
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_MATCH_STATUSES

    def targets(self) -> list[tuple[str, str, int]]:
        """(record_type, record_id, amount) for every record this match applies to."""
        if self.is_split:
            return [(split.record_type, split.record_id, split.amount) for split in self.splits]
        return [(self.record_type, self.record_id or "", self.matched_amount)]


class MatchSplit(UUIDMixin, Base):
    """One allocation of a split match."""

    __tablename__ = "bank_transaction_match_splits"

    match_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("bank_transaction_matches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    record_type: Mapped[str] = mapped_column(String(30), nullable=False)
    record_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)

    match: Mapped[BankTransactionMatch] = relationship("BankTransactionMatch", back_populates="splits")
