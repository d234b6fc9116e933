"""Period reconciliations, their line items and discrepancies."""

from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from bankrec.database import Base
from bankrec.models.base import TimestampMixin, UserOwnedMixin, UUIDMixin, enum_column

if TYPE_CHECKING:
    from bankrec.models.transaction import BankAccount, BankTransaction


class ReconciliationStatus(str, Enum):
    """pending -> in_progress -> completed | exception; cancelled from pending/in_progress."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EXCEPTION = "exception"
    CANCELLED = "cancelled"


OPEN_RECONCILIATION_STATUSES = (
    ReconciliationStatus.PENDING,
    ReconciliationStatus.IN_PROGRESS,
    ReconciliationStatus.EXCEPTION,
)


class DiscrepancyCategory(str, Enum):
    TIMING = "timing"
    ERROR = "error"
    FRAUD_SUSPECT = "fraud_suspect"
    UNKNOWN = "unknown"


class DiscrepancyKind(str, Enum):
    """Which pair of balances disagrees."""

    BANK_TO_BOOK = "bank_to_book"
    BOOK_TO_CLIENT = "book_to_client"


class BankReconciliation(UUIDMixin, UserOwnedMixin, TimestampMixin, Base):
    """Statement-period closing for one bank account.

    All balances are signed minor-unit integers.
    ``difference = statement_balance - book_balance`` where
    ``book_balance = opening_balance + cleared_credits - cleared_debits``.
    """

    __tablename__ = "bank_reconciliations"
    __table_args__ = (
        # One open reconciliation per account and period.
        Index(
            "uq_bank_reconciliations_open_period",
            "account_id",
            "period_start",
            "period_end",
            unique=True,
            postgresql_where=text("status IN ('pending', 'in_progress', 'exception')"),
            sqlite_where=text("status IN ('pending', 'in_progress', 'exception')"),
        ),
    )

    kind: Mapped[str] = mapped_column(String(20), nullable=False, default="standard")
    account_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("bank_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    opening_balance: Mapped[int] = mapped_column(BigInteger, nullable=False)
    statement_balance: Mapped[int] = mapped_column(BigInteger, nullable=False)
    cleared_credits: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    cleared_debits: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    outstanding_credits: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    outstanding_debits: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    book_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    difference: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    status: Mapped[ReconciliationStatus] = mapped_column(
        enum_column(ReconciliationStatus, "reconciliation_status_enum"),
        nullable=False,
        default=ReconciliationStatus.PENDING,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reopened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reopened_by: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    reopen_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reopen_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    account: Mapped["BankAccount"] = relationship("BankAccount")
    items: Mapped[list["ReconciliationItem"]] = relationship(
        "ReconciliationItem",
        back_populates="reconciliation",
        cascade="all, delete-orphan",
    )
    discrepancies: Mapped[list["ReconciliationDiscrepancy"]] = relationship(
        "ReconciliationDiscrepancy",
        back_populates="reconciliation",
        cascade="all, delete-orphan",
        order_by="ReconciliationDiscrepancy.created_at",
    )

    __mapper_args__ = {
        "polymorphic_on": "kind",
        "polymorphic_identity": "standard",
        "with_polymorphic": "*",
    }

    @property
    def is_three_way(self) -> bool:
        return False


class ThreeWayReconciliation(BankReconciliation):
    """Trust-account variant: bank, book and the client sub-ledgers must agree."""

    client_ledger_balance: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    client_balances: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    __mapper_args__ = {"polymorphic_identity": "three_way"}

    @property
    def is_three_way(self) -> bool:
        return True


class ReconciliationItem(UUIDMixin, Base):
    """A transaction considered by a reconciliation, cleared or outstanding."""

    __tablename__ = "reconciliation_items"
    __table_args__ = (
        UniqueConstraint("reconciliation_id", "transaction_id", name="uq_reconciliation_items_txn"),
    )

    reconciliation_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("bank_reconciliations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    transaction_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("bank_transactions.id", ondelete="CASCADE"), nullable=False
    )
    is_cleared: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_manual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    reconciliation: Mapped[BankReconciliation] = relationship("BankReconciliation", back_populates="items")
    transaction: Mapped["BankTransaction"] = relationship("BankTransaction", lazy="selectin")


class ReconciliationDiscrepancy(UUIDMixin, TimestampMixin, Base):
    """A balance gap that blocked completion."""

    __tablename__ = "reconciliation_discrepancies"

    reconciliation_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("bank_reconciliations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[DiscrepancyKind] = mapped_column(
        enum_column(DiscrepancyKind, "discrepancy_kind_enum"), nullable=False
    )
    category: Mapped[DiscrepancyCategory] = mapped_column(
        enum_column(DiscrepancyCategory, "discrepancy_category_enum"),
        nullable=False,
        default=DiscrepancyCategory.UNKNOWN,
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False, comment="Signed gap in minor units")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_by: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    reconciliation: Mapped[BankReconciliation] = relationship("BankReconciliation", back_populates="discrepancies")
