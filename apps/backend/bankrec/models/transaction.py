"""Bank accounts, import batches and imported bank transactions."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import BigInteger, Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bankrec.database import Base
from bankrec.models.base import TimestampMixin, UserOwnedMixin, UUIDMixin, enum_column, utcnow

if TYPE_CHECKING:
    from bankrec.models.match import BankTransactionMatch


class TransactionDirection(str, Enum):
    """Money into (credit) or out of (debit) the bank account."""

    CREDIT = "credit"
    DEBIT = "debit"


class TransactionStatus(str, Enum):
    """Match lifecycle of an imported statement line."""

    UNMATCHED = "unmatched"
    SUGGESTED = "suggested"
    CONFIRMED = "confirmed"
    RECONCILED = "reconciled"
    IGNORED = "ignored"


class BankAccount(UUIDMixin, UserOwnedMixin, TimestampMixin, Base):
    """A bank account whose statement lines are reconciled.

    Trust (client-fund) accounts always reconcile three-way.
    """

    __tablename__ = "bank_accounts"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    institution: Mapped[str | None] = mapped_column(String(200), nullable=True)
    account_number_mask: Mapped[str | None] = mapped_column(String(8), nullable=True)
    is_trust: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    transactions: Mapped[list["BankTransaction"]] = relationship(
        "BankTransaction",
        back_populates="account",
    )


class ImportBatch(UUIDMixin, Base):
    """One delivery of parsed statement lines from the import feed."""

    __tablename__ = "import_batches"

    account_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("bank_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source: Mapped[str | None] = mapped_column(String(100), nullable=True)
    imported_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duplicate_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class BankTransaction(UUIDMixin, TimestampMixin, Base):
    """One imported statement line.

    Amounts are positive integers in the currency's minor unit; the sign lives
    in ``direction``. Once ``reconciliation_id`` is set by a completed
    reconciliation the row is locked until that reconciliation is unlocked.
    """

    __tablename__ = "bank_transactions"
    __table_args__ = (Index("ix_bank_transactions_account_natural_key", "account_id", "natural_key"),)

    account_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("bank_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    import_batch_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("import_batches.id", ondelete="SET NULL"), nullable=True
    )
    txn_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    direction: Mapped[TransactionDirection] = mapped_column(
        enum_column(TransactionDirection, "transaction_direction_enum"), nullable=False
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False, comment="Minor units, always positive")
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    exchange_rate: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    natural_key: Mapped[str] = mapped_column(String(64), nullable=False, comment="SHA256(account|date|amount|ref)")
    status: Mapped[TransactionStatus] = mapped_column(
        enum_column(TransactionStatus, "transaction_status_enum"),
        nullable=False,
        default=TransactionStatus.UNMATCHED,
    )
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    # Weak link to the active match; matches reference transactions, not the reverse.
    match_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    reconciliation_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("bank_reconciliations.id", ondelete="SET NULL"), nullable=True
    )

    account: Mapped[BankAccount] = relationship("BankAccount", back_populates="transactions")
    matches: Mapped[list["BankTransactionMatch"]] = relationship(
        "BankTransactionMatch",
        back_populates="transaction",
        cascade="all, delete-orphan",
    )

    @property
    def signed_amount(self) -> int:
        return self.amount if self.direction == TransactionDirection.CREDIT else -self.amount

    @property
    def is_locked(self) -> bool:
        return self.status == TransactionStatus.RECONCILED and self.reconciliation_id is not None
