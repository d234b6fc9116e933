"""Initial schema for bank reconciliation."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

ENUM_NAMES = (
    "transaction_direction_enum",
    "transaction_status_enum",
    "match_status_enum",
    "match_source_enum",
    "match_confidence_enum",
    "rule_action_enum",
    "pattern_type_enum",
    "reconciliation_status_enum",
    "discrepancy_kind_enum",
    "discrepancy_category_enum",
    "ledger_event_kind_enum",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    direction_enum = sa.Enum("credit", "debit", name="transaction_direction_enum")
    txn_status_enum = sa.Enum(
        "unmatched",
        "suggested",
        "confirmed",
        "reconciled",
        "ignored",
        name="transaction_status_enum",
    )
    match_status_enum = sa.Enum(
        "suggested",
        "confirmed",
        "auto_confirmed",
        "rejected",
        "superseded",
        "unmatched",
        name="match_status_enum",
    )
    match_source_enum = sa.Enum("rule", "pattern", "manual", "reference", name="match_source_enum")
    confidence_enum = sa.Enum("low", "medium", "high", "exact", name="match_confidence_enum")
    rule_action_enum = sa.Enum(
        "auto_match",
        "auto_reconcile",
        "require_confirmation",
        "tag",
        name="rule_action_enum",
    )
    pattern_type_enum = sa.Enum(
        "vendor_amount",
        "recurring",
        "salary",
        "subscription",
        "utility",
        "tax",
        "other",
        name="pattern_type_enum",
    )
    reconciliation_status_enum = sa.Enum(
        "pending",
        "in_progress",
        "completed",
        "exception",
        "cancelled",
        name="reconciliation_status_enum",
    )
    discrepancy_kind_enum = sa.Enum("bank_to_book", "book_to_client", name="discrepancy_kind_enum")
    discrepancy_category_enum = sa.Enum(
        "timing",
        "error",
        "fraud_suspect",
        "unknown",
        name="discrepancy_category_enum",
    )
    event_kind_enum = sa.Enum(
        "gl_posting",
        "trust_compliance",
        "audit",
        "breach_alert",
        name="ledger_event_kind_enum",
    )

    op.create_table(
        "bank_accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("institution", sa.String(length=200), nullable=True),
        sa.Column("account_number_mask", sa.String(length=8), nullable=True),
        sa.Column("is_trust", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_bank_accounts_user_id", "bank_accounts", ["user_id"])

    op.create_table(
        "import_batches",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "account_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("bank_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("source", sa.String(length=100), nullable=True),
        sa.Column("imported_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duplicate_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_import_batches_account_id", "import_batches", ["account_id"])

    op.create_table(
        "bank_reconciliations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("kind", sa.String(length=20), nullable=False, server_default="standard"),
        sa.Column(
            "account_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("bank_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("opening_balance", sa.BigInteger(), nullable=False),
        sa.Column("statement_balance", sa.BigInteger(), nullable=False),
        sa.Column("cleared_credits", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("cleared_debits", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("outstanding_credits", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("outstanding_debits", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("book_balance", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("difference", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("status", reconciliation_status_enum, nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reopened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reopened_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("reopen_reason", sa.Text(), nullable=True),
        sa.Column("reopen_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("client_ledger_balance", sa.BigInteger(), nullable=True),
        sa.Column("client_balances", postgresql.JSONB(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_bank_reconciliations_user_id", "bank_reconciliations", ["user_id"])
    op.create_index("ix_bank_reconciliations_account_id", "bank_reconciliations", ["account_id"])
    op.create_index(
        "uq_bank_reconciliations_open_period",
        "bank_reconciliations",
        ["account_id", "period_start", "period_end"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'in_progress', 'exception')"),
    )

    op.create_table(
        "bank_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "account_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("bank_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "import_batch_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("import_batches.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("txn_date", sa.Date(), nullable=False),
        sa.Column("direction", direction_enum, nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False, comment="Minor units, always positive"),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("exchange_rate", sa.Numeric(18, 8), nullable=True),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("reference", sa.String(length=100), nullable=True),
        sa.Column("natural_key", sa.String(length=64), nullable=False, comment="SHA256(account|date|amount|ref)"),
        sa.Column("status", txn_status_enum, nullable=False),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("match_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "reconciliation_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("bank_reconciliations.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(),
    )
    op.create_index("ix_bank_transactions_account_id", "bank_transactions", ["account_id"])
    op.create_index("ix_bank_transactions_txn_date", "bank_transactions", ["txn_date"])
    op.create_index(
        "ix_bank_transactions_account_natural_key",
        "bank_transactions",
        ["account_id", "natural_key"],
    )

    op.create_table(
        "match_rules",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("criteria", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("record_types", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("account_ids", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("action", rule_action_enum, nullable=False),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("times_matched", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_matched_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_match_rules_user_id", "match_rules", ["user_id"])

    op.create_table(
        "bank_transaction_matches",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "transaction_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("bank_transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("record_type", sa.String(length=30), nullable=False),
        sa.Column("record_id", sa.String(length=64), nullable=True),
        sa.Column("record_date", sa.Date(), nullable=True),
        sa.Column("record_amount", sa.BigInteger(), nullable=True),
        sa.Column("record_label", sa.String(length=255), nullable=True),
        sa.Column("matched_amount", sa.BigInteger(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("confidence", confidence_enum, nullable=False),
        sa.Column("source", match_source_enum, nullable=False),
        sa.Column("sources", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("reasons", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column(
            "rule_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("match_rules.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("status", match_status_enum, nullable=False),
        sa.Column("is_split", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("needs_audit", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("confirmed_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index("ix_bank_transaction_matches_transaction_id", "bank_transaction_matches", ["transaction_id"])
    op.create_index(
        "uq_bank_transaction_matches_active",
        "bank_transaction_matches",
        ["transaction_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('confirmed', 'auto_confirmed')"),
    )

    op.create_table(
        "bank_transaction_match_splits",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "match_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("bank_transaction_matches.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("record_type", sa.String(length=30), nullable=False),
        sa.Column("record_id", sa.String(length=64), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("note", sa.String(length=255), nullable=True),
    )
    op.create_index("ix_bank_transaction_match_splits_match_id", "bank_transaction_match_splits", ["match_id"])

    op.create_table(
        "matching_patterns",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("pattern_key", sa.String(length=64), nullable=False),
        sa.Column("signature", sa.String(length=64), nullable=False),
        sa.Column("family_key", sa.String(length=64), nullable=False),
        sa.Column("pattern_type", pattern_type_enum, nullable=False),
        sa.Column("description_template", sa.String(length=255), nullable=False),
        sa.Column("amount_bucket", sa.Integer(), nullable=False),
        sa.Column("direction", sa.String(length=10), nullable=False),
        sa.Column("record_type", sa.String(length=30), nullable=False),
        sa.Column("counterparty", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("features", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("confirmations", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rejections", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("strength", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "pattern_key", name="uq_matching_patterns_user_key"),
    )
    op.create_index("ix_matching_patterns_user_id", "matching_patterns", ["user_id"])
    op.create_index("ix_matching_patterns_pattern_key", "matching_patterns", ["pattern_key"])
    op.create_index("ix_matching_patterns_signature", "matching_patterns", ["signature"])
    op.create_index("ix_matching_patterns_family_key", "matching_patterns", ["family_key"])

    op.create_table(
        "reconciliation_items",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "reconciliation_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("bank_reconciliations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "transaction_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("bank_transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("is_cleared", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_manual", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.UniqueConstraint("reconciliation_id", "transaction_id", name="uq_reconciliation_items_txn"),
    )
    op.create_index("ix_reconciliation_items_reconciliation_id", "reconciliation_items", ["reconciliation_id"])

    op.create_table(
        "reconciliation_discrepancies",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "reconciliation_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("bank_reconciliations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("kind", discrepancy_kind_enum, nullable=False),
        sa.Column("category", discrepancy_category_enum, nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False, comment="Signed gap in minor units"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_resolved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("resolved_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_note", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_reconciliation_discrepancies_reconciliation_id",
        "reconciliation_discrepancies",
        ["reconciliation_id"],
    )

    op.create_table(
        "ledger_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("kind", event_kind_enum, nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("dispatched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
    )
    op.create_index("ix_ledger_events_user_id", "ledger_events", ["user_id"])
    op.create_index("ix_ledger_events_created_at", "ledger_events", ["created_at"])
    op.create_index(
        "ix_ledger_events_pending",
        "ledger_events",
        ["created_at"],
        postgresql_where=sa.text("dispatched_at IS NULL"),
    )


def downgrade() -> None:
    op.drop_table("ledger_events")
    op.drop_table("reconciliation_discrepancies")
    op.drop_table("reconciliation_items")
    op.drop_table("matching_patterns")
    op.drop_table("bank_transaction_match_splits")
    op.drop_table("bank_transaction_matches")
    op.drop_table("match_rules")
    op.drop_table("bank_transactions")
    op.drop_table("bank_reconciliations")
    op.drop_table("import_batches")
    op.drop_table("bank_accounts")

    bind = op.get_bind()
    for name in ENUM_NAMES:
        sa.Enum(name=name).drop(bind, checkfirst=True)
