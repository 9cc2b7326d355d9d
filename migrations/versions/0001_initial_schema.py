"""Initial schema for reconciliation sessions and recurring patterns."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    transaction_status_enum = sa.Enum("PENDING", "CLEARED", "RECONCILED", name="transaction_status_enum")
    session_status_enum = sa.Enum(
        "IN_PROGRESS",
        "COMPLETED",
        "CANCELLED",
        name="reconciliation_session_status_enum",
    )
    item_type_enum = sa.Enum(
        "MATCHED",
        "UNMATCHED_APP",
        "UNMATCHED_BANK",
        name="reconciliation_item_type_enum",
    )
    match_method_enum = sa.Enum("EXACT", "DATE_TOLERANT", "FUZZY_DESCRIPTION", name="match_method_enum")
    audit_action_enum = sa.Enum(
        "STARTED",
        "MATCHING_RUN",
        "COMPLETED",
        "CANCELLED",
        name="reconciliation_audit_action_enum",
    )
    pattern_status_enum = sa.Enum(
        "ACTIVE",
        "AT_RISK",
        "PAUSED",
        "CANCELLED",
        name="recurring_pattern_status_enum",
    )
    outcome_enum = sa.Enum("POSTED", "LATE", "MISSED", name="occurrence_outcome_enum")

    op.create_table(
        "transactions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("txn_date", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column("status", transaction_status_enum, nullable=False),
        sa.Column("is_reviewed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_excluded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("transfer_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_transactions_user_id", "transactions", ["user_id"])
    op.create_index(
        "ix_transactions_user_account_date",
        "transactions",
        ["user_id", "account_id", "txn_date"],
    )

    op.create_table(
        "reconciliation_sessions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("statement_start_date", sa.Date(), nullable=True),
        sa.Column("statement_end_date", sa.Date(), nullable=False),
        sa.Column("statement_end_balance", sa.Numeric(18, 2), nullable=False),
        sa.Column("calculated_balance", sa.Numeric(18, 2), nullable=True),
        sa.Column("status", session_status_enum, nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_reconciliation_sessions_user_id", "reconciliation_sessions", ["user_id"])
    op.create_index("ix_reconciliation_sessions_account_id", "reconciliation_sessions", ["account_id"])

    op.create_table(
        "reconciliation_items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("session_id", sa.Uuid(), nullable=False),
        sa.Column("transaction_id", sa.Uuid(), nullable=True),
        sa.Column("item_type", item_type_enum, nullable=False),
        sa.Column("match_confidence", sa.Float(), nullable=True),
        sa.Column("match_method", match_method_enum, nullable=True),
        sa.Column("bank_reference", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["session_id"], ["reconciliation_sessions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_reconciliation_items_session_id", "reconciliation_items", ["session_id"])

    op.create_table(
        "reconciliation_audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("session_id", sa.Uuid(), nullable=False),
        sa.Column("action", audit_action_enum, nullable=False),
        sa.Column("details", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("message", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["session_id"], ["reconciliation_sessions.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_reconciliation_audit_logs_user_id", "reconciliation_audit_logs", ["user_id"])
    op.create_index("ix_reconciliation_audit_logs_session_id", "reconciliation_audit_logs", ["session_id"])

    op.create_table(
        "recurring_patterns",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("merchant_name", sa.String(length=200), nullable=False),
        sa.Column("normalized_merchant_key", sa.String(length=200), nullable=False),
        sa.Column("interval_days", sa.Integer(), nullable=False),
        sa.Column("average_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("status", pattern_status_enum, nullable=False),
        sa.Column("next_expected_date", sa.Date(), nullable=False),
        sa.Column("last_observed_at", sa.Date(), nullable=False),
        sa.Column("occurrence_count", sa.Integer(), nullable=False),
        sa.Column("consecutive_misses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "normalized_merchant_key", name="uq_recurring_patterns_user_key"),
    )
    op.create_index("ix_recurring_patterns_user_id", "recurring_patterns", ["user_id"])
    op.create_index("ix_recurring_patterns_next_expected_date", "recurring_patterns", ["next_expected_date"])

    op.create_table(
        "recurring_occurrences",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("pattern_id", sa.Uuid(), nullable=False),
        sa.Column("transaction_id", sa.Uuid(), nullable=True),
        sa.Column("expected_date", sa.Date(), nullable=False),
        sa.Column("expected_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("actual_date", sa.Date(), nullable=True),
        sa.Column("actual_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("outcome", outcome_enum, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["pattern_id"], ["recurring_patterns.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_recurring_occurrences_user_id", "recurring_occurrences", ["user_id"])
    op.create_index("ix_recurring_occurrences_pattern_id", "recurring_occurrences", ["pattern_id"])
    op.create_index("ix_recurring_occurrences_transaction_id", "recurring_occurrences", ["transaction_id"])


def downgrade() -> None:
    op.drop_table("recurring_occurrences")
    op.drop_table("recurring_patterns")
    op.drop_table("reconciliation_audit_logs")
    op.drop_table("reconciliation_items")
    op.drop_table("reconciliation_sessions")
    op.drop_table("transactions")

    op.execute("DROP TYPE IF EXISTS occurrence_outcome_enum")
    op.execute("DROP TYPE IF EXISTS recurring_pattern_status_enum")
    op.execute("DROP TYPE IF EXISTS reconciliation_audit_action_enum")
    op.execute("DROP TYPE IF EXISTS match_method_enum")
    op.execute("DROP TYPE IF EXISTS reconciliation_item_type_enum")
    op.execute("DROP TYPE IF EXISTS reconciliation_session_status_enum")
    op.execute("DROP TYPE IF EXISTS transaction_status_enum")
