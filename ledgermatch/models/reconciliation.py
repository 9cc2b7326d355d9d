"""Reconciliation session models."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import Date, DateTime, Float, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from ledgermatch.database import Base
from ledgermatch.models.base import JSONType, TimestampMixin, UserOwnedMixin, UUIDMixin

BALANCE_TOLERANCE = Decimal("0.01")


class ReconciliationSessionStatus(str, Enum):
    """Lifecycle of a statement reconciliation."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ReconciliationItemType(str, Enum):
    """Outcome bucket for one transaction in a matching run."""

    MATCHED = "matched"
    UNMATCHED_APP = "unmatched_app"
    UNMATCHED_BANK = "unmatched_bank"


class MatchMethod(str, Enum):
    """Which matching tier paired the two transactions."""

    EXACT = "Exact"
    DATE_TOLERANT = "DateTolerant"
    FUZZY_DESCRIPTION = "FuzzyDescription"


class AuditAction(str, Enum):
    STARTED = "started"
    MATCHING_RUN = "matching_run"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ReconciliationSession(Base, UUIDMixin, UserOwnedMixin, TimestampMixin):
    """A user reconciling one account against one bank statement period."""

    __tablename__ = "reconciliation_sessions"

    account_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    statement_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    statement_end_date: Mapped[date] = mapped_column(Date, nullable=False)
    statement_end_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    calculated_balance: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    status: Mapped[ReconciliationSessionStatus] = mapped_column(
        SQLEnum(ReconciliationSessionStatus, name="reconciliation_session_status_enum"),
        nullable=False,
        default=ReconciliationSessionStatus.IN_PROGRESS,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def balance_difference(self) -> Decimal:
        return self.statement_end_balance - (self.calculated_balance or Decimal("0"))

    @property
    def is_balanced(self) -> bool:
        if self.calculated_balance is None:
            return False
        return abs(self.balance_difference) <= BALANCE_TOLERANCE


class ReconciliationItem(Base, UUIDMixin, TimestampMixin):
    """One matching outcome within a session.

    Items are never edited: every matching run deletes the session's items
    and writes a fresh set.
    """

    __tablename__ = "reconciliation_items"

    session_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("reconciliation_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    transaction_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("transactions.id", ondelete="SET NULL"),
        nullable=True,
    )
    item_type: Mapped[ReconciliationItemType] = mapped_column(
        SQLEnum(ReconciliationItemType, name="reconciliation_item_type_enum"),
        nullable=False,
    )
    # Scores are non-monetary; floats are acceptable.
    match_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    match_method: Mapped[MatchMethod | None] = mapped_column(
        SQLEnum(MatchMethod, name="match_method_enum"),
        nullable=True,
    )
    # Snapshot of the bank-side transaction (external id, amount, date, description)
    bank_reference: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)


class ReconciliationAuditLog(Base, UUIDMixin, UserOwnedMixin, TimestampMixin):
    """Structured audit trail of session lifecycle events."""

    __tablename__ = "reconciliation_audit_logs"

    session_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("reconciliation_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action: Mapped[AuditAction] = mapped_column(
        SQLEnum(AuditAction, name="reconciliation_audit_action_enum"),
        nullable=False,
    )
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    message: Mapped[str | None] = mapped_column(String(500), nullable=True)
