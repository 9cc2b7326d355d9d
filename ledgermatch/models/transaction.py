"""Internally recorded ledger transactions."""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, Date, Index, Numeric, String, Uuid
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from ledgermatch.database import Base
from ledgermatch.models.base import TimestampMixin, UserOwnedMixin, UUIDMixin


class TransactionStatus(str, Enum):
    """Clearing status of an internal transaction."""

    PENDING = "pending"
    CLEARED = "cleared"
    RECONCILED = "reconciled"


class InternalTransaction(Base, UUIDMixin, UserOwnedMixin, TimestampMixin):
    """A transaction recorded in the app ledger.

    Amounts are signed: negative values are expenses. Once reconciled the
    amount and date are frozen; only review metadata may change.
    """

    __tablename__ = "transactions"
    __table_args__ = (Index("ix_transactions_user_account_date", "user_id", "account_id", "txn_date"),)

    account_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    txn_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    status: Mapped[TransactionStatus] = mapped_column(
        SQLEnum(TransactionStatus, name="transaction_status_enum"),
        nullable=False,
        default=TransactionStatus.CLEARED,
    )
    is_reviewed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_excluded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Set when the transaction is one leg of a transfer between the user's own accounts
    transfer_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)

    @property
    def is_expense(self) -> bool:
        return self.amount < 0

    @property
    def is_transfer(self) -> bool:
        return self.transfer_id is not None

    @property
    def is_reconciled(self) -> bool:
        return self.status == TransactionStatus.RECONCILED
