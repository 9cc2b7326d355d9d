"""Read/write store used by the matching and recurring engines.

Functions flush but never commit; the caller owns the transaction. Bulk jobs
commit per entity so a failure only loses that entity's work.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import delete, exists, func, select, union
from sqlalchemy.ext.asyncio import AsyncSession

from ledgermatch.models import (
    InternalTransaction,
    ReconciliationItem,
    ReconciliationSession,
    RecurringOccurrence,
    RecurringPattern,
    RecurringPatternStatus,
    TransactionStatus,
)
from ledgermatch.models.recurring import LIVE_STATUSES

if TYPE_CHECKING:
    from ledgermatch.services.recurring import DetectedPattern


# =============================================================================
# Internal transactions
# =============================================================================


async def get_internal_transactions_by_date_range(
    db: AsyncSession,
    *,
    user_id: UUID,
    start: date,
    end: date,
    account_id: UUID | None = None,
    exclude_reconciled: bool = True,
) -> list[InternalTransaction]:
    """Non-deleted transactions dated within [start, end], oldest first."""
    query = (
        select(InternalTransaction)
        .where(InternalTransaction.user_id == user_id)
        .where(InternalTransaction.is_deleted.is_(False))
        .where(InternalTransaction.txn_date >= start)
        .where(InternalTransaction.txn_date <= end)
    )
    if account_id is not None:
        query = query.where(InternalTransaction.account_id == account_id)
    if exclude_reconciled:
        query = query.where(InternalTransaction.status != TransactionStatus.RECONCILED)

    query = query.order_by(InternalTransaction.txn_date, InternalTransaction.created_at, InternalTransaction.id)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_expense_transactions(
    db: AsyncSession,
    *,
    user_id: UUID,
    since: date,
    until: date,
) -> list[InternalTransaction]:
    """Expenses eligible for recurring detection: negative, non-transfer, non-deleted."""
    result = await db.execute(
        select(InternalTransaction)
        .where(InternalTransaction.user_id == user_id)
        .where(InternalTransaction.amount < 0)
        .where(InternalTransaction.transfer_id.is_(None))
        .where(InternalTransaction.is_deleted.is_(False))
        .where(InternalTransaction.txn_date >= since)
        .where(InternalTransaction.txn_date <= until)
        .order_by(InternalTransaction.txn_date, InternalTransaction.created_at, InternalTransaction.id)
    )
    return list(result.scalars().all())


async def get_transaction_for_user(
    db: AsyncSession,
    transaction_id: UUID,
    *,
    user_id: UUID,
) -> InternalTransaction | None:
    result = await db.execute(
        select(InternalTransaction)
        .where(InternalTransaction.id == transaction_id)
        .where(InternalTransaction.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def sum_account_balance(
    db: AsyncSession,
    *,
    user_id: UUID,
    account_id: UUID,
    as_of: date,
) -> Decimal:
    """Signed sum of the account's non-deleted transactions up to ``as_of``."""
    result = await db.execute(
        select(func.coalesce(func.sum(InternalTransaction.amount), 0))
        .where(InternalTransaction.user_id == user_id)
        .where(InternalTransaction.account_id == account_id)
        .where(InternalTransaction.is_deleted.is_(False))
        .where(InternalTransaction.txn_date <= as_of)
    )
    return Decimal(str(result.scalar_one()))


async def mark_transactions_reconciled(db: AsyncSession, transaction_ids: Sequence[UUID]) -> int:
    if not transaction_ids:
        return 0
    result = await db.execute(select(InternalTransaction).where(InternalTransaction.id.in_(transaction_ids)))
    transactions = result.scalars().all()
    for txn in transactions:
        txn.status = TransactionStatus.RECONCILED
    await db.flush()
    return len(transactions)


# =============================================================================
# Reconciliation sessions and items
# =============================================================================


async def get_session_for_user(
    db: AsyncSession,
    session_id: UUID,
    *,
    user_id: UUID,
    for_update: bool = False,
) -> ReconciliationSession | None:
    query = (
        select(ReconciliationSession)
        .where(ReconciliationSession.id == session_id)
        .where(ReconciliationSession.user_id == user_id)
    )
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_reconciliation_items(db: AsyncSession, session_id: UUID) -> list[ReconciliationItem]:
    result = await db.execute(
        select(ReconciliationItem)
        .where(ReconciliationItem.session_id == session_id)
        .order_by(ReconciliationItem.created_at, ReconciliationItem.id)
    )
    return list(result.scalars().all())


async def delete_reconciliation_items(db: AsyncSession, session_id: UUID) -> int:
    result = await db.execute(
        delete(ReconciliationItem)
        .where(ReconciliationItem.session_id == session_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def add_reconciliation_items(db: AsyncSession, items: Sequence[ReconciliationItem]) -> None:
    db.add_all(items)
    await db.flush()


async def replace_reconciliation_items(
    db: AsyncSession,
    session: ReconciliationSession,
    items: Sequence[ReconciliationItem],
) -> int:
    """Swap a session's items for a fresh set inside the caller's transaction.

    The caller must hold the session row lock (``get_session_for_user(...,
    for_update=True)``) so two runs for the same session cannot interleave.
    """
    removed = await delete_reconciliation_items(db, session.id)
    for item in items:
        item.session_id = session.id
    await add_reconciliation_items(db, items)
    return removed


# =============================================================================
# Recurring patterns and occurrences
# =============================================================================


def _live_patterns(user_id: UUID):
    return (
        select(RecurringPattern)
        .where(RecurringPattern.user_id == user_id)
        .where(RecurringPattern.status.in_(LIVE_STATUSES))
    )


async def get_active_patterns(db: AsyncSession, *, user_id: UUID) -> list[RecurringPattern]:
    """Live patterns in the order match-on-arrival tries them."""
    result = await db.execute(
        _live_patterns(user_id).order_by(RecurringPattern.next_expected_date, RecurringPattern.id)
    )
    return list(result.scalars().all())


async def get_past_due_patterns(db: AsyncSession, *, user_id: UUID, as_of: date) -> list[RecurringPattern]:
    result = await db.execute(
        _live_patterns(user_id)
        .where(RecurringPattern.next_expected_date < as_of)
        .order_by(RecurringPattern.next_expected_date, RecurringPattern.id)
    )
    return list(result.scalars().all())


async def get_upcoming_patterns(
    db: AsyncSession,
    *,
    user_id: UUID,
    start: date,
    end: date,
) -> list[RecurringPattern]:
    result = await db.execute(
        _live_patterns(user_id)
        .where(RecurringPattern.next_expected_date >= start)
        .where(RecurringPattern.next_expected_date <= end)
        .order_by(RecurringPattern.next_expected_date, RecurringPattern.id)
    )
    return list(result.scalars().all())


async def list_patterns(
    db: AsyncSession,
    *,
    user_id: UUID,
    include_inactive: bool = False,
) -> list[RecurringPattern]:
    query = select(RecurringPattern).where(RecurringPattern.user_id == user_id)
    if not include_inactive:
        query = query.where(RecurringPattern.status.in_(LIVE_STATUSES))
    result = await db.execute(query.order_by(RecurringPattern.next_expected_date, RecurringPattern.id))
    return list(result.scalars().all())


async def get_pattern_for_user(
    db: AsyncSession,
    pattern_id: UUID,
    *,
    user_id: UUID,
) -> RecurringPattern | None:
    result = await db.execute(
        select(RecurringPattern)
        .where(RecurringPattern.id == pattern_id)
        .where(RecurringPattern.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def upsert_pattern(
    db: AsyncSession,
    detected: DetectedPattern,
    *,
    user_id: UUID,
) -> RecurringPattern:
    """Create or merge the pattern keyed by (user, normalized merchant key).

    The existing row is locked while it is merged; the unique constraint on
    the key rejects a concurrent duplicate insert.
    """
    result = await db.execute(
        select(RecurringPattern)
        .where(RecurringPattern.user_id == user_id)
        .where(RecurringPattern.normalized_merchant_key == detected.normalized_merchant_key)
        .with_for_update()
    )
    pattern = result.scalar_one_or_none()

    if pattern is None:
        pattern = RecurringPattern(
            user_id=user_id,
            merchant_name=detected.merchant_name,
            normalized_merchant_key=detected.normalized_merchant_key,
            interval_days=detected.interval_days,
            average_amount=detected.average_amount,
            confidence=detected.confidence,
            status=RecurringPatternStatus.ACTIVE,
            next_expected_date=detected.next_expected_date,
            last_observed_at=detected.last_observed_at,
            occurrence_count=detected.occurrence_count,
            consecutive_misses=0,
        )
        db.add(pattern)
        await db.flush()
        return pattern

    has_new_evidence = detected.last_observed_at > pattern.last_observed_at
    pattern.merchant_name = detected.merchant_name
    pattern.interval_days = detected.interval_days
    pattern.average_amount = detected.average_amount
    pattern.confidence = detected.confidence
    pattern.occurrence_count = detected.occurrence_count

    if has_new_evidence:
        pattern.last_observed_at = detected.last_observed_at
        pattern.consecutive_misses = 0
        if pattern.status != RecurringPatternStatus.PAUSED:
            pattern.status = RecurringPatternStatus.ACTIVE

    pattern.next_expected_date = pattern.projected_next_date()
    await db.flush()
    return pattern


async def create_occurrence(db: AsyncSession, occurrence: RecurringOccurrence) -> RecurringOccurrence:
    db.add(occurrence)
    await db.flush()
    return occurrence


async def get_occurrences(db: AsyncSession, pattern_id: UUID) -> list[RecurringOccurrence]:
    result = await db.execute(
        select(RecurringOccurrence)
        .where(RecurringOccurrence.pattern_id == pattern_id)
        .order_by(RecurringOccurrence.expected_date, RecurringOccurrence.created_at)
    )
    return list(result.scalars().all())


async def is_transaction_linked(db: AsyncSession, transaction_id: UUID) -> bool:
    result = await db.execute(select(exists().where(RecurringOccurrence.transaction_id == transaction_id)))
    return bool(result.scalar())


async def get_user_ids_with_activity(db: AsyncSession) -> list[UUID]:
    """Every user that owns transactions or patterns."""
    users = union(
        select(InternalTransaction.user_id),
        select(RecurringPattern.user_id),
    ).subquery()
    result = await db.execute(select(users.c.user_id).order_by(users.c.user_id))
    return list(result.scalars().all())
