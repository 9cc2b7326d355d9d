"""Recurring pattern lifecycle: match-on-arrival, missed sweeps, user actions."""

import asyncio
from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ledgermatch.logger import async_log_timing, get_logger, log_exception
from ledgermatch.models import (
    InternalTransaction,
    RecurringOccurrence,
    RecurringPattern,
    RecurringPatternStatus,
)
from ledgermatch.services import persistence
from ledgermatch.services.engine_config import DetectionConfig, load_detection_config
from ledgermatch.services.errors import ConflictError, NotFoundError

logger = get_logger(__name__)


def _is_eligible(transaction: InternalTransaction) -> bool:
    return transaction.is_expense and not transaction.is_transfer and not transaction.is_deleted


async def try_match_transaction_to_pattern(
    db: AsyncSession,
    transaction: InternalTransaction,
    *,
    config: DetectionConfig | None = None,
) -> bool:
    """Link a newly recorded expense to the first live pattern it fits.

    Patterns are tried in (next_expected_date, id) order and the first hit
    wins. A failure on one pattern is logged and the next one is tried.
    """
    if not _is_eligible(transaction):
        return False
    if await persistence.is_transaction_linked(db, transaction.id):
        return False

    config = config or load_detection_config()
    patterns = await persistence.get_active_patterns(db, user_id=transaction.user_id)

    transaction_id = transaction.id
    for pattern in patterns:
        pattern_id = pattern.id
        try:
            if not pattern.matches_transaction(
                transaction.description,
                transaction.amount,
                similarity_threshold=config.pattern_match_threshold,
                amount_tolerance_ratio=config.amount_tolerance_ratio,
            ):
                continue

            # A failure rolls back to the savepoint, dropping the occurrence
            async with db.begin_nested():
                occurrence = RecurringOccurrence.posted(
                    pattern,
                    transaction_id=transaction_id,
                    actual_date=transaction.txn_date,
                    actual_amount=transaction.amount,
                )
                await persistence.create_occurrence(db, occurrence)
                pattern.record_match(transaction.txn_date, transaction.amount)
                await db.flush()
        except Exception as exc:
            log_exception(
                logger,
                exc,
                "Failed to match transaction to recurring pattern",
                pattern_id=str(pattern_id),
                transaction_id=str(transaction_id),
            )
            continue

        logger.info(
            "Transaction matched to recurring pattern",
            pattern_id=str(pattern_id),
            transaction_id=str(transaction_id),
            outcome=occurrence.outcome.value,
        )
        return True

    return False


async def match_transaction_by_id(
    db: AsyncSession,
    transaction_id: UUID,
    *,
    user_id: UUID,
    config: DetectionConfig | None = None,
) -> bool:
    transaction = await persistence.get_transaction_for_user(db, transaction_id, user_id=user_id)
    if transaction is None:
        raise NotFoundError("Transaction", transaction_id)
    return await try_match_transaction_to_pattern(db, transaction, config=config)


async def process_missed_payments(
    db: AsyncSession,
    *,
    user_id: UUID,
    config: DetectionConfig | None = None,
    today: date | None = None,
    stop_event: asyncio.Event | None = None,
) -> int:
    """Record a miss for every live pattern whose expected date has passed.

    Each pattern is committed on its own. A pattern is only touched while it
    is genuinely past due, so running the sweep twice on the same day does
    not double-count once the expectation has moved past today.
    """
    config = config or load_detection_config()
    today = today or datetime.now(UTC).date()

    async with async_log_timing("process_missed_payments", logger=logger, user_id=str(user_id)) as timing:
        past_due = await persistence.get_past_due_patterns(db, user_id=user_id, as_of=today)
        pattern_ids = [pattern.id for pattern in past_due]
        timing["past_due"] = len(pattern_ids)

        processed = 0
        for pattern_id in pattern_ids:
            if stop_event is not None and stop_event.is_set():
                logger.info("Missed-payment sweep cancelled", user_id=str(user_id), processed=processed)
                break
            try:
                pattern = await persistence.get_pattern_for_user(db, pattern_id, user_id=user_id)
                if pattern is None or not pattern.is_live or pattern.next_expected_date >= today:
                    continue

                await persistence.create_occurrence(db, RecurringOccurrence.missed(pattern))
                pattern.record_miss(cancel_after_misses=config.cancel_after_misses)
                await db.commit()
                processed += 1
            except Exception as exc:
                await db.rollback()
                log_exception(
                    logger,
                    exc,
                    "Failed to record missed payment",
                    user_id=str(user_id),
                    pattern_id=str(pattern_id),
                )
                continue

            if pattern.status == RecurringPatternStatus.CANCELLED:
                logger.warning(
                    "Recurring pattern cancelled after repeated misses",
                    pattern_id=str(pattern_id),
                    consecutive_misses=pattern.consecutive_misses,
                )
        timing["processed"] = processed

    return processed


# =============================================================================
# User actions and read side
# =============================================================================


async def _require_pattern(db: AsyncSession, pattern_id: UUID, user_id: UUID) -> RecurringPattern:
    pattern = await persistence.get_pattern_for_user(db, pattern_id, user_id=user_id)
    if pattern is None:
        raise NotFoundError("Recurring pattern", pattern_id)
    return pattern


async def pause_pattern(db: AsyncSession, pattern_id: UUID, *, user_id: UUID) -> RecurringPattern:
    pattern = await _require_pattern(db, pattern_id, user_id)
    if pattern.status == RecurringPatternStatus.CANCELLED:
        raise ConflictError("Cancelled patterns cannot be paused")
    pattern.status = RecurringPatternStatus.PAUSED
    await db.flush()
    return pattern


async def resume_pattern(db: AsyncSession, pattern_id: UUID, *, user_id: UUID) -> RecurringPattern:
    pattern = await _require_pattern(db, pattern_id, user_id)
    if pattern.is_live:
        return pattern
    pattern.status = RecurringPatternStatus.ACTIVE
    await db.flush()
    return pattern


async def cancel_pattern(db: AsyncSession, pattern_id: UUID, *, user_id: UUID) -> RecurringPattern:
    pattern = await _require_pattern(db, pattern_id, user_id)
    pattern.status = RecurringPatternStatus.CANCELLED
    await db.flush()
    return pattern


async def get_pattern_occurrences(
    db: AsyncSession,
    pattern_id: UUID,
    *,
    user_id: UUID,
) -> list[RecurringOccurrence]:
    await _require_pattern(db, pattern_id, user_id)
    return await persistence.get_occurrences(db, pattern_id)


async def list_patterns(
    db: AsyncSession,
    *,
    user_id: UUID,
    include_inactive: bool = False,
) -> tuple[list[RecurringPattern], Decimal]:
    """Patterns plus the combined monthly cost of the live ones."""
    patterns = await persistence.list_patterns(db, user_id=user_id, include_inactive=include_inactive)
    monthly_total = sum((p.monthly_cost for p in patterns if p.is_live), Decimal("0.00"))
    return patterns, monthly_total
