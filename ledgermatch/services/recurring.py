"""Recurring payment pattern detection.

Groups a user's expenses by normalized merchant key, fuzzily merges keys
that describe the same merchant, fits a weekly/biweekly/monthly interval
and scores how regular each group is. Accepted groups are upserted as
``RecurringPattern`` rows; detection never deletes existing patterns.
"""

import asyncio
import calendar
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ledgermatch.logger import async_log_timing, get_logger, log_exception
from ledgermatch.models import InternalTransaction
from ledgermatch.models.recurring import quantize_money
from ledgermatch.services import persistence
from ledgermatch.services.engine_config import DetectionConfig, load_detection_config
from ledgermatch.utils.similarity import format_merchant_name, normalize_description, string_similarity

logger = get_logger(__name__)

# (min average gap, max average gap, canonical interval) in days
INTERVAL_BUCKETS: tuple[tuple[int, int, int], ...] = (
    (5, 9, 7),
    (12, 16, 14),
    (26, 35, 30),
)

WEIGHT_OCCURRENCES = 0.40
WEIGHT_INTERVAL = 0.35
WEIGHT_AMOUNT = 0.25


@dataclass(frozen=True)
class DetectedPattern:
    """A merchant group that passed the interval and confidence checks."""

    merchant_name: str
    normalized_merchant_key: str
    interval_days: int
    average_amount: Decimal
    confidence: float
    next_expected_date: date
    last_observed_at: date
    occurrence_count: int


def months_before(day: date, months: int) -> date:
    """Same day-of-month ``months`` earlier, clamped to the month's length."""
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def classify_interval(average_gap: float) -> int | None:
    for low, high, interval in INTERVAL_BUCKETS:
        if low <= average_gap <= high:
            return interval
    return None


def group_by_merchant(
    transactions: Sequence[InternalTransaction],
) -> dict[str, list[InternalTransaction]]:
    groups: dict[str, list[InternalTransaction]] = {}
    for txn in transactions:
        key = normalize_description(txn.description)
        if not key:
            continue
        groups.setdefault(key, []).append(txn)
    return groups


def merge_similar_groups(
    groups: dict[str, list[InternalTransaction]],
    threshold: float = 0.8,
) -> dict[str, list[InternalTransaction]]:
    """Single-pass greedy merge, largest groups first.

    A group absorbed into a larger one is never re-split or compared again,
    and the larger group's key survives.
    """
    ordered = sorted(groups.items(), key=lambda item: len(item[1]), reverse=True)
    processed: set[str] = set()
    merged: dict[str, list[InternalTransaction]] = {}

    for key, transactions in ordered:
        if key in processed:
            continue
        processed.add(key)
        combined = list(transactions)

        for other_key, other_transactions in ordered:
            if other_key in processed:
                continue
            if string_similarity(key, other_key) > threshold:
                combined.extend(other_transactions)
                processed.add(other_key)

        merged[key] = combined
    return merged


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def _mean_abs_deviation(values: Sequence[float], center: float) -> float:
    return _mean([abs(value - center) for value in values])


def occurrence_score(interval_count: int) -> float:
    """Score by the number of observed gaps, so two payments give one interval."""
    if interval_count >= 5:
        return 1.0
    if interval_count == 4:
        return 0.9
    if interval_count == 3:
        return 0.75
    if interval_count == 2:
        return 0.5
    return 0.0


def interval_consistency(intervals: Sequence[int], expected_interval: int) -> float:
    deviation = _mean_abs_deviation([float(i) for i in intervals], float(expected_interval))
    return max(0.0, 1.0 - deviation / (expected_interval * 0.3))


def amount_consistency(amounts: Sequence[Decimal]) -> float:
    if len(amounts) < 2:
        return 0.5
    values = [float(a) for a in amounts]
    average = _mean(values)
    if average == 0:
        return 1.0
    return max(0.0, 1.0 - _mean_abs_deviation(values, average) / (average * 0.1))


def compute_confidence(
    intervals: Sequence[int],
    expected_interval: int,
    amounts: Sequence[Decimal],
) -> float:
    """Weighted regularity score in [0, 1]."""
    score = (
        WEIGHT_OCCURRENCES * occurrence_score(len(intervals))
        + WEIGHT_INTERVAL * interval_consistency(intervals, expected_interval)
        + WEIGHT_AMOUNT * amount_consistency(amounts)
    )
    return min(1.0, max(0.0, score))


def detect_pattern(
    key: str,
    transactions: Sequence[InternalTransaction],
    config: DetectionConfig,
) -> DetectedPattern | None:
    """Fit one merchant group, or return None when it is not recurring."""
    if len(transactions) < config.min_occurrences:
        return None

    ordered = sorted(enumerate(transactions), key=lambda pair: (pair[1].txn_date, pair[0]))
    ordered_txns = [txn for _, txn in ordered]

    # Same-day duplicates carry no interval information
    intervals = [
        gap
        for gap in (
            (current.txn_date - previous.txn_date).days
            for previous, current in zip(ordered_txns, ordered_txns[1:])
        )
        if gap > 0
    ]
    if not intervals:
        return None

    interval_days = classify_interval(_mean([float(i) for i in intervals]))
    if interval_days is None:
        return None

    amounts = [abs(txn.amount) for txn in ordered_txns]
    average_amount = quantize_money(sum(amounts, Decimal("0")) / len(amounts))
    confidence = round(compute_confidence(intervals, interval_days, amounts), 4)
    if confidence < config.min_confidence:
        logger.debug(
            "Merchant group below confidence threshold",
            merchant_key=key,
            confidence=confidence,
            occurrences=len(ordered_txns),
        )
        return None

    last = ordered_txns[-1]
    return DetectedPattern(
        merchant_name=format_merchant_name(last.description),
        normalized_merchant_key=key,
        interval_days=interval_days,
        average_amount=average_amount,
        confidence=confidence,
        next_expected_date=last.txn_date + timedelta(days=interval_days),
        last_observed_at=last.txn_date,
        occurrence_count=len(ordered_txns),
    )


def detect_patterns(
    transactions: Sequence[InternalTransaction],
    config: DetectionConfig,
) -> list[DetectedPattern]:
    """Pure detection over an expense snapshot."""
    groups = merge_similar_groups(group_by_merchant(transactions), config.merge_similarity_threshold)
    detected: list[DetectedPattern] = []
    for key, group in groups.items():
        pattern = detect_pattern(key, group, config)
        if pattern is not None:
            detected.append(pattern)
    return detected


async def detect_and_persist_patterns(
    db: AsyncSession,
    *,
    user_id: UUID,
    config: DetectionConfig | None = None,
    today: date | None = None,
    stop_event: asyncio.Event | None = None,
) -> int:
    """Detect patterns over the lookback window and upsert them.

    Each merchant is committed on its own; a failing merchant is logged and
    skipped. Returns the number of patterns successfully upserted.
    """
    config = config or load_detection_config()
    today = today or datetime.now(UTC).date()
    since = months_before(today, config.lookback_months)

    async with async_log_timing("detect_patterns", logger=logger, user_id=str(user_id)) as timing:
        transactions = await persistence.get_expense_transactions(db, user_id=user_id, since=since, until=today)
        candidates = detect_patterns(transactions, config)
        timing["transactions"] = len(transactions)
        timing["candidates"] = len(candidates)

        upserted = 0
        for candidate in candidates:
            if stop_event is not None and stop_event.is_set():
                logger.info("Pattern detection cancelled", user_id=str(user_id), upserted=upserted)
                break
            try:
                await persistence.upsert_pattern(db, candidate, user_id=user_id)
                await db.commit()
                upserted += 1
            except Exception as exc:
                await db.rollback()
                log_exception(
                    logger,
                    exc,
                    "Failed to upsert recurring pattern",
                    user_id=str(user_id),
                    merchant_key=candidate.normalized_merchant_key,
                )
        timing["upserted"] = upserted

    return upserted
