"""Upcoming bill forecast derived from live recurring patterns."""

from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ledgermatch.logger import get_logger
from ledgermatch.models.recurring import quantize_money
from ledgermatch.schemas.recurring import UpcomingBill, UpcomingBillsResponse
from ledgermatch.services import persistence
from ledgermatch.services.errors import ValidationFailure

logger = get_logger(__name__)

DEFAULT_DAYS_AHEAD = 7
MAX_DAYS_AHEAD = 365


async def get_upcoming_bills(
    db: AsyncSession,
    *,
    user_id: UUID,
    days_ahead: int = DEFAULT_DAYS_AHEAD,
    today: date | None = None,
) -> UpcomingBillsResponse:
    """Bills expected within [today, today + days_ahead]. Read-only.

    Sorted by days until due, then by confidence (highest first).
    """
    if not 0 <= days_ahead <= MAX_DAYS_AHEAD:
        raise ValidationFailure(f"days_ahead must be between 0 and {MAX_DAYS_AHEAD}")

    today = today or datetime.now(UTC).date()
    patterns = await persistence.get_upcoming_patterns(
        db,
        user_id=user_id,
        start=today,
        end=today + timedelta(days=days_ahead),
    )

    bills = [
        UpcomingBill(
            pattern_id=pattern.id,
            merchant_name=pattern.merchant_name,
            expected_amount=quantize_money(pattern.average_amount),
            expected_date=pattern.next_expected_date,
            days_until_due=pattern.days_until_due(today),
            confidence_score=round(pattern.confidence, 2),
            confidence_level=pattern.confidence_level,
            interval_name=pattern.interval_name,
            occurrence_count=pattern.occurrence_count,
            monthly_cost=pattern.monthly_cost,
        )
        for pattern in patterns
    ]
    bills.sort(key=lambda bill: (bill.days_until_due, -bill.confidence_score))

    total = sum((bill.expected_amount for bill in bills), Decimal("0.00"))
    logger.debug("Upcoming bills projected", user_id=str(user_id), days_ahead=days_ahead, count=len(bills))
    return UpcomingBillsResponse(
        bills=bills,
        total_bills_count=len(bills),
        total_expected_amount=total,
    )
