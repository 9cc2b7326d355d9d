"""Recurring payment pattern models."""

from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, Float, ForeignKey, Integer, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from ledgermatch.database import Base
from ledgermatch.models.base import TimestampMixin, UserOwnedMixin, UUIDMixin
from ledgermatch.utils.similarity import normalize_description, string_similarity

CENTS = Decimal("0.01")
DAYS_PER_MONTH = Decimal("30.44")
DAYS_PER_YEAR = Decimal("365")


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


class RecurringPatternStatus(str, Enum):
    """Pattern lifecycle.

    ACTIVE and AT_RISK patterns are live (matched, swept, projected);
    PAUSED is a user decision; CANCELLED is reached after repeated misses
    or by the user.
    """

    ACTIVE = "active"
    AT_RISK = "at_risk"
    PAUSED = "paused"
    CANCELLED = "cancelled"


LIVE_STATUSES = (RecurringPatternStatus.ACTIVE, RecurringPatternStatus.AT_RISK)


class OccurrenceOutcome(str, Enum):
    POSTED = "posted"
    LATE = "late"
    MISSED = "missed"


class ConfidenceLevel(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


def confidence_level_for(score: float) -> ConfidenceLevel:
    if score >= 0.75:
        return ConfidenceLevel.HIGH
    if score >= 0.5:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def interval_name_for(interval_days: int) -> str:
    if interval_days <= 9:
        return "Weekly"
    if interval_days <= 16:
        return "Biweekly"
    if interval_days <= 35:
        return "Monthly"
    return f"Every {interval_days} days"


class RecurringPattern(Base, UUIDMixin, UserOwnedMixin, TimestampMixin):
    """A detected subscription or bill.

    Invariant: next_expected_date == last_observed_at + interval_days * (1 + consecutive_misses).
    Patterns are never hard-deleted so their occurrence history survives.
    """

    __tablename__ = "recurring_patterns"
    __table_args__ = (
        UniqueConstraint("user_id", "normalized_merchant_key", name="uq_recurring_patterns_user_key"),
    )

    merchant_name: Mapped[str] = mapped_column(String(200), nullable=False)
    normalized_merchant_key: Mapped[str] = mapped_column(String(200), nullable=False)
    interval_days: Mapped[int] = mapped_column(Integer, nullable=False)
    average_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    # Scores are non-monetary; floats are acceptable.
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[RecurringPatternStatus] = mapped_column(
        SQLEnum(RecurringPatternStatus, name="recurring_pattern_status_enum"),
        nullable=False,
        default=RecurringPatternStatus.ACTIVE,
    )
    next_expected_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    last_observed_at: Mapped[date] = mapped_column(Date, nullable=False)
    occurrence_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    consecutive_misses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    @property
    def interval_name(self) -> str:
        return interval_name_for(self.interval_days)

    @property
    def confidence_level(self) -> ConfidenceLevel:
        return confidence_level_for(self.confidence)

    @property
    def monthly_cost(self) -> Decimal:
        return quantize_money(self.average_amount * DAYS_PER_MONTH / self.interval_days)

    @property
    def annual_cost(self) -> Decimal:
        return quantize_money(self.average_amount * DAYS_PER_YEAR / self.interval_days)

    def days_until_due(self, today: date) -> int:
        return (self.next_expected_date - today).days

    def projected_next_date(self) -> date:
        return self.last_observed_at + timedelta(days=self.interval_days * (1 + self.consecutive_misses))

    def matches_transaction(
        self,
        description: str,
        amount: Decimal,
        *,
        similarity_threshold: float = 0.8,
        amount_tolerance_ratio: float = 0.2,
    ) -> bool:
        """True when the description resolves to this merchant and the amount is in range."""
        key_similarity = string_similarity(self.normalized_merchant_key, normalize_description(description))
        if key_similarity < similarity_threshold:
            return False

        ratio = Decimal(str(amount_tolerance_ratio))
        lower = self.average_amount * (1 - ratio)
        upper = self.average_amount * (1 + ratio)
        return lower <= abs(amount) <= upper

    def record_match(self, txn_date: date, amount: Decimal) -> None:
        """Fold an observed payment into the pattern."""
        total = self.average_amount * self.occurrence_count + abs(amount)
        self.average_amount = quantize_money(total / (self.occurrence_count + 1))
        self.occurrence_count += 1
        self.last_observed_at = txn_date
        self.consecutive_misses = 0
        self.status = RecurringPatternStatus.ACTIVE
        self.next_expected_date = self.projected_next_date()

    def record_miss(self, *, cancel_after_misses: int = 2) -> None:
        """Count a missed window and push the expectation out by one more interval."""
        self.consecutive_misses += 1
        if self.consecutive_misses >= cancel_after_misses:
            self.status = RecurringPatternStatus.CANCELLED
        else:
            self.status = RecurringPatternStatus.AT_RISK
        self.next_expected_date = self.projected_next_date()


class RecurringOccurrence(Base, UUIDMixin, UserOwnedMixin, TimestampMixin):
    """One posted, late or missed event of a pattern. Append-only."""

    __tablename__ = "recurring_occurrences"

    pattern_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("recurring_patterns.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    transaction_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("transactions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    expected_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    actual_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    actual_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    outcome: Mapped[OccurrenceOutcome] = mapped_column(
        SQLEnum(OccurrenceOutcome, name="occurrence_outcome_enum"),
        nullable=False,
    )

    @classmethod
    def posted(
        cls,
        pattern: RecurringPattern,
        *,
        transaction_id: UUID,
        actual_date: date,
        actual_amount: Decimal,
    ) -> "RecurringOccurrence":
        outcome = OccurrenceOutcome.LATE if actual_date > pattern.next_expected_date else OccurrenceOutcome.POSTED
        return cls(
            user_id=pattern.user_id,
            pattern_id=pattern.id,
            transaction_id=transaction_id,
            expected_date=pattern.next_expected_date,
            expected_amount=pattern.average_amount,
            actual_date=actual_date,
            actual_amount=abs(actual_amount),
            outcome=outcome,
        )

    @classmethod
    def missed(cls, pattern: RecurringPattern) -> "RecurringOccurrence":
        return cls(
            user_id=pattern.user_id,
            pattern_id=pattern.id,
            expected_date=pattern.next_expected_date,
            expected_amount=pattern.average_amount,
            outcome=OccurrenceOutcome.MISSED,
        )

    @property
    def amount_variance(self) -> Decimal | None:
        if self.actual_amount is None:
            return None
        return self.actual_amount - self.expected_amount

    @property
    def days_late(self) -> int:
        if self.actual_date is None:
            return 0
        return max(0, (self.actual_date - self.expected_date).days)
