"""Tests for RecurringPattern and RecurringOccurrence domain behaviour."""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from ledgermatch.models import (
    ConfidenceLevel,
    OccurrenceOutcome,
    RecurringOccurrence,
    RecurringPatternStatus,
)
from ledgermatch.models.recurring import confidence_level_for, interval_name_for
from tests.factories import RecurringPatternFactory


@pytest.mark.parametrize(
    ("days", "name"),
    [(7, "Weekly"), (14, "Biweekly"), (30, "Monthly"), (60, "Every 60 days")],
)
def test_interval_name(days, name):
    assert interval_name_for(days) == name


@pytest.mark.parametrize(
    ("score", "level"),
    [(0.95, ConfidenceLevel.HIGH), (0.75, ConfidenceLevel.HIGH), (0.6, ConfidenceLevel.MEDIUM), (0.3, ConfidenceLevel.LOW)],
)
def test_confidence_level(score, level):
    assert confidence_level_for(score) == level


class TestRecurringPattern:
    def test_costs(self):
        pattern = RecurringPatternFactory.build(average_amount=Decimal("15.99"), interval_days=30)

        assert pattern.monthly_cost == Decimal("16.22")
        assert pattern.annual_cost == Decimal("194.55")

    def test_days_until_due(self):
        pattern = RecurringPatternFactory.build(last_observed_at=date(2024, 1, 1), interval_days=30)

        assert pattern.next_expected_date == date(2024, 1, 31)
        assert pattern.days_until_due(date(2024, 1, 28)) == 3

    @pytest.mark.parametrize(
        ("description", "amount", "expected"),
        [
            ("POS NETFLIX.COM #12", Decimal("-15.99"), True),
            ("Netflix.com", Decimal("-18.50"), True),
            ("Netflix.com", Decimal("-25.00"), False),
            ("Netflix.com", Decimal("-10.00"), False),
            ("Hulu", Decimal("-15.99"), False),
        ],
    )
    def test_matches_transaction(self, description, amount, expected):
        pattern = RecurringPatternFactory.build(average_amount=Decimal("15.99"))

        assert pattern.matches_transaction(description, amount) is expected

    def test_record_match_folds_observation(self):
        pattern = RecurringPatternFactory.build(
            average_amount=Decimal("15.99"),
            occurrence_count=5,
            consecutive_misses=1,
            status=RecurringPatternStatus.AT_RISK,
        )

        pattern.record_match(date(2024, 3, 2), Decimal("-17.99"))

        assert pattern.average_amount == Decimal("16.32")
        assert pattern.occurrence_count == 6
        assert pattern.consecutive_misses == 0
        assert pattern.status == RecurringPatternStatus.ACTIVE
        assert pattern.last_observed_at == date(2024, 3, 2)
        assert pattern.next_expected_date == date(2024, 4, 1)

    def test_record_miss_progression(self):
        pattern = RecurringPatternFactory.build(last_observed_at=date(2024, 1, 1), interval_days=30)

        pattern.record_miss(cancel_after_misses=3)
        assert pattern.status == RecurringPatternStatus.AT_RISK
        assert pattern.next_expected_date == date(2024, 1, 1) + timedelta(days=60)

        pattern.record_miss(cancel_after_misses=3)
        assert pattern.status == RecurringPatternStatus.AT_RISK
        assert pattern.next_expected_date == date(2024, 1, 1) + timedelta(days=90)

        pattern.record_miss(cancel_after_misses=3)
        assert pattern.status == RecurringPatternStatus.CANCELLED
        assert pattern.consecutive_misses == 3

    def test_is_live(self):
        assert RecurringPatternFactory.build(status=RecurringPatternStatus.ACTIVE).is_live
        assert RecurringPatternFactory.build(status=RecurringPatternStatus.AT_RISK).is_live
        assert not RecurringPatternFactory.build(status=RecurringPatternStatus.PAUSED).is_live
        assert not RecurringPatternFactory.build(status=RecurringPatternStatus.CANCELLED).is_live


class TestRecurringOccurrence:
    def test_posted_on_time(self):
        pattern = RecurringPatternFactory.build(last_observed_at=date(2024, 1, 1))
        txn_id = uuid4()

        occurrence = RecurringOccurrence.posted(
            pattern, transaction_id=txn_id, actual_date=date(2024, 1, 30), actual_amount=Decimal("-16.49")
        )

        assert occurrence.outcome == OccurrenceOutcome.POSTED
        assert occurrence.transaction_id == txn_id
        assert occurrence.expected_date == date(2024, 1, 31)
        assert occurrence.actual_amount == Decimal("16.49")
        assert occurrence.amount_variance == Decimal("0.50")
        assert occurrence.days_late == 0

    def test_posted_late(self):
        pattern = RecurringPatternFactory.build(last_observed_at=date(2024, 1, 1))

        occurrence = RecurringOccurrence.posted(
            pattern, transaction_id=uuid4(), actual_date=date(2024, 2, 3), actual_amount=Decimal("-15.99")
        )

        assert occurrence.outcome == OccurrenceOutcome.LATE
        assert occurrence.days_late == 3

    def test_missed(self):
        pattern = RecurringPatternFactory.build(last_observed_at=date(2024, 1, 1))

        occurrence = RecurringOccurrence.missed(pattern)

        assert occurrence.outcome == OccurrenceOutcome.MISSED
        assert occurrence.transaction_id is None
        assert occurrence.expected_amount == pattern.average_amount
        assert occurrence.amount_variance is None
        assert occurrence.days_late == 0
