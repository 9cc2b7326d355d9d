"""Tests for recurring payment pattern detection."""

import asyncio
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from ledgermatch.models import RecurringPattern, RecurringPatternStatus
from ledgermatch.services import persistence
from ledgermatch.services import recurring as recurring_service
from ledgermatch.services.engine_config import DetectionConfig
from ledgermatch.services.recurring import (
    classify_interval,
    compute_confidence,
    detect_and_persist_patterns,
    detect_pattern,
    detect_patterns,
    group_by_merchant,
    merge_similar_groups,
    months_before,
)
from tests.factories import InternalTransactionFactory, RecurringPatternFactory, monthly_series

CONFIG = DetectionConfig()


def _dates(start: date, gaps: list[int]) -> list[date]:
    dates = [start]
    for gap in gaps:
        dates.append(dates[-1] + timedelta(days=gap))
    return dates


class TestHelpers:
    @pytest.mark.parametrize(
        ("day", "months", "expected"),
        [
            (date(2024, 7, 15), 6, date(2024, 1, 15)),
            (date(2024, 3, 31), 1, date(2024, 2, 29)),
            (date(2024, 2, 10), 6, date(2023, 8, 10)),
            (date(2023, 8, 31), 6, date(2023, 2, 28)),
        ],
    )
    def test_months_before(self, day, months, expected):
        assert months_before(day, months) == expected

    @pytest.mark.parametrize(
        ("gap", "interval"),
        [(5, 7), (7.5, 7), (9, 7), (10, None), (12, 14), (16, 14), (20, None), (26, 30), (35, 30), (36, None), (2, None)],
    )
    def test_classify_interval(self, gap, interval):
        assert classify_interval(gap) == interval

    def test_confidence_is_clamped(self):
        assert 0.0 <= compute_confidence([5, 60], 30, [Decimal("1"), Decimal("1000")]) <= 1.0
        assert compute_confidence([30] * 9, 30, [Decimal("9.99")] * 10) == pytest.approx(1.0)


class TestGrouping:
    def test_groups_by_normalized_key(self, user_id):
        txns = [
            InternalTransactionFactory.build(user_id=user_id, description="POS NETFLIX.COM 01/05"),
            InternalTransactionFactory.build(user_id=user_id, description="Netflix.com #881"),
            InternalTransactionFactory.build(user_id=user_id, description="Spotify"),
        ]

        groups = group_by_merchant(txns)

        assert set(groups) == {"netflix.com", "spotify"}
        assert len(groups["netflix.com"]) == 2

    def test_empty_keys_are_skipped(self, user_id):
        txns = [InternalTransactionFactory.build(user_id=user_id, description="#12345")]

        assert group_by_merchant(txns) == {}

    def test_merge_absorbs_similar_keys_into_larger_group(self, user_id):
        big = [InternalTransactionFactory.build(user_id=user_id) for _ in range(3)]
        small = [InternalTransactionFactory.build(user_id=user_id)]
        other = [InternalTransactionFactory.build(user_id=user_id)]

        merged = merge_similar_groups({"netflix.com": big, "netflix.co": small, "spotify": other})

        assert set(merged) == {"netflix.com", "spotify"}
        assert len(merged["netflix.com"]) == 4

    def test_merge_is_single_pass(self, user_id):
        """A key absorbed by the largest group is never compared again."""
        groups = {
            "abcdefghij": [InternalTransactionFactory.build(user_id=user_id) for _ in range(3)],
            "abcdefghiX": [InternalTransactionFactory.build(user_id=user_id) for _ in range(2)],
            "abcdefghYX": [InternalTransactionFactory.build(user_id=user_id)],
        }

        merged = merge_similar_groups(groups)

        # "abcdefghYX" is 0.9 similar to the second key but only 0.8 to the first
        assert set(merged) == {"abcdefghij", "abcdefghYX"}
        assert len(merged["abcdefghij"]) == 5


class TestDetectPattern:
    def test_monthly_subscription(self, user_id):
        """Five payments 30/31/29/30 days apart form a confident monthly pattern."""
        txns = monthly_series(
            user_id, "NETFLIX.COM", Decimal("-15.99"), _dates(date(2024, 1, 1), [30, 31, 29, 30])
        )

        pattern = detect_pattern("netflix.com", txns, CONFIG)

        assert pattern is not None
        assert pattern.interval_days == 30
        assert pattern.average_amount == Decimal("15.99")
        assert pattern.confidence >= 0.9
        assert pattern.occurrence_count == 5
        assert pattern.merchant_name == "Netflix.com"
        assert pattern.last_observed_at == txns[-1].txn_date
        assert pattern.next_expected_date == txns[-1].txn_date + timedelta(days=30)

    def test_irregular_pair_rejected(self, user_id):
        txns = [
            InternalTransactionFactory.build(
                user_id=user_id, description="Big Store", amount=Decimal("-500.00"), txn_date=date(2024, 1, 1)
            ),
            InternalTransactionFactory.build(
                user_id=user_id, description="Big Store", amount=Decimal("-5000.00"), txn_date=date(2024, 1, 3)
            ),
        ]

        assert detect_pattern("big store", txns, CONFIG) is None

    @pytest.mark.parametrize(("count", "confidence"), [(3, 0.8), (4, 0.9), (5, 0.96), (6, 1.0), (8, 1.0)])
    def test_exact_monthly_spacing(self, user_id, count, confidence):
        txns = monthly_series(user_id, "Gym", Decimal("-30.00"), _dates(date(2024, 1, 1), [30] * (count - 1)))

        pattern = detect_pattern("gym", txns, CONFIG)

        assert pattern.interval_days == 30
        assert pattern.confidence == pytest.approx(confidence)

    def test_two_payments_score_no_occurrence_weight(self, user_id):
        """A single interval earns nothing for occurrences; only regularity carries the pair."""
        txns = monthly_series(user_id, "Gym", Decimal("-30.00"), _dates(date(2024, 1, 1), [30]))

        pattern = detect_pattern("gym", txns, CONFIG)

        assert pattern.confidence == pytest.approx(0.6)

    def test_occurrence_weight_counts_intervals(self):
        amounts = [Decimal("9.99")] * 2

        assert compute_confidence([30], 30, amounts) == pytest.approx(0.6)
        assert compute_confidence([30, 30], 30, amounts + amounts[:1]) == pytest.approx(0.8)

    def test_weekly_and_biweekly(self, user_id):
        weekly = monthly_series(user_id, "Cleaner", Decimal("-40.00"), _dates(date(2024, 1, 1), [7, 7, 7]))
        biweekly = monthly_series(user_id, "Payroll Fee", Decimal("-5.00"), _dates(date(2024, 1, 1), [14, 14, 14]))

        assert detect_pattern("cleaner", weekly, CONFIG).interval_days == 7
        assert detect_pattern("payroll fee", biweekly, CONFIG).interval_days == 14

    def test_same_day_duplicates_ignored_for_interval(self, user_id):
        dates = [date(2024, 1, 1), date(2024, 1, 1), date(2024, 1, 31), date(2024, 3, 1)]
        txns = monthly_series(user_id, "Gym", Decimal("-30.00"), dates)

        pattern = detect_pattern("gym", txns, CONFIG)

        assert pattern.interval_days == 30
        assert pattern.occurrence_count == 4

    def test_all_same_day_rejected(self, user_id):
        txns = monthly_series(user_id, "Gym", Decimal("-30.00"), [date(2024, 1, 1)] * 3)

        assert detect_pattern("gym", txns, CONFIG) is None

    def test_single_transaction_rejected(self, user_id):
        txns = monthly_series(user_id, "Gym", Decimal("-30.00"), [date(2024, 1, 1)])

        assert detect_pattern("gym", txns, CONFIG) is None

    def test_average_amount_rounds_half_up(self, user_id):
        txns = [
            InternalTransactionFactory.build(
                user_id=user_id, description="Power", amount=Decimal("-10.00"), txn_date=date(2024, 1, 1)
            ),
            InternalTransactionFactory.build(
                user_id=user_id, description="Power", amount=Decimal("-10.01"), txn_date=date(2024, 1, 31)
            ),
        ]

        pattern = detect_pattern("power", txns, CONFIG)

        assert pattern.average_amount == Decimal("10.01")

    def test_display_name_from_latest_transaction(self, user_id):
        txns = [
            InternalTransactionFactory.build(
                user_id=user_id, description="NETFLIX.CO", amount=Decimal("-15.99"), txn_date=date(2024, 1, 1)
            ),
            InternalTransactionFactory.build(
                user_id=user_id, description="POS NETFLIX.COM", amount=Decimal("-15.99"), txn_date=date(2024, 1, 31)
            ),
        ]

        pattern = detect_pattern("netflix.com", txns, CONFIG)

        assert pattern.merchant_name == "Netflix.com"

    def test_detect_patterns_merges_variants(self, user_id):
        dates = _dates(date(2024, 1, 1), [30, 30, 30])
        txns = monthly_series(user_id, "NETFLIX.COM", Decimal("-15.99"), dates[:3])
        txns += monthly_series(user_id, "NETFLIX.CO", Decimal("-15.99"), dates[3:])

        patterns = detect_patterns(txns, CONFIG)

        assert len(patterns) == 1
        assert patterns[0].normalized_merchant_key == "netflix.com"
        assert patterns[0].occurrence_count == 4


class TestDetectAndPersist:
    @pytest.mark.asyncio
    async def test_creates_patterns_within_lookback(self, db, user_id):
        today = date(2024, 6, 20)
        for day in _dates(date(2024, 2, 1), [30, 30, 30, 30]):
            await InternalTransactionFactory.create_async(
                db, user_id=user_id, description="NETFLIX.COM", amount=Decimal("-15.99"), txn_date=day
            )
        # Income and transfers are never recurring expenses
        for day in _dates(date(2024, 2, 1), [30, 30, 30]):
            await InternalTransactionFactory.create_async(
                db, user_id=user_id, description="Salary", amount=Decimal("2000.00"), txn_date=day
            )
            await InternalTransactionFactory.create_async(
                db,
                user_id=user_id,
                description="Savings Transfer",
                amount=Decimal("-100.00"),
                txn_date=day,
                transfer_id=user_id,
            )
        await db.commit()

        count = await detect_and_persist_patterns(db, user_id=user_id, today=today)

        assert count == 1
        patterns = await persistence.list_patterns(db, user_id=user_id)
        assert [p.normalized_merchant_key for p in patterns] == ["netflix.com"]
        pattern = patterns[0]
        assert pattern.status == RecurringPatternStatus.ACTIVE
        assert pattern.interval_days == 30
        assert pattern.occurrence_count == 5
        assert pattern.consecutive_misses == 0

    @pytest.mark.asyncio
    async def test_transactions_outside_lookback_ignored(self, db, user_id):
        for day in _dates(date(2023, 1, 1), [30, 30, 30]):
            await InternalTransactionFactory.create_async(
                db, user_id=user_id, description="Old Gym", amount=Decimal("-30.00"), txn_date=day
            )
        await db.commit()

        count = await detect_and_persist_patterns(db, user_id=user_id, today=date(2024, 6, 20))

        assert count == 0

    @pytest.mark.asyncio
    async def test_rerun_updates_existing_pattern(self, db, user_id):
        today = date(2024, 6, 20)
        for day in _dates(date(2024, 3, 1), [30, 30]):
            await InternalTransactionFactory.create_async(
                db, user_id=user_id, description="Gym", amount=Decimal("-30.00"), txn_date=day
            )
        await db.commit()
        await detect_and_persist_patterns(db, user_id=user_id, today=today)

        await InternalTransactionFactory.create_async(
            db, user_id=user_id, description="Gym", amount=Decimal("-30.00"), txn_date=date(2024, 5, 30)
        )
        await db.commit()
        await detect_and_persist_patterns(db, user_id=user_id, today=today)

        result = await db.execute(select(RecurringPattern).where(RecurringPattern.user_id == user_id))
        patterns = result.scalars().all()
        assert len(patterns) == 1
        assert patterns[0].occurrence_count == 4
        assert patterns[0].last_observed_at == date(2024, 5, 30)
        assert patterns[0].next_expected_date == date(2024, 6, 29)

    @pytest.mark.asyncio
    async def test_rerun_without_new_evidence_keeps_misses(self, db, user_id):
        """Detection alone does not clear a miss the sweep has already recorded."""
        days = _dates(date(2024, 3, 1), [30, 30])
        for day in days:
            await InternalTransactionFactory.create_async(
                db, user_id=user_id, description="Gym", amount=Decimal("-30.00"), txn_date=day
            )
        await RecurringPatternFactory.create_async(
            db,
            user_id=user_id,
            merchant_name="Gym",
            normalized_merchant_key="gym",
            interval_days=30,
            average_amount=Decimal("30.00"),
            last_observed_at=days[-1],
            consecutive_misses=1,
            status=RecurringPatternStatus.AT_RISK,
        )
        await db.commit()

        await detect_and_persist_patterns(db, user_id=user_id, today=date(2024, 6, 20))

        pattern = (await persistence.list_patterns(db, user_id=user_id))[0]
        assert pattern.consecutive_misses == 1
        assert pattern.status == RecurringPatternStatus.AT_RISK
        assert pattern.next_expected_date == days[-1] + timedelta(days=60)

    @pytest.mark.asyncio
    async def test_one_failing_merchant_does_not_abort_run(self, db, user_id, monkeypatch):
        for name in ("Gym", "Spotify"):
            for day in _dates(date(2024, 3, 1), [30, 30]):
                await InternalTransactionFactory.create_async(
                    db, user_id=user_id, description=name, amount=Decimal("-12.00"), txn_date=day
                )
        await db.commit()

        real_upsert = persistence.upsert_pattern

        async def flaky_upsert(session, detected, *, user_id):
            if detected.normalized_merchant_key == "gym":
                raise RuntimeError("boom")
            return await real_upsert(session, detected, user_id=user_id)

        monkeypatch.setattr(recurring_service.persistence, "upsert_pattern", flaky_upsert)

        count = await detect_and_persist_patterns(db, user_id=user_id, today=date(2024, 6, 20))

        assert count == 1
        patterns = await persistence.list_patterns(db, user_id=user_id)
        assert [p.normalized_merchant_key for p in patterns] == ["spotify"]

    @pytest.mark.asyncio
    async def test_stop_event_halts_between_merchants(self, db, user_id):
        for day in _dates(date(2024, 3, 1), [30, 30]):
            await InternalTransactionFactory.create_async(
                db, user_id=user_id, description="Gym", amount=Decimal("-12.00"), txn_date=day
            )
        await db.commit()
        stop_event = asyncio.Event()
        stop_event.set()

        count = await detect_and_persist_patterns(
            db, user_id=user_id, today=date(2024, 6, 20), stop_event=stop_event
        )

        assert count == 0
