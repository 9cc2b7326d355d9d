"""Pydantic schemas for recurring patterns and upcoming bills."""

from datetime import date
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from ledgermatch.models import ConfidenceLevel, OccurrenceOutcome, RecurringPatternStatus
from ledgermatch.schemas.base import BaseResponse


class RecurringPatternResponse(BaseResponse):
    id: UUID
    merchant_name: str
    normalized_merchant_key: str
    interval_days: int
    interval_name: str
    average_amount: Decimal
    confidence: float
    confidence_level: ConfidenceLevel
    status: RecurringPatternStatus
    next_expected_date: date
    last_observed_at: date
    occurrence_count: int
    consecutive_misses: int
    monthly_cost: Decimal
    annual_cost: Decimal


class RecurringPatternListResponse(BaseModel):
    items: list[RecurringPatternResponse]
    total: int
    active_count: int
    total_monthly_cost: Decimal


class RecurringOccurrenceResponse(BaseResponse):
    id: UUID
    pattern_id: UUID
    transaction_id: UUID | None
    expected_date: date
    expected_amount: Decimal
    actual_date: date | None
    actual_amount: Decimal | None
    outcome: OccurrenceOutcome
    amount_variance: Decimal | None
    days_late: int


class UpcomingBill(BaseModel):
    pattern_id: UUID
    merchant_name: str
    expected_amount: Decimal
    expected_date: date
    days_until_due: int
    confidence_score: float
    confidence_level: ConfidenceLevel
    interval_name: str
    occurrence_count: int
    monthly_cost: Decimal


class UpcomingBillsResponse(BaseModel):
    bills: list[UpcomingBill] = Field(default_factory=list)
    total_bills_count: int = 0
    total_expected_amount: Decimal = Decimal("0.00")


class DetectionRunResponse(BaseModel):
    patterns_upserted: int


class SweepRunResponse(BaseModel):
    missed_recorded: int


class TransactionMatchResponse(BaseModel):
    transaction_id: UUID
    matched: bool
