"""Pydantic schemas for reconciliation API."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from ledgermatch.models import MatchMethod, ReconciliationItemType, ReconciliationSessionStatus
from ledgermatch.schemas.base import BaseResponse
from ledgermatch.services.matching import ExternalTransaction, MatchingResult


class ReconciliationSessionCreate(BaseModel):
    """Request body to start reconciling a statement."""

    account_id: UUID
    statement_start_date: date | None = None
    statement_end_date: date
    statement_end_balance: Decimal
    notes: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def check_period(self) -> "ReconciliationSessionCreate":
        if self.statement_start_date and self.statement_start_date > self.statement_end_date:
            raise ValueError("statement_start_date must not be after statement_end_date")
        return self


class ItemCounts(BaseModel):
    matched: int = 0
    unmatched_app: int = 0
    unmatched_bank: int = 0


class ReconciliationSessionResponse(BaseResponse):
    id: UUID
    account_id: UUID
    statement_start_date: date | None
    statement_end_date: date
    statement_end_balance: Decimal
    calculated_balance: Decimal | None
    balance_difference: Decimal
    is_balanced: bool
    status: ReconciliationSessionStatus
    notes: str | None
    completed_at: datetime | None
    created_at: datetime
    item_counts: ItemCounts = Field(default_factory=ItemCounts)


class ExternalTransactionIn(BaseModel):
    """A bank-reported transaction as parsed from a statement file or feed."""

    external_id: str = Field(min_length=1, max_length=200)
    amount: Decimal
    txn_date: date
    description: str = Field(default="", max_length=500)

    def to_domain(self) -> ExternalTransaction:
        return ExternalTransaction(
            external_id=self.external_id,
            amount=self.amount,
            txn_date=self.txn_date,
            description=self.description,
        )


class MatchRequest(BaseModel):
    """Request body to (re)run matching for a session."""

    external_transactions: list[ExternalTransactionIn] = Field(default_factory=list)
    start_date: date | None = None
    end_date: date | None = None
    # Tuning; omitted values fall back to config/engine.yaml
    amount_tolerance: Decimal | None = None
    use_description_matching: bool | None = None
    use_date_range_matching: bool | None = None
    date_tolerance_days: int | None = None


class MatchedPairResponse(BaseModel):
    external_id: str
    transaction_id: UUID
    confidence: float
    method: MatchMethod
    reason: str


class MatchingResultResponse(BaseModel):
    matched: list[MatchedPairResponse]
    unmatched_transaction_ids: list[UUID]
    unmatched_bank: list[dict[str, Any]]
    exact_matches: int
    fuzzy_matches: int
    unmatched_bank_count: int
    unmatched_app_count: int
    overall_match_percentage: float

    @classmethod
    def from_result(cls, result: MatchingResult) -> "MatchingResultResponse":
        return cls(
            matched=[
                MatchedPairResponse(
                    external_id=pair.external.external_id,
                    transaction_id=pair.internal.id,
                    confidence=pair.confidence,
                    method=pair.method,
                    reason=pair.reason,
                )
                for pair in result.matched_pairs
            ],
            unmatched_transaction_ids=[txn.id for txn in result.unmatched_internal],
            unmatched_bank=[ext.snapshot() for ext in result.unmatched_external],
            exact_matches=result.exact_matches,
            fuzzy_matches=result.fuzzy_matches,
            unmatched_bank_count=result.unmatched_bank,
            unmatched_app_count=result.unmatched_app,
            overall_match_percentage=result.overall_match_percentage,
        )


class CompleteSessionRequest(BaseModel):
    force: bool = False
    notes: str | None = Field(default=None, max_length=2000)


class ReconciliationItemResponse(BaseResponse):
    id: UUID
    transaction_id: UUID | None
    item_type: ReconciliationItemType
    match_confidence: float | None
    match_method: MatchMethod | None
    bank_reference: dict[str, Any] | None
