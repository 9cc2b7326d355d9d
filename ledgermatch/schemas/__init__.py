"""Pydantic schemas package."""

from ledgermatch.schemas.base import BaseResponse, ListResponse
from ledgermatch.schemas.reconciliation import (
    CompleteSessionRequest,
    ExternalTransactionIn,
    ItemCounts,
    MatchingResultResponse,
    MatchRequest,
    ReconciliationItemResponse,
    ReconciliationSessionCreate,
    ReconciliationSessionResponse,
)
from ledgermatch.schemas.recurring import (
    DetectionRunResponse,
    RecurringOccurrenceResponse,
    RecurringPatternListResponse,
    RecurringPatternResponse,
    SweepRunResponse,
    TransactionMatchResponse,
    UpcomingBill,
    UpcomingBillsResponse,
)

__all__ = [
    "BaseResponse",
    "CompleteSessionRequest",
    "DetectionRunResponse",
    "ExternalTransactionIn",
    "ItemCounts",
    "ListResponse",
    "MatchRequest",
    "MatchingResultResponse",
    "ReconciliationItemResponse",
    "ReconciliationSessionCreate",
    "ReconciliationSessionResponse",
    "RecurringOccurrenceResponse",
    "RecurringPatternListResponse",
    "RecurringPatternResponse",
    "SweepRunResponse",
    "TransactionMatchResponse",
    "UpcomingBill",
    "UpcomingBillsResponse",
]
