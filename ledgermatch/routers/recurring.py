"""Recurring payments API router."""

from uuid import UUID

from fastapi import APIRouter, Query

from ledgermatch.deps import CurrentUserId, DbSession
from ledgermatch.schemas import (
    DetectionRunResponse,
    ListResponse,
    RecurringOccurrenceResponse,
    RecurringPatternListResponse,
    RecurringPatternResponse,
    SweepRunResponse,
    TransactionMatchResponse,
    UpcomingBillsResponse,
)
from ledgermatch.services import lifecycle
from ledgermatch.services.errors import ConflictError, NotFoundError, ValidationFailure
from ledgermatch.services.recurring import detect_and_persist_patterns
from ledgermatch.services.upcoming_bills import DEFAULT_DAYS_AHEAD, MAX_DAYS_AHEAD, get_upcoming_bills
from ledgermatch.utils import raise_bad_request, raise_conflict, raise_not_found

router = APIRouter(prefix="/recurring", tags=["recurring"])


@router.post("/detect", response_model=DetectionRunResponse)
async def detect_patterns(db: DbSession, user_id: CurrentUserId) -> DetectionRunResponse:
    """Scan recent expenses and create or refresh recurring patterns."""
    upserted = await detect_and_persist_patterns(db, user_id=user_id)
    return DetectionRunResponse(patterns_upserted=upserted)


@router.post("/sweep", response_model=SweepRunResponse)
async def sweep_missed_payments(db: DbSession, user_id: CurrentUserId) -> SweepRunResponse:
    """Record misses for patterns whose expected payment date has passed."""
    recorded = await lifecycle.process_missed_payments(db, user_id=user_id)
    return SweepRunResponse(missed_recorded=recorded)


@router.post("/transactions/{transaction_id}/match", response_model=TransactionMatchResponse)
async def match_transaction(
    transaction_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> TransactionMatchResponse:
    try:
        matched = await lifecycle.match_transaction_by_id(db, transaction_id, user_id=user_id)
    except NotFoundError as e:
        raise_not_found(e.resource_name, cause=e)
    await db.commit()
    return TransactionMatchResponse(transaction_id=transaction_id, matched=matched)


@router.get("/upcoming-bills", response_model=UpcomingBillsResponse)
async def upcoming_bills(
    db: DbSession,
    user_id: CurrentUserId,
    days_ahead: int = Query(default=DEFAULT_DAYS_AHEAD, ge=0, le=MAX_DAYS_AHEAD),
) -> UpcomingBillsResponse:
    try:
        return await get_upcoming_bills(db, user_id=user_id, days_ahead=days_ahead)
    except ValidationFailure as e:
        raise_bad_request(str(e), cause=e)


@router.get("/patterns", response_model=RecurringPatternListResponse)
async def list_patterns(
    db: DbSession,
    user_id: CurrentUserId,
    include_inactive: bool = Query(default=False),
) -> RecurringPatternListResponse:
    patterns, monthly_total = await lifecycle.list_patterns(db, user_id=user_id, include_inactive=include_inactive)
    return RecurringPatternListResponse(
        items=[RecurringPatternResponse.model_validate(pattern) for pattern in patterns],
        total=len(patterns),
        active_count=sum(1 for pattern in patterns if pattern.is_live),
        total_monthly_cost=monthly_total,
    )


@router.get(
    "/patterns/{pattern_id}/occurrences",
    response_model=ListResponse[RecurringOccurrenceResponse],
)
async def list_occurrences(
    pattern_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> ListResponse[RecurringOccurrenceResponse]:
    try:
        occurrences = await lifecycle.get_pattern_occurrences(db, pattern_id, user_id=user_id)
    except NotFoundError as e:
        raise_not_found(e.resource_name, cause=e)
    return ListResponse[RecurringOccurrenceResponse](
        items=[RecurringOccurrenceResponse.model_validate(o) for o in occurrences],
        total=len(occurrences),
    )


@router.post("/patterns/{pattern_id}/pause", response_model=RecurringPatternResponse)
async def pause_pattern(pattern_id: UUID, db: DbSession, user_id: CurrentUserId) -> RecurringPatternResponse:
    try:
        pattern = await lifecycle.pause_pattern(db, pattern_id, user_id=user_id)
    except NotFoundError as e:
        raise_not_found(e.resource_name, cause=e)
    except ConflictError as e:
        raise_conflict(str(e), cause=e)
    await db.commit()
    return RecurringPatternResponse.model_validate(pattern)


@router.post("/patterns/{pattern_id}/resume", response_model=RecurringPatternResponse)
async def resume_pattern(pattern_id: UUID, db: DbSession, user_id: CurrentUserId) -> RecurringPatternResponse:
    try:
        pattern = await lifecycle.resume_pattern(db, pattern_id, user_id=user_id)
    except NotFoundError as e:
        raise_not_found(e.resource_name, cause=e)
    await db.commit()
    return RecurringPatternResponse.model_validate(pattern)


@router.post("/patterns/{pattern_id}/cancel", response_model=RecurringPatternResponse)
async def cancel_pattern(pattern_id: UUID, db: DbSession, user_id: CurrentUserId) -> RecurringPatternResponse:
    try:
        pattern = await lifecycle.cancel_pattern(db, pattern_id, user_id=user_id)
    except NotFoundError as e:
        raise_not_found(e.resource_name, cause=e)
    await db.commit()
    return RecurringPatternResponse.model_validate(pattern)
