"""Reconciliation API router."""

from dataclasses import replace
from uuid import UUID

from fastapi import APIRouter, status

from ledgermatch.deps import CurrentUserId, DbSession
from ledgermatch.logger import get_logger
from ledgermatch.models import ReconciliationItemType, ReconciliationSession
from ledgermatch.schemas import (
    CompleteSessionRequest,
    ItemCounts,
    ListResponse,
    MatchingResultResponse,
    MatchRequest,
    ReconciliationItemResponse,
    ReconciliationSessionCreate,
    ReconciliationSessionResponse,
)
from ledgermatch.services import reconciliation as reconciliation_service
from ledgermatch.services.engine_config import MatchingConfig, load_matching_config
from ledgermatch.services.errors import ConflictError, NotFoundError, ValidationFailure
from ledgermatch.utils import raise_bad_request, raise_conflict, raise_not_found

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])
logger = get_logger(__name__)


async def _session_response(db: DbSession, session: ReconciliationSession) -> ReconciliationSessionResponse:
    counts = await reconciliation_service.count_session_items(db, session.id)
    response = ReconciliationSessionResponse.model_validate(session)
    response.item_counts = ItemCounts(
        matched=counts.get(ReconciliationItemType.MATCHED, 0),
        unmatched_app=counts.get(ReconciliationItemType.UNMATCHED_APP, 0),
        unmatched_bank=counts.get(ReconciliationItemType.UNMATCHED_BANK, 0),
    )
    return response


def _matching_config(payload: MatchRequest) -> MatchingConfig:
    overrides = {
        name: value
        for name, value in (
            ("amount_tolerance", payload.amount_tolerance),
            ("use_description_matching", payload.use_description_matching),
            ("use_date_range_matching", payload.use_date_range_matching),
            ("date_tolerance_days", payload.date_tolerance_days),
        )
        if value is not None
    }
    return replace(load_matching_config(), **overrides)


@router.post("/sessions", response_model=ReconciliationSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    payload: ReconciliationSessionCreate,
    db: DbSession,
    user_id: CurrentUserId,
) -> ReconciliationSessionResponse:
    """Start reconciling an account against a bank statement."""
    try:
        session = await reconciliation_service.create_session(
            db,
            user_id=user_id,
            account_id=payload.account_id,
            statement_start_date=payload.statement_start_date,
            statement_end_date=payload.statement_end_date,
            statement_end_balance=payload.statement_end_balance,
            notes=payload.notes,
        )
    except ValidationFailure as e:
        raise_bad_request(str(e), cause=e)
    await db.commit()
    return await _session_response(db, session)


@router.get("/sessions/{session_id}", response_model=ReconciliationSessionResponse)
async def get_session(
    session_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> ReconciliationSessionResponse:
    try:
        session = await reconciliation_service.get_session(db, session_id, user_id=user_id)
    except NotFoundError as e:
        raise_not_found(e.resource_name, cause=e)
    return await _session_response(db, session)


@router.get("/sessions/{session_id}/items", response_model=ListResponse[ReconciliationItemResponse])
async def list_session_items(
    session_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> ListResponse[ReconciliationItemResponse]:
    try:
        items = await reconciliation_service.get_session_items(db, session_id, user_id=user_id)
    except NotFoundError as e:
        raise_not_found(e.resource_name, cause=e)
    return ListResponse[ReconciliationItemResponse](
        items=[ReconciliationItemResponse.model_validate(item) for item in items],
        total=len(items),
    )


@router.post("/sessions/{session_id}/match", response_model=MatchingResultResponse)
async def match_session(
    session_id: UUID,
    payload: MatchRequest,
    db: DbSession,
    user_id: CurrentUserId,
) -> MatchingResultResponse:
    """Match bank transactions against the ledger, replacing earlier results."""
    try:
        result = await reconciliation_service.match_transactions(
            db,
            session_id,
            user_id=user_id,
            external_transactions=[txn.to_domain() for txn in payload.external_transactions],
            config=_matching_config(payload),
            start_date=payload.start_date,
            end_date=payload.end_date,
        )
    except ValidationFailure as e:
        raise_bad_request(str(e), cause=e)
    except NotFoundError as e:
        raise_not_found(e.resource_name, cause=e)
    except ConflictError as e:
        raise_conflict(str(e), cause=e)

    await db.commit()
    logger.info(
        "Reconciliation matching run",
        session_id=str(session_id),
        matched=len(result.matched_pairs),
        overall_match_percentage=result.overall_match_percentage,
    )
    return MatchingResultResponse.from_result(result)


@router.post("/sessions/{session_id}/complete", response_model=ReconciliationSessionResponse)
async def complete_session(
    session_id: UUID,
    payload: CompleteSessionRequest,
    db: DbSession,
    user_id: CurrentUserId,
) -> ReconciliationSessionResponse:
    try:
        session = await reconciliation_service.complete_session(
            db,
            session_id,
            user_id=user_id,
            force=payload.force,
            notes=payload.notes,
        )
    except NotFoundError as e:
        raise_not_found(e.resource_name, cause=e)
    except ConflictError as e:
        raise_conflict(str(e), cause=e)
    await db.commit()
    return await _session_response(db, session)


@router.post("/sessions/{session_id}/cancel", response_model=ReconciliationSessionResponse)
async def cancel_session(
    session_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> ReconciliationSessionResponse:
    try:
        session = await reconciliation_service.cancel_session(db, session_id, user_id=user_id)
    except NotFoundError as e:
        raise_not_found(e.resource_name, cause=e)
    except ConflictError as e:
        raise_conflict(str(e), cause=e)
    await db.commit()
    return await _session_response(db, session)
