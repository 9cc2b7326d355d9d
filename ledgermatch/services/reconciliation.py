"""Reconciliation sessions: statement matching runs and their lifecycle."""

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ledgermatch.logger import get_logger, log_timing
from ledgermatch.models import (
    AuditAction,
    ReconciliationAuditLog,
    ReconciliationItem,
    ReconciliationItemType,
    ReconciliationSession,
    ReconciliationSessionStatus,
)
from ledgermatch.services import matching, persistence
from ledgermatch.services.engine_config import MatchingConfig, load_matching_config, validate_matching_config
from ledgermatch.services.errors import ConflictError, NotFoundError, ValidationFailure

logger = get_logger(__name__)

# Sessions may be completed without force when at most this share of items is unmatched
MAX_UNMATCHED_RATIO = Decimal("0.05")


@dataclass(frozen=True)
class AuditEvent:
    """Structured audit record for a session lifecycle step."""

    action: AuditAction
    details: dict[str, Any] = field(default_factory=dict)
    message: str | None = None


async def record_audit_event(
    db: AsyncSession,
    session: ReconciliationSession,
    event: AuditEvent,
) -> ReconciliationAuditLog:
    entry = ReconciliationAuditLog(
        user_id=session.user_id,
        session_id=session.id,
        action=event.action,
        details=event.details,
        message=event.message,
    )
    db.add(entry)
    await db.flush()
    logger.info(
        "Reconciliation audit event",
        session_id=str(session.id),
        action=event.action.value,
        **event.details,
    )
    return entry


async def _require_session(
    db: AsyncSession,
    session_id: UUID,
    user_id: UUID,
    *,
    for_update: bool = False,
) -> ReconciliationSession:
    session = await persistence.get_session_for_user(db, session_id, user_id=user_id, for_update=for_update)
    if session is None:
        raise NotFoundError("Reconciliation session", session_id)
    return session


async def create_session(
    db: AsyncSession,
    *,
    user_id: UUID,
    account_id: UUID,
    statement_end_date: date,
    statement_end_balance: Decimal,
    statement_start_date: date | None = None,
    notes: str | None = None,
) -> ReconciliationSession:
    if statement_start_date is not None and statement_start_date > statement_end_date:
        raise ValidationFailure("statement_start_date must not be after statement_end_date")

    calculated = await persistence.sum_account_balance(
        db, user_id=user_id, account_id=account_id, as_of=statement_end_date
    )
    session = ReconciliationSession(
        user_id=user_id,
        account_id=account_id,
        statement_start_date=statement_start_date,
        statement_end_date=statement_end_date,
        statement_end_balance=statement_end_balance,
        calculated_balance=calculated,
        status=ReconciliationSessionStatus.IN_PROGRESS,
        notes=notes,
    )
    db.add(session)
    await db.flush()

    await record_audit_event(
        db,
        session,
        AuditEvent(
            action=AuditAction.STARTED,
            details={
                "account_id": str(account_id),
                "statement_end_date": statement_end_date.isoformat(),
                "statement_end_balance": str(statement_end_balance),
                "calculated_balance": str(calculated),
                "balance_difference": str(session.balance_difference),
            },
        ),
    )
    return session


async def get_session(db: AsyncSession, session_id: UUID, *, user_id: UUID) -> ReconciliationSession:
    return await _require_session(db, session_id, user_id)


async def get_session_items(
    db: AsyncSession,
    session_id: UUID,
    *,
    user_id: UUID,
) -> list[ReconciliationItem]:
    await _require_session(db, session_id, user_id)
    return await persistence.get_reconciliation_items(db, session_id)


async def count_session_items(db: AsyncSession, session_id: UUID) -> dict[ReconciliationItemType, int]:
    items = await persistence.get_reconciliation_items(db, session_id)
    return dict(Counter(item.item_type for item in items))


def build_items(result: matching.MatchingResult) -> list[ReconciliationItem]:
    """Translate a matching result into reconciliation items."""
    items: list[ReconciliationItem] = []
    for pair in result.matched_pairs:
        items.append(
            ReconciliationItem(
                transaction_id=pair.internal.id,
                item_type=ReconciliationItemType.MATCHED,
                match_confidence=pair.confidence,
                match_method=pair.method,
                bank_reference={**pair.external.snapshot(), "match_reason": pair.reason},
            )
        )
    for txn in result.unmatched_internal:
        items.append(
            ReconciliationItem(
                transaction_id=txn.id,
                item_type=ReconciliationItemType.UNMATCHED_APP,
            )
        )
    for ext in result.unmatched_external:
        items.append(
            ReconciliationItem(
                item_type=ReconciliationItemType.UNMATCHED_BANK,
                bank_reference=ext.snapshot(),
            )
        )
    return items


async def match_transactions(
    db: AsyncSession,
    session_id: UUID,
    *,
    user_id: UUID,
    external_transactions: Sequence[matching.ExternalTransaction],
    config: MatchingConfig | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> matching.MatchingResult:
    """Run matching for a session and replace its items with the outcome.

    Re-running with the same inputs produces the same item set. The session
    row stays locked until the caller commits.

    Raises:
        ValidationFailure: malformed config or window.
        NotFoundError: session missing or owned by another user.
        ConflictError: session is no longer in progress.
    """
    config = validate_matching_config(config or load_matching_config())

    session = await _require_session(db, session_id, user_id, for_update=True)
    if session.status != ReconciliationSessionStatus.IN_PROGRESS:
        raise ConflictError(f"Reconciliation session is {session.status.value}")

    window_end = end_date or session.statement_end_date
    window_start = (
        start_date
        or session.statement_start_date
        or window_end - timedelta(days=config.default_window_days)
    )
    if window_start > window_end:
        raise ValidationFailure("start_date must not be after end_date")

    internal = await persistence.get_internal_transactions_by_date_range(
        db,
        user_id=user_id,
        account_id=session.account_id,
        start=window_start,
        end=window_end,
        exclude_reconciled=True,
    )

    with log_timing("match_transactions", logger=logger, session_id=str(session_id)) as timing:
        result = matching.match_transactions(internal, external_transactions, config)
        timing["matched"] = len(result.matched_pairs)
        timing["unmatched_bank"] = result.unmatched_bank
        timing["unmatched_app"] = result.unmatched_app

    removed = await persistence.replace_reconciliation_items(db, session, build_items(result))

    await record_audit_event(
        db,
        session,
        AuditEvent(
            action=AuditAction.MATCHING_RUN,
            details={
                "window_start": window_start.isoformat(),
                "window_end": window_end.isoformat(),
                "external_count": len(external_transactions),
                "internal_count": len(internal),
                "exact_matches": result.exact_matches,
                "fuzzy_matches": result.fuzzy_matches,
                "unmatched_bank": result.unmatched_bank,
                "unmatched_app": result.unmatched_app,
                "items_replaced": removed,
                "overall_match_percentage": result.overall_match_percentage,
            },
        ),
    )
    return result


async def complete_session(
    db: AsyncSession,
    session_id: UUID,
    *,
    user_id: UUID,
    force: bool = False,
    notes: str | None = None,
) -> ReconciliationSession:
    """Finalize a session and mark its matched transactions reconciled.

    Without ``force`` the session must have no unmatched items, or at most
    5% of its items unmatched.
    """
    session = await _require_session(db, session_id, user_id, for_update=True)
    if session.status == ReconciliationSessionStatus.COMPLETED:
        raise ConflictError("Reconciliation session is already completed")
    if session.status == ReconciliationSessionStatus.CANCELLED:
        raise ConflictError("Reconciliation session is cancelled")

    items = await persistence.get_reconciliation_items(db, session.id)
    matched_ids = [
        item.transaction_id
        for item in items
        if item.item_type == ReconciliationItemType.MATCHED and item.transaction_id is not None
    ]
    unmatched = sum(1 for item in items if item.item_type != ReconciliationItemType.MATCHED)

    if not force and unmatched and Decimal(unmatched) / Decimal(len(items)) > MAX_UNMATCHED_RATIO:
        raise ConflictError(
            f"{unmatched} of {len(items)} items are unmatched; resolve them or complete with force"
        )

    reconciled = await persistence.mark_transactions_reconciled(db, matched_ids)
    session.status = ReconciliationSessionStatus.COMPLETED
    session.completed_at = datetime.now(UTC)
    if notes is not None:
        session.notes = notes
    await db.flush()

    await record_audit_event(
        db,
        session,
        AuditEvent(
            action=AuditAction.COMPLETED,
            details={
                "reconciled_transactions": reconciled,
                "unmatched_items": unmatched,
                "total_items": len(items),
                "forced": force,
                "balance_difference": str(session.balance_difference),
                "is_balanced": session.is_balanced,
            },
        ),
    )
    return session


async def cancel_session(db: AsyncSession, session_id: UUID, *, user_id: UUID) -> ReconciliationSession:
    session = await _require_session(db, session_id, user_id, for_update=True)
    if session.status == ReconciliationSessionStatus.COMPLETED:
        raise ConflictError("Completed reconciliation sessions cannot be cancelled")
    if session.status == ReconciliationSessionStatus.CANCELLED:
        return session

    session.status = ReconciliationSessionStatus.CANCELLED
    await db.flush()
    await record_audit_event(db, session, AuditEvent(action=AuditAction.CANCELLED))
    return session
