"""Background recurring-pattern job: detection then missed sweep, per user."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledgermatch.config import settings
from ledgermatch.database import get_session_maker
from ledgermatch.logger import async_log_timing, get_logger, log_exception
from ledgermatch.services import persistence
from ledgermatch.services.engine_config import DetectionConfig, load_detection_config
from ledgermatch.services.lifecycle import process_missed_payments
from ledgermatch.services.recurring import detect_and_persist_patterns

logger = get_logger(__name__)


@dataclass
class JobRunSummary:
    users_processed: int = 0
    patterns_upserted: int = 0
    missed_recorded: int = 0
    failed_users: list[UUID] = field(default_factory=list)


async def process_all_users(
    sessionmaker: async_sessionmaker[AsyncSession] | None = None,
    *,
    config: DetectionConfig | None = None,
    today: date | None = None,
    stop_event: asyncio.Event | None = None,
) -> JobRunSummary:
    """Run detection and the missed-payment sweep for every active user.

    Every user gets a fresh session; one user failing does not stop the run.
    """
    session_factory = sessionmaker or get_session_maker()
    config = config or load_detection_config()
    today = today or datetime.now(UTC).date()
    summary = JobRunSummary()

    async with session_factory() as session:
        user_ids = await persistence.get_user_ids_with_activity(session)

    async with async_log_timing("recurring_job", logger=logger, users=len(user_ids)) as timing:
        for user_id in user_ids:
            if stop_event is not None and stop_event.is_set():
                logger.info("Recurring job cancelled", users_processed=summary.users_processed)
                break
            try:
                async with session_factory() as session:
                    summary.patterns_upserted += await detect_and_persist_patterns(
                        session, user_id=user_id, config=config, today=today, stop_event=stop_event
                    )
                    summary.missed_recorded += await process_missed_payments(
                        session, user_id=user_id, config=config, today=today, stop_event=stop_event
                    )
                summary.users_processed += 1
            except Exception as exc:
                summary.failed_users.append(user_id)
                log_exception(logger, exc, "Recurring job failed for user", user_id=str(user_id))

        timing["users_processed"] = summary.users_processed
        timing["patterns_upserted"] = summary.patterns_upserted
        timing["missed_recorded"] = summary.missed_recorded
        timing["failed_users"] = len(summary.failed_users)

    if summary.failed_users:
        logger.warning(
            "Recurring job finished with failures",
            failed_users=[str(user_id) for user_id in summary.failed_users],
        )
    return summary


async def run_recurring_supervisor(stop_event: asyncio.Event) -> None:
    """Run the recurring job periodically until stop_event is set."""
    while not stop_event.is_set():
        try:
            await process_all_users(stop_event=stop_event)
        except Exception:
            logger.exception("Recurring job run failed")

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=settings.recurring_job_interval_seconds)
        except TimeoutError:
            continue
