"""SQLAlchemy models package."""

from ledgermatch.models.reconciliation import (
    AuditAction,
    MatchMethod,
    ReconciliationAuditLog,
    ReconciliationItem,
    ReconciliationItemType,
    ReconciliationSession,
    ReconciliationSessionStatus,
)
from ledgermatch.models.recurring import (
    ConfidenceLevel,
    OccurrenceOutcome,
    RecurringOccurrence,
    RecurringPattern,
    RecurringPatternStatus,
)
from ledgermatch.models.transaction import InternalTransaction, TransactionStatus

__all__ = [
    "AuditAction",
    "ConfidenceLevel",
    "InternalTransaction",
    "MatchMethod",
    "OccurrenceOutcome",
    "ReconciliationAuditLog",
    "ReconciliationItem",
    "ReconciliationItemType",
    "ReconciliationSession",
    "ReconciliationSessionStatus",
    "RecurringOccurrence",
    "RecurringPattern",
    "RecurringPatternStatus",
    "TransactionStatus",
]
