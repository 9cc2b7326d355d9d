"""API routers."""

from ledgermatch.routers import reconciliation, recurring

__all__ = ["reconciliation", "recurring"]
