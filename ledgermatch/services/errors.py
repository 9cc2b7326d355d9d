"""Service-level exceptions.

Routers translate these to HTTP responses; background jobs log them.
"""


class LedgerMatchError(Exception):
    """Base exception for matching and recurring-pattern services."""


class NotFoundError(LedgerMatchError):
    """Resource missing or owned by another user."""

    def __init__(self, resource_name: str, resource_id: object | None = None) -> None:
        self.resource_name = resource_name
        self.resource_id = resource_id
        message = f"{resource_name} not found"
        if resource_id is not None:
            message = f"{resource_name} {resource_id} not found"
        super().__init__(message)


class ValidationFailure(LedgerMatchError):
    """Malformed input or configuration, rejected before any work is done."""


class ConflictError(LedgerMatchError):
    """Operation not allowed in the resource's current state."""
