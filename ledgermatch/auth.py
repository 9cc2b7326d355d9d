"""Authentication helpers for request-scoped user context.

Users are managed by an upstream identity service; this API only trusts the
``sub`` claim of a signed bearer token.
"""

from uuid import UUID

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer

from ledgermatch.security import decode_access_token
from ledgermatch.utils.exceptions import raise_unauthorized

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


async def get_current_user_id(token: str = Depends(oauth2_scheme)) -> UUID:
    """Resolve the current user ID from JWT token."""
    payload = decode_access_token(token)
    if not payload:
        raise_unauthorized("Could not validate credentials")

    user_id_str = payload.get("sub")
    if not user_id_str:
        raise_unauthorized("Token missing subject")

    try:
        return UUID(user_id_str)
    except ValueError as exc:
        raise_unauthorized("Invalid user ID format in token", cause=exc)
