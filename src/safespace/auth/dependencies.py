"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current identity from the request.

- get_current_user   → CurrentIdentity from the Bearer token (401 without)
- get_current_account → the active User row behind it (401 if it is gone
                        or suspended); every protected router depends on it
- require_admin       → 403 unless that user is a platform admin
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from safespace.auth.jwt import TokenError, user_id_from_token
from safespace.db.engine import get_db
from safespace.db.models import User


class CurrentIdentity:
    """The authenticated user making the request."""

    def __init__(self, user_id: int):
        self.user_id = user_id


async def get_current_user_optional(
    authorization: Optional[str] = Header(None),
) -> Optional[CurrentIdentity]:
    """Extract current identity (optional — returns None if no auth)."""
    if authorization and authorization.startswith("Bearer "):
        return _authenticate_jwt(authorization[7:])
    return None


async def get_current_user(
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
) -> CurrentIdentity:
    """Extract current identity (required — 401 if no auth)."""
    if not identity:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


async def get_current_account(
    identity: CurrentIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> User:
    user = await db.get(User, identity.user_id)
    if not user or user.status != "active":
        raise HTTPException(status_code=401, detail="Account not available")
    return user


async def require_admin(user: User = Depends(get_current_account)) -> User:
    if not user.has_role("admin"):
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def _authenticate_jwt(token: str) -> CurrentIdentity:
    """Authenticate via JWT token."""
    try:
        return CurrentIdentity(user_id=user_id_from_token(token))
    except TokenError as e:
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
