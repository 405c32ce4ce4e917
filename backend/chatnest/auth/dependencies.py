"""FastAPI dependencies for bearer-token authentication."""
from typing import Optional

from fastapi import Header, HTTPException

from chatnest.store.schemas import ProfileRow
from chatnest.store.service import ChatStore


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_user(authorization: Optional[str] = Header(None)) -> ProfileRow:
    """Resolve the caller's profile from the bearer token.

    Use as a dependency for endpoints that require a session.
    """
    token = bearer_token(authorization)
    if token is None:
        raise HTTPException(401, "Not authenticated")

    user = ChatStore.get_instance().resolve_session(token)
    if user is None:
        raise HTTPException(401, "Session expired")
    return user
