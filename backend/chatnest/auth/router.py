"""Session endpoints.

Endpoints:
    POST /auth/session - Sign in by username, returns a bearer token
    GET  /auth/me      - Profile of the current session
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from chatnest.store.schemas import ProfileRow, SessionRequest, SessionResponse
from chatnest.store.service import ChatStore

from .dependencies import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/session", response_model=SessionResponse)
async def create_session(request: SessionRequest) -> SessionResponse:
    """Sign in as ``username``, creating the profile on first use.

    Returns:
        SessionResponse with the bearer token and the profile record.
    """
    store = ChatStore.get_instance()
    username = request.username.strip()
    if not username:
        raise HTTPException(400, "Username required")

    profile = store.find_profile_by_username(username)
    if profile is None:
        profile = store.create_profile(username=username, email=request.email)

    token = store.issue_session(profile.id)
    logger.info("[Auth] Session issued for %s", profile.id)
    return SessionResponse(access_token=token, user=profile)


@router.get("/me", response_model=ProfileRow)
async def get_me(current_user: ProfileRow = Depends(get_current_user)) -> ProfileRow:
    """Get the profile of the current session."""
    return current_user
