"""Row and request models for the persistence collaborator.

Row models mirror the DuckDB tables one to one and are what the REST API
and the change feed put on the wire.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ProfileRow(BaseModel):
    """A row of the ``profiles`` table."""
    id: str
    username: Optional[str] = None
    email: Optional[str] = None


class RoomRow(BaseModel):
    """A row of the ``rooms`` table."""
    id: str
    title: str
    passkey: str
    created_by: Optional[str] = None
    created_at: datetime


class MessageRow(BaseModel):
    """A row of the ``messages`` table.

    ``author_id`` is None for AI-authored rows.
    """
    id: str
    content: str
    author_id: Optional[str] = None
    room_id: str
    is_ai: bool = False
    created_at: datetime


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class SessionRequest(BaseModel):
    username: str = Field(..., min_length=1, description="Display name to sign in as")
    email: Optional[str] = Field(default=None, description="Optional e-mail address")


class SessionResponse(BaseModel):
    access_token: str
    user: ProfileRow


class CreateRoomRequest(BaseModel):
    title: str
    passkey: str


class JoinRoomRequest(BaseModel):
    passkey: str


class InsertMessageRequest(BaseModel):
    content: str
    is_ai: bool = False
