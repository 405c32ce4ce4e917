"""Rooms, messages and profiles REST API plus the live insert feed.

Endpoints:
    POST /rooms                          - Create a room (title + passkey)
    POST /rooms/join                     - Resolve a room by passkey
    GET  /rooms/{room_id}                - Room details
    GET  /rooms/{room_id}/messages       - Most recent messages, oldest first
    POST /rooms/{room_id}/messages       - Insert one message
    GET  /profiles                       - Batch profile lookup (?ids=...)
    GET  /profiles/{profile_id}          - Single profile lookup
    WebSocket /ws/rooms/{room_id}/messages - Stream of inserted message rows

Live feed frames:
    {"type": "INSERT", "table": "messages", "record": {...message row...}}
"""
import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect

from chatnest.auth.dependencies import get_current_user
from chatnest.config import MAX_HISTORY_LIMIT
from chatnest.errors import DraftValidationError, RoomNotFoundError

from .feed import ChangeFilter, FeedHandle
from .schemas import (
    CreateRoomRequest,
    InsertMessageRequest,
    JoinRoomRequest,
    MessageRow,
    ProfileRow,
    RoomRow,
)
from .service import ChatStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])


# ============================================================================
# ROOMS
# ============================================================================


@router.post("/rooms", response_model=RoomRow)
async def create_room(
    request: CreateRoomRequest,
    current_user: ProfileRow = Depends(get_current_user),
) -> RoomRow:
    """Create a new passkey-protected room.

    Raises:
        HTTPException: 400 if title or passkey is blank.
    """
    try:
        return ChatStore.get_instance().create_room(
            title=request.title,
            passkey=request.passkey,
            created_by=current_user.id,
        )
    except DraftValidationError as e:
        raise HTTPException(400, str(e))


@router.post("/rooms/join", response_model=RoomRow)
async def join_room(
    request: JoinRoomRequest,
    current_user: ProfileRow = Depends(get_current_user),
) -> RoomRow:
    """Resolve the room a passkey opens.

    Raises:
        HTTPException: 404 if no room uses the passkey.
    """
    try:
        room = ChatStore.get_instance().find_room_by_passkey(request.passkey)
    except RoomNotFoundError as e:
        raise HTTPException(404, str(e))
    logger.info("[Rooms] %s joined room %s", current_user.id, room.id)
    return room


@router.get("/rooms/{room_id}", response_model=RoomRow)
async def get_room(room_id: str) -> RoomRow:
    room = ChatStore.get_instance().get_room(room_id)
    if room is None:
        raise HTTPException(404, "Room not found")
    return room


# ============================================================================
# MESSAGES
# ============================================================================


@router.get("/rooms/{room_id}/messages", response_model=List[MessageRow])
async def list_messages(
    room_id: str,
    limit: int = Query(50, ge=1, le=MAX_HISTORY_LIMIT, description="Number of messages to return"),
) -> List[MessageRow]:
    """Get the most recent messages of a room in chronological order.

    Example:
        GET /rooms/abc123/messages?limit=50
    """
    return ChatStore.get_instance().recent_messages(room_id, limit)


@router.post("/rooms/{room_id}/messages", response_model=MessageRow)
async def insert_message(
    room_id: str,
    request: InsertMessageRequest,
    current_user: ProfileRow = Depends(get_current_user),
) -> MessageRow:
    """Insert one message; AI rows are stored without an author.

    Raises:
        HTTPException: 400 on blank content, 404 on unknown room.
    """
    try:
        return ChatStore.get_instance().insert_message(
            room_id=room_id,
            content=request.content,
            author_id=current_user.id,
            is_ai=request.is_ai,
        )
    except DraftValidationError as e:
        raise HTTPException(400, str(e))
    except RoomNotFoundError as e:
        raise HTTPException(404, str(e))


# ============================================================================
# PROFILES
# ============================================================================


@router.get("/profiles", response_model=List[ProfileRow])
async def list_profiles(ids: List[str] = Query(default=[])) -> List[ProfileRow]:
    """Batch profile lookup: GET /profiles?ids=a&ids=b"""
    return ChatStore.get_instance().get_profiles(ids)


@router.get("/profiles/{profile_id}", response_model=ProfileRow)
async def get_profile(profile_id: str) -> ProfileRow:
    profile = ChatStore.get_instance().get_profile(profile_id)
    if profile is None:
        raise HTTPException(404, "Profile not found")
    return profile


# ============================================================================
# LIVE FEED
# ============================================================================


async def _forward_inserts(websocket: WebSocket, handle: FeedHandle) -> None:
    async for record in handle:
        await websocket.send_json({
            "type": handle.filter.event,
            "table": handle.filter.table,
            "record": record,
        })


@router.websocket("/ws/rooms/{room_id}/messages")
async def room_messages_feed(websocket: WebSocket, room_id: str) -> None:
    """Stream every message inserted into ``room_id`` until the client leaves.

    Anything the client sends is ignored; the receive loop only exists to
    notice the disconnect, at which point the subscription is closed.
    """
    store = ChatStore.get_instance()
    if store.get_room(room_id) is None:
        logger.warning("[WS] Feed requested for unknown room %s", room_id)
        await websocket.close(code=1008)  # 1008 = Policy Violation
        return

    # Subscribe before accepting so nothing inserted after the handshake is missed.
    async with store.feed.subscription(ChangeFilter.room_messages(room_id)) as handle:
        await websocket.accept()
        forward = asyncio.create_task(_forward_inserts(websocket, handle))
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info("[WS] Feed client for room %s disconnected", room_id)
        finally:
            # The forwarder must be finished before the subscription closes.
            forward.cancel()
            try:
                await forward
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"[WS] Forwarding for room {room_id} ended with error: {e}")
