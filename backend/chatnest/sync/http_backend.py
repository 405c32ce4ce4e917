"""Remote collaborators: the ChatNest REST API and its live WebSocket feed.

``HttpChatBackend`` talks to the routers in ``chatnest.store.router`` and
``chatnest.auth.router``; ``WebSocketLiveFeed`` connects to
``/ws/rooms/{room_id}/messages`` and yields the ``record`` of each frame.
"""
import json
import logging
from typing import Iterable, List, Optional

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from chatnest.errors import (
    BackendError,
    DraftValidationError,
    NotAuthorizedError,
    RoomNotFoundError,
)
from chatnest.store.feed import ChangeFilter, FeedClosed
from chatnest.store.schemas import MessageRow, ProfileRow, RoomRow

from .collaborators import ChatBackend, LiveFeed
from .session import Session, SessionContext

logger = logging.getLogger(__name__)

_STATUS_ERRORS = {
    400: DraftValidationError,
    401: NotAuthorizedError,
    404: RoomNotFoundError,
}


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body)
    return str(body)


class HttpChatBackend(ChatBackend):
    """ChatBackend over HTTP, authenticated with the context's bearer token."""

    def __init__(
        self,
        base_url: str,
        session: SessionContext,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self.session = session
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> dict:
        current = self.session.session
        if current is None:
            return {}
        return {"Authorization": f"Bearer {current.access_token}"}

    async def _request(
        self, method: str, path: str, missing_ok: bool = False, **kwargs
    ) -> Optional[httpx.Response]:
        try:
            response = await self._client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise BackendError(str(e) or type(e).__name__) from e

        if response.is_success:
            return response
        if missing_ok and response.status_code == 404:
            return None
        detail = _error_detail(response)
        logger.warning("%s %s -> %s: %s", method, path, response.status_code, detail)
        raise _STATUS_ERRORS.get(response.status_code, BackendError)(detail)

    # -----------------------------------------------------------------------
    # Session and rooms
    # -----------------------------------------------------------------------

    async def sign_in(self, username: str, email: Optional[str] = None) -> Session:
        """Open a session and install it on the shared context."""
        response = await self._request("POST", "/auth/session", json={"username": username, "email": email})
        data = response.json()
        session = Session(access_token=data["access_token"], user=ProfileRow.model_validate(data["user"]))
        self.session.set_session(session)
        return session

    async def create_room(self, title: str, passkey: str) -> RoomRow:
        response = await self._request("POST", "/rooms", json={"title": title, "passkey": passkey})
        return RoomRow.model_validate(response.json())

    async def join_room(self, passkey: str) -> RoomRow:
        """Resolve a room by passkey.

        Raises:
            RoomNotFoundError: If no room uses the passkey.
        """
        response = await self._request("POST", "/rooms/join", json={"passkey": passkey})
        return RoomRow.model_validate(response.json())

    # -----------------------------------------------------------------------
    # ChatBackend
    # -----------------------------------------------------------------------

    async def fetch_recent_messages(self, room_id: str, limit: int) -> List[MessageRow]:
        response = await self._request("GET", f"/rooms/{room_id}/messages", params={"limit": limit})
        return [MessageRow.model_validate(item) for item in response.json()]

    async def fetch_profiles(self, profile_ids: Iterable[str]) -> List[ProfileRow]:
        ids = list(profile_ids)
        if not ids:
            return []
        response = await self._request("GET", "/profiles", params={"ids": ids})
        return [ProfileRow.model_validate(item) for item in response.json()]

    async def fetch_profile(self, profile_id: str) -> Optional[ProfileRow]:
        response = await self._request("GET", f"/profiles/{profile_id}", missing_ok=True)
        if response is None:
            return None
        return ProfileRow.model_validate(response.json())

    async def insert_message(
        self,
        room_id: str,
        content: str,
        author_id: Optional[str] = None,
        is_ai: bool = False,
    ) -> MessageRow:
        # The server takes the author from the bearer token.
        response = await self._request(
            "POST",
            f"/rooms/{room_id}/messages",
            json={"content": content, "is_ai": is_ai},
        )
        return MessageRow.model_validate(response.json())


class WebSocketFeedHandle:
    """An open WebSocket subscription to one room's inserts."""

    def __init__(self, change_filter: ChangeFilter, connection) -> None:
        self.filter = change_filter
        self._connection = connection
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def get(self) -> dict:
        """Wait for the next inserted record.

        Raises:
            FeedClosed: Once the handle is closed or the server hangs up.
        """
        while True:
            if self._closed:
                raise FeedClosed("feed handle is closed")
            try:
                raw = await self._connection.recv()
            except ConnectionClosed as e:
                self._closed = True
                raise FeedClosed(str(e)) from e

            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("[WSFeed] Ignoring non-JSON frame")
                continue
            if isinstance(frame, dict) and isinstance(frame.get("record"), dict):
                return frame["record"]
            logger.debug("[WSFeed] Ignoring frame without a record: %s", frame)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._connection.close()


class WebSocketLiveFeed(LiveFeed):
    """LiveFeed over the server's ``/ws/rooms/{room_id}/messages`` endpoint."""

    def __init__(self, ws_base_url: str) -> None:
        self.ws_base_url = ws_base_url.rstrip("/")

    async def open(self, change_filter: ChangeFilter) -> WebSocketFeedHandle:
        if change_filter.table != "messages" or change_filter.column != "room_id":
            raise ValueError(f"Unsupported live filter: {change_filter}")
        url = f"{self.ws_base_url}/ws/rooms/{change_filter.value}/messages"
        try:
            connection = await websockets.connect(url)
        except (OSError, WebSocketException) as e:
            raise BackendError(f"Could not open live feed: {e}") from e
        logger.info("[WSFeed] Connected to %s", url)
        return WebSocketFeedHandle(change_filter, connection)

    async def close(self, handle: WebSocketFeedHandle) -> None:
        await handle.aclose()
        logger.info("[WSFeed] Closed feed for %s", handle.filter)
