"""Interfaces of the collaborators a room view talks to.

A view needs three things from the outside world:

    ChatBackend       - the tabular store (messages + profiles)
    LiveFeed          - the per-room stream of inserted message rows
    CompletionClient  - the AI reply function

``LocalChatBackend`` adapts an in-process ``ChatStore``; the in-process
``ChangeFeed`` already satisfies ``LiveFeed``. The HTTP implementations live
in ``chatnest.sync.http_backend`` and ``chatnest.sync.ai_client``.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Optional

from chatnest.errors import BackendError, ChatNestError
from chatnest.store.feed import ChangeFeed, ChangeFilter
from chatnest.store.schemas import MessageRow, ProfileRow
from chatnest.store.service import ChatStore

logger = logging.getLogger(__name__)


class ChatBackend(ABC):
    """Persistence collaborator as seen from a room view."""

    @abstractmethod
    async def fetch_recent_messages(self, room_id: str, limit: int) -> List[MessageRow]:
        """Most recent ``limit`` rows of ``room_id``, oldest first."""

    @abstractmethod
    async def fetch_profiles(self, profile_ids: Iterable[str]) -> List[ProfileRow]:
        """Batch lookup; unknown ids are absent from the result."""

    @abstractmethod
    async def fetch_profile(self, profile_id: str) -> Optional[ProfileRow]:
        """Single-record lookup; None when the profile does not exist."""

    @abstractmethod
    async def insert_message(
        self,
        room_id: str,
        content: str,
        author_id: Optional[str] = None,
        is_ai: bool = False,
    ) -> MessageRow:
        """Persist one message and return the stored row."""


class LiveFeed(ABC):
    """Live-event collaborator: ``open(filter) -> handle`` / ``close(handle)``.

    A handle exposes ``async get() -> dict`` and raises
    ``chatnest.store.feed.FeedClosed`` once closed.
    """

    @abstractmethod
    async def open(self, change_filter: ChangeFilter) -> Any:
        ...

    @abstractmethod
    async def close(self, handle: Any) -> None:
        ...


LiveFeed.register(ChangeFeed)


class CompletionClient(ABC):
    """AI completion collaborator."""

    @abstractmethod
    async def ask(self, message: str, access_token: str) -> str:
        """Return the AI reply to ``message``.

        Raises:
            AIReplyError: On transport failure or a non-2xx response.
        """


class LocalChatBackend(ChatBackend):
    """ChatBackend over an in-process ``ChatStore``."""

    def __init__(self, store: ChatStore) -> None:
        self.store = store

    async def fetch_recent_messages(self, room_id: str, limit: int) -> List[MessageRow]:
        return self._call(self.store.recent_messages, room_id, limit)

    async def fetch_profiles(self, profile_ids: Iterable[str]) -> List[ProfileRow]:
        return self._call(self.store.get_profiles, list(profile_ids))

    async def fetch_profile(self, profile_id: str) -> Optional[ProfileRow]:
        return self._call(self.store.get_profile, profile_id)

    async def insert_message(
        self,
        room_id: str,
        content: str,
        author_id: Optional[str] = None,
        is_ai: bool = False,
    ) -> MessageRow:
        return self._call(self.store.insert_message, room_id, content, author_id, is_ai)

    @staticmethod
    def _call(fn, *args):
        try:
            return fn(*args)
        except ChatNestError:
            raise
        except Exception as e:
            logger.error(f"Store call {fn.__name__} failed: {e}")
            raise BackendError(str(e)) from e
