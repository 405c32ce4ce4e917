"""In-process change feed for inserted rows.

Every row inserted through ``ChatStore`` is published here and fanned out
to the handles whose filter matches it. Handles are plain asyncio queues;
closing a handle detaches it from the feed and wakes any reader, so a
closed handle never delivers another event.

Filters use the same shape as a PostgREST filter expression::

    ChangeFilter.parse("messages", "room_id=eq.8a1f...")
"""
import asyncio
import itertools
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional

logger = logging.getLogger(__name__)


class FeedClosed(Exception):
    """Raised by ``FeedHandle.get()`` once the handle has been closed."""


@dataclass(frozen=True)
class ChangeFilter:
    """Matches INSERT events on one table where ``column == value``."""

    table: str
    column: str
    value: str
    event: str = "INSERT"

    @classmethod
    def parse(cls, table: str, expression: str, event: str = "INSERT") -> "ChangeFilter":
        """Build a filter from a ``column=eq.value`` expression."""
        column, sep, rest = expression.partition("=")
        op, dot, value = rest.partition(".")
        if not sep or not dot or op != "eq" or not column or not value:
            raise ValueError(f"Unsupported filter expression: {expression!r}")
        return cls(table=table, column=column, value=value, event=event)

    @classmethod
    def room_messages(cls, room_id: str) -> "ChangeFilter":
        return cls(table="messages", column="room_id", value=room_id)

    @property
    def expression(self) -> str:
        return f"{self.column}=eq.{self.value}"

    def matches(self, table: str, event: str, record: dict) -> bool:
        return (
            table == self.table
            and event == self.event
            and str(record.get(self.column)) == self.value
        )

    def __str__(self) -> str:
        return f"{self.event} {self.table} where {self.expression}"


class FeedHandle:
    """One open subscription. Read events with ``get()`` or ``async for``."""

    _SENTINEL = object()

    def __init__(self, handle_id: int, change_filter: ChangeFilter) -> None:
        self.id = handle_id
        self.filter = change_filter
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, record: dict) -> None:
        if not self._closed:
            self._queue.put_nowait(record)

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Drop anything undelivered and wake a pending reader.
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(self._SENTINEL)

    async def get(self) -> dict:
        """Wait for the next record.

        Raises:
            FeedClosed: If the handle is (or becomes) closed.
        """
        if self._closed:
            raise FeedClosed(f"handle {self.id} is closed")
        item = await self._queue.get()
        if item is self._SENTINEL or self._closed:
            raise FeedClosed(f"handle {self.id} is closed")
        return item

    def __aiter__(self) -> "FeedHandle":
        return self

    async def __anext__(self) -> dict:
        try:
            return await self.get()
        except FeedClosed:
            raise StopAsyncIteration


class ChangeFeed:
    """Fan-out of inserted rows to filtered handles.

    Not thread-safe: publish, open and close must run on the event loop
    that owns the handles.
    """

    def __init__(self) -> None:
        self._handles: Dict[int, FeedHandle] = {}
        self._ids = itertools.count(1)

    @property
    def open_count(self) -> int:
        return len(self._handles)

    async def open(self, change_filter: ChangeFilter) -> FeedHandle:
        handle = FeedHandle(next(self._ids), change_filter)
        self._handles[handle.id] = handle
        logger.info("[Feed] Opened handle %s (%s)", handle.id, change_filter)
        return handle

    async def close(self, handle: FeedHandle) -> None:
        if self._handles.pop(handle.id, None) is not None:
            logger.info("[Feed] Closed handle %s", handle.id)
        handle._close()

    @asynccontextmanager
    async def subscription(self, change_filter: ChangeFilter) -> AsyncIterator[FeedHandle]:
        """Open a handle for the duration of the ``async with`` block."""
        handle = await self.open(change_filter)
        try:
            yield handle
        finally:
            await self.close(handle)

    def publish(self, table: str, record: dict, event: str = "INSERT") -> int:
        """Deliver ``record`` to every matching handle.

        Returns:
            Number of handles the record was delivered to.
        """
        delivered = 0
        for handle in list(self._handles.values()):
            if handle.filter.matches(table, event, record):
                handle._deliver(record)
                delivered += 1
        logger.debug("[Feed] %s %s delivered to %d handle(s)", event, table, delivered)
        return delivered

    def close_all(self) -> None:
        for handle in list(self._handles.values()):
            handle._close()
        self._handles.clear()


_feed: Optional[ChangeFeed] = None


def get_feed() -> ChangeFeed:
    """Return the process-wide change feed."""
    global _feed
    if _feed is None:
        _feed = ChangeFeed()
    return _feed


def reset_feed() -> None:
    global _feed
    if _feed is not None:
        _feed.close_all()
    _feed = None
