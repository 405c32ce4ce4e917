"""Persistence for profiles, rooms and messages plus the live change feed."""
from .feed import ChangeFeed, ChangeFilter, FeedClosed, FeedHandle, get_feed, reset_feed
from .schemas import MessageRow, ProfileRow, RoomRow
from .service import ChatStore

__all__ = [
    "ChangeFeed",
    "ChangeFilter",
    "FeedClosed",
    "FeedHandle",
    "get_feed",
    "reset_feed",
    "MessageRow",
    "ProfileRow",
    "RoomRow",
    "ChatStore",
]
