"""Room message synchronizer.

Usage:
    from chatnest.sync import (
        AskGptClient, HttpChatBackend, RoomView, SessionContext, WebSocketLiveFeed
    )

    session = SessionContext()
    backend = HttpChatBackend("http://localhost:8000", session)
    await backend.sign_in("alice")
    room = await backend.join_room("open-sesame")

    async with RoomView(
        room.id,
        session,
        backend,
        WebSocketLiveFeed("ws://localhost:8000"),
        ai=AskGptClient("http://localhost:8000"),
    ) as view:
        view.draft = "hello"
        await view.send()
"""
from .ai_client import AskGptClient
from .authors import UNKNOWN_AUTHOR, AuthorResolver
from .collaborators import ChatBackend, CompletionClient, LiveFeed, LocalChatBackend
from .http_backend import HttpChatBackend, WebSocketFeedHandle, WebSocketLiveFeed
from .message_list import MessageList
from .models import Message, MessageOrigin, Notification
from .notifications import Notifier
from .room_view import RoomView, SendOutcome
from .session import Session, SessionContext

__all__ = [
    "AskGptClient",
    "UNKNOWN_AUTHOR",
    "AuthorResolver",
    "ChatBackend",
    "CompletionClient",
    "LiveFeed",
    "LocalChatBackend",
    "HttpChatBackend",
    "WebSocketFeedHandle",
    "WebSocketLiveFeed",
    "MessageList",
    "Message",
    "MessageOrigin",
    "Notification",
    "Notifier",
    "RoomView",
    "SendOutcome",
    "Session",
    "SessionContext",
]
