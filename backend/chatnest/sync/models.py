"""View-side message model and notifications."""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# Reserved id suffixes for entries that only ever live in the view.
TYPING_SUFFIX = "-gpt-loading"
ERROR_SUFFIX = "-gpt-error"


class MessageOrigin(str, Enum):
    """Who wrote a message.

    Attributes:
        HUMAN: A signed-in user.
        AI: The completion collaborator (never has an author id).
    """
    HUMAN = "human"
    AI = "ai"


class Message(BaseModel):
    """One chat turn as shown in a room view.

    Attributes:
        id: Server-assigned id, or a client-provisional id for optimistic
            entries, or a reserved-suffix id for typing/error entries.
        author: Resolved display name.
        content: Message text, newlines preserved.
        origin: Human or AI.
        author_id: Profile id of a human author, None for AI.
        created_at: Server timestamp; only used to order the initial load.
        provisional: True for an optimistic entry awaiting confirmation.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Message id")
    author: str = Field(..., description="Display name of the author")
    content: str = Field(..., description="Message text")
    origin: MessageOrigin = Field(default=MessageOrigin.HUMAN)
    author_id: Optional[str] = Field(default=None)
    created_at: Optional[datetime] = Field(default=None)
    provisional: bool = Field(default=False)

    @property
    def is_ai(self) -> bool:
        return self.origin == MessageOrigin.AI

    @property
    def is_typing(self) -> bool:
        return self.id.endswith(TYPING_SUFFIX)

    @property
    def is_error(self) -> bool:
        return self.id.endswith(ERROR_SUFFIX)


@dataclass(frozen=True)
class Notification:
    """A user-visible notice (the display layer renders it as a toast)."""
    title: str
    description: str = ""
    variant: str = "destructive"
