"""Error taxonomy shared by the store, the HTTP clients and the synchronizer.

Collaborators raise these; the room view catches them where the async
operation was issued and turns them into user-visible notifications.
"""


class ChatNestError(Exception):
    """Base class for every domain error raised by ChatNest."""


class BackendError(ChatNestError):
    """The persistence or live-event collaborator failed (network, store)."""


class DraftValidationError(ChatNestError):
    """A draft or request failed validation (empty content, missing title)."""


class NotAuthorizedError(ChatNestError):
    """No valid session is available for an operation that needs one."""


class AIReplyError(ChatNestError):
    """The AI completion collaborator failed or returned an error body."""


class RoomNotFoundError(ChatNestError):
    """The room id or passkey does not match any room."""
