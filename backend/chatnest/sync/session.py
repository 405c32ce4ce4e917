"""Explicitly owned session context shared by the views of one client.

Views receive the context in their constructor and subscribe to it; they
never reach for a global session.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from chatnest.errors import NotAuthorizedError
from chatnest.store.schemas import ProfileRow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    """A signed-in session: bearer token plus the user's profile record."""
    access_token: str
    user: ProfileRow


SessionListener = Callable[[Optional[Session]], None]


class SessionContext:
    """Holds the current session and notifies listeners on login/logout."""

    def __init__(self, session: Optional[Session] = None) -> None:
        self._session = session
        self._listeners: List[SessionListener] = []

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None

    @property
    def profile(self) -> Optional[ProfileRow]:
        return self._session.user if self._session else None

    @property
    def user_id(self) -> Optional[str]:
        return self._session.user.id if self._session else None

    def require(self) -> Session:
        """Return the current session.

        Raises:
            NotAuthorizedError: If nobody is signed in.
        """
        if self._session is None:
            raise NotAuthorizedError("Log in to chat")
        return self._session

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener for session changes. Returns the unsubscribe."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_session(self, session: Optional[Session]) -> None:
        self._session = session
        logger.info("[Session] %s", f"signed in as {session.user.id}" if session else "signed out")
        for listener in list(self._listeners):
            listener(session)

    def clear(self) -> None:
        self.set_session(None)
