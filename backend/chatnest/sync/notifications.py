"""User-visible notifications raised by a room view."""
import logging
from typing import Callable, List

from .models import Notification

logger = logging.getLogger(__name__)

NotificationListener = Callable[[Notification], None]


class Notifier:
    """Collects notifications and forwards them to listeners (toasts)."""

    def __init__(self) -> None:
        self.history: List[Notification] = []
        self._listeners: List[NotificationListener] = []

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, title: str, description: str = "", variant: str = "destructive") -> Notification:
        notification = Notification(title=title, description=description, variant=variant)
        if variant == "destructive":
            logger.warning("[Notify] %s: %s", title, description)
        else:
            logger.info("[Notify] %s: %s", title, description)

        self.history.append(notification)
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception("Notification listener failed")
        return notification
