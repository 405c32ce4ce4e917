"""Ordered, duplicate-free message list owned by a single room view.

Every mutation is a plain synchronous call, so on a single event loop no
two mutations interleave. Change listeners fire after each mutation that
actually changed the list; the display layer uses them to re-render and
scroll to the newest entry.
"""
import logging
from typing import Callable, Iterable, Iterator, List, Optional, Tuple

from .models import Message

logger = logging.getLogger(__name__)

ChangeListener = Callable[[Tuple[Message, ...]], None]


class MessageList:
    """Append/filter/replace container keyed by message id."""

    def __init__(self) -> None:
        self._items: List[Message] = []
        self._listeners: List[ChangeListener] = []

    # -----------------------------------------------------------------------
    # Read access
    # -----------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._items))

    def __contains__(self, message_id: object) -> bool:
        return any(m.id == message_id for m in self._items)

    def get(self, message_id: str) -> Optional[Message]:
        for message in self._items:
            if message.id == message_id:
                return message
        return None

    def ids(self) -> List[str]:
        return [m.id for m in self._items]

    def snapshot(self) -> Tuple[Message, ...]:
        return tuple(self._items)

    # -----------------------------------------------------------------------
    # Change listeners
    # -----------------------------------------------------------------------

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener. Returns the matching unsubscribe."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Message list listener failed")

    # -----------------------------------------------------------------------
    # Mutations
    # -----------------------------------------------------------------------

    def append(self, message: Message) -> bool:
        """Append unless an entry with the same id is already present."""
        if message.id in self:
            logger.debug("Message %s already present, skipping duplicate", message.id)
            return False
        self._items.append(message)
        self._changed()
        return True

    def seed_history(self, history: Iterable[Message]) -> int:
        """Place the historical load ahead of anything already in the list.

        Entries whose id is already present are skipped. Returns the number
        of historical entries inserted.
        """
        present = set(self.ids())
        seeded: List[Message] = []
        for message in history:
            if message.id in present:
                continue
            present.add(message.id)
            seeded.append(message)
        if seeded:
            self._items = seeded + self._items
            self._changed()
        return len(seeded)

    def remove(self, message_id: str) -> bool:
        before = len(self._items)
        self._items = [m for m in self._items if m.id != message_id]
        if len(self._items) != before:
            self._changed()
            return True
        return False

    def remove_where(self, predicate: Callable[[Message], bool]) -> int:
        before = len(self._items)
        self._items = [m for m in self._items if not predicate(m)]
        removed = before - len(self._items)
        if removed:
            self._changed()
        return removed

    def replace(self, message_id: str, message: Message) -> bool:
        """Swap the entry ``message_id`` for ``message`` in place."""
        for index, existing in enumerate(self._items):
            if existing.id == message_id:
                self._items[index] = message
                self._changed()
                return True
        return False

    def reconcile(self, provisional_id: str, confirmed: Message) -> bool:
        """Settle an optimistic entry against its authoritative record.

        If the confirmed id is already present (its live event won the
        race) the provisional entry is dropped; otherwise the provisional
        entry is replaced in place so the message keeps its position.

        Returns:
            True if the provisional entry was found and settled.
        """
        if confirmed.id in self:
            return self.remove(provisional_id)
        return self.replace(provisional_id, confirmed)

    def clear(self) -> None:
        if self._items:
            self._items = []
            self._changed()
