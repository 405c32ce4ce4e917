"""Room message synchronizer.

A ``RoomView`` reconciles three message sources into one ordered,
duplicate-free ``MessageList``:

    1. the historical load (most recent N rows, oldest first)
    2. the live feed of inserted rows for the room
    3. optimistic entries created by local sends

Lifecycle:
    async with RoomView(room_id, session, backend, feed, ai=client) as view:
        view.draft = "hello"
        await view.send()

On entry (and whenever a session appears) the view opens its live
subscription first, then loads history. The pump task that drains the
subscription waits until the history load has finished, so events that
arrive early queue up on the handle and are applied afterwards, in arrival
order, through the same dedup rule. On exit, room change or logout the
handle is closed and the pump cancelled.

Reconciliation policy:
    A send appends a provisional entry (``temp-<ms>-<n>``) right away. When
    the persist call returns the authoritative row, the provisional entry
    is replaced in place; if the live event for that id already arrived,
    the provisional entry is dropped instead. A later live event with the
    same id is a duplicate and is skipped. On persist failure the
    provisional entry is removed and the draft restored.

Session changes:
    Login and logout are applied by one serialized task per change, each
    reading the session as it is when the task runs, so any burst of
    changes settles on the latest session. Every start discards the
    previous list and reloads history; a logout clears the list.

Staleness:
    In-flight operations are never cancelled. Each captures the view's
    generation when it starts and skips its list mutation if the view was
    exited, switched rooms or lost its session in the meantime.

Error Handling:
    Every collaborator failure is caught where the operation was issued and
    turned into a ``Notification``; nothing propagates out of the view.
"""
import asyncio
import itertools
import logging
import time
from contextlib import suppress
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Optional, Set

from pydantic import ValidationError

from chatnest.config import SyncSettings
from chatnest.errors import NotAuthorizedError
from chatnest.store.feed import ChangeFilter, FeedClosed
from chatnest.store.schemas import MessageRow

from .authors import AuthorResolver
from .collaborators import ChatBackend, CompletionClient, LiveFeed
from .message_list import ChangeListener, MessageList
from .models import ERROR_SUFFIX, TYPING_SUFFIX, Message, MessageOrigin
from .notifications import Notifier
from .session import Session, SessionContext

logger = logging.getLogger(__name__)


class SendOutcome(str, Enum):
    """Result of ``RoomView.send()``.

    Attributes:
        SENT: The message was persisted (the AI reply may still have failed).
        EMPTY: The draft was blank after trimming; nothing happened.
        BUSY: Another send from this view is still in flight.
        NOT_AUTHORIZED: No session; nothing was sent.
        FAILED: The persist call failed; the draft was restored.
        INACTIVE: The view is not entered (or already exited); nothing was sent.
    """
    SENT = "sent"
    EMPTY = "empty"
    BUSY = "busy"
    NOT_AUTHORIZED = "not_authorized"
    FAILED = "failed"
    INACTIVE = "inactive"


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class RoomView:
    """The single owner of one room's message list and live subscription."""

    def __init__(
        self,
        room_id: str,
        session: SessionContext,
        backend: ChatBackend,
        feed: LiveFeed,
        ai: Optional[CompletionClient] = None,
        notifier: Optional[Notifier] = None,
        settings: Optional[SyncSettings] = None,
        resolver: Optional[AuthorResolver] = None,
    ) -> None:
        if not room_id:
            raise ValueError("room_id is required")
        self.room_id = room_id
        self.session = session
        self.backend = backend
        self.feed = feed
        self.ai = ai
        self.notifier = notifier or Notifier()
        self.settings = settings or SyncSettings()
        self.resolver = resolver or AuthorResolver(backend, unknown=self.settings.unknown_author_name)

        self.messages = MessageList()
        self.draft = ""
        self.loading = False

        self._active = False
        self._started = False
        self._sending = False
        self._generation = 0
        self._handle = None
        self._pump: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._lifecycle = asyncio.Lock()
        self._unsubscribe_session: Optional[Callable[[], None]] = None
        self._provisional_ids = itertools.count(1)

    # =========================================================================
    # Public state
    # =========================================================================

    @property
    def sending(self) -> bool:
        return self._sending

    @property
    def subscribed(self) -> bool:
        return self._handle is not None

    def on_change(self, listener: ChangeListener) -> Callable[[], None]:
        """Subscribe the display layer to list changes (re-render / scroll)."""
        return self.messages.subscribe(listener)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def __aenter__(self) -> "RoomView":
        await self.enter()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.exit()

    async def enter(self) -> None:
        """Mount the view: follow the session and start if signed in."""
        if self._active:
            return
        self._active = True
        self._unsubscribe_session = self.session.subscribe(self._on_session_change)
        async with self._lifecycle:
            if self.session.is_authenticated:
                await self._start()

    async def exit(self) -> None:
        """Unmount the view. The live subscription is always closed."""
        if not self._active:
            return
        self._active = False
        if self._unsubscribe_session is not None:
            self._unsubscribe_session()
            self._unsubscribe_session = None

        for task in list(self._tasks):
            task.cancel()
        for task in list(self._tasks):
            with suppress(asyncio.CancelledError):
                await task
        await self._stop()

    async def change_room(self, room_id: str) -> None:
        """Switch the view to another room: new subscription, fresh list."""
        if not room_id:
            raise ValueError("room_id is required")
        if room_id == self.room_id:
            return
        logger.info("[RoomView] Switching room %s -> %s", self.room_id, room_id)
        async with self._lifecycle:
            await self._stop()
            self.room_id = room_id
            self.messages.clear()
            if self._active and self.session.is_authenticated:
                await self._start()

    def _on_session_change(self, session: Optional[Session]) -> None:
        if self._active:
            self._spawn(self._apply_session())

    async def _apply_session(self) -> None:
        # Reads the session when it runs, not when the change was announced.
        async with self._lifecycle:
            if not self._active:
                return
            if self.session.is_authenticated and not self._started:
                await self._start()
            elif not self.session.is_authenticated and self._started:
                await self._stop()
                self.messages.clear()

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _is_current(self, generation: int) -> bool:
        return self._active and generation == self._generation

    async def _start(self) -> None:
        if self._started:
            return
        self._started = True
        self._generation += 1
        generation = self._generation
        room_id = self.room_id
        history_ready = asyncio.Event()
        # Entries from a previous run (including unsettled provisional ones)
        # are superseded by the fresh history load.
        self.messages.clear()

        change_filter = ChangeFilter.room_messages(room_id)
        try:
            handle = await self.feed.open(change_filter)
        except Exception as e:
            logger.error(f"[RoomView] Could not subscribe to room {room_id}: {e}")
            self.notifier.notify("Connection Error", "Real-time updates may not work properly")
        else:
            if self._is_current(generation):
                self._handle = handle
                self._pump = asyncio.get_running_loop().create_task(
                    self._pump_events(handle, generation, history_ready)
                )
                logger.info("[RoomView] Subscribed to %s", change_filter)
            else:
                await self._close_handle(handle)

        try:
            await self._load_history(room_id, generation)
        finally:
            history_ready.set()

    async def _stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self._generation += 1

        handle, pump = self._handle, self._pump
        self._handle = None
        self._pump = None
        if handle is not None:
            await self._close_handle(handle)
        if pump is not None:
            pump.cancel()
            with suppress(asyncio.CancelledError):
                await pump
        logger.info("[RoomView] Subscription for room %s torn down", self.room_id)

    async def _close_handle(self, handle) -> None:
        try:
            await self.feed.close(handle)
        except Exception as e:
            logger.warning(f"[RoomView] Closing subscription failed: {e}")

    # =========================================================================
    # Historical load
    # =========================================================================

    async def _load_history(self, room_id: str, generation: int) -> None:
        self.loading = True
        try:
            rows = await self.backend.fetch_recent_messages(room_id, self.settings.history_limit)
            names = await self.resolver.resolve_many(
                row.author_id for row in rows if not row.is_ai
            )
        except Exception as e:
            logger.error(f"[RoomView] Loading history for room {room_id} failed: {e}")
            if self._is_current(generation):
                self.notifier.notify("Error loading messages", str(e) or "Failed to load chat data")
            return
        finally:
            self.loading = False

        if not self._is_current(generation):
            logger.debug("[RoomView] Dropping stale history for room %s", room_id)
            return

        # The sort is stable, so rows sharing a timestamp keep store order.
        rows = sorted(rows, key=lambda r: r.created_at)
        history = [self._from_row(row, self._author_for(row, names)) for row in rows]
        seeded = self.messages.seed_history(history)
        logger.info("[RoomView] Loaded %d historical message(s) for room %s", seeded, room_id)

    # =========================================================================
    # Live ingestion
    # =========================================================================

    async def _pump_events(self, handle, generation: int, history_ready: asyncio.Event) -> None:
        while True:
            try:
                record = await handle.get()
            except FeedClosed:
                return
            await history_ready.wait()
            if not self._is_current(generation):
                return
            await self._ingest(record, generation)

    async def _ingest(self, record: dict, generation: int) -> None:
        try:
            row = MessageRow.model_validate(record)
        except ValidationError as e:
            logger.warning(f"[RoomView] Ignoring malformed live event: {e}")
            return

        if row.id in self.messages:
            logger.debug("[RoomView] Live event %s already present, skipping duplicate", row.id)
            return

        if row.is_ai:
            author = self.settings.ai_author_name
        else:
            author = await self.resolver.resolve(row.author_id)

        if not self._is_current(generation):
            return
        # Re-checked inside append: the id may have landed during the lookup.
        self.messages.append(self._from_row(row, author))

    # =========================================================================
    # Optimistic send
    # =========================================================================

    async def send(self) -> SendOutcome:
        """Send the current draft.

        Returns:
            SendOutcome describing what happened. Failures are also reported
            through the notifier.
        """
        if not self._active:
            logger.debug("[RoomView] Send rejected: view is not entered")
            return SendOutcome.INACTIVE
        if self._sending:
            logger.debug("[RoomView] Send rejected: another send is in flight")
            return SendOutcome.BUSY

        original_draft = self.draft
        content = original_draft.strip()
        if not content:
            return SendOutcome.EMPTY

        try:
            session = self.session.require()
        except NotAuthorizedError as e:
            self.notifier.notify("Not signed in", str(e))
            return SendOutcome.NOT_AUTHORIZED

        self._sending = True
        generation = self._generation
        room_id = self.room_id
        provisional = Message(
            id=f"{self.settings.provisional_prefix}{_epoch_ms()}-{next(self._provisional_ids)}",
            author=session.user.username or self.settings.unknown_author_name,
            content=content,
            origin=MessageOrigin.HUMAN,
            author_id=session.user.id,
            created_at=datetime.now(timezone.utc),
            provisional=True,
        )
        self.messages.append(provisional)
        self.draft = ""

        try:
            try:
                row = await self.backend.insert_message(room_id, content, author_id=session.user.id)
            except Exception as e:
                logger.error(f"[RoomView] Persisting message failed: {e}")
                if self._is_current(generation):
                    self.messages.remove(provisional.id)
                    self.draft = original_draft
                self.notifier.notify("Failed to send message", str(e) or "Could not save your message.")
                return SendOutcome.FAILED

            if self._is_current(generation):
                confirmed = self._from_row(row, provisional.author)
                self.messages.reconcile(provisional.id, confirmed)
                logger.debug("[RoomView] Provisional %s settled as %s", provisional.id, row.id)

            if self.ai is not None:
                await self._request_ai_reply(room_id, content, session, generation)
            return SendOutcome.SENT
        finally:
            self._sending = False

    # =========================================================================
    # AI reply
    # =========================================================================

    async def _request_ai_reply(
        self, room_id: str, content: str, session: Session, generation: int
    ) -> None:
        typing_id = f"{_epoch_ms()}{TYPING_SUFFIX}"
        if self._is_current(generation):
            self.messages.append(Message(
                id=typing_id,
                author=self.settings.ai_author_name,
                content=self.settings.typing_text,
                origin=MessageOrigin.AI,
            ))

        try:
            reply = await self.ai.ask(content, session.access_token)
        except Exception as e:
            logger.error(f"[RoomView] AI reply failed: {e}")
            self._drop_typing(generation)
            self.notifier.notify("AI Error", str(e) or "Failed to get reply from AI.")
            self._append_ai_error(generation)
            return

        self._drop_typing(generation)

        try:
            row = await self.backend.insert_message(room_id, reply, author_id=None, is_ai=True)
        except Exception as e:
            logger.error(f"[RoomView] Storing AI reply failed: {e}")
            self.notifier.notify("Failed to store AI reply", str(e))
            self._append_ai_error(generation)
            return

        if self._is_current(generation):
            self.messages.append(self._from_row(row, self.settings.ai_author_name))

    def _drop_typing(self, generation: int) -> None:
        if self._is_current(generation):
            self.messages.remove_where(lambda m: m.is_typing)

    def _append_ai_error(self, generation: int) -> None:
        if not self._is_current(generation):
            return
        self.messages.append(Message(
            id=f"{_epoch_ms()}{ERROR_SUFFIX}",
            author=f"{self.settings.ai_author_name} (error)",
            content=self.settings.ai_error_text,
            origin=MessageOrigin.AI,
        ))

    # =========================================================================
    # Row mapping
    # =========================================================================

    def _author_for(self, row: MessageRow, names: Dict[str, str]) -> str:
        if row.is_ai:
            return self.settings.ai_author_name
        return names.get(row.author_id or "", self.resolver.unknown)

    @staticmethod
    def _from_row(row: MessageRow, author: str) -> Message:
        return Message(
            id=row.id,
            author=author,
            content=row.content,
            origin=MessageOrigin.AI if row.is_ai else MessageOrigin.HUMAN,
            author_id=row.author_id,
            created_at=row.created_at,
        )
