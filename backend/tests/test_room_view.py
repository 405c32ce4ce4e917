"""Tests for RoomView: history load, live ingestion, optimistic send and AI replies.

The view runs against the real in-memory ChatStore (through
LocalChatBackend) and the real ChangeFeed; failures and timing are
injected by small backend/AI subclasses.
"""
import asyncio

import pytest

from chatnest.config import SyncSettings
from chatnest.errors import AIReplyError, BackendError
from chatnest.sync.collaborators import CompletionClient, LocalChatBackend
from chatnest.sync.room_view import RoomView, SendOutcome
from chatnest.sync.session import Session, SessionContext


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class GatedHistoryBackend(LocalChatBackend):
    """Reads history immediately but only returns it once ``gate`` is set."""

    def __init__(self, store):
        super().__init__(store)
        self.gate = asyncio.Event()

    async def fetch_recent_messages(self, room_id, limit):
        rows = await super().fetch_recent_messages(room_id, limit)
        await self.gate.wait()
        return rows


class FailingHistoryBackend(LocalChatBackend):
    async def fetch_recent_messages(self, room_id, limit):
        raise BackendError("database unavailable")


class FailingInsertBackend(LocalChatBackend):
    def __init__(self, store, fail_ai_only=False):
        super().__init__(store)
        self.fail_ai_only = fail_ai_only

    async def insert_message(self, room_id, content, author_id=None, is_ai=False):
        if is_ai or not self.fail_ai_only:
            raise BackendError("insert rejected")
        return await super().insert_message(room_id, content, author_id, is_ai)


class SlowInsertBackend(LocalChatBackend):
    """Stores the row, then yields so the live event is ingested first."""

    async def insert_message(self, room_id, content, author_id=None, is_ai=False):
        row = await super().insert_message(room_id, content, author_id, is_ai)
        await asyncio.sleep(0.05)
        return row


class GatedInsertBackend(LocalChatBackend):
    """Holds every insert until ``gate`` is set."""

    def __init__(self, store):
        super().__init__(store)
        self.gate = asyncio.Event()

    async def insert_message(self, room_id, content, author_id=None, is_ai=False):
        await self.gate.wait()
        return await super().insert_message(room_id, content, author_id, is_ai)


class FakeAI(CompletionClient):
    def __init__(self, reply="pong", error=None):
        self.reply = reply
        self.error = error
        self.gate = None
        self.calls = []

    async def ask(self, message, access_token):
        self.calls.append((message, access_token))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def session(store, alice):
    return SessionContext(Session(access_token=store.issue_session(alice.id), user=alice))


def make_view(store, room, session, backend=None, ai=None, **kwargs):
    return RoomView(
        room.id,
        session,
        backend or LocalChatBackend(store),
        store.feed,
        ai=ai,
        **kwargs,
    )


def titles(view):
    return [n.title for n in view.notifier.history]


# ---------------------------------------------------------------------------
# History and live events
# ---------------------------------------------------------------------------


class TestHistoryAndLive:

    @pytest.mark.asyncio
    async def test_history_then_live_events(self, store, room, session, alice, bob):
        """K history rows plus N live events give K + N entries in order."""
        history = [store.insert_message(room.id, f"h{i}", alice.id) for i in range(3)]

        async with make_view(store, room, session) as view:
            assert view.messages.ids() == [r.id for r in history]

            live = [store.insert_message(room.id, f"l{i}", bob.id) for i in range(2)]
            await wait_until(lambda: len(view.messages) == 5)

            assert view.messages.ids() == [r.id for r in history + live]
            assert [m.author for m in view.messages][-2:] == ["bob", "bob"]

    @pytest.mark.asyncio
    async def test_history_is_most_recent_n(self, store, room, session, alice):
        for i in range(6):
            store.insert_message(room.id, f"m{i}", alice.id)

        async with make_view(store, room, session, settings=SyncSettings(history_limit=4)) as view:
            assert [m.content for m in view.messages] == ["m2", "m3", "m4", "m5"]

    @pytest.mark.asyncio
    async def test_history_authors_resolved_in_one_batch(self, store, room, session, alice, bob):
        store.insert_message(room.id, "from alice", alice.id)
        store.insert_message(room.id, "from bob", bob.id)
        store.insert_message(room.id, "from nobody", None)
        store.insert_message(room.id, "from ai", None, is_ai=True)

        async with make_view(store, room, session) as view:
            assert [m.author for m in view.messages] == ["alice", "bob", "Anonymous", "GPT-4"]
            assert [m.is_ai for m in view.messages] == [False, False, False, True]

    @pytest.mark.asyncio
    async def test_duplicate_live_event_is_ignored(self, store, room, session, alice):
        async with make_view(store, room, session) as view:
            row = store.insert_message(room.id, "once", alice.id)
            store.feed.publish("messages", row.model_dump(mode="json"))
            await wait_until(lambda: len(view.messages) >= 1)
            await settle()

            assert view.messages.ids() == [row.id]

    @pytest.mark.asyncio
    async def test_live_event_before_history_resolves_is_ordered_after_it(self, store, room, session, alice, bob):
        """History [1] plus a live event 2 that arrives first still reads [1, 2]."""
        first = store.insert_message(room.id, "first", alice.id)
        backend = GatedHistoryBackend(store)
        view = make_view(store, room, session, backend=backend)

        entering = asyncio.create_task(view.enter())
        await wait_until(lambda: store.feed.open_count == 1)
        second = store.insert_message(room.id, "second", bob.id)
        await settle()
        assert len(view.messages) == 0

        backend.gate.set()
        await entering
        await wait_until(lambda: len(view.messages) == 2)

        assert view.messages.ids() == [first.id, second.id]
        await view.exit()

    @pytest.mark.asyncio
    async def test_history_failure_notifies_and_keeps_live_updates(self, store, room, session, alice):
        async with make_view(store, room, session, backend=FailingHistoryBackend(store)) as view:
            assert titles(view) == ["Error loading messages"]
            assert len(view.messages) == 0

            row = store.insert_message(room.id, "still live", alice.id)
            await wait_until(lambda: len(view.messages) == 1)
            assert view.messages.ids() == [row.id]

    @pytest.mark.asyncio
    async def test_malformed_live_event_is_skipped(self, store, room, session, alice):
        async with make_view(store, room, session) as view:
            store.feed.publish("messages", {"room_id": room.id, "content": "no id"})
            row = store.insert_message(room.id, "valid", alice.id)
            await wait_until(lambda: len(view.messages) == 1)
            assert view.messages.ids() == [row.id]


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_exit_closes_subscription(self, store, room, session):
        view = make_view(store, room, session)
        await view.enter()
        assert store.feed.open_count == 1
        assert view.subscribed

        await view.exit()

        assert store.feed.open_count == 0
        assert not view.subscribed

    @pytest.mark.asyncio
    async def test_room_change_switches_subscription(self, store, room, session, alice):
        other = store.create_room("Other", "other-key")
        old_row = store.insert_message(room.id, "old room", alice.id)
        new_row = store.insert_message(other.id, "new room", alice.id)

        async with make_view(store, room, session) as view:
            assert view.messages.ids() == [old_row.id]

            await view.change_room(other.id)

            assert store.feed.open_count == 1
            assert view.messages.ids() == [new_row.id]

            store.insert_message(room.id, "ignored", alice.id)
            later = store.insert_message(other.id, "shown", alice.id)
            await wait_until(lambda: len(view.messages) == 2)
            await settle()
            assert view.messages.ids() == [new_row.id, later.id]

    @pytest.mark.asyncio
    async def test_stale_history_is_dropped_after_exit(self, store, room, session, alice):
        store.insert_message(room.id, "late", alice.id)
        backend = GatedHistoryBackend(store)
        view = make_view(store, room, session, backend=backend)

        entering = asyncio.create_task(view.enter())
        await wait_until(lambda: store.feed.open_count == 1)
        await view.exit()
        backend.gate.set()
        await entering

        assert len(view.messages) == 0
        assert store.feed.open_count == 0

    @pytest.mark.asyncio
    async def test_no_session_means_no_subscription(self, store, room, alice):
        session = SessionContext()
        async with make_view(store, room, session) as view:
            assert store.feed.open_count == 0
            view.draft = "hello?"

            assert await view.send() == SendOutcome.NOT_AUTHORIZED
            assert titles(view) == ["Not signed in"]
            assert store.count_messages() == 0
            assert view.draft == "hello?"

    @pytest.mark.asyncio
    async def test_login_starts_and_logout_stops(self, store, room, alice):
        row = store.insert_message(room.id, "welcome", alice.id)
        session = SessionContext()

        async with make_view(store, room, session) as view:
            session.set_session(Session(access_token=store.issue_session(alice.id), user=alice))
            await wait_until(lambda: len(view.messages) == 1)
            assert store.feed.open_count == 1
            assert view.messages.ids() == [row.id]

            session.clear()
            await wait_until(lambda: store.feed.open_count == 0)
            await wait_until(lambda: len(view.messages) == 0)

    @pytest.mark.asyncio
    async def test_logout_then_login_in_one_turn_stays_subscribed(self, store, room, session, alice):
        async with make_view(store, room, session) as view:
            assert store.feed.open_count == 1

            session.clear()
            session.set_session(Session(access_token=store.issue_session(alice.id), user=alice))
            await settle(50)

            assert store.feed.open_count == 1
            assert view.subscribed

            later = store.insert_message(room.id, "still live", alice.id)
            await wait_until(lambda: later.id in view.messages.ids())

    @pytest.mark.asyncio
    async def test_login_then_logout_in_one_turn_stays_unsubscribed(self, store, room, alice):
        session = SessionContext()
        async with make_view(store, room, session) as view:
            session.set_session(Session(access_token=store.issue_session(alice.id), user=alice))
            session.clear()
            await settle(50)

            assert store.feed.open_count == 0
            assert not view.subscribed

    @pytest.mark.asyncio
    async def test_relogin_reloads_history_in_order(self, store, room, session, alice, bob):
        async with make_view(store, room, session) as view:
            store.insert_message(room.id, "a", alice.id)
            store.insert_message(room.id, "b", bob.id)
            await wait_until(lambda: len(view.messages) == 2)

            session.clear()
            await wait_until(lambda: store.feed.open_count == 0 and len(view.messages) == 0)
            store.insert_message(room.id, "c", bob.id)

            session.set_session(Session(access_token=store.issue_session(alice.id), user=alice))
            await wait_until(lambda: len(view.messages) == 3)
            await settle()

            assert [m.content for m in view.messages] == ["a", "b", "c"]
            assert view.messages.ids() == [r.id for r in store.recent_messages(room.id)]

    @pytest.mark.asyncio
    async def test_logout_mid_send_leaves_no_provisional_entry(self, store, room, session, alice):
        backend = GatedInsertBackend(store)
        async with make_view(store, room, session, backend=backend) as view:
            view.draft = "in flight"
            sending = asyncio.create_task(view.send())
            await wait_until(lambda: len(view.messages) == 1)
            assert view.messages.snapshot()[0].provisional is True

            session.clear()
            await wait_until(lambda: store.feed.open_count == 0)
            await wait_until(lambda: len(view.messages) == 0)

            backend.gate.set()
            assert await sending == SendOutcome.SENT
            assert len(view.messages) == 0

            session.set_session(Session(access_token=store.issue_session(alice.id), user=alice))
            await wait_until(lambda: len(view.messages) == 1)
            await settle()

            entry = view.messages.snapshot()[0]
            assert entry.content == "in flight"
            assert entry.provisional is False
            assert not any(m.id.startswith("temp-") for m in view.messages)

    @pytest.mark.asyncio
    async def test_send_without_enter_is_rejected(self, store, room, session):
        view = make_view(store, room, session)
        view.draft = "too early"

        assert await view.send() == SendOutcome.INACTIVE

        assert len(view.messages) == 0
        assert store.count_messages() == 0
        assert view.draft == "too early"

    @pytest.mark.asyncio
    async def test_send_after_exit_is_rejected(self, store, room, session):
        view = make_view(store, room, session)
        await view.enter()
        await view.exit()
        view.draft = "too late"

        assert await view.send() == SendOutcome.INACTIVE
        assert store.count_messages() == 0


# ---------------------------------------------------------------------------
# Sending
# ---------------------------------------------------------------------------


class TestSend:

    @pytest.mark.asyncio
    async def test_blank_draft_is_a_noop(self, store, room, session):
        async with make_view(store, room, session) as view:
            view.draft = "  \n\t "
            assert await view.send() == SendOutcome.EMPTY
            assert len(view.messages) == 0
            assert store.count_messages() == 0
            assert view.notifier.history == []

    @pytest.mark.asyncio
    async def test_send_reconciles_without_duplicate(self, store, room, session):
        async with make_view(store, room, session) as view:
            view.draft = "  hello  "

            assert await view.send() == SendOutcome.SENT
            assert view.draft == ""
            await settle()

            rows = store.recent_messages(room.id)
            assert len(rows) == 1
            assert rows[0].content == "hello"
            assert view.messages.ids() == [rows[0].id]
            entry = view.messages.get(rows[0].id)
            assert entry.author == "alice"
            assert entry.provisional is False

    @pytest.mark.asyncio
    async def test_live_event_before_persist_returns(self, store, room, session):
        """The live event wins the race; the provisional entry is dropped."""
        async with make_view(store, room, session, backend=SlowInsertBackend(store)) as view:
            view.draft = "race"
            assert await view.send() == SendOutcome.SENT
            await settle()

            rows = store.recent_messages(room.id)
            assert view.messages.ids() == [rows[0].id]
            assert not any(m.provisional for m in view.messages)

    @pytest.mark.asyncio
    async def test_provisional_entry_visible_while_persisting(self, store, room, session):
        backend = SlowInsertBackend(store)
        async with make_view(store, room, session, backend=backend) as view:
            view.draft = "optimistic"
            sending = asyncio.create_task(view.send())
            await wait_until(lambda: len(view.messages) >= 1)

            first = view.messages.snapshot()[0]
            assert first.provisional is True
            assert first.id.startswith("temp-")
            assert first.content == "optimistic"
            assert await sending == SendOutcome.SENT

    @pytest.mark.asyncio
    async def test_persist_failure_rolls_back(self, store, room, session):
        async with make_view(store, room, session, backend=FailingInsertBackend(store)) as view:
            view.draft = "  keep me "

            assert await view.send() == SendOutcome.FAILED

            assert len(view.messages) == 0
            assert view.draft == "  keep me "
            assert titles(view) == ["Failed to send message"]
            assert not view.sending

    @pytest.mark.asyncio
    async def test_second_send_while_busy_is_rejected(self, store, room, session):
        ai = FakeAI()
        ai.gate = asyncio.Event()
        async with make_view(store, room, session, ai=ai) as view:
            view.draft = "first"
            sending = asyncio.create_task(view.send())
            await wait_until(lambda: any(m.is_typing for m in view.messages))

            view.draft = "second"
            assert await view.send() == SendOutcome.BUSY
            assert view.draft == "second"

            ai.gate.set()
            assert await sending == SendOutcome.SENT
            assert [m.content for m in store.recent_messages(room.id)] == ["first", "pong"]


# ---------------------------------------------------------------------------
# AI replies
# ---------------------------------------------------------------------------


class TestAIReply:

    @pytest.mark.asyncio
    async def test_ai_reply_is_persisted_and_shown_once(self, store, room, session):
        ai = FakeAI(reply="Hi there!")
        async with make_view(store, room, session, ai=ai) as view:
            view.draft = "hello AI"
            assert await view.send() == SendOutcome.SENT
            await settle()

            assert ai.calls == [("hello AI", session.session.access_token)]
            rows = store.recent_messages(room.id)
            assert [(r.content, r.is_ai, r.author_id) for r in rows] == [
                ("hello AI", False, session.user_id),
                ("Hi there!", True, None),
            ]
            assert view.messages.ids() == [r.id for r in rows]
            assert view.messages.get(rows[1].id).author == "GPT-4"
            assert not any(m.is_typing for m in view.messages)

    @pytest.mark.asyncio
    async def test_typing_placeholder_while_waiting(self, store, room, session):
        ai = FakeAI()
        ai.gate = asyncio.Event()
        async with make_view(store, room, session, ai=ai) as view:
            view.draft = "question"
            sending = asyncio.create_task(view.send())
            await wait_until(lambda: any(m.is_typing for m in view.messages))

            typing = [m for m in view.messages if m.is_typing]
            assert len(typing) == 1
            assert typing[0].content == "AI is typing..."
            assert typing[0].id.endswith("-gpt-loading")

            ai.gate.set()
            await sending
            assert not any(m.is_typing for m in view.messages)

    @pytest.mark.asyncio
    async def test_ai_failure_shows_one_error_entry(self, store, room, session):
        ai = FakeAI(error=AIReplyError("Upstream returned 500"))
        async with make_view(store, room, session, ai=ai) as view:
            view.draft = "hello AI"
            assert await view.send() == SendOutcome.SENT
            await settle()

            assert not any(m.is_typing for m in view.messages)
            errors = [m for m in view.messages if m.is_error]
            assert len(errors) == 1
            assert errors[0].author == "GPT-4 (error)"
            assert errors[0].is_ai
            assert titles(view) == ["AI Error"]
            assert [r.is_ai for r in store.recent_messages(room.id)] == [False]

    @pytest.mark.asyncio
    async def test_ai_reply_store_failure(self, store, room, session):
        backend = FailingInsertBackend(store, fail_ai_only=True)
        async with make_view(store, room, session, backend=backend, ai=FakeAI()) as view:
            view.draft = "hello"
            assert await view.send() == SendOutcome.SENT

            assert titles(view) == ["Failed to store AI reply"]
            assert sum(1 for m in view.messages if m.is_error) == 1
            assert not any(m.is_typing for m in view.messages)

    @pytest.mark.asyncio
    async def test_no_ai_client_means_no_reply(self, store, room, session):
        async with make_view(store, room, session) as view:
            view.draft = "solo"
            assert await view.send() == SendOutcome.SENT
            assert len(view.messages) == 1
            assert store.count_messages(room.id) == 1

    @pytest.mark.asyncio
    async def test_reply_after_exit_does_not_touch_list(self, store, room, session):
        ai = FakeAI()
        ai.gate = asyncio.Event()
        view = make_view(store, room, session, ai=ai)
        await view.enter()
        view.draft = "bye"
        sending = asyncio.create_task(view.send())
        await wait_until(lambda: any(m.is_typing for m in view.messages))

        await view.exit()
        snapshot = view.messages.snapshot()
        ai.gate.set()
        assert await sending == SendOutcome.SENT

        assert view.messages.snapshot() == snapshot
