"""ChatStore: DuckDB-backed persistence for profiles, rooms and messages."""
import logging
import secrets
import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from chatnest.config import MAX_HISTORY_LIMIT
from chatnest.errors import DraftValidationError, RoomNotFoundError

from .feed import ChangeFeed, get_feed
from .schemas import MessageRow, ProfileRow, RoomRow

logger = logging.getLogger(__name__)

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS profiles (
        id          VARCHAR PRIMARY KEY,
        username    VARCHAR,
        email       VARCHAR,
        created_at  TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rooms (
        id          VARCHAR PRIMARY KEY,
        title       VARCHAR NOT NULL,
        passkey     VARCHAR NOT NULL,
        created_by  VARCHAR,
        created_at  TIMESTAMP NOT NULL
    )
    """,
    "CREATE SEQUENCE IF NOT EXISTS message_seq",
    """
    CREATE TABLE IF NOT EXISTS messages (
        id          VARCHAR PRIMARY KEY,
        seq         BIGINT NOT NULL DEFAULT nextval('message_seq'),
        room_id     VARCHAR NOT NULL,
        author_id   VARCHAR,
        content     VARCHAR NOT NULL,
        is_ai       BOOLEAN NOT NULL DEFAULT FALSE,
        created_at  TIMESTAMP NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_room ON messages(room_id)",
    """
    CREATE TABLE IF NOT EXISTS sessions (
        token       VARCHAR PRIMARY KEY,
        user_id     VARCHAR NOT NULL,
        created_at  TIMESTAMP NOT NULL
    )
    """,
]

_MESSAGE_COLUMNS = "id, content, author_id, room_id, is_ai, created_at"


def _utcnow() -> datetime:
    # DuckDB TIMESTAMP columns are naive; everything is stored as UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ChatStore:
    """Singleton store for the ``profiles``, ``rooms``, ``messages`` and
    ``sessions`` tables.

    All writes are synchronous (DuckDB is embedded and fast for this volume
    of data). Every inserted message is published to the change feed so
    live subscribers see it.
    """

    _instance: Optional["ChatStore"] = None
    _default_db_path: str = "chatnest.duckdb"

    def __init__(self, db_path: Optional[str] = None, feed: Optional[ChangeFeed] = None) -> None:
        import duckdb
        self._db_path = db_path or self._default_db_path
        self._conn = duckdb.connect(self._db_path)
        for statement in _SCHEMA:
            self._conn.execute(statement)
        self._feed = feed
        logger.info("[ChatStore] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "ChatStore":
        if cls._instance is None:
            if db_path is None:
                from chatnest.config import get_config
                db_path = get_config().database.path
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        if cls._instance is not None:
            cls._instance.close()
        cls._instance = None

    @property
    def feed(self) -> ChangeFeed:
        return self._feed if self._feed is not None else get_feed()

    def close(self) -> None:
        self._conn.close()

    # -----------------------------------------------------------------------
    # Profiles
    # -----------------------------------------------------------------------

    def create_profile(self, username: Optional[str], email: Optional[str] = None) -> ProfileRow:
        profile = ProfileRow(id=str(uuid.uuid4()), username=username, email=email)
        self._conn.execute(
            "INSERT INTO profiles (id, username, email, created_at) VALUES (?, ?, ?, ?)",
            [profile.id, profile.username, profile.email, _utcnow()],
        )
        logger.info("[ChatStore] Created profile %s (%s)", profile.id, username)
        return profile

    def find_profile_by_username(self, username: str) -> Optional[ProfileRow]:
        row = self._conn.execute(
            "SELECT id, username, email FROM profiles WHERE username = ? LIMIT 1",
            [username],
        ).fetchone()
        return self._to_profile(row) if row else None

    def get_profile(self, profile_id: str) -> Optional[ProfileRow]:
        row = self._conn.execute(
            "SELECT id, username, email FROM profiles WHERE id = ?",
            [profile_id],
        ).fetchone()
        return self._to_profile(row) if row else None

    def get_profiles(self, profile_ids: Iterable[str]) -> List[ProfileRow]:
        """Batch lookup. Unknown ids are simply absent from the result."""
        ids = sorted({pid for pid in profile_ids if pid})
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        rows = self._conn.execute(
            f"SELECT id, username, email FROM profiles WHERE id IN ({placeholders})",
            ids,
        ).fetchall()
        return [self._to_profile(r) for r in rows]

    # -----------------------------------------------------------------------
    # Sessions
    # -----------------------------------------------------------------------

    def issue_session(self, user_id: str) -> str:
        token = secrets.token_urlsafe(32)
        self._conn.execute(
            "INSERT INTO sessions (token, user_id, created_at) VALUES (?, ?, ?)",
            [token, user_id, _utcnow()],
        )
        return token

    def resolve_session(self, token: str) -> Optional[ProfileRow]:
        row = self._conn.execute(
            """
            SELECT p.id, p.username, p.email
            FROM sessions s JOIN profiles p ON p.id = s.user_id
            WHERE s.token = ?
            """,
            [token],
        ).fetchone()
        return self._to_profile(row) if row else None

    # -----------------------------------------------------------------------
    # Rooms
    # -----------------------------------------------------------------------

    def create_room(self, title: str, passkey: str, created_by: Optional[str] = None) -> RoomRow:
        if not title.strip() or not passkey.strip():
            raise DraftValidationError("Room title and passkey are required")
        room = RoomRow(
            id=str(uuid.uuid4()),
            title=title.strip(),
            passkey=passkey.strip(),
            created_by=created_by,
            created_at=_utcnow(),
        )
        self._conn.execute(
            "INSERT INTO rooms (id, title, passkey, created_by, created_at) VALUES (?, ?, ?, ?, ?)",
            [room.id, room.title, room.passkey, room.created_by, room.created_at],
        )
        logger.info("[ChatStore] Created room %s (%s)", room.id, room.title)
        return room

    def get_room(self, room_id: str) -> Optional[RoomRow]:
        row = self._conn.execute(
            "SELECT id, title, passkey, created_by, created_at FROM rooms WHERE id = ?",
            [room_id],
        ).fetchone()
        return self._to_room(row) if row else None

    def find_room_by_passkey(self, passkey: str) -> RoomRow:
        """Return the room joined by ``passkey``.

        Raises:
            RoomNotFoundError: If no room uses this passkey.
        """
        row = self._conn.execute(
            """
            SELECT id, title, passkey, created_by, created_at FROM rooms
            WHERE passkey = ? ORDER BY created_at DESC LIMIT 1
            """,
            [passkey.strip()],
        ).fetchone()
        if row is None:
            raise RoomNotFoundError("No room matches this passkey")
        return self._to_room(row)

    # -----------------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------------

    def insert_message(
        self,
        room_id: str,
        content: str,
        author_id: Optional[str] = None,
        is_ai: bool = False,
    ) -> MessageRow:
        """Insert one message and publish it to the change feed.

        Raises:
            DraftValidationError: If ``content`` is blank.
            RoomNotFoundError: If ``room_id`` does not exist.
        """
        if not content or not content.strip():
            raise DraftValidationError("Message content is required")
        if self.get_room(room_id) is None:
            raise RoomNotFoundError(f"Room {room_id} not found")

        message = MessageRow(
            id=str(uuid.uuid4()),
            content=content,
            author_id=None if is_ai else author_id,
            room_id=room_id,
            is_ai=is_ai,
            created_at=_utcnow(),
        )
        self._conn.execute(
            f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
            [
                message.id,
                message.content,
                message.author_id,
                message.room_id,
                message.is_ai,
                message.created_at,
            ],
        )
        self.feed.publish("messages", message.model_dump(mode="json"))
        return message

    def recent_messages(self, room_id: str, limit: int = 50) -> List[MessageRow]:
        """Return up to ``limit`` most recent messages, oldest first."""
        limit = max(1, min(limit, MAX_HISTORY_LIMIT))
        rows = self._conn.execute(
            f"""
            SELECT {_MESSAGE_COLUMNS} FROM (
                SELECT {_MESSAGE_COLUMNS}, seq FROM messages
                WHERE room_id = ?
                ORDER BY created_at DESC, seq DESC
                LIMIT ?
            ) ORDER BY created_at ASC, seq ASC
            """,
            [room_id, limit],
        ).fetchall()
        return [self._to_message(r) for r in rows]

    def count_messages(self, room_id: Optional[str] = None) -> int:
        if room_id is None:
            return self._conn.execute("SELECT count(*) FROM messages").fetchone()[0]
        return self._conn.execute(
            "SELECT count(*) FROM messages WHERE room_id = ?", [room_id]
        ).fetchone()[0]

    def count_rooms(self) -> int:
        return self._conn.execute("SELECT count(*) FROM rooms").fetchone()[0]

    # -----------------------------------------------------------------------
    # Row mapping
    # -----------------------------------------------------------------------

    @staticmethod
    def _to_profile(row) -> ProfileRow:
        return ProfileRow(id=row[0], username=row[1], email=row[2])

    @staticmethod
    def _to_room(row) -> RoomRow:
        return RoomRow(id=row[0], title=row[1], passkey=row[2], created_by=row[3], created_at=row[4])

    @staticmethod
    def _to_message(row) -> MessageRow:
        return MessageRow(
            id=row[0],
            content=row[1],
            author_id=row[2],
            room_id=row[3],
            is_ai=bool(row[4]),
            created_at=row[5],
        )
