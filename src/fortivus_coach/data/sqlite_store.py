import uuid
from datetime import UTC, datetime

import aiosqlite

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS coaching_conversations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT 'New Conversation',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_coaching_conversations_user
    ON coaching_conversations(user_id, updated_at);

CREATE TABLE IF NOT EXISTS coaching_messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES coaching_conversations(id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_coaching_messages_conversation
    ON coaching_messages(conversation_id, created_at);
"""


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _uuid() -> str:
    return str(uuid.uuid4())


class SQLiteStore:
    """Row-level access to the coaching tables. Returns plain dicts."""

    def __init__(self, path: str) -> None:
        self._path = path
        self._db: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """Return the database connection, raising if not initialized."""
        if self._db is None:
            raise RuntimeError("SQLiteStore not initialized — call initialize() first")
        return self._db

    async def initialize(self) -> None:
        self._db = await aiosqlite.connect(self._path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.executescript(SCHEMA_SQL)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()

    # --- Conversations ---

    async def create_conversation(self, user_id: str, title: str = "New Conversation") -> dict:
        cid = _uuid()
        now = _now()
        await self.db.execute(
            "INSERT INTO coaching_conversations (id, user_id, title, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            (cid, user_id, title, now, now),
        )
        await self.db.commit()
        return {"id": cid, "title": title, "created_at": now, "updated_at": now}

    async def list_conversations(self, user_id: str) -> list[dict]:
        cursor = await self.db.execute(
            "SELECT id, title, created_at, updated_at FROM coaching_conversations WHERE user_id = ? ORDER BY updated_at DESC",
            (user_id,),
        )
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]

    async def get_conversation(self, user_id: str, conversation_id: str) -> dict | None:
        cursor = await self.db.execute(
            "SELECT id, title, created_at, updated_at FROM coaching_conversations WHERE id = ? AND user_id = ?",
            (conversation_id, user_id),
        )
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def update_conversation_title(self, user_id: str, conversation_id: str, title: str) -> bool:
        cursor = await self.db.execute(
            "UPDATE coaching_conversations SET title = ? WHERE id = ? AND user_id = ?",
            (title, conversation_id, user_id),
        )
        await self.db.commit()
        return cursor.rowcount > 0

    async def touch_conversation(self, user_id: str, conversation_id: str) -> str:
        now = _now()
        await self.db.execute(
            "UPDATE coaching_conversations SET updated_at = ? WHERE id = ? AND user_id = ?",
            (now, conversation_id, user_id),
        )
        await self.db.commit()
        return now

    async def delete_conversation(self, user_id: str, conversation_id: str) -> bool:
        cursor = await self.db.execute(
            "DELETE FROM coaching_conversations WHERE id = ? AND user_id = ?",
            (conversation_id, user_id),
        )
        await self.db.commit()
        return cursor.rowcount > 0

    # --- Messages ---

    async def add_message(self, conversation_id: str, role: str, content: str) -> dict:
        mid = _uuid()
        now = _now()
        await self.db.execute(
            "INSERT INTO coaching_messages (id, conversation_id, role, content, created_at) VALUES (?, ?, ?, ?, ?)",
            (mid, conversation_id, role, content, now),
        )
        await self.db.commit()
        return {
            "id": mid,
            "conversation_id": conversation_id,
            "role": role,
            "content": content,
            "created_at": now,
        }

    async def get_messages(self, conversation_id: str) -> list[dict]:
        cursor = await self.db.execute(
            "SELECT id, conversation_id, role, content, created_at FROM coaching_messages WHERE conversation_id = ? ORDER BY created_at",
            (conversation_id,),
        )
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]
