"""
Session Store — SQLite-backed persistence for sessions, messages and parts.

Usage:
    store = SessionStore(Path("sessions.db"))
    await store.start()

    session = await store.create_session(agent="default", provider_id="openai",
                                         model_id="gpt-4o")
    msg = await store.append_message(session.id, role="user")
    await store.append_message_part(msg.id, session.id, "text", {"text": "hi"})
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from pathlib import Path
from typing import Any

import aiosqlite

from tandem.core.errors import NotFoundError
from tandem.session.models import (
    Message,
    MessagePart,
    MessageRole,
    PartStatus,
    PartType,
    Session,
    SessionStatus,
)

logger = logging.getLogger(__name__)

_SESSION_COLUMNS = (
    "id, parent_id, agent, title, provider_id, model_id, status, message_count, "
    "input_tokens, output_tokens, cost, created_at, updated_at"
)
_MESSAGE_COLUMNS = (
    "id, session_id, role, parent_id, agent, provider_id, model_id, finish_reason, "
    "input_tokens, output_tokens, cost, error, created_at, completed_at"
)
_PART_COLUMNS = "id, message_id, session_id, type, content, status, sequence, created_at"


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


class SessionStore:
    """
    SQLite-backed session persistence.

    Three tables:
    - sessions: conversation containers, nested via parent_id
    - messages: user / assistant turns within a session
    - message_parts: ordered text, tool-call and tool-result pieces
    """

    def __init__(self, db_path: Path | str = "tandem_sessions.db"):
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def start(self) -> None:
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                parent_id TEXT REFERENCES sessions(id),
                agent TEXT NOT NULL DEFAULT 'default',
                title TEXT NOT NULL DEFAULT '',
                provider_id TEXT NOT NULL DEFAULT '',
                model_id TEXT NOT NULL DEFAULT '',
                status TEXT NOT NULL DEFAULT 'active',
                message_count INTEGER NOT NULL DEFAULT 0,
                input_tokens INTEGER NOT NULL DEFAULT 0,
                output_tokens INTEGER NOT NULL DEFAULT 0,
                cost REAL NOT NULL DEFAULT 0,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            )
        """)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL REFERENCES sessions(id),
                role TEXT NOT NULL,
                parent_id TEXT,
                agent TEXT,
                provider_id TEXT,
                model_id TEXT,
                finish_reason TEXT,
                input_tokens INTEGER NOT NULL DEFAULT 0,
                output_tokens INTEGER NOT NULL DEFAULT 0,
                cost REAL NOT NULL DEFAULT 0,
                error TEXT,
                sequence INTEGER NOT NULL,
                created_at REAL NOT NULL,
                completed_at REAL
            )
        """)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS message_parts (
                id TEXT PRIMARY KEY,
                message_id TEXT NOT NULL REFERENCES messages(id),
                session_id TEXT NOT NULL,
                type TEXT NOT NULL,
                content TEXT NOT NULL DEFAULT '{}',
                status TEXT NOT NULL DEFAULT 'completed',
                sequence INTEGER NOT NULL,
                created_at REAL NOT NULL
            )
        """)
        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_session ON messages(session_id, sequence)"
        )
        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_sessions_parent ON sessions(parent_id)"
        )
        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_parts_message ON message_parts(message_id, sequence)"
        )
        await self._db.commit()
        logger.info("SessionStore started (db=%s)", self.db_path)

    async def stop(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    # ─── Sessions ─────────────────────────────────────────────────

    async def create_session(
        self,
        *,
        agent: str = "default",
        provider_id: str = "",
        model_id: str = "",
        parent_id: str | None = None,
        title: str = "",
        session_id: str | None = None,
    ) -> Session:
        """Create a session. A parent, when given, must already exist."""
        assert self._db is not None, "SessionStore not started"

        if parent_id is not None and await self.get_session(parent_id) is None:
            raise NotFoundError("session", parent_id)

        now = time.time()
        session = Session(
            id=session_id or new_id("ses"),
            agent=agent,
            provider_id=provider_id,
            model_id=model_id,
            parent_id=parent_id,
            title=title,
            created_at=now,
            updated_at=now,
        )
        await self._db.execute(
            f"INSERT INTO sessions ({_SESSION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, 0, 0, 0, 0, ?, ?)",
            (
                session.id,
                parent_id,
                agent,
                title,
                provider_id,
                model_id,
                session.status,
                now,
                now,
            ),
        )
        await self._db.commit()
        return session

    async def get_session(self, session_id: str) -> Session | None:
        assert self._db is not None, "SessionStore not started"

        async with self._db.execute(
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = ?", (session_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return _to_session(row) if row else None

    async def get_child_sessions(self, parent_id: str) -> list[Session]:
        assert self._db is not None, "SessionStore not started"

        async with self._db.execute(
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE parent_id = ? ORDER BY created_at",
            (parent_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_to_session(row) for row in rows]

    async def set_status(self, session_id: str, status: SessionStatus | str) -> None:
        assert self._db is not None, "SessionStore not started"

        value = status.value if isinstance(status, SessionStatus) else status
        await self._db.execute(
            "UPDATE sessions SET status = ?, updated_at = ? WHERE id = ?",
            (value, time.time(), session_id),
        )
        await self._db.commit()

    async def update_session_model(
        self, session_id: str, provider_id: str, model_id: str
    ) -> None:
        assert self._db is not None, "SessionStore not started"

        await self._db.execute(
            "UPDATE sessions SET provider_id = ?, model_id = ?, updated_at = ? WHERE id = ?",
            (provider_id, model_id, time.time(), session_id),
        )
        await self._db.commit()

    async def update_session_counters(
        self,
        session_id: str,
        *,
        messages: int = 0,
        input_tokens: int = 0,
        output_tokens: int = 0,
        cost: float = 0.0,
    ) -> None:
        """Add to the session's aggregate counters."""
        assert self._db is not None, "SessionStore not started"

        await self._db.execute(
            """
            UPDATE sessions SET
                message_count = message_count + ?,
                input_tokens = input_tokens + ?,
                output_tokens = output_tokens + ?,
                cost = cost + ?,
                updated_at = ?
            WHERE id = ?
            """,
            (messages, input_tokens, output_tokens, cost, time.time(), session_id),
        )
        await self._db.commit()

    # ─── Messages ─────────────────────────────────────────────────

    async def append_message(
        self,
        session_id: str,
        role: MessageRole | str,
        *,
        parent_id: str | None = None,
        agent: str | None = None,
        provider_id: str | None = None,
        model_id: str | None = None,
    ) -> Message:
        assert self._db is not None, "SessionStore not started"

        role_value = role.value if isinstance(role, MessageRole) else role
        now = time.time()
        message = Message(
            id=new_id("msg"),
            session_id=session_id,
            role=role_value,
            parent_id=parent_id,
            agent=agent,
            provider_id=provider_id,
            model_id=model_id,
            created_at=now,
        )
        async with self._db.execute(
            "SELECT COALESCE(MAX(sequence), -1) + 1 FROM messages WHERE session_id = ?",
            (session_id,),
        ) as cursor:
            row = await cursor.fetchone()
            sequence = row[0] if row else 0

        await self._db.execute(
            """
            INSERT INTO messages
                (id, session_id, role, parent_id, agent, provider_id, model_id,
                 sequence, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                message.id,
                session_id,
                role_value,
                parent_id,
                agent,
                provider_id,
                model_id,
                sequence,
                now,
            ),
        )
        await self._db.commit()
        return message

    async def complete_message(
        self,
        message_id: str,
        *,
        finish_reason: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
        cost: float = 0.0,
    ) -> None:
        assert self._db is not None, "SessionStore not started"

        await self._db.execute(
            """
            UPDATE messages SET finish_reason = ?, input_tokens = ?, output_tokens = ?,
                cost = ?, completed_at = ?
            WHERE id = ?
            """,
            (finish_reason, input_tokens, output_tokens, cost, time.time(), message_id),
        )
        await self._db.commit()

    async def set_message_error(self, message_id: str, error: str) -> None:
        assert self._db is not None, "SessionStore not started"

        await self._db.execute(
            "UPDATE messages SET error = ?, finish_reason = 'error', completed_at = ? WHERE id = ?",
            (error, time.time(), message_id),
        )
        await self._db.commit()

    async def get_message(self, message_id: str) -> Message | None:
        assert self._db is not None, "SessionStore not started"

        async with self._db.execute(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?", (message_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return _to_message(row) if row else None

    async def get_messages(self, session_id: str) -> list[Message]:
        assert self._db is not None, "SessionStore not started"

        async with self._db.execute(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE session_id = ? ORDER BY sequence",
            (session_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_to_message(row) for row in rows]

    # ─── Message Parts ────────────────────────────────────────────

    async def append_message_part(
        self,
        message_id: str,
        session_id: str,
        part_type: PartType | str,
        content: dict[str, Any] | None = None,
        status: PartStatus | str = PartStatus.COMPLETED,
    ) -> MessagePart:
        assert self._db is not None, "SessionStore not started"

        type_value = part_type.value if isinstance(part_type, PartType) else part_type
        status_value = status.value if isinstance(status, PartStatus) else status
        content = content or {}
        now = time.time()

        async with self._db.execute(
            "SELECT COALESCE(MAX(sequence), -1) + 1 FROM message_parts WHERE message_id = ?",
            (message_id,),
        ) as cursor:
            row = await cursor.fetchone()
            sequence = row[0] if row else 0

        part = MessagePart(
            id=new_id("prt"),
            message_id=message_id,
            session_id=session_id,
            type=type_value,
            content=content,
            status=status_value,
            sequence=sequence,
            created_at=now,
        )
        await self._db.execute(
            f"INSERT INTO message_parts ({_PART_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                part.id,
                message_id,
                session_id,
                type_value,
                json.dumps(content, default=str),
                status_value,
                sequence,
                now,
            ),
        )
        await self._db.commit()
        return part

    async def update_message_part(
        self,
        part_id: str,
        *,
        status: PartStatus | str | None = None,
        content: dict[str, Any] | None = None,
    ) -> None:
        assert self._db is not None, "SessionStore not started"

        if status is not None:
            value = status.value if isinstance(status, PartStatus) else status
            await self._db.execute(
                "UPDATE message_parts SET status = ? WHERE id = ?", (value, part_id)
            )
        if content is not None:
            await self._db.execute(
                "UPDATE message_parts SET content = ? WHERE id = ?",
                (json.dumps(content, default=str), part_id),
            )
        await self._db.commit()

    async def get_parts(self, message_id: str) -> list[MessagePart]:
        assert self._db is not None, "SessionStore not started"

        async with self._db.execute(
            f"SELECT {_PART_COLUMNS} FROM message_parts WHERE message_id = ? ORDER BY sequence",
            (message_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_to_part(row) for row in rows]

    # ─── Convenience ──────────────────────────────────────────────

    async def get_message_text(self, message_id: str) -> str:
        """Concatenated text parts of one message."""
        parts = await self.get_parts(message_id)
        return "".join(p.text for p in parts if p.type == PartType.TEXT.value)

    async def get_last_assistant_text(self, session_id: str) -> str | None:
        for message in reversed(await self.get_messages(session_id)):
            if message.role == MessageRole.ASSISTANT.value:
                return await self.get_message_text(message.id)
        return None


def _to_session(row: aiosqlite.Row) -> Session:
    return Session(
        id=row["id"],
        parent_id=row["parent_id"],
        agent=row["agent"],
        title=row["title"],
        provider_id=row["provider_id"],
        model_id=row["model_id"],
        status=row["status"],
        message_count=row["message_count"],
        input_tokens=row["input_tokens"],
        output_tokens=row["output_tokens"],
        cost=row["cost"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _to_message(row: aiosqlite.Row) -> Message:
    return Message(
        id=row["id"],
        session_id=row["session_id"],
        role=row["role"],
        parent_id=row["parent_id"],
        agent=row["agent"],
        provider_id=row["provider_id"],
        model_id=row["model_id"],
        finish_reason=row["finish_reason"],
        input_tokens=row["input_tokens"],
        output_tokens=row["output_tokens"],
        cost=row["cost"],
        error=row["error"],
        created_at=row["created_at"],
        completed_at=row["completed_at"],
    )


def _to_part(row: aiosqlite.Row) -> MessagePart:
    return MessagePart(
        id=row["id"],
        message_id=row["message_id"],
        session_id=row["session_id"],
        type=row["type"],
        content=json.loads(row["content"]) if row["content"] else {},
        status=row["status"],
        sequence=row["sequence"],
        created_at=row["created_at"],
    )
