"""
Credential Store — encrypted per-(user, provider) credentials in SQLite.

Usage:
    store = CredentialStore("credentials.db", SecretBox(secret))
    await store.start()
    await store.put("user-1", "openai", Credential.api_key("sk-..."))
    cred = await store.get("user-1", "openai")
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path

import aiosqlite

from tandem.credentials.crypto import SecretBox
from tandem.credentials.models import Credential

logger = logging.getLogger(__name__)


class CredentialStore:
    def __init__(self, db_path: Path | str = "tandem_credentials.db", box: SecretBox | None = None):
        self.db_path = Path(db_path)
        self._box = box or SecretBox()
        self._db: aiosqlite.Connection | None = None
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    async def start(self) -> None:
        self._db = await aiosqlite.connect(str(self.db_path))
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS provider_credentials (
                user_id TEXT NOT NULL,
                provider_id TEXT NOT NULL,
                payload TEXT NOT NULL,
                updated_at REAL NOT NULL,
                PRIMARY KEY (user_id, provider_id)
            )
        """)
        await self._db.commit()
        logger.info("CredentialStore started (db=%s)", self.db_path)

    async def stop(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def get(self, user_id: str, provider_id: str) -> Credential | None:
        assert self._db is not None, "CredentialStore not started"

        async with self._db.execute(
            "SELECT payload FROM provider_credentials WHERE user_id = ? AND provider_id = ?",
            (user_id, provider_id),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return Credential.from_json(self._box.decrypt(row[0]))

    async def put(self, user_id: str, provider_id: str, credential: Credential) -> None:
        assert self._db is not None, "CredentialStore not started"

        await self._db.execute(
            """
            INSERT INTO provider_credentials (user_id, provider_id, payload, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id, provider_id)
            DO UPDATE SET payload = excluded.payload, updated_at = excluded.updated_at
            """,
            (user_id, provider_id, self._box.encrypt(credential.to_json()), time.time()),
        )
        await self._db.commit()

    async def delete(self, user_id: str, provider_id: str) -> bool:
        assert self._db is not None, "CredentialStore not started"

        async with self._db.execute(
            "DELETE FROM provider_credentials WHERE user_id = ? AND provider_id = ?",
            (user_id, provider_id),
        ) as cursor:
            deleted = cursor.rowcount
        await self._db.commit()
        return bool(deleted)

    async def list_providers(self, user_id: str) -> list[str]:
        assert self._db is not None, "CredentialStore not started"

        async with self._db.execute(
            "SELECT provider_id FROM provider_credentials WHERE user_id = ? ORDER BY provider_id",
            (user_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [row[0] for row in rows]

    def refresh_lock(self, user_id: str, provider_id: str) -> asyncio.Lock:
        """Single-flight lock for refreshing one user's provider token."""
        key = (user_id, provider_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock
