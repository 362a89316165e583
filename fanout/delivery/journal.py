"""SQLite dead-letter journal: durable record of deliveries that ended in permanent failure."""

import json
import logging
import time
from pathlib import Path
from typing import Any

import aiosqlite

from fanout.delivery.models import DeliveryAttempt
from fanout.events.models import event_to_dict

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS dead_letters (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    attempt_id      TEXT    NOT NULL,
    event_id        TEXT    NOT NULL,
    event_name      TEXT    NOT NULL,
    subscription_id TEXT    NOT NULL,
    endpoint        TEXT    NOT NULL,
    attempts        INTEGER NOT NULL,
    error           TEXT,
    event_payload   TEXT    NOT NULL,
    created_at      REAL    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_dl_subscription ON dead_letters(subscription_id, created_at);
CREATE INDEX IF NOT EXISTS idx_dl_event ON dead_letters(event_id);
"""

_COLUMNS = (
    "id",
    "attempt_id",
    "event_id",
    "event_name",
    "subscription_id",
    "endpoint",
    "attempts",
    "error",
    "event_payload",
    "created_at",
)


class DeadLetterJournal:
    """SQLite-backed dead-letter store. One connection per instance."""

    def __init__(self, db_path: Path, busy_timeout: int = 5000) -> None:
        self._db_path = db_path
        self._busy_timeout = busy_timeout
        self._conn: aiosqlite.Connection | None = None

    async def _ensure_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = await aiosqlite.connect(str(self._db_path))
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA synchronous=NORMAL")
            await self._conn.execute(f"PRAGMA busy_timeout={self._busy_timeout}")
            await self._conn.executescript(_SCHEMA)
            await self._conn.commit()
        return self._conn

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def record(self, attempt: DeliveryAttempt) -> int:
        """Persist a permanently failed attempt. Returns row id."""
        conn = await self._ensure_conn()
        cursor = await conn.execute(
            """
            INSERT INTO dead_letters (attempt_id, event_id, event_name, subscription_id,
                endpoint, attempts, error, event_payload, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                attempt.id,
                attempt.event.event_id,
                attempt.event.event_name,
                attempt.subscription_id,
                str(attempt.endpoint_descriptor),
                attempt.attempt_number,
                attempt.last_error,
                json.dumps(event_to_dict(attempt.event), ensure_ascii=False),
                time.time(),
            ),
        )
        await conn.commit()
        return cursor.lastrowid or 0

    async def list_recent(
        self, limit: int = 50, subscription_id: str | None = None
    ) -> list[dict[str, Any]]:
        """Newest first. event_payload is decoded back to a dict."""
        conn = await self._ensure_conn()
        query = f"SELECT {', '.join(_COLUMNS)} FROM dead_letters"
        params: list[Any] = []
        if subscription_id is not None:
            query += " WHERE subscription_id = ?"
            params.append(subscription_id)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        result = []
        for row in rows:
            item = dict(zip(_COLUMNS, row))
            item["event_payload"] = json.loads(item["event_payload"])
            result.append(item)
        return result

    async def count(self) -> int:
        conn = await self._ensure_conn()
        cursor = await conn.execute("SELECT COUNT(*) FROM dead_letters")
        row = await cursor.fetchone()
        return row[0] if row else 0
