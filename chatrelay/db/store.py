"""
SQLite-backed message store using aiosqlite.

Finished turns are written here by a relay listener; nothing in the
streaming path waits on it.
"""
from __future__ import annotations

import json
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import aiosqlite

from chatrelay.config import get_settings
from chatrelay.streaming.events import ChatMessage

_db_path: Optional[Path] = None


def get_db_path() -> Path:
    return _db_path or Path(get_settings().db_path)


def set_db_path(path: str | Path) -> None:
    global _db_path
    _db_path = Path(path)


@asynccontextmanager
async def get_db():
    async with aiosqlite.connect(str(get_db_path())) as db:
        db.row_factory = aiosqlite.Row
        await db.execute("PRAGMA journal_mode=WAL")
        yield db


async def init_db() -> None:
    async with get_db() as db:
        await db.executescript("""
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                metadata TEXT,
                created_at INTEGER NOT NULL,
                FOREIGN KEY (conversation_id) REFERENCES conversations(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_messages_conversation_id ON messages(conversation_id);
        """)
        await db.commit()


async def save_message(conv_id: str, message: ChatMessage, metadata: dict | None = None) -> dict:
    now = int(time.time())
    meta_str = json.dumps(metadata) if metadata else None

    async with get_db() as db:
        await db.execute(
            "INSERT OR IGNORE INTO conversations (id, created_at, updated_at) VALUES (?, ?, ?)",
            (conv_id, now, now),
        )
        await db.execute(
            "INSERT OR REPLACE INTO messages "
            "(id, conversation_id, role, content, timestamp, metadata, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (message.id, conv_id, message.role, message.content, message.timestamp, meta_str, now),
        )
        await db.execute("UPDATE conversations SET updated_at = ? WHERE id = ?", (now, conv_id))
        await db.commit()

    return {"conversation_id": conv_id, **message.model_dump(), "metadata": metadata}


async def get_messages(conv_id: str, limit: int = 50, offset: int = 0) -> list[dict]:
    async with get_db() as db:
        cursor = await db.execute(
            "SELECT * FROM messages WHERE conversation_id = ? "
            "ORDER BY created_at ASC, rowid ASC LIMIT ? OFFSET ?",
            (conv_id, limit, offset),
        )
        rows = await cursor.fetchall()
        result = []
        for r in rows:
            d = dict(r)
            if d.get("metadata"):
                try:
                    d["metadata"] = json.loads(d["metadata"])
                except (json.JSONDecodeError, TypeError):
                    pass
            result.append(d)
        return result
