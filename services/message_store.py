"""
SQLite-backed message and override persistence.

This module implements the `MessageStore` and `OverrideStore` interfaces on top of the
standard library `sqlite3` module. SQLite is an embedded, serverless database, which keeps
the engine self-contained: the synchronous API path and the queued worker share one
database file. Every operation opens its own short-lived connection, so the stores are safe
to use from the request thread and from the scheduler's worker thread alike.

Overrides are write-once per (message, key): the reprocessing flow records them before a
pipeline run and they are never rewritten afterwards. Repeated writes for the same key are
ignored, which makes retries idempotent.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from provider_api.base import MessageStore, OverrideStore
from shared.models import Direction, Message, MessageStatus

logger = logging.getLogger(__name__)

_MESSAGE_COLUMNS = (
    "id, user_id, tracking_id, conversation_id, direction, text, topic, language, status, "
    "file_text, file_path, file_type, provider, model_name, model_id, created_at"
)


def init_db(db_path: str) -> None:
    """
    Create the message and override tables if they do not exist.

    Ensures the parent directory of the database file exists first. Errors propagate to the
    caller so misconfiguration is visible at startup.
    """
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    con = sqlite3.connect(db_path)
    try:
        cur = con.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                tracking_id TEXT NOT NULL,
                conversation_id TEXT,
                direction TEXT NOT NULL,
                text TEXT,
                topic TEXT,
                language TEXT,
                status TEXT NOT NULL,
                file_text TEXT,
                file_path TEXT,
                file_type TEXT,
                provider TEXT,
                model_name TEXT,
                model_id INTEGER,
                created_at TEXT NOT NULL
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_messages_tracking ON messages (tracking_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages (user_id, conversation_id)")
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS message_overrides (
                message_id INTEGER NOT NULL,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                UNIQUE (message_id, key)
            )
            """
        )
        con.commit()
    finally:
        con.close()


def _row_to_message(row) -> Message:
    (mid, user_id, tracking_id, conversation_id, direction, text, topic, language, status,
     file_text, file_path, file_type, provider, model_name, model_id, created_at) = row
    return Message(
        id=int(mid),
        user_id=int(user_id),
        tracking_id=str(tracking_id),
        conversation_id=conversation_id,
        direction=Direction(direction),
        text=text or "",
        topic=topic,
        language=language,
        status=MessageStatus(status),
        file_text=file_text,
        file_path=file_path,
        file_type=file_type,
        provider=provider,
        model_name=model_name,
        model_id=int(model_id) if model_id is not None else None,
        created_at=datetime.fromisoformat(created_at),
    )


class SQLiteMessageStore(MessageStore):
    """`MessageStore` persisted in the `messages` table."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        init_db(db_path)

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def get(self, message_id: int) -> Optional[Message]:
        con = self._connect()
        try:
            cur = con.execute(f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?", (int(message_id),))
            row = cur.fetchone()
            return _row_to_message(row) if row else None
        finally:
            con.close()

    def save(self, message: Message) -> Message:
        con = self._connect()
        try:
            cur = con.execute(
                """
                INSERT INTO messages (
                    user_id, tracking_id, conversation_id, direction, text, topic, language, status,
                    file_text, file_path, file_type, provider, model_name, model_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message.user_id, message.tracking_id, message.conversation_id,
                    message.direction.value, message.text, message.topic, message.language,
                    message.status.value, message.file_text, message.file_path, message.file_type,
                    message.provider, message.model_name, message.model_id,
                    message.created_at.isoformat(),
                ),
            )
            con.commit()
            message.id = int(cur.lastrowid)
            return message
        finally:
            con.close()

    def update(self, message: Message) -> None:
        if message.id is None:
            raise ValueError("Cannot update a message that was never saved")
        con = self._connect()
        try:
            con.execute(
                """
                UPDATE messages SET text=?, topic=?, language=?, status=?, file_text=?, file_path=?,
                    file_type=?, provider=?, model_name=?, model_id=?
                WHERE id=?
                """,
                (
                    message.text, message.topic, message.language, message.status.value,
                    message.file_text, message.file_path, message.file_type, message.provider,
                    message.model_name, message.model_id, message.id,
                ),
            )
            con.commit()
        finally:
            con.close()

    def history_for(self, message: Message, max_messages: int, max_chars: Optional[int] = None) -> List[Message]:
        if message.conversation_id:
            where, params = "user_id = ? AND conversation_id = ?", [message.user_id, message.conversation_id]
        else:
            where, params = "user_id = ? AND tracking_id = ?", [message.user_id, message.tracking_id]
        if message.id is not None:
            where += " AND id < ?"
            params.append(message.id)
        con = self._connect()
        try:
            cur = con.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE {where} ORDER BY id DESC LIMIT ?",
                (*params, int(max_messages)),
            )
            newest_first = [_row_to_message(row) for row in cur.fetchall()]
        finally:
            con.close()

        kept: List[Message] = []
        total = 0
        for m in newest_first:
            total += len(m.text or "")
            if max_chars and total > max_chars and kept:
                break
            kept.append(m)
        return list(reversed(kept))

    def find_reply(self, tracking_id: str, after_id: Optional[int] = None) -> Optional[Message]:
        con = self._connect()
        try:
            cur = con.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE tracking_id = ? AND direction = ? AND id > ?
                ORDER BY id DESC LIMIT 1
                """,
                (tracking_id, Direction.OUT.value, int(after_id or 0)),
            )
            row = cur.fetchone()
            return _row_to_message(row) if row else None
        finally:
            con.close()


class SQLiteOverrideStore(OverrideStore):
    """`OverrideStore` persisted in the `message_overrides` table (write-once per key)."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        init_db(db_path)

    def get(self, message_id: int, key: str) -> Optional[str]:
        con = sqlite3.connect(self.db_path)
        try:
            cur = con.execute(
                "SELECT value FROM message_overrides WHERE message_id = ? AND key = ?",
                (int(message_id), key),
            )
            row = cur.fetchone()
            return str(row[0]) if row else None
        finally:
            con.close()

    def set(self, message_id: int, key: str, value: str) -> None:
        con = sqlite3.connect(self.db_path)
        try:
            cur = con.execute(
                "INSERT OR IGNORE INTO message_overrides (message_id, key, value) VALUES (?, ?, ?)",
                (int(message_id), key, str(value)),
            )
            con.commit()
            if not cur.rowcount:
                logger.info("Override already recorded; keeping first value",
                            extra={'message_id': message_id, 'override_key': key})
        finally:
            con.close()
