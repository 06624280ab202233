import asyncio
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from os import PathLike

import aiosqlite

from chatkit.errors import StoreUnavailable
from chatkit.models.chat_message import ChatMessage
from chatkit.models.types import PUBLIC_CHANNEL, UserIdentity
from chatkit.stores.base import HistoryStore

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MICROSECOND = timedelta(microseconds=1)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sender_name TEXT NOT NULL,
    receiver_name TEXT NOT NULL,
    body TEXT NOT NULL,
    timestamp_us INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_pair ON messages (sender_name, receiver_name);
CREATE INDEX IF NOT EXISTS idx_messages_receiver ON messages (receiver_name);
"""

_COLUMNS = "id, sender_name, receiver_name, body, timestamp_us"


def _to_micros(value: datetime) -> int:
    return (value - _EPOCH) // _MICROSECOND


def _from_micros(value: int) -> datetime:
    return _EPOCH + value * _MICROSECOND


def _row_to_message(row: sqlite3.Row) -> ChatMessage:
    return ChatMessage(
        id=row["id"],
        sender_name=row["sender_name"],
        receiver_name=row["receiver_name"],
        body=row["body"],
        timestamp=_from_micros(row["timestamp_us"]),
    )


class SqliteHistoryStore(HistoryStore):
    """Durable history store backed by a SQLite file.

    Every append is committed before it returns, so a message the router goes on
    to deliver is already recoverable from history. Writes are serialized through
    a single lock; reads go straight to the connection.
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db
        self._db.row_factory = sqlite3.Row
        self._write_lock = asyncio.Lock()

    @classmethod
    async def open(cls, path: str | PathLike[str]) -> "SqliteHistoryStore":
        db = await aiosqlite.connect(path)
        await db.executescript(_SCHEMA)
        await db.commit()
        logger.info("Opened sqlite history store at %s", path)
        return cls(db)

    async def append(self, message: ChatMessage) -> int:
        async with self._write_lock:
            try:
                cursor = await self._db.execute(
                    "INSERT INTO messages (sender_name, receiver_name, body, timestamp_us) "
                    "VALUES (?, ?, ?, ?)",
                    (
                        message.sender_name,
                        message.receiver_name,
                        message.body,
                        _to_micros(message.timestamp),
                    ),
                )
                await self._db.commit()
            except (sqlite3.Error, ValueError) as exc:
                # ValueError covers a closed connection and text that cannot be encoded
                logger.warning("History write failed: %s", exc)
                raise StoreUnavailable(f"Could not persist message: {exc}") from exc
            message_id = cursor.lastrowid
            await cursor.close()
        if message_id is None:
            raise StoreUnavailable("SQLite did not report an id for the persisted message")
        return message_id

    async def query(self, identity_a: UserIdentity, identity_b: UserIdentity) -> list[ChatMessage]:
        return await self._select(
            "(sender_name = ? AND receiver_name = ?) OR (sender_name = ? AND receiver_name = ?)",
            (identity_a, identity_b, identity_b, identity_a),
        )

    async def public_feed(self) -> list[ChatMessage]:
        return await self._select("receiver_name = ?", (PUBLIC_CHANNEL,))

    async def close(self) -> None:
        await self._db.close()

    async def _select(self, where: str, params: tuple) -> list[ChatMessage]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM messages WHERE {where} ORDER BY timestamp_us, id",
            params,
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_message(row) for row in rows]
