"""
SQLite queue backend.

Keeps queue messages and dead-letter entries in a local SQLite database so
pending work survives a process restart.
"""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Iterator, Optional, Union

from ..exceptions import TransientIOError
from .messages import DeadLetterEntry, IngestionMessage
from .queue import QueueBackend

logger = logging.getLogger(__name__)


# =============================================================================
# SQLite Schema Definitions
# =============================================================================

MESSAGES_SCHEMA = """
CREATE TABLE IF NOT EXISTS queue_messages (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id TEXT NOT NULL UNIQUE,
    body TEXT NOT NULL  -- JSON serialized IngestionMessage
)
"""

DEAD_LETTERS_SCHEMA = """
CREATE TABLE IF NOT EXISTS dead_letters (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id TEXT NOT NULL UNIQUE,
    body TEXT NOT NULL  -- JSON serialized DeadLetterEntry
)
"""


class SqliteQueueBackend(QueueBackend):
    """
    Queue backend persisting to a SQLite database file.

    Example:
        backend = SqliteQueueBackend("data/ingestion-queue.db")
        queue = IngestionQueue(backend=backend, max_receives=3)
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self._db_path = str(db_path)
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            # Access is serialized by IngestionQueue's lock
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute(MESSAGES_SCHEMA)
            self._conn.execute(DEAD_LETTERS_SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise TransientIOError(
                f"Failed to open queue database: {e}", operation="connect"
            ) from e
        logger.debug(f"Opened SQLite queue at {self._db_path}")

    @property
    def backend_type(self) -> str:
        return "sqlite"

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            cursor = self._conn.execute(sql, params)
            self._conn.commit()
            return cursor
        except sqlite3.OperationalError as e:
            # Locked / busy database
            raise TransientIOError(
                f"Queue database operation failed: {e}", operation="execute"
            ) from e

    def insert(self, message: IngestionMessage) -> None:
        self._execute(
            "INSERT INTO queue_messages (message_id, body) VALUES (?, ?)",
            (message.message_id, json.dumps(message.to_dict())),
        )

    def update(self, message: IngestionMessage) -> None:
        self._execute(
            "UPDATE queue_messages SET body = ? WHERE message_id = ?",
            (json.dumps(message.to_dict()), message.message_id),
        )

    def get(self, message_id: str) -> Optional[IngestionMessage]:
        row = self._execute(
            "SELECT body FROM queue_messages WHERE message_id = ?", (message_id,)
        ).fetchone()
        if row is None:
            return None
        return IngestionMessage.from_dict(json.loads(row["body"]))

    def delete(self, message_id: str) -> None:
        self._execute("DELETE FROM queue_messages WHERE message_id = ?", (message_id,))

    def iter_messages(self) -> Iterator[IngestionMessage]:
        rows = self._execute("SELECT body FROM queue_messages ORDER BY seq").fetchall()
        for row in rows:
            yield IngestionMessage.from_dict(json.loads(row["body"]))

    def add_dead_letter(self, entry: DeadLetterEntry) -> None:
        self._execute(
            "INSERT OR REPLACE INTO dead_letters (message_id, body) VALUES (?, ?)",
            (entry.message_id, json.dumps(entry.to_dict())),
        )

    def list_dead_letters(self) -> list[DeadLetterEntry]:
        rows = self._execute("SELECT body FROM dead_letters ORDER BY seq").fetchall()
        return [DeadLetterEntry.from_dict(json.loads(row["body"])) for row in rows]

    def remove_dead_letter(self, message_id: str) -> Optional[DeadLetterEntry]:
        row = self._execute(
            "SELECT body FROM dead_letters WHERE message_id = ?", (message_id,)
        ).fetchone()
        if row is None:
            return None
        self._execute("DELETE FROM dead_letters WHERE message_id = ?", (message_id,))
        return DeadLetterEntry.from_dict(json.loads(row["body"]))

    def close(self) -> None:
        self._conn.close()
