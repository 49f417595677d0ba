"""SQLite storage backend.

Relational implementation of `KnowledgeStorage` with two tables:

- ``knowledge_base``: a single logical row (id=1) holding the knowledge
  content, its update time and version, and the last collection timestamp.
- ``collected_messages``: one row per record keyed by ``message_id`` with a
  ``processed`` flag; rows are flagged, never deleted.

Uses WAL mode so readers don't block the single writer. Every
``sqlite3.Error`` is surfaced as `StorageError`.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple

from supportkb.models.records import (
    KnowledgeBlob,
    Record,
    StoredRecord,
    format_instant,
    parse_instant,
    utc_now,
)

from .base import KnowledgeStorage, StorageError

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS knowledge_base (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        content TEXT,
        updated_at TEXT,
        version INTEGER NOT NULL DEFAULT 0,
        last_collection_timestamp TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS collected_messages (
        message_id TEXT PRIMARY KEY,
        text TEXT NOT NULL,
        user_id TEXT NOT NULL,
        channel_id TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        thread_ts TEXT,
        processed INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        processed_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_processed ON collected_messages(processed);",
    "CREATE INDEX IF NOT EXISTS idx_messages_timestamp ON collected_messages(timestamp);",
)


class SqliteStorage(KnowledgeStorage):
    """SQLite-backed durable store."""

    def __init__(self, db_path: str):
        """Initialize the store.

        Args:
            db_path: Path to the database file (``:memory:`` for a private in-memory database).
        """
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection and schema."""
        if self._conn is None:
            try:
                conn = sqlite3.connect(self.db_path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                if self.db_path != ":memory:":
                    conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA synchronous=NORMAL;")
                for statement in _SCHEMA:
                    conn.execute(statement)
                conn.commit()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to open database {self.db_path}: {e}") from e
            self._conn = conn
            logger.debug(f"SQLite storage connected: {self.db_path}")
        return self._conn

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Run a block in a transaction, translating driver errors."""
        with self._lock:
            conn = self._get_connection()
            try:
                with conn:
                    yield conn
            except sqlite3.Error as e:
                logger.error(f"SQLite error during {operation}: {e}")
                raise StorageError(f"{operation} failed: {e}") from e

    def initialize(self) -> None:
        with self._lock:
            self._get_connection()
        logger.info(f"SQLite storage initialized at {self.db_path}")

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # --------- Knowledge blob ----------
    def read_knowledge(self) -> Optional[KnowledgeBlob]:
        with self._transaction("read_knowledge") as conn:
            row = conn.execute("SELECT content, updated_at, version FROM knowledge_base WHERE id = 1").fetchone()
        if row is None or row["content"] is None:
            return None
        updated_at = parse_instant(row["updated_at"]) if row["updated_at"] else None
        return KnowledgeBlob(content=row["content"], updated_at=updated_at, version=int(row["version"] or 0))

    def write_knowledge(self, content: str) -> KnowledgeBlob:
        now = utc_now()
        with self._transaction("write_knowledge") as conn:
            conn.execute(
                """
                INSERT INTO knowledge_base (id, content, updated_at, version)
                VALUES (1, ?, ?, 1)
                ON CONFLICT(id) DO UPDATE SET
                    content = excluded.content,
                    updated_at = excluded.updated_at,
                    version = knowledge_base.version + 1
                """,
                (content, format_instant(now)),
            )
            row = conn.execute("SELECT version FROM knowledge_base WHERE id = 1").fetchone()
        logger.info(f"Knowledge base written: {len(content)} characters, version {row['version']}")
        return KnowledgeBlob(content=content, updated_at=now, version=int(row["version"]))

    # --------- Collection cursor ----------
    def read_cursor(self) -> Optional[datetime]:
        with self._transaction("read_cursor") as conn:
            row = conn.execute("SELECT last_collection_timestamp FROM knowledge_base WHERE id = 1").fetchone()
        if row is None or not row["last_collection_timestamp"]:
            return None
        raw = row["last_collection_timestamp"]
        try:
            value = parse_instant(raw)
        except ValueError as e:
            raise StorageError(f"Unreadable collection timestamp {raw!r}: {e}") from e
        logger.debug(f"Retrieved collection timestamp: raw={raw!r} parsed={value.isoformat()}")
        return value

    def _persist_cursor(self, value: datetime) -> None:
        with self._transaction("write_cursor") as conn:
            conn.execute(
                """
                INSERT INTO knowledge_base (id, last_collection_timestamp)
                VALUES (1, ?)
                ON CONFLICT(id) DO UPDATE SET last_collection_timestamp = excluded.last_collection_timestamp
                """,
                (format_instant(value),),
            )

    # --------- Records ----------
    def upsert_record(self, record: Record) -> None:
        self.upsert_records([record])

    def upsert_records(self, records: Iterable[Record]) -> int:
        created_at = format_instant(utc_now())
        rows = [
            (r.id, r.text, r.author, r.channel, r.timestamp, r.thread_root, created_at)
            for r in records
        ]
        if not rows:
            return 0
        with self._transaction("upsert_records") as conn:
            conn.executemany(
                """
                INSERT INTO collected_messages
                    (message_id, text, user_id, channel_id, timestamp, thread_ts, processed, created_at)
                VALUES (?, ?, ?, ?, ?, ?, 0, ?)
                ON CONFLICT(message_id) DO UPDATE SET
                    text = excluded.text,
                    user_id = excluded.user_id,
                    channel_id = excluded.channel_id,
                    timestamp = excluded.timestamp,
                    thread_ts = excluded.thread_ts
                """,
                rows,
            )
        logger.debug(f"Upserted {len(rows)} records")
        return len(rows)

    @staticmethod
    def _row_to_stored(row: sqlite3.Row) -> StoredRecord:
        return StoredRecord(
            id=row["message_id"],
            text=row["text"],
            author=row["user_id"],
            channel=row["channel_id"],
            timestamp=row["timestamp"],
            thread_root=row["thread_ts"],
            processed=bool(row["processed"]),
            created_at=parse_instant(row["created_at"]) if row["created_at"] else None,
            processed_at=parse_instant(row["processed_at"]) if row["processed_at"] else None,
        )

    def _select_records(self, include_consumed: bool) -> List[StoredRecord]:
        query = "SELECT * FROM collected_messages"
        if not include_consumed:
            query += " WHERE processed = 0"
        query += " ORDER BY CAST(timestamp AS REAL) ASC, message_id ASC"
        with self._transaction("list_records") as conn:
            rows = conn.execute(query).fetchall()
        return [self._row_to_stored(row) for row in rows]

    def list_unconsumed_records(self) -> List[Record]:
        return [r.to_record() for r in self._select_records(include_consumed=False)]

    def list_records(self, include_consumed: bool = True) -> List[StoredRecord]:
        return self._select_records(include_consumed)

    def mark_consumed(self, record_ids: Iterable[str]) -> int:
        now = format_instant(utc_now())
        ids = [(now, rid) for rid in record_ids]
        if not ids:
            return 0
        with self._transaction("mark_consumed") as conn:
            before = conn.total_changes
            conn.executemany(
                "UPDATE collected_messages SET processed = 1, processed_at = ? WHERE message_id = ? AND processed = 0",
                ids,
            )
            changed = conn.total_changes - before
        logger.info(f"Marked {changed} records as consumed")
        return changed

    def mark_all_consumed(self) -> int:
        with self._transaction("mark_all_consumed") as conn:
            cur = conn.execute(
                "UPDATE collected_messages SET processed = 1, processed_at = ? WHERE processed = 0",
                (format_instant(utc_now()),),
            )
            changed = cur.rowcount
        logger.info(f"Marked all pending records as consumed ({changed})")
        return changed

    def count_records(self) -> Tuple[int, int]:
        with self._transaction("count_records") as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total, COALESCE(SUM(CASE WHEN processed = 0 THEN 1 ELSE 0 END), 0) AS pending "
                "FROM collected_messages"
            ).fetchone()
        return int(row["total"]), int(row["pending"])
