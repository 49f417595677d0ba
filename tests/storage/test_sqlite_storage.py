"""SQLite-specific storage behaviour."""

import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from tempfile import TemporaryDirectory

from supportkb.models.config import StorageConfig
from supportkb.models.records import Record, record_id, utc_now
from supportkb.storage import InMemoryStorage, SqliteStorage, StorageError, create_storage


def _record(ts: str) -> Record:
    return Record(id=record_id(ts, "C1"), text="hi", author="U1", channel="C1", timestamp=ts)


class TestSqliteStorage(unittest.TestCase):
    """Persistence and encoding details of the SQLite backend."""

    def setUp(self) -> None:
        self.tmp = TemporaryDirectory()
        self.db_path = str(Path(self.tmp.name) / "nested" / "kb.db")
        self.storage = SqliteStorage(self.db_path)
        self.storage.initialize()

    def tearDown(self) -> None:
        self.storage.close()
        self.tmp.cleanup()

    def _raw(self, sql: str, params: tuple = ()) -> list:
        conn = self.storage._get_connection()
        with conn:
            return conn.execute(sql, params).fetchall()

    def test_creates_parent_directory(self) -> None:
        self.assertTrue(Path(self.db_path).exists())

    def test_state_survives_reopen(self) -> None:
        cursor = utc_now() - timedelta(hours=1)
        self.storage.write_knowledge("kb")
        self.storage.write_cursor(cursor)
        self.storage.upsert_record(_record("1.0"))
        self.storage.close()

        reopened = SqliteStorage(self.db_path)
        try:
            self.assertEqual(reopened.read_knowledge().content, "kb")
            self.assertEqual(reopened.read_cursor(), cursor)
            self.assertEqual(reopened.count_records(), (1, 1))
        finally:
            reopened.close()

    def test_cursor_is_stored_with_explicit_offset(self) -> None:
        self.storage.write_cursor(datetime(2024, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=2))))
        raw = self._raw("SELECT last_collection_timestamp FROM knowledge_base WHERE id = 1")[0][0]
        self.assertEqual(raw, "2024-05-01T10:00:00+00:00")

    def test_corrupt_cursor_raises_storage_error(self) -> None:
        self._raw("INSERT INTO knowledge_base (id, last_collection_timestamp) VALUES (1, 'not a timestamp')")
        with self.assertRaises(StorageError):
            self.storage.read_cursor()

    def test_legacy_naive_cursor_is_read_as_utc(self) -> None:
        self._raw("INSERT INTO knowledge_base (id, last_collection_timestamp) VALUES (1, '2024-05-01T10:00:00')")
        self.assertEqual(self.storage.read_cursor(), datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc))

    def test_cursor_row_does_not_create_knowledge(self) -> None:
        self.storage.write_cursor(utc_now())
        self.assertIsNone(self.storage.read_knowledge())

    def test_knowledge_write_keeps_cursor(self) -> None:
        cursor = utc_now() - timedelta(minutes=1)
        self.storage.write_cursor(cursor)
        self.storage.write_knowledge("kb")
        self.assertEqual(self.storage.read_cursor(), cursor)

    def test_driver_errors_become_storage_errors(self) -> None:
        self._raw("DROP TABLE collected_messages")
        with self.assertRaises(StorageError):
            self.storage.count_records()


class TestCreateStorage(unittest.TestCase):
    def test_memory_backend(self) -> None:
        self.assertIsInstance(create_storage(StorageConfig(backend="memory")), InMemoryStorage)

    def test_relative_path_joined_with_data_dir(self) -> None:
        with TemporaryDirectory() as tmp:
            storage = create_storage(StorageConfig(db_path="kb.db"), data_dir=tmp)
            self.assertIsInstance(storage, SqliteStorage)
            self.assertEqual(storage.db_path, str(Path(tmp) / "kb.db"))
