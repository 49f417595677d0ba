"""In-process storage backend.

Implements the full `KnowledgeStorage` contract over plain dictionaries. Used
by tests and for dry runs; nothing survives the process.
"""

import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from supportkb.models.records import KnowledgeBlob, Record, StoredRecord, timestamp_sort_key, utc_now

from .base import KnowledgeStorage


class InMemoryStorage(KnowledgeStorage):
    """Dictionary-backed store guarded by a single lock."""

    def __init__(self) -> None:
        """Initialize empty state."""
        self._lock = threading.Lock()
        self._knowledge: Optional[KnowledgeBlob] = None
        self._cursor: Optional[datetime] = None
        self._records: Dict[str, StoredRecord] = {}

    def read_knowledge(self) -> Optional[KnowledgeBlob]:
        with self._lock:
            return self._knowledge

    def write_knowledge(self, content: str) -> KnowledgeBlob:
        with self._lock:
            version = self._knowledge.version + 1 if self._knowledge else 1
            self._knowledge = KnowledgeBlob(content=content, updated_at=utc_now(), version=version)
            return self._knowledge

    def read_cursor(self) -> Optional[datetime]:
        with self._lock:
            return self._cursor

    def _persist_cursor(self, value: datetime) -> None:
        with self._lock:
            self._cursor = value

    def upsert_record(self, record: Record) -> None:
        with self._lock:
            existing = self._records.get(record.id)
            self._records[record.id] = StoredRecord(
                **record.model_dump(),
                processed=existing.processed if existing else False,
                created_at=existing.created_at if existing else utc_now(),
                processed_at=existing.processed_at if existing else None,
            )

    def _sorted(self, include_consumed: bool) -> List[StoredRecord]:
        rows = [r for r in self._records.values() if include_consumed or not r.processed]
        return sorted(rows, key=lambda r: timestamp_sort_key(r.timestamp))

    def list_unconsumed_records(self) -> List[Record]:
        with self._lock:
            return [r.to_record() for r in self._sorted(include_consumed=False)]

    def list_records(self, include_consumed: bool = True) -> List[StoredRecord]:
        with self._lock:
            return self._sorted(include_consumed)

    def mark_consumed(self, record_ids: Iterable[str]) -> int:
        now = utc_now()
        changed = 0
        with self._lock:
            for rid in record_ids:
                row = self._records.get(rid)
                if row is None or row.processed:
                    continue
                self._records[rid] = row.model_copy(update={"processed": True, "processed_at": now})
                changed += 1
        return changed

    def mark_all_consumed(self) -> int:
        with self._lock:
            pending = [rid for rid, row in self._records.items() if not row.processed]
        return self.mark_consumed(pending)

    def count_records(self) -> Tuple[int, int]:
        with self._lock:
            total = len(self._records)
            unconsumed = sum(1 for r in self._records.values() if not r.processed)
            return total, unconsumed
