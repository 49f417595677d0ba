"""Durable storage interface for records, the knowledge blob and the collection cursor.

Defines the abstract contract every backing store satisfies. The cursor
invariants (never in the future, never moving backwards) are enforced here,
once, so no backend can skip them.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from supportkb.metrics.metrics import CURSOR_REJECTIONS
from supportkb.models.records import KnowledgeBlob, Record, StoredRecord, parse_instant, utc_now

logger = logging.getLogger(__name__)

CURSOR_FUTURE_TOLERANCE = timedelta(seconds=60)


class StorageError(Exception):
    """Raised when the backing store cannot complete an operation."""


class KnowledgeStorage(ABC):
    """Abstract durable store.

    All operations may raise `StorageError`. Writes must be visible to
    subsequent reads from the same process.
    """

    def initialize(self) -> None:
        """Prepare the backend (create schema, open connections)."""

    def close(self) -> None:
        """Release backend resources."""

    # --------- Knowledge blob ----------
    @abstractmethod
    def read_knowledge(self) -> Optional[KnowledgeBlob]:
        """Return the stored knowledge blob, or None if it was never written."""

    @abstractmethod
    def write_knowledge(self, content: str) -> KnowledgeBlob:
        """Replace the knowledge content wholesale and return the new blob.

        The returned blob carries `updated_at = now` and the version incremented by one.
        """

    # --------- Collection cursor ----------
    @abstractmethod
    def read_cursor(self) -> Optional[datetime]:
        """Return the last collection timestamp as an aware UTC datetime, or None."""

    @abstractmethod
    def _persist_cursor(self, value: datetime) -> None:
        """Store an already validated cursor value."""

    def write_cursor(self, timestamp: datetime) -> bool:
        """Persist the collection cursor if it satisfies the cursor invariants.

        A value more than `CURSOR_FUTURE_TOLERANCE` ahead of the wall clock, or
        earlier than the stored cursor, is refused: the stored value stays
        unchanged, the refusal is logged as an error and False is returned.

        Args:
            timestamp: New cursor value. Naive datetimes are taken as UTC.

        Returns:
            bool: True if the cursor was written.
        """
        value = parse_instant(timestamp)
        now = utc_now()
        if value > now + CURSOR_FUTURE_TOLERANCE:
            logger.error(
                f"Refusing to store future collection timestamp: provided={value.isoformat()} "
                f"current={now.isoformat()}"
            )
            CURSOR_REJECTIONS.labels(reason="future").inc()
            return False

        current = self.read_cursor()
        if current is not None and value < current:
            logger.error(
                f"Refusing to move collection timestamp backwards: provided={value.isoformat()} "
                f"stored={current.isoformat()}"
            )
            CURSOR_REJECTIONS.labels(reason="backwards").inc()
            return False

        self._persist_cursor(value)
        logger.info(f"Updated collection timestamp: {value.isoformat()}")
        return True

    # --------- Records ----------
    @abstractmethod
    def upsert_record(self, record: Record) -> None:
        """Insert or overwrite a record keyed by its id.

        Overwriting keeps the stored consumption flag.
        """

    def upsert_records(self, records: Iterable[Record]) -> int:
        """Upsert several records; returns how many were written."""
        count = 0
        for record in records:
            self.upsert_record(record)
            count += 1
        return count

    @abstractmethod
    def list_unconsumed_records(self) -> List[Record]:
        """Return records not yet consumed by the learner, oldest first."""

    @abstractmethod
    def list_records(self, include_consumed: bool = True) -> List[StoredRecord]:
        """Return stored records with their bookkeeping, oldest first."""

    @abstractmethod
    def mark_consumed(self, record_ids: Iterable[str]) -> int:
        """Flag the given records as consumed; returns how many changed."""

    @abstractmethod
    def mark_all_consumed(self) -> int:
        """Flag every unconsumed record as consumed; returns how many changed."""

    @abstractmethod
    def count_records(self) -> Tuple[int, int]:
        """Return (total records, unconsumed records)."""
