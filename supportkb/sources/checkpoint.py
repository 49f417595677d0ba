"""Collection cursor management.

Provides the cursor used to choose between a full historical backfill and a
timestamp-bounded incremental sync, and to turn it into the platform's
``oldest`` bound.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from supportkb.models.records import parse_instant
from supportkb.storage.base import KnowledgeStorage


class SyncMode(str, Enum):
    """How a collection run bounds its fetches."""

    FULL = "full"
    INCREMENTAL = "incremental"


@dataclass
class CollectionCursor:
    """Checkpoint for tracking collection progress.

    The cursor is the instant the last complete collection run started. It is
    absent before the first run, which triggers a full backfill.

    Parameters:
        last_collection_timestamp: Aware UTC datetime, or None if never collected.
    """

    last_collection_timestamp: Optional[datetime] = None

    def __post_init__(self) -> None:
        """Normalize the stored value to an absolute UTC instant."""
        if self.last_collection_timestamp is not None:
            self.last_collection_timestamp = parse_instant(self.last_collection_timestamp)

    @classmethod
    def load(cls, storage: KnowledgeStorage) -> "CollectionCursor":
        """Read the cursor from storage."""
        return cls(last_collection_timestamp=storage.read_cursor())

    @property
    def mode(self) -> SyncMode:
        return SyncMode.FULL if self.last_collection_timestamp is None else SyncMode.INCREMENTAL

    def oldest(self, now: datetime, days_back: int) -> datetime:
        """Return the lower bound for this run.

        Full mode looks back `days_back` days from `now`; incremental mode
        starts at the cursor.
        """
        if self.last_collection_timestamp is None:
            return parse_instant(now) - timedelta(days=days_back)
        return self.last_collection_timestamp

    @staticmethod
    def to_platform_ts(value: datetime) -> str:
        """Format an instant as the platform's epoch-seconds string."""
        return f"{parse_instant(value).timestamp():.6f}"

    def advance(self, storage: KnowledgeStorage, value: datetime) -> bool:
        """Persist a new cursor value; returns False if the store refused it."""
        if not storage.write_cursor(value):
            return False
        self.last_collection_timestamp = parse_instant(value)
        return True
