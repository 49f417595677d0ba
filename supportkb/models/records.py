"""Domain models for collected records, the knowledge blob and learning sessions.

Timestamps crossing the storage boundary use one representation: an aware UTC
``datetime`` in memory and an RFC3339 string with an explicit offset on disk.
``parse_instant`` is the single place where persisted values are turned back
into instants, so a naive value can never be read in the local timezone.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Instant = Union[datetime, str, int, float]


def utc_now() -> datetime:
    """Return the current wall-clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_instant(value: Instant) -> datetime:
    """Normalize a persisted timestamp to an aware UTC datetime.

    Accepts aware or naive datetimes, RFC3339/ISO-8601 strings (a trailing ``Z``
    is allowed) and epoch seconds as numbers or numeric strings. Values without
    offset information are interpreted as UTC, never as local time.

    Raises:
        ValueError: If the value cannot be interpreted as an instant.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            raise ValueError("Empty timestamp")
        try:
            return datetime.fromtimestamp(float(raw), tz=timezone.utc)
        except ValueError:
            pass
        if raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        dt = datetime.fromisoformat(raw)
    else:
        raise ValueError(f"Unsupported timestamp type: {type(value).__name__}")

    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_instant(value: datetime) -> str:
    """Serialize an instant as RFC3339 with a mandatory ``+00:00`` offset."""
    return parse_instant(value).isoformat()


def record_id(timestamp: str, channel: str, is_reply: bool = False) -> str:
    """Build the deterministic record id for a platform event.

    Re-fetching the same event always yields the same id, which is what makes
    storage upserts idempotent.
    """
    base = f"{timestamp}_{channel}"
    return f"{base}_reply" if is_reply else base


def timestamp_sort_key(timestamp: str) -> float:
    """Numeric ordering key for platform ``ts`` strings."""
    try:
        return float(timestamp)
    except (TypeError, ValueError):
        return 0.0


class Record(BaseModel):
    """A single collected conversational message."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Deterministic id from (timestamp, channel, is_reply)")
    text: str
    author: str = Field(default="unknown", description="Platform user id of the author")
    channel: str
    timestamp: str = Field(..., description="Platform-native timestamp, monotonic within a channel")
    thread_root: Optional[str] = Field(default=None, description="Timestamp of the thread root, if any")

    @property
    def is_reply(self) -> bool:
        return self.id.endswith("_reply")


class StoredRecord(Record):
    """A record as persisted, including its consumption bookkeeping."""

    processed: bool = False
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    def to_record(self) -> Record:
        return Record(**self.model_dump(include=set(Record.model_fields)))


class KnowledgeBlob(BaseModel):
    """The single curated knowledge artifact.

    Replaced wholesale by every successful write; never merged in place.
    """

    model_config = ConfigDict(frozen=True)

    content: str = ""
    updated_at: Optional[datetime] = None
    version: int = 0

    @classmethod
    def empty(cls) -> "KnowledgeBlob":
        return cls()

    def __len__(self) -> int:
        return len(self.content)


class SessionStatus(str, Enum):
    """Outcome of a learning session."""

    NOOP = "noop"
    SUCCEEDED = "succeeded"
    FALLBACK = "fallback"
    FAILED = "failed"
    REJECTED = "rejected"


class LearningSession(BaseModel):
    """Structured result of one learner run."""

    id: str
    status: SessionStatus = SessionStatus.FAILED
    messages_processed: int = 0
    knowledge_length_before: int = 0
    knowledge_length_after: int = 0
    timestamp: datetime = Field(default_factory=utc_now)
    success: bool = False
    error: Optional[str] = None
    summary: Optional[str] = None
    change_count: int = 0

    @property
    def knowledge_growth(self) -> int:
        return self.knowledge_length_after - self.knowledge_length_before


class KnowledgeStats(BaseModel):
    """Snapshot of knowledge and collection counters."""

    knowledge_length: int = 0
    total_messages: int = Field(default=0, description="Records awaiting learning")
    total_records: int = 0
    last_updated: Optional[datetime] = None
    version: int = 0

    def as_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
