"""Incremental collection of conversational records.

The collector decides once per run between a full historical backfill (no
cursor stored) and a timestamp-bounded incremental sync (cursor present),
discovers the channels the bot can read, drains each channel with bounded
cursor pagination, expands threads, filters out bot and empty messages and
upserts the remaining records.

Run protocol:
    - "now" is captured once, when the run starts.
    - Channels are drained in any order; a failure aborts only that channel.
    - Channels the bot may not read (permission errors) are skipped and count
      as completed.
    - The cursor is written exactly once, after every channel has completed,
      and only if no channel aborted. It is never written per channel, so a
      later channel can never start from a cursor advanced by an earlier one.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from time import perf_counter
from typing import Any, Callable, Dict, List, Optional, Tuple

from supportkb.metrics.metrics import OP_ITEMS, OP_LATENCY
from supportkb.models.records import Record, record_id, timestamp_sort_key, utc_now
from supportkb.sources.checkpoint import CollectionCursor, SyncMode
from supportkb.sources.ratelimiter import FixedDelayPacer
from supportkb.sources.slack import SlackConfig
from supportkb.sources.source import ConversationsClient
from supportkb.storage.base import KnowledgeStorage, StorageError

logger = logging.getLogger(__name__)

HISTORY_METHOD = "conversations.history"
REPLIES_METHOD = "conversations.replies"


class CollectionError(Exception):
    """Raised when a collection run cannot proceed at all (e.g. no channel discovery)."""


class ChannelStatus(str, Enum):
    """Outcome of draining one channel."""

    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ChannelResult:
    """Per-channel outcome of a collection run."""

    channel_id: str
    status: ChannelStatus = ChannelStatus.COMPLETED
    records: int = 0
    filtered: int = 0
    pages: int = 0
    error: Optional[str] = None


@dataclass
class CollectionReport:
    """Summary of one collection run."""

    mode: SyncMode
    run_started_at: datetime
    oldest: Optional[datetime] = None
    channels: List[ChannelResult] = field(default_factory=list)
    cursor_advanced: bool = False
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def records_collected(self) -> int:
        return sum(c.records for c in self.channels)

    @property
    def records_filtered(self) -> int:
        return sum(c.filtered for c in self.channels)

    @property
    def channels_failed(self) -> List[str]:
        return [c.channel_id for c in self.channels if c.status == ChannelStatus.FAILED]

    @property
    def channels_skipped(self) -> List[str]:
        return [c.channel_id for c in self.channels if c.status == ChannelStatus.SKIPPED]

    @property
    def completed(self) -> bool:
        return self.error is None and not self.channels_failed


def is_bot_message(message: Dict[str, Any]) -> bool:
    """Return True if the message was authored by a bot identity."""
    return bool(message.get("bot_id")) or message.get("subtype") == "bot_message"


def is_retained(message: Dict[str, Any]) -> bool:
    """Retention predicate shared by top-level messages and thread replies.

    Drops bot-authored messages and messages without non-whitespace text.
    """
    if is_bot_message(message):
        return False
    text = message.get("text")
    return isinstance(text, str) and bool(text.strip())


def to_record(message: Dict[str, Any], channel_id: str, thread_root: Optional[str] = None) -> Record:
    """Convert a raw platform message into a `Record`.

    Args:
        message: Raw message payload (must carry ``ts``).
        channel_id: Channel the message belongs to.
        thread_root: Root timestamp when the message is a thread reply; reply
            records get the ``_reply`` id suffix.
    """
    ts = str(message.get("ts") or "")
    is_reply = thread_root is not None
    return Record(
        id=record_id(ts, channel_id, is_reply=is_reply),
        text=message.get("text") or "",
        author=message.get("user") or "unknown",
        channel=channel_id,
        timestamp=ts,
        thread_root=thread_root if is_reply else message.get("thread_ts"),
    )


class _ChannelAborted(Exception):
    """Internal: a fetch failed part-way through a channel."""

    def __init__(self, cause: Exception):
        super().__init__(str(cause))
        self.cause = cause


class Collector:
    """Collects records from every reachable channel and owns the collection cursor.

    Parameters:
        client: Messaging platform client.
        storage: Durable store receiving records and the cursor.
        config: Slack collection settings (lookback, paging bounds, delays).
        pacer: Fixed-delay pacer; built from `config` when omitted.
        clock: Source of "now", injectable for tests.
    """

    def __init__(
        self,
        client: ConversationsClient,
        storage: KnowledgeStorage,
        config: Optional[SlackConfig] = None,
        pacer: Optional[FixedDelayPacer] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the collector with its collaborators."""
        self.client = client
        self.storage = storage
        self.config = config or SlackConfig()
        self.pacer = pacer or FixedDelayPacer(
            delays={
                HISTORY_METHOD: self.config.page_delay_seconds,
                REPLIES_METHOD: self.config.thread_delay_seconds,
            }
        )
        self._clock = clock

    # --------- Run ----------
    def collect(self) -> CollectionReport:
        """Run one collection pass and advance the cursor if every channel completed.

        Returns:
            CollectionReport: Mode, per-channel outcomes and whether the cursor moved.
        """
        op_start = perf_counter()
        run_started_at = self._clock()
        report = CollectionReport(mode=SyncMode.FULL, run_started_at=run_started_at)
        try:
            try:
                cursor = CollectionCursor.load(self.storage)
            except StorageError as e:
                report.error = f"Cannot read collection cursor: {e}"
                logger.error(report.error)
                return report

            report.mode = cursor.mode
            report.oldest = cursor.oldest(run_started_at, self.config.days_back)
            oldest_ts = CollectionCursor.to_platform_ts(report.oldest)
            if report.mode == SyncMode.INCREMENTAL:
                logger.info(
                    f"Last collection: {cursor.last_collection_timestamp.isoformat()}. "  # type: ignore[union-attr]
                    f"Collecting incremental messages since {oldest_ts}..."
                )
            else:
                logger.info(
                    f"First time collection. Collecting {self.config.days_back} days of history since {oldest_ts}..."
                )

            try:
                channels = self.discover_channels()
            except CollectionError as e:
                report.error = str(e)
                logger.error(f"Collection aborted, cursor not advanced: {e}")
                return report

            if not channels:
                logger.warning("No channels found where bot is present")

            for channel_id in channels:
                report.channels.append(self.collect_channel(channel_id, oldest_ts))

            logger.info(
                f"Collected {report.records_collected} records "
                f"(filtered {report.records_filtered}) from {len(report.channels)} channels"
            )

            if report.channels_failed:
                logger.warning(
                    f"Collection incomplete, cursor not advanced; failed channels: {', '.join(report.channels_failed)}"
                )
                return report

            try:
                report.cursor_advanced = cursor.advance(self.storage, run_started_at)
            except StorageError as e:
                report.error = f"Cannot write collection cursor: {e}"
                logger.error(report.error)
                return report
            if report.cursor_advanced:
                logger.info(f"Marked collection complete at: {run_started_at.isoformat()}")
            return report
        finally:
            report.duration_seconds = perf_counter() - op_start
            OP_LATENCY.labels(operation="collect").observe(report.duration_seconds)
            OP_ITEMS.labels(operation="collect").observe(report.records_collected)
            logger.info(f"Message collection ({report.mode.value}) completed in {report.duration_seconds:.1f}s")

    # --------- Discovery ----------
    def discover_channels(self) -> List[str]:
        """Return ids of channels the bot is a member of.

        Falls back to public channels only when the preferred discovery is not
        permitted.

        Raises:
            CollectionError: If even the fallback discovery fails.
        """
        logger.info("Discovering channels where bot is present...")
        try:
            channels = self.client.list_channels(self.config.channel_types, limit=self.config.discovery_limit)
        except Exception as e:
            logger.warning(f"Cannot access private channels, checking public channels only: {e}")
            try:
                channels = self.client.list_channels(
                    self.config.fallback_channel_types, limit=self.config.discovery_limit
                )
            except Exception as fallback_err:
                raise CollectionError(f"Channel discovery failed: {fallback_err}") from fallback_err

        bot_user_id = self.config.bot_user_id
        member_channels: List[str] = []
        for channel in channels:
            channel_id = channel.get("id")
            if not channel_id:
                continue
            if bot_user_id:
                try:
                    members = self.client.list_members(channel_id)
                except Exception as e:
                    logger.debug(f"Cannot access channel {channel.get('name')}: {e}")
                    continue
                if bot_user_id not in members:
                    continue
            elif not channel.get("is_member"):
                continue
            member_channels.append(channel_id)
            logger.debug(f"Found bot in channel: {channel.get('name')} ({channel_id})")

        logger.info(f"Bot is member of {len(member_channels)} channels")
        return member_channels

    # --------- Channel drain ----------
    def _error_code(self, exc: Exception) -> Optional[str]:
        response = getattr(exc, "response", None)
        if response is None:
            return None
        try:
            return response.get("error")
        except AttributeError:
            return None

    def collect_channel(self, channel_id: str, oldest_ts: str) -> ChannelResult:
        """Fetch, filter and upsert one channel's records.

        Records fetched before a failure are still upserted; upserts are
        idempotent so a later run re-fetching them is harmless.
        """
        op_start = perf_counter()
        result = ChannelResult(channel_id=channel_id)
        records: List[Record] = []
        try:
            result.pages, result.filtered = self._fetch_channel(channel_id, oldest_ts, records)
        except _ChannelAborted as aborted:
            code = self._error_code(aborted.cause)
            result.error = str(aborted.cause)
            if code in self.config.skip_error_codes:
                result.status = ChannelStatus.SKIPPED
                logger.warning(f"Skipping channel {channel_id} ({code})")
            else:
                result.status = ChannelStatus.FAILED
                logger.error(f"Error fetching history from channel {channel_id}: {aborted.cause}")

        if records:
            records.sort(key=lambda r: timestamp_sort_key(r.timestamp))
            try:
                result.records = self.storage.upsert_records(records)
            except StorageError as e:
                result.status = ChannelStatus.FAILED
                result.error = str(e)
                logger.error(f"Failed to store records for channel {channel_id}: {e}")

        OP_LATENCY.labels(operation="collect_channel").observe(perf_counter() - op_start)
        OP_ITEMS.labels(operation="collect_channel").observe(result.records)
        logger.info(
            f"Channel {channel_id}: status={result.status.value} records={result.records} "
            f"filtered={result.filtered} pages={result.pages}"
        )
        return result

    def _fetch_channel(self, channel_id: str, oldest_ts: str, sink: List[Record]) -> Tuple[int, int]:
        """Paginate a channel's history, expanding threads into `sink`.

        Returns:
            Tuple[int, int]: Pages fetched and messages filtered out.

        Raises:
            _ChannelAborted: On the first failed page or thread fetch.
        """
        cursor: Optional[str] = None
        pages = 0
        filtered = 0
        while True:
            if pages > 0:
                self.pacer.pause(HISTORY_METHOD)
            try:
                page = self.client.fetch_history_page(
                    channel_id, oldest=oldest_ts, cursor=cursor, limit=self.config.page_size
                )
            except Exception as e:
                raise _ChannelAborted(e) from e
            pages += 1

            for message in page.messages:
                if not is_retained(message):
                    filtered += 1
                    continue
                sink.append(to_record(message, channel_id))
                if int(message.get("reply_count") or 0) > 0:
                    replies, reply_filtered = self.fetch_thread(channel_id, str(message["ts"]), oldest_ts)
                    sink.extend(replies)
                    filtered += reply_filtered

            cursor = page.next_cursor
            if not cursor:
                break
            if pages >= self.config.max_pages:
                logger.warning(
                    f"Channel {channel_id}: page cap of {self.config.max_pages} reached, remaining history not fetched"
                )
                break
        return pages, filtered

    def fetch_thread(self, channel_id: str, thread_ts: str, oldest_ts: str) -> Tuple[List[Record], int]:
        """Fetch the qualifying replies of a thread.

        The thread root (``ts == thread_ts``) is excluded; it is collected as a
        top-level message.

        Raises:
            _ChannelAborted: If a reply page cannot be fetched.
        """
        replies: List[Record] = []
        filtered = 0
        cursor: Optional[str] = None
        pages = 0
        while True:
            self.pacer.pause(REPLIES_METHOD)
            try:
                page = self.client.fetch_thread_replies(
                    channel_id, thread_ts, oldest=oldest_ts, cursor=cursor, limit=self.config.page_size
                )
            except Exception as e:
                logger.error(f"Error fetching thread replies for {thread_ts}: {e}")
                raise _ChannelAborted(e) from e
            pages += 1
            for reply in page.messages:
                if str(reply.get("ts")) == thread_ts:
                    continue
                if not is_retained(reply):
                    filtered += 1
                    continue
                replies.append(to_record(reply, channel_id, thread_root=thread_ts))
            cursor = page.next_cursor
            if not cursor or pages >= self.config.max_pages:
                break
        logger.debug(f"Collected {len(replies)} thread replies for {thread_ts}")
        return replies, filtered
