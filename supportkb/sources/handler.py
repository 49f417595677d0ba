"""Live message event collection.

Turns individual message events delivered by the platform into records,
using the same retention predicate and id scheme as the batch collector, and
collects the replies of threads the event belongs to.
"""

import logging
from typing import Any, Dict, List, Optional

from supportkb.models.records import Record
from supportkb.sources.collector import is_retained, to_record
from supportkb.sources.source import ConversationsClient
from supportkb.storage.base import KnowledgeStorage

logger = logging.getLogger(__name__)


class MessageEventHandler:
    """Collects records from real-time message events.

    Parameters:
        storage: Durable store receiving the records.
        client: Optional platform client; when given, thread replies are collected too.
        page_size: Page size for thread reply fetches.
    """

    def __init__(self, storage: KnowledgeStorage, client: Optional[ConversationsClient] = None, page_size: int = 100):
        """Initialize the handler."""
        self.storage = storage
        self.client = client
        self.page_size = page_size

    def handle_message(self, event: Dict[str, Any]) -> List[Record]:
        """Process one message event.

        Args:
            event: Raw message event (``channel``, ``ts``, ``text``, ``user``, optional ``thread_ts``).

        Returns:
            List[Record]: Records stored for this event (the message and any thread replies).
        """
        channel_id = event.get("channel")
        if not channel_id or not event.get("ts"):
            logger.debug("Skipping message event without channel or ts")
            return []
        if not is_retained(event) or not event.get("user"):
            logger.debug("Skipping bot, empty or anonymous message")
            return []

        stored: List[Record] = []
        is_reply = bool(event.get("thread_ts")) and event.get("thread_ts") != event.get("ts")
        record = to_record(event, channel_id, thread_root=event["thread_ts"] if is_reply else None)
        self.storage.upsert_record(record)
        stored.append(record)
        text = record.text
        logger.info(
            f"Message collected: user={record.author} channel={channel_id} "
            f"preview={text[:50] + ('...' if len(text) > 50 else '')!r} threaded={bool(event.get('thread_ts'))}"
        )

        if self.client is not None and (event.get("thread_ts") or int(event.get("reply_count") or 0) > 0):
            thread_ts = str(event.get("thread_ts") or event["ts"])
            stored.extend(self._collect_thread_replies(channel_id, thread_ts))
        return stored

    def _collect_thread_replies(self, channel_id: str, thread_ts: str) -> List[Record]:
        """Store the qualifying replies of a thread; failures are logged, not raised."""
        try:
            page = self.client.fetch_thread_replies(  # type: ignore[union-attr]
                channel_id, thread_ts, oldest="0", limit=self.page_size
            )
        except Exception as e:
            logger.error(f"Error collecting thread replies for {thread_ts}: {e}")
            return []

        replies = [
            to_record(reply, channel_id, thread_root=thread_ts)
            for reply in page.messages
            if str(reply.get("ts")) != thread_ts and is_retained(reply)
        ]
        if replies:
            self.storage.upsert_records(replies)
            logger.info(f"Thread replies collected: channel={channel_id} thread={thread_ts} count={len(replies)}")
        return replies
