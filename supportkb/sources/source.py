"""Base conversations client interface for data collection.

Defines the abstract interface the collector uses to reach the messaging
platform. Every method is an I/O call that may fail or be rate limited.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class MessagePage:
    """One page of messages returned by the platform.

    Parameters:
        messages: Raw message payloads as returned by the platform.
        next_cursor: Opaque cursor for the following page, None when exhausted.
    """

    messages: List[Dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[str] = None


class ConversationsClient:
    """Base class for messaging platform clients.

    Implementations raise the platform's own error type on failure; callers
    decide whether a failure skips or aborts the affected channel.
    """

    source_name: str = "platform"

    def list_channels(self, channel_types: List[str], limit: int = 1000) -> List[Dict[str, Any]]:
        """Return the non-archived channels of the given types.

        Args:
            channel_types: Conversation types to include (e.g. public_channel).
            limit: Page size for the listing call.
        """
        raise NotImplementedError

    def list_members(self, channel_id: str) -> List[str]:
        """Return the user ids of the members of a channel."""
        raise NotImplementedError

    def fetch_history_page(
        self,
        channel_id: str,
        oldest: str,
        cursor: Optional[str] = None,
        limit: int = 100,
    ) -> MessagePage:
        """Fetch one page of a channel's top-level messages newer than `oldest`.

        Args:
            channel_id: Channel to read.
            oldest: Lower bound as epoch seconds in the platform's string format.
            cursor: Cursor returned by the previous page, None for the first page.
            limit: Maximum messages per page.
        """
        raise NotImplementedError

    def fetch_thread_replies(
        self,
        channel_id: str,
        thread_ts: str,
        oldest: str,
        cursor: Optional[str] = None,
        limit: int = 100,
    ) -> MessagePage:
        """Fetch one page of a thread. The first message of the first page is the thread root."""
        raise NotImplementedError
