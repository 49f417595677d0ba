"""Slack conversations client with per-call metrics.

This module implements the messaging platform client used by the collector:
- Uses Slack WebClient with the SDK's rate-limit retry handler (respecting Retry-After).
- Emits Prometheus metrics for per-call latency/count.
- Logs per-page details at DEBUG.

Pacing between paginated calls is the collector's job (see `FixedDelayPacer`);
this client performs no retry loop of its own.
"""

import logging
import os
from time import perf_counter
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field
from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError
from slack_sdk.http_retry.builtin_handlers import RateLimitErrorRetryHandler

from supportkb.metrics.metrics import API_CALLS, API_LATENCY
from supportkb.sources.source import ConversationsClient, MessagePage

logger = logging.getLogger(__name__)


class SlackConfig(BaseModel):
    """Configuration for Slack collection."""

    days_back: int = Field(default=30, ge=1, description="Lookback window for the first (full) collection")
    page_size: int = Field(default=100, ge=1, le=1000, description="Messages per history page")
    max_pages: int = Field(default=10, ge=1, description="Hard cap on pages fetched per channel or thread")
    page_delay_seconds: float = Field(default=0.2, ge=0.0, description="Delay between paginated history calls")
    thread_delay_seconds: float = Field(default=0.1, ge=0.0, description="Delay between thread reply fetches")
    channel_types: List[str] = Field(
        default_factory=lambda: ["public_channel", "private_channel"],
        description="Conversation types to discover",
    )
    fallback_channel_types: List[str] = Field(
        default_factory=lambda: ["public_channel"],
        description="Conversation types used when the preferred discovery is not permitted",
    )
    discovery_limit: int = Field(default=1000, description="Page size for channel discovery")
    bot_user_id: Optional[str] = Field(
        default=None, description="Bot user id; when set, membership is checked via the member list"
    )
    skip_error_codes: List[str] = Field(
        default_factory=lambda: ["not_in_channel", "channel_not_found", "missing_scope", "access_denied", "is_archived"],
        description="Slack error codes that permanently skip a channel instead of failing the run",
    )


class SlackConversationsClient(ConversationsClient):
    """Slack implementation of `ConversationsClient`.

    Secrets:
        - bot_token: Slack bot OAuth token (falls back to SLACK_BOT_TOKEN).
    """

    source_name = "slack"

    def __init__(self, bot_token: Optional[str] = None, client: Optional[WebClient] = None):
        """Initialize the Slack WebClient."""
        if client is not None:
            self.client = client
            return
        token = bot_token or os.getenv("SLACK_BOT_TOKEN")
        if not token:
            raise ValueError("Slack bot token is not set")
        self.client = WebClient(
            token=token,
            retry_handlers=[RateLimitErrorRetryHandler(max_retry_count=2)],
        )

    def _api_call(self, method: str, func: Callable, **kwargs: Any) -> Any:
        """Execute a Slack API call recording metrics.

        Args:
            method: The method name for metrics (e.g., "conversations.history").
            func: The API client function to call.
            **kwargs: Arguments to pass to the function.

        Raises:
            SlackApiError: If Slack rejects the call.
        """
        call_start = perf_counter()
        try:
            resp = func(**kwargs)
        except SlackApiError as e:
            status = str(getattr(getattr(e, "response", None), "status_code", "error"))
            API_CALLS.labels(source=self.source_name, method=method, status=status).inc()
            API_LATENCY.labels(source=self.source_name, method=method, status=status).observe(
                perf_counter() - call_start
            )
            logger.debug(f"Slack API error in {method}: {e}")
            raise
        status = str(getattr(resp, "status_code", 200))
        API_CALLS.labels(source=self.source_name, method=method, status=status).inc()
        API_LATENCY.labels(source=self.source_name, method=method, status=status).observe(perf_counter() - call_start)
        return resp

    @staticmethod
    def _next_cursor(resp: Any) -> Optional[str]:
        resp_metadata: dict = resp.get("response_metadata") or {}
        return resp_metadata.get("next_cursor") or None

    def list_channels(self, channel_types: List[str], limit: int = 1000) -> List[Dict[str, Any]]:
        types_str = ",".join(channel_types)
        channels: List[Dict[str, Any]] = []
        cursor = None
        while True:
            resp = self._api_call(
                "conversations.list",
                self.client.conversations_list,
                cursor=cursor,
                limit=limit,
                types=types_str,
                exclude_archived=True,
            )
            page = resp.get("channels", []) or []
            logger.debug(f"list_channels: page channels={len(page)} types={types_str}")
            channels.extend(page)
            cursor = self._next_cursor(resp)
            if not cursor:
                break
        return channels

    def list_members(self, channel_id: str) -> List[str]:
        members: List[str] = []
        cursor = None
        while True:
            resp = self._api_call(
                "conversations.members",
                self.client.conversations_members,
                channel=channel_id,
                cursor=cursor,
            )
            members.extend(resp.get("members", []) or [])
            cursor = self._next_cursor(resp)
            if not cursor:
                break
        return members

    def fetch_history_page(
        self,
        channel_id: str,
        oldest: str,
        cursor: Optional[str] = None,
        limit: int = 100,
    ) -> MessagePage:
        resp = self._api_call(
            "conversations.history",
            self.client.conversations_history,
            channel=channel_id,
            oldest=oldest,
            cursor=cursor,
            limit=limit,
        )
        messages = resp.get("messages", []) or []
        logger.debug(f"fetch_history_page: channel={channel_id} oldest={oldest} messages={len(messages)}")
        return MessagePage(messages=messages, next_cursor=self._next_cursor(resp))

    def fetch_thread_replies(
        self,
        channel_id: str,
        thread_ts: str,
        oldest: str,
        cursor: Optional[str] = None,
        limit: int = 100,
    ) -> MessagePage:
        resp = self._api_call(
            "conversations.replies",
            self.client.conversations_replies,
            channel=channel_id,
            ts=thread_ts,
            oldest=oldest,
            cursor=cursor,
            limit=limit,
        )
        messages = resp.get("messages", []) or []
        logger.debug(f"fetch_thread_replies: channel={channel_id} thread={thread_ts} messages={len(messages)}")
        return MessagePage(messages=messages, next_cursor=self._next_cursor(resp))
