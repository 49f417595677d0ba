from typing import Any, Dict, List, Optional

import pytest

from supportkb.llm.service import KnowledgeService, KnowledgeUpdate
from supportkb.sources.slack import SlackConfig
from supportkb.sources.source import ConversationsClient, MessagePage
from supportkb.storage import InMemoryStorage, SqliteStorage


class FakeConversationsClient(ConversationsClient):
    """Scripted platform client.

    history: channel -> list of pages (each a list of messages), served in order.
    threads: thread_ts -> list of messages (root first), served as one page.
    errors: channel or thread_ts -> exception raised when that resource is fetched;
        "list_channels" fails discovery that includes private channels.
    """

    source_name = "fake"

    def __init__(
        self,
        channels: Optional[List[Dict[str, Any]]] = None,
        history: Optional[Dict[str, List[List[Dict[str, Any]]]]] = None,
        threads: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        errors: Optional[Dict[str, Exception]] = None,
    ):
        self.channels = channels if channels is not None else [{"id": "C1", "name": "support", "is_member": True}]
        self.history = history or {}
        self.threads = threads or {}
        self.errors = errors or {}
        self.calls: List[tuple] = []

    def list_channels(self, channel_types, limit=1000):
        self.calls.append(("list_channels", tuple(channel_types)))
        if "list_channels" in self.errors and "private_channel" in channel_types:
            raise self.errors["list_channels"]
        return self.channels

    def list_members(self, channel_id):
        return [m for c in self.channels if c["id"] == channel_id for m in c.get("members", [])]

    def fetch_history_page(self, channel_id, oldest, cursor=None, limit=100):
        self.calls.append(("history", channel_id, oldest, cursor))
        if channel_id in self.errors:
            raise self.errors[channel_id]
        pages = self.history.get(channel_id, [[]])
        index = int(cursor) if cursor else 0
        next_cursor = str(index + 1) if index + 1 < len(pages) else None
        return MessagePage(messages=pages[index], next_cursor=next_cursor)

    def fetch_thread_replies(self, channel_id, thread_ts, oldest, cursor=None, limit=100):
        self.calls.append(("replies", channel_id, thread_ts, oldest))
        if thread_ts in self.errors:
            raise self.errors[thread_ts]
        return MessagePage(messages=self.threads.get(thread_ts, []))


class StubKnowledgeService(KnowledgeService):
    """Returns a fixed knowledge text, or raises the configured error."""

    def __init__(self, updated: str = "X", error: Optional[Exception] = None):
        self.updated = updated
        self.error = error
        self.calls: List[tuple] = []

    def answer(self, question, knowledge):
        raise NotImplementedError

    def update_knowledge(self, current_knowledge, records):
        self.calls.append((current_knowledge, list(records)))
        if self.error is not None:
            raise self.error
        return KnowledgeUpdate(updated_knowledge=self.updated, summary="learned", change_count=len(records))


def slack_error(code: str) -> Exception:
    """Build an exception shaped like SlackApiError with the given error code."""
    err = Exception(code)
    err.response = {"ok": False, "error": code}  # type: ignore[attr-defined]
    return err


@pytest.fixture
def memory_storage():
    return InMemoryStorage()


@pytest.fixture
def sqlite_storage(tmp_path):
    storage = SqliteStorage(str(tmp_path / "supportkb.db"))
    storage.initialize()
    yield storage
    storage.close()


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        yield InMemoryStorage()
        return
    store = SqliteStorage(str(tmp_path / "store.db"))
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def fast_config():
    return SlackConfig(page_delay_seconds=0.0, thread_delay_seconds=0.0)


@pytest.fixture
def fake_client_factory():
    return FakeConversationsClient


@pytest.fixture
def stub_service_factory():
    return StubKnowledgeService


@pytest.fixture
def slack_error_factory():
    return slack_error

