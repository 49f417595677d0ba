"""Collection followed by learning over a real SQLite file."""

from datetime import timedelta

from supportkb.knowledge.cache import KnowledgeCache
from supportkb.knowledge.learner import Learner
from supportkb.models.records import SessionStatus, utc_now
from supportkb.sources.collector import Collector


def test_collect_then_learn(sqlite_storage, fast_config, fake_client_factory, stub_service_factory):
    client = fake_client_factory(
        history={
            "C1": [
                [
                    {"ts": "1700000002.000000", "user": "U2", "text": "Try resetting the router"},
                    {"ts": "1700000001.000000", "user": "U1", "text": "Wifi keeps dropping"},
                ]
            ]
        }
    )
    started = utc_now() - timedelta(seconds=1)

    report = Collector(client, sqlite_storage, fast_config, clock=lambda: started).collect()

    assert report.cursor_advanced is True
    assert sqlite_storage.read_cursor() == started
    assert sqlite_storage.count_records() == (2, 2)

    cache = KnowledgeCache(sqlite_storage)
    cache.initialize()
    service = stub_service_factory(updated="X")
    session = Learner(cache, sqlite_storage, service).run_learning_session()

    assert session.status == SessionStatus.SUCCEEDED
    assert cache.content == "X"
    assert sqlite_storage.read_knowledge().content == "X"
    assert sqlite_storage.count_records() == (2, 0)
    assert all(r.processed for r in sqlite_storage.list_records())

    again = Learner(cache, sqlite_storage, service).run_learning_session()
    assert again.status == SessionStatus.NOOP
