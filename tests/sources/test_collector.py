"""Tests for the incremental collector."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from supportkb.models.records import utc_now
from supportkb.sources.checkpoint import CollectionCursor, SyncMode
from supportkb.sources.collector import ChannelStatus, Collector, is_retained, to_record
from supportkb.sources.ratelimiter import FixedDelayPacer
from supportkb.sources.slack import SlackConfig


def msg(ts, text="help please", user="U1", **extra):
    return {"ts": ts, "text": text, "user": user, **extra}


@pytest.fixture
def now():
    return utc_now() - timedelta(seconds=1)


def make_collector(client, storage, config, now):
    return Collector(client, storage, config, clock=lambda: now)


def test_first_run_is_full_and_sets_cursor(memory_storage, fast_config, fake_client_factory, now):
    client = fake_client_factory(history={"C1": [[msg("1700000002.000200"), msg("1700000001.000100")]]})

    report = make_collector(client, memory_storage, fast_config, now).collect()

    assert report.mode == SyncMode.FULL
    expected_oldest = CollectionCursor.to_platform_ts(now - timedelta(days=fast_config.days_back))
    assert ("history", "C1", expected_oldest, None) in client.calls
    assert report.cursor_advanced is True
    assert memory_storage.read_cursor() == now
    assert [r.timestamp for r in memory_storage.list_unconsumed_records()] == [
        "1700000001.000100",
        "1700000002.000200",
    ]


def test_second_run_is_incremental_from_cursor(memory_storage, fast_config, fake_client_factory, now):
    previous = now - timedelta(hours=1)
    memory_storage.write_cursor(previous)
    client = fake_client_factory(history={"C1": [[msg("1700000003.000000")]]})

    report = make_collector(client, memory_storage, fast_config, now).collect()

    assert report.mode == SyncMode.INCREMENTAL
    assert ("history", "C1", CollectionCursor.to_platform_ts(previous), None) in client.calls
    assert memory_storage.read_cursor() == now


def test_threads_are_expanded(memory_storage, fast_config, fake_client_factory, now):
    root = msg("100.000000", text="Login broken", reply_count=4)
    client = fake_client_factory(
        history={"C1": [[root]]},
        threads={
            "100.000000": [
                root,
                msg("101.000000", text="Clear cookies", user="U2", thread_ts="100.000000"),
                msg("102.000000", text="automated", bot_id="B1", thread_ts="100.000000"),
                msg("103.000000", text="Worked", thread_ts="100.000000"),
                msg("104.000000", text="Thanks", user="U3", thread_ts="100.000000"),
            ]
        },
    )

    report = make_collector(client, memory_storage, fast_config, now).collect()

    records = memory_storage.list_unconsumed_records()
    assert len(records) == 4
    assert records[0].id == "100.000000_C1"
    replies = records[1:]
    assert all(r.thread_root == "100.000000" for r in replies)
    assert all(r.id.endswith("_C1_reply") for r in replies)
    assert report.channels[0].filtered == 1


def test_bot_and_empty_messages_are_dropped(memory_storage, fast_config, fake_client_factory, now):
    client = fake_client_factory(
        history={
            "C1": [
                [
                    msg("1.0", bot_id="B1"),
                    msg("2.0", subtype="bot_message"),
                    msg("3.0", text="   "),
                    {"ts": "4.0", "user": "U1"},
                    msg("5.0", text="real question"),
                ]
            ]
        }
    )

    report = make_collector(client, memory_storage, fast_config, now).collect()

    assert [r.text for r in memory_storage.list_unconsumed_records()] == ["real question"]
    assert report.records_filtered == 4


def test_failed_channel_keeps_cursor(memory_storage, fast_config, fake_client_factory, slack_error_factory, now):
    previous = now - timedelta(hours=2)
    memory_storage.write_cursor(previous)
    client = fake_client_factory(
        channels=[{"id": "C1", "is_member": True}, {"id": "C2", "is_member": True}],
        history={"C1": [[msg("1.0")]]},
        errors={"C2": slack_error_factory("internal_error")},
    )

    report = make_collector(client, memory_storage, fast_config, now).collect()

    assert report.channels_failed == ["C2"]
    assert report.completed is False
    assert report.cursor_advanced is False
    assert memory_storage.read_cursor() == previous
    # records of the healthy channel are kept; a later run re-fetches them idempotently
    assert memory_storage.count_records() == (1, 1)


def test_permission_errors_skip_channel_and_still_advance(
    memory_storage, fast_config, fake_client_factory, slack_error_factory, now
):
    client = fake_client_factory(
        channels=[{"id": "C1", "is_member": True}, {"id": "C2", "is_member": True}],
        history={"C1": [[msg("1.0")]]},
        errors={"C2": slack_error_factory("not_in_channel")},
    )

    report = make_collector(client, memory_storage, fast_config, now).collect()

    assert report.channels_skipped == ["C2"]
    assert report.channels[1].status == ChannelStatus.SKIPPED
    assert report.cursor_advanced is True
    assert memory_storage.read_cursor() == now


def test_thread_failure_aborts_channel(memory_storage, fast_config, fake_client_factory, now):
    client = fake_client_factory(
        history={"C1": [[msg("100.0", reply_count=1)]]},
        errors={"100.0": RuntimeError("timeout")},
    )

    report = make_collector(client, memory_storage, fast_config, now).collect()

    assert report.channels[0].status == ChannelStatus.FAILED
    assert memory_storage.read_cursor() is None
    assert [r.id for r in memory_storage.list_unconsumed_records()] == ["100.0_C1"]


def test_discovery_falls_back_to_public_channels(memory_storage, fast_config, fake_client_factory, now):
    client = fake_client_factory(errors={"list_channels": RuntimeError("missing_scope")})

    report = make_collector(client, memory_storage, fast_config, now).collect()

    assert ("list_channels", ("public_channel",)) in client.calls
    assert report.completed is True


def test_discovery_failure_aborts_run(memory_storage, fast_config, now):
    client = MagicMock()
    client.list_channels.side_effect = RuntimeError("down")

    report = make_collector(client, memory_storage, fast_config, now).collect()

    assert report.error is not None
    assert report.cursor_advanced is False
    assert memory_storage.read_cursor() is None
    client.fetch_history_page.assert_not_called()



def test_corrupt_cursor_aborts_run(sqlite_storage, fast_config, fake_client_factory, now):
    conn = sqlite_storage._get_connection()
    with conn:
        conn.execute("INSERT INTO knowledge_base (id, last_collection_timestamp) VALUES (1, 'garbage')")
    client = fake_client_factory()

    report = make_collector(client, sqlite_storage, fast_config, now).collect()

    assert report.error is not None
    assert report.cursor_advanced is False
    assert client.calls == []


def test_no_channels_still_advances_cursor(memory_storage, fast_config, fake_client_factory, now):
    report = make_collector(fake_client_factory(channels=[]), memory_storage, fast_config, now).collect()
    assert report.channels == []
    assert report.cursor_advanced is True


def test_membership_checked_with_bot_user_id(memory_storage, fake_client_factory, now):
    config = SlackConfig(page_delay_seconds=0, thread_delay_seconds=0, bot_user_id="UBOT")
    client = fake_client_factory(
        channels=[
            {"id": "C1", "members": ["UBOT", "U1"]},
            {"id": "C2", "members": ["U1"], "is_member": True},
        ]
    )

    assert make_collector(client, memory_storage, config, now).discover_channels() == ["C1"]


def test_non_member_channels_are_ignored(memory_storage, fast_config, fake_client_factory, now):
    client = fake_client_factory(channels=[{"id": "C1", "is_member": True}, {"id": "C2", "is_member": False}])
    assert make_collector(client, memory_storage, fast_config, now).discover_channels() == ["C1"]


def test_page_cap_stops_pagination(memory_storage, fake_client_factory, now):
    config = SlackConfig(page_delay_seconds=0, thread_delay_seconds=0, max_pages=2)
    client = fake_client_factory(history={"C1": [[msg("1.0")], [msg("2.0")], [msg("3.0")]]})

    report = make_collector(client, memory_storage, config, now).collect()

    assert report.channels[0].pages == 2
    assert memory_storage.count_records() == (2, 2)


def test_pacer_pauses_between_pages_and_before_threads(memory_storage, fake_client_factory, now):
    sleep = MagicMock()
    pacer = FixedDelayPacer(delays={"conversations.history": 0.2, "conversations.replies": 0.1}, sleep=sleep)
    client = fake_client_factory(
        history={"C1": [[msg("1.0", reply_count=1)], [msg("2.0")], [msg("3.0")]]},
        threads={"1.0": [msg("1.0"), msg("1.5", thread_ts="1.0")]},
    )

    Collector(client, memory_storage, SlackConfig(), pacer=pacer, clock=lambda: now).collect()

    assert [c.args[0] for c in sleep.call_args_list] == [0.1, 0.2, 0.2]


def test_cursor_is_not_moved_backwards(memory_storage, fast_config, fake_client_factory, now):
    memory_storage.write_cursor(now)
    earlier = now - timedelta(minutes=5)

    report = make_collector(fake_client_factory(), memory_storage, fast_config, earlier).collect()

    assert report.cursor_advanced is False
    assert memory_storage.read_cursor() == now


def test_rerun_is_idempotent(sqlite_storage, fast_config, fake_client_factory, now):
    client = fake_client_factory(history={"C1": [[msg("1.0"), msg("2.0")]]})
    make_collector(client, sqlite_storage, fast_config, now - timedelta(seconds=5)).collect()
    make_collector(client, sqlite_storage, fast_config, now).collect()

    assert sqlite_storage.count_records() == (2, 2)


def test_to_record_uses_thread_ts_for_top_level():
    record = to_record(msg("5.0", thread_ts="5.0"), "C9")
    assert record.id == "5.0_C9"
    assert record.thread_root == "5.0"
    assert record.is_reply is False


@pytest.mark.parametrize(
    "message,expected",
    [
        (msg("1.0"), True),
        (msg("1.0", bot_id="B"), False),
        (msg("1.0", subtype="bot_message"), False),
        (msg("1.0", text="\n\t "), False),
        ({"ts": "1.0"}, False),
    ],
)
def test_is_retained(message, expected):
    assert is_retained(message) is expected
