from unittest.mock import MagicMock

from supportkb.sources.ratelimiter import FixedDelayPacer


def test_pause_uses_method_delay():
    sleep = MagicMock()
    pacer = FixedDelayPacer(delays={"conversations.history": 0.2}, default_delay=0.05, sleep=sleep)

    pacer.pause("conversations.history")
    pacer.pause("conversations.list")

    assert [c.args[0] for c in sleep.call_args_list] == [0.2, 0.05]
    assert abs(pacer.total_paused - 0.25) < 1e-9


def test_zero_and_negative_delays_do_not_sleep():
    sleep = MagicMock()
    pacer = FixedDelayPacer(delays={"a": 0, "b": -1}, sleep=sleep)

    pacer.pause("a")
    pacer.pause("b")
    pacer.pause("unknown")

    sleep.assert_not_called()
    assert pacer.delay_for("b") == 0.0
