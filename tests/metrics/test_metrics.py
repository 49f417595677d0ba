from supportkb.metrics import (
    API_CALLS,
    API_LATENCY,
    CURSOR_REJECTIONS,
    LEARNING_SESSIONS,
    OP_ITEMS,
    OP_LATENCY,
)


def test_api_latency_metric():
    assert API_LATENCY._name == "platform_api_latency_seconds"
    assert API_LATENCY._labelnames == ("source", "method", "status")


def test_api_calls_metric():
    assert API_CALLS._name == "platform_api_calls"
    assert API_CALLS._labelnames == ("source", "method", "status")


def test_operation_metrics():
    assert OP_LATENCY._labelnames == ("operation",)
    assert OP_ITEMS._labelnames == ("operation",)


def test_pipeline_outcome_metrics():
    assert LEARNING_SESSIONS._name == "learning_sessions"
    assert LEARNING_SESSIONS._labelnames == ("status",)
    assert CURSOR_REJECTIONS._name == "collection_cursor_rejections"
    assert CURSOR_REJECTIONS._labelnames == ("reason",)
