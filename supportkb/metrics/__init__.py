"""Metrics module for Prometheus monitoring."""

from .metrics import (
    API_CALLS,
    API_LATENCY,
    CURSOR_REJECTIONS,
    LEARNING_SESSIONS,
    OP_ITEMS,
    OP_LATENCY,
)

__all__ = [
    "API_CALLS",
    "API_LATENCY",
    "CURSOR_REJECTIONS",
    "LEARNING_SESSIONS",
    "OP_ITEMS",
    "OP_LATENCY",
]
