"""Durable storage backends."""

from .base import CURSOR_FUTURE_TOLERANCE, KnowledgeStorage, StorageError
from .factory import create_storage
from .memory import InMemoryStorage
from .sqlite import SqliteStorage

__all__ = [
    "CURSOR_FUTURE_TOLERANCE",
    "InMemoryStorage",
    "KnowledgeStorage",
    "SqliteStorage",
    "StorageError",
    "create_storage",
]
