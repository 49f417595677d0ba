"""Storage backend selection."""

import logging
import os

from supportkb.models.config import StorageConfig

from .base import KnowledgeStorage
from .memory import InMemoryStorage
from .sqlite import SqliteStorage

logger = logging.getLogger(__name__)


def create_storage(config: StorageConfig, data_dir: str = "data") -> KnowledgeStorage:
    """Build the configured storage backend.

    Relative SQLite paths are resolved against `data_dir`.
    """
    if config.backend == "memory":
        logger.warning("Using in-memory storage; nothing will be persisted")
        return InMemoryStorage()

    db_path = config.db_path
    if db_path != ":memory:" and not os.path.isabs(db_path):
        db_path = os.path.join(data_dir, db_path)
    return SqliteStorage(db_path)
