"""Administrative operations over the knowledge base."""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from supportkb.models.records import LearningSession, format_instant, utc_now
from supportkb.storage.base import KnowledgeStorage

from .cache import KnowledgeCache
from .learner import Learner

logger = logging.getLogger(__name__)


class AdminService:
    """Trigger learning, reset, export and health reporting."""

    def __init__(
        self,
        cache: KnowledgeCache,
        storage: KnowledgeStorage,
        learner: Learner,
        started_at: Optional[datetime] = None,
        clock: Callable = utc_now,
    ):
        self.cache = cache
        self.storage = storage
        self.learner = learner
        self.clock = clock
        self.started_at = started_at or clock()

    def trigger_learning(self) -> LearningSession:
        logger.info("Manual learning session triggered")
        return self.learner.run_learning_session()

    def reset_knowledge(self) -> int:
        logger.warning("Resetting knowledge base")
        return self.learner.reset_knowledge()

    def export_snapshot(self) -> Dict[str, Any]:
        """Return a JSON-serializable snapshot of knowledge, stats and pending records."""
        blob = self.cache.get()
        pending = self.storage.list_unconsumed_records()
        return {
            "exported_at": format_instant(self.clock()),
            "knowledge": {
                "content": blob.content,
                "updated_at": format_instant(blob.updated_at) if blob.updated_at else None,
                "version": blob.version,
                "length": len(blob),
            },
            "stats": self.cache.stats().as_dict(),
            "unconsumed_records": [r.model_dump(mode="json") for r in pending],
        }

    def health(self) -> Dict[str, Any]:
        now = self.clock()
        return {
            "status": "healthy",
            "timestamp": format_instant(now),
            "uptime_seconds": round((now - self.started_at).total_seconds(), 3),
            "learning_in_progress": self.learner.is_running,
            "stats": self.cache.stats().as_dict(),
        }
