"""In-process read-through cache of the knowledge blob.

The cache is a read replica of the durable store, never the system of record.
It holds a single immutable `KnowledgeBlob` reference so readers always see
either the value before a write or the value after it.
"""

import logging

from supportkb.models.records import KnowledgeBlob, KnowledgeStats
from supportkb.storage.base import KnowledgeStorage

logger = logging.getLogger(__name__)


class KnowledgeCache:
    """Knowledge blob cache over a `KnowledgeStorage`.

    `replace` is the only mutation path: store write first, cache swap second.
    The cache has no locking of its own; callers guarantee a single writer.
    """

    def __init__(self, storage: KnowledgeStorage):
        """Initialize with an empty blob; call `initialize` to load from storage."""
        self.storage = storage
        self._blob: KnowledgeBlob = KnowledgeBlob.empty()

    def initialize(self) -> None:
        """Refresh the cached blob from storage."""
        try:
            self.storage.initialize()
            blob = self.storage.read_knowledge()
        except Exception as e:
            logger.error(f"Failed to initialize knowledge cache: {e}")
            raise
        self._blob = blob or KnowledgeBlob.empty()
        if self._blob.content:
            logger.info(f"Loaded existing knowledge base: {len(self._blob)} characters (version {self._blob.version})")
        else:
            logger.info("Starting with empty knowledge base")

    def get(self) -> KnowledgeBlob:
        """Return the cached blob. Never performs I/O."""
        return self._blob

    @property
    def content(self) -> str:
        return self._blob.content

    def replace(self, content: str) -> KnowledgeBlob:
        """Write `content` through to storage, then swap the cached blob.

        If the durable write fails the cached blob is left untouched and the
        error propagates.
        """
        try:
            blob = self.storage.write_knowledge(content)
        except Exception as e:
            logger.error(f"Failed to update knowledge base in storage: {e}")
            raise
        self._blob = blob
        logger.info(f"Knowledge base updated: {len(content)} characters (version {blob.version})")
        return blob

    def stats(self) -> KnowledgeStats:
        """Combine the cached blob with record counters from storage."""
        blob = self._blob
        total, pending = self.storage.count_records()
        return KnowledgeStats(
            knowledge_length=len(blob),
            total_messages=pending,
            total_records=total,
            last_updated=blob.updated_at,
            version=blob.version,
        )
