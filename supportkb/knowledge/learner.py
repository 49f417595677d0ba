"""Batch learning over collected records.

A learning session drains every unconsumed record, asks the knowledge service
to fold them into the current knowledge text, writes the result through the
cache and only then marks the drained records consumed. Any failure before
the knowledge write leaves all records unconsumed for the next session.
"""

import logging
import threading
from time import perf_counter
from typing import Callable, List

from supportkb.llm.service import (
    FALLBACK_SUMMARY,
    KnowledgeService,
    build_fallback_knowledge,
)
from supportkb.metrics.metrics import LEARNING_SESSIONS, OP_ITEMS, OP_LATENCY
from supportkb.models.records import LearningSession, Record, SessionStatus, utc_now
from supportkb.storage.base import KnowledgeStorage, StorageError

from .cache import KnowledgeCache

logger = logging.getLogger(__name__)


def new_session_id(clock: Callable = utc_now) -> str:
    return f"session_{int(clock().timestamp() * 1000)}"


class LearningInProgressError(RuntimeError):
    """Raised by `reset_knowledge` when a learning session holds the lock."""


class Learner:
    """Runs learning sessions, at most one at a time.

    Parameters:
        cache: Knowledge cache; the learner is its only writer.
        storage: Durable store holding the records.
        service: Knowledge service performing the summarization.
        fallback_on_failure: Append raw records instead of failing the session when summarization fails.
    """

    def __init__(
        self,
        cache: KnowledgeCache,
        storage: KnowledgeStorage,
        service: KnowledgeService,
        fallback_on_failure: bool = False,
        clock: Callable = utc_now,
    ):
        """Initialize the learner."""
        self.cache = cache
        self.storage = storage
        self.service = service
        self.fallback_on_failure = fallback_on_failure
        self.clock = clock
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def run_learning_session(self) -> LearningSession:
        """Run one learning session.

        Returns:
            LearningSession: The outcome. Knowledge service and storage errors are
            reported in the session, never raised.
        """
        session = LearningSession(id=new_session_id(self.clock), timestamp=self.clock())
        if not self._lock.acquire(blocking=False):
            logger.warning("Learning session already in progress, rejecting trigger")
            session.status = SessionStatus.REJECTED
            session.error = "Learning session already in progress"
            LEARNING_SESSIONS.labels(status=session.status.value).inc()
            return session

        start = perf_counter()
        try:
            self._run(session)
        finally:
            self._lock.release()
            OP_LATENCY.labels(operation="learn").observe(perf_counter() - start)
            OP_ITEMS.labels(operation="learn").observe(session.messages_processed)
            LEARNING_SESSIONS.labels(status=session.status.value).inc()

        logger.info(
            f"Learning session {session.id} finished: status={session.status.value} "
            f"messages={session.messages_processed} growth={session.knowledge_growth}"
        )
        return session

    def _run(self, session: LearningSession) -> None:
        before = self.cache.get()
        session.knowledge_length_before = len(before)
        session.knowledge_length_after = len(before)

        try:
            records: List[Record] = self.storage.list_unconsumed_records()
        except StorageError as e:
            logger.error(f"Failed to read unconsumed records: {e}")
            session.error = str(e)
            return

        if not records:
            logger.info("No new messages to process")
            session.status = SessionStatus.NOOP
            session.success = True
            session.summary = "No new messages to process"
            return

        logger.info(f"Processing {len(records)} new messages")
        try:
            update = self.service.update_knowledge(before.content, records)
            new_content: str = update.updated_knowledge
            session.summary = update.summary
            session.change_count = update.change_count
            status = SessionStatus.SUCCEEDED
        except Exception as e:
            if not self.fallback_on_failure:
                logger.exception(f"Knowledge update failed, records left for next session: {e}")
                session.error = str(e)
                return
            logger.warning(f"Knowledge update failed, appending raw messages instead: {e}")
            new_content = build_fallback_knowledge(before.content, records, self.clock())
            session.summary = FALLBACK_SUMMARY
            session.error = str(e)
            status = SessionStatus.FALLBACK

        try:
            blob = self.cache.replace(new_content)
        except StorageError as e:
            session.error = str(e)
            return
        session.knowledge_length_after = len(blob)

        try:
            marked = self.storage.mark_consumed([r.id for r in records])
        except StorageError as e:
            # Knowledge is written but records remain unconsumed; next session sees them again.
            logger.error(f"Failed to mark records consumed: {e}")
            session.error = str(e)
            return

        session.messages_processed = len(records)
        session.status = status
        session.success = True
        logger.debug(f"Marked {marked} records consumed")

    def reset_knowledge(self) -> int:
        """Clear the knowledge text and mark every record consumed.

        Returns:
            int: Number of records newly marked consumed.

        Raises:
            LearningInProgressError: If a learning session is running.
            StorageError: If the store write fails.
        """
        if not self._lock.acquire(blocking=False):
            raise LearningInProgressError("Cannot reset knowledge while a learning session is running")
        try:
            self.cache.replace("")
            cleared = self.storage.mark_all_consumed()
        finally:
            self._lock.release()
        logger.info(f"Knowledge base reset, {cleared} records marked consumed")
        return cleared
