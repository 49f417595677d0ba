"""Confidence-gated answering of questions addressed to the bot.

The responder reads the current knowledge from the cache, asks the knowledge
service for an answer and only returns it when the reported confidence meets
the configured threshold. A few admin keywords are routed before question
detection.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from supportkb.knowledge.admin import AdminService
from supportkb.knowledge.cache import KnowledgeCache
from supportkb.llm.service import KnowledgeService, SummarizationError
from supportkb.models.records import SessionStatus

logger = logging.getLogger(__name__)

MENTION_PATTERN = re.compile(r"<@[A-Z0-9]+>")
QUESTION_WORDS = frozenset(
    ["how", "what", "why", "when", "where", "who", "which", "can", "could", "should", "would", "is", "are", "do", "does", "did"]
)

GREETING = (
    "Hi! I'm here to help with customer service questions. Ask me something like "
    "'How do I fix login issues?' and I'll try to help based on our support knowledge."
)
ERROR_REPLY = "Sorry, I encountered an error while processing your question. Please try again."


@dataclass
class Reply:
    """Text to send back, and whether it carries an answer."""

    text: str
    answered: bool = False
    confidence: Optional[float] = None


def extract_question(text: str) -> str:
    """Strip user mentions such as ``<@U123>`` from the text."""
    return MENTION_PATTERN.sub("", text or "").strip()


def is_question(text: str) -> bool:
    """A question has a question mark or contains a question word."""
    if "?" in text:
        return True
    words = re.findall(r"[a-z']+", text.lower())
    return any(w in QUESTION_WORDS for w in words)


class QuestionResponder:
    """Answers mentions from the knowledge base.

    Parameters:
        cache: Knowledge cache to read from.
        service: Knowledge service used to answer.
        admin: Optional admin service; enables the ``show messages``,
            ``show knowledge`` and ``trigger learning`` keywords.
        confidence_threshold: Minimum confidence for an answer to be returned.
    """

    def __init__(
        self,
        cache: KnowledgeCache,
        service: KnowledgeService,
        admin: Optional[AdminService] = None,
        confidence_threshold: float = 0.8,
    ):
        self.cache = cache
        self.service = service
        self.admin = admin
        self.confidence_threshold = confidence_threshold

    def respond(self, text: str) -> Reply:
        if self.admin is not None:
            keyword_reply = self._admin_reply(self.admin, text)
            if keyword_reply is not None:
                return keyword_reply

        question = extract_question(text)
        if not is_question(question):
            logger.info(f"Mention received but not detected as a question: {question!r}")
            return Reply(GREETING)

        knowledge = self.cache.get().content
        logger.info(f"Processing question: question_len={len(question)} knowledge_len={len(knowledge)}")
        try:
            result = self.service.answer(question, knowledge)
        except SummarizationError as e:
            logger.error(f"Error processing question: {e}")
            return Reply(ERROR_REPLY)

        pct = round(result.confidence * 100)
        if result.confidence >= self.confidence_threshold:
            logger.info(f"High confidence response provided: confidence={result.confidence:.2f}")
            return Reply(
                f"{result.answer}\n\n_Confidence: {pct}% ({result.reasoning})_",
                answered=True,
                confidence=result.confidence,
            )

        logger.info(
            f"Low confidence, declined to answer: confidence={result.confidence:.2f} "
            f"threshold={self.confidence_threshold:.2f}"
        )
        return Reply(
            f"I'm not confident enough to answer that question ({pct}% confidence, need "
            f"{round(self.confidence_threshold * 100)}%+). I specialize in customer service topics based on our "
            "support history. Try asking about issues that have been reported before, or help me learn by "
            "collecting more support messages.",
            confidence=result.confidence,
        )

    def _admin_reply(self, admin: AdminService, text: str) -> Optional[Reply]:
        if "show messages" in text:
            stats = self.cache.stats()
            return Reply(f"I've collected {stats.total_messages} customer service messages so far.")

        if "show knowledge" in text:
            stats = self.cache.stats()
            if stats.knowledge_length == 0:
                return Reply("My knowledge base is empty. No learning session has been processed yet.")
            return Reply(
                f"My knowledge base contains {stats.knowledge_length} characters. "
                f"Last updated: {stats.last_updated.isoformat() if stats.last_updated else 'never'}."
            )

        if "trigger learning" in text:
            session = admin.trigger_learning()
            if not session.success:
                if session.status == SessionStatus.REJECTED:
                    return Reply("A learning session is already running. Try again later.")
                return Reply("Learning failed. Check the logs for details.")
            return Reply(
                f"Learning completed! Processed {session.messages_processed} messages. "
                f"Knowledge grew by {session.knowledge_growth} characters."
            )
        return None
