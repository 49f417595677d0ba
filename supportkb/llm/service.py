"""Summarization and answering service interface.

The pipeline talks to the language model through two calls only:
`answer` and `update_knowledge`. Any failure of either call, including
malformed output, surfaces as `SummarizationError`.
"""

from datetime import datetime
from typing import Optional, Sequence

from pydantic import BaseModel, Field

from supportkb.models.records import Record, utc_now

FALLBACK_SUMMARY = "Fallback update due to AI processing error"
EMPTY_KNOWLEDGE_HEADER = "Customer Service Knowledge Base"


class SummarizationError(Exception):
    """Raised when the model call fails or returns unusable output."""


class AnswerResult(BaseModel):
    """Answer to a question with the model's self-reported confidence."""

    answer: str
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""


class KnowledgeUpdate(BaseModel):
    """Result of folding new records into the knowledge text."""

    updated_knowledge: str
    summary: str
    change_count: int = 0


def format_records(records: Sequence[Record]) -> str:
    """Render records as ``[author]: text`` lines for a prompt."""
    return "\n".join(f"[{r.author}]: {r.text}" for r in records)


def build_fallback_knowledge(current: str, records: Sequence[Record], now: Optional[datetime] = None) -> str:
    """Deterministically append raw records to the existing knowledge text.

    Used only as a degraded policy when summarization fails.
    """
    messages_text = format_records(records)
    if not current:
        return f"{EMPTY_KNOWLEDGE_HEADER}\n\nRecent Issues:\n{messages_text}"
    day = (now or utc_now()).strftime("%a %b %d %Y")
    return f"{current}\n\nNew Issues ({day}):\n{messages_text}"


class KnowledgeService:
    """Base class for answer generation and knowledge curation backends."""

    def answer(self, question: str, knowledge: str) -> AnswerResult:
        """Answer `question` using only `knowledge`.

        Raises:
            SummarizationError: If the model call fails or its output is malformed.
        """
        raise NotImplementedError

    def update_knowledge(self, current_knowledge: str, records: Sequence[Record]) -> KnowledgeUpdate:
        """Fold `records` into `current_knowledge`, returning the complete new text.

        Raises:
            SummarizationError: If the model call fails or its output is malformed.
        """
        raise NotImplementedError
