"""Summarization and answering services."""

from .service import (
    FALLBACK_SUMMARY,
    AnswerResult,
    KnowledgeService,
    KnowledgeUpdate,
    SummarizationError,
    build_fallback_knowledge,
    format_records,
)

__all__ = [
    "FALLBACK_SUMMARY",
    "AnswerResult",
    "KnowledgeService",
    "KnowledgeUpdate",
    "SummarizationError",
    "build_fallback_knowledge",
    "format_records",
]
