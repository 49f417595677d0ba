"""Knowledge service backed by DSPy.

Implements question answering and knowledge curation with two DSPy
signatures. The language model is configured from `LLMConfig`.
"""

import logging
import math
import os
from typing import Any, Optional, Sequence

import dspy

from supportkb.models.config import LLMConfig
from supportkb.models.records import Record

from .service import AnswerResult, KnowledgeService, KnowledgeUpdate, SummarizationError, format_records

logger = logging.getLogger(__name__)

EMPTY_KNOWLEDGE_ANSWER = (
    "I don't have enough knowledge yet to answer questions. Please collect some customer service messages first."
)


class AnswerFromKnowledge(dspy.Signature):
    """You are a customer service assistant. Answer the question using only the knowledge base.

    - If the knowledge base doesn't contain relevant information, say so and give low confidence.
    - Higher confidence (0.8+) for topics well covered in the knowledge base.
    - Lower confidence (0.5-) for topics with limited or unclear information.
    """

    knowledge_base: str = dspy.InputField(desc="Curated customer service knowledge")
    question: str = dspy.InputField()
    answer: str = dspy.OutputField(desc="Helpful answer based only on the knowledge base")
    confidence: float = dspy.OutputField(desc="How well the knowledge base covers the question, 0.0 to 1.0")
    reasoning: str = dspy.OutputField(desc="Brief reasoning for the confidence level")


class UpdateKnowledgeBase(dspy.Signature):
    """You maintain a customer service knowledge base. Update it with the new support messages.

    - Add new facts, solutions or procedures; update information that is more current.
    - Organize by topic (e.g. "Login Issues", "Bug Reports", "Feature Requests").
    - Remove outdated or incorrect information; ignore casual conversation.
    - If nothing useful is found, return the current knowledge base unchanged.
    """

    current_knowledge: str = dspy.InputField(desc="Current knowledge base text")
    new_messages: str = dspy.InputField(desc="New messages, one per line as [user]: text")
    updated_knowledge: str = dspy.OutputField(desc="The complete updated knowledge base text")
    summary: str = dspy.OutputField(desc="Brief summary of what was learned or updated")
    change_count: int = dspy.OutputField(desc="Number of significant changes made")


def configure_dspy_lm(config: LLMConfig) -> dspy.LM:
    """Build and globally configure the DSPy language model.

    Raises:
        RuntimeError: If the API key environment variable is not set.
    """
    api_key = os.getenv(config.api_key_env)
    if not api_key:
        raise RuntimeError(f"{config.api_key_env} environment variable is required")
    lm = dspy.LM(
        model=config.model_id,
        api_key=api_key,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
    )
    dspy.configure(lm=lm)
    logger.info(f"Language model configured: {config.model_id}")
    return lm


class DSPyKnowledgeService(KnowledgeService):
    """`KnowledgeService` using DSPy predictors."""

    def __init__(self, lm: Optional[dspy.LM] = None):
        """Initialize predictors; `lm` overrides the globally configured model."""
        self.lm = lm
        self.answer_predictor = dspy.Predict(AnswerFromKnowledge)
        self.update_predictor = dspy.Predict(UpdateKnowledgeBase)

    def _predict(self, predictor: Any, **kwargs: Any) -> Any:
        if self.lm is not None:
            with dspy.context(lm=self.lm):
                return predictor(**kwargs)
        return predictor(**kwargs)

    def answer(self, question: str, knowledge: str) -> AnswerResult:
        if not knowledge or not knowledge.strip():
            return AnswerResult(answer=EMPTY_KNOWLEDGE_ANSWER, confidence=0.1, reasoning="No knowledge base available")

        try:
            pred = self._predict(self.answer_predictor, knowledge_base=knowledge, question=question)
        except Exception as e:
            raise SummarizationError(f"Answer generation failed: {e}") from e

        answer = getattr(pred, "answer", None)
        if not isinstance(answer, str) or not answer.strip():
            raise SummarizationError("Invalid answer structure: missing answer")
        try:
            confidence = float(getattr(pred, "confidence", None))  # type: ignore[arg-type]
        except (TypeError, ValueError) as e:
            raise SummarizationError("Invalid answer structure: confidence is not a number") from e
        if not math.isfinite(confidence):
            raise SummarizationError("Invalid answer structure: confidence is not a finite number")

        result = AnswerResult(
            answer=answer.strip(),
            confidence=max(0.0, min(1.0, confidence)),
            reasoning=str(getattr(pred, "reasoning", "") or ""),
        )
        logger.info(
            f"Question answered: question_len={len(question)} answer_len={len(result.answer)} "
            f"confidence={result.confidence:.2f}"
        )
        return result

    def update_knowledge(self, current_knowledge: str, records: Sequence[Record]) -> KnowledgeUpdate:
        if not records:
            return KnowledgeUpdate(
                updated_knowledge=current_knowledge, summary="No new messages to process", change_count=0
            )

        try:
            pred = self._predict(
                self.update_predictor,
                current_knowledge=current_knowledge or "Empty - this will be the first knowledge entry",
                new_messages=format_records(records),
            )
        except Exception as e:
            raise SummarizationError(f"Knowledge update failed: {e}") from e

        updated = getattr(pred, "updated_knowledge", None)
        summary = getattr(pred, "summary", None)
        if not isinstance(updated, str) or not updated.strip():
            raise SummarizationError("Invalid learning result structure: missing updated knowledge")
        if not isinstance(summary, str) or not summary.strip():
            raise SummarizationError("Invalid learning result structure: missing summary")
        try:
            change_count = int(getattr(pred, "change_count", 0) or 0)
        except (TypeError, ValueError):
            logger.debug("Non-numeric change count from model, using 0")
            change_count = 0

        logger.info(
            f"Knowledge update completed: messages={len(records)} changes={change_count} "
            f"growth={len(updated) - len(current_knowledge)}"
        )
        return KnowledgeUpdate(updated_knowledge=updated, summary=summary.strip(), change_count=change_count)
