"""Clarifiers — decide whether the conductor can answer a delegate's question.

The contract is (history, question) -> ClarificationAnswer | QuestionForUser;
which side of the boundary a question falls on is up to the implementation.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from conductor.agents.planner import format_transcript, load_prompt
from conductor.config import ModelTier
from conductor.llm.layer import LLMLayer, UsageTracker
from conductor.models.conversation import ChatMessage
from conductor.models.plan import ClarificationAnswer, ClarificationDecision, QuestionForUser

logger = logging.getLogger(__name__)


class Clarifier(ABC):
    @abstractmethod
    async def answer(
        self, history: list[ChatMessage], question: str
    ) -> ClarificationAnswer | QuestionForUser:
        ...


class EchoClarifier(Clarifier):
    """Never self-answers; always forwards the question to the user."""

    async def answer(
        self, history: list[ChatMessage], question: str
    ) -> ClarificationAnswer | QuestionForUser:
        return QuestionForUser(question_for_user=f"Question: {question}")


class LLMClarifier(Clarifier):
    """Answers from the transcript when it can; escalates otherwise.

    LLM failures escalate to the user rather than propagate.
    """

    def __init__(self, llm: LLMLayer, model_tier: ModelTier = "haiku") -> None:
        self.llm = llm
        self.model_tier = model_tier
        self.system_prompt = load_prompt("clarifier", "Answer the agent's question or ask the user.")
        self.usage = UsageTracker("clarifier")

    async def answer(
        self, history: list[ChatMessage], question: str
    ) -> ClarificationAnswer | QuestionForUser:
        if not history:
            return QuestionForUser(question_for_user=question)

        content = (
            f"## Conversation\n\n{format_transcript(history)}\n\n"
            f"## Agent's question\n\n{question}"
        )
        try:
            decision, meta = await self.llm.complete_structured(
                messages=[{"role": "user", "content": content}],
                model_tier=self.model_tier,
                response_model=ClarificationDecision,
                system=self.llm.build_cached_system(self.system_prompt),
            )
        except Exception as e:
            logger.warning("Clarification LLM call failed, asking the user: %s", e)
            return QuestionForUser(question_for_user=question)
        self.usage.record(meta, "clarification")

        if decision.answer and decision.answer.strip():
            return ClarificationAnswer(answer=decision.answer.strip())
        return QuestionForUser(
            question_for_user=(decision.question_for_user or "").strip() or question
        )


def create_clarifier(backend: str, llm: LLMLayer | None = None) -> Clarifier:
    if backend == "llm":
        return LLMClarifier(llm or LLMLayer())
    return EchoClarifier()
