"""Planner and clarifier output models (Pydantic only, not persisted)."""

from __future__ import annotations

from pydantic import BaseModel, Field


class SubTaskPlan(BaseModel):
    """One ordered step of a plan, routed to a single delegate agent."""

    title: str = Field(description="Short imperative title of the step")
    description: str = Field(description="What the delegate agent should do")
    agent_id: str = Field(description="Directory id of the agent that executes this step")


class TaskPlan(BaseModel):
    """Decomposition of a request: one parent and its ordered subtasks.

    The order of sub_tasks is the execution order.
    """

    title: str
    description: str = ""
    sub_tasks: list[SubTaskPlan] = Field(default_factory=list)


class ClarificationAnswer(BaseModel):
    """The conductor could answer a delegate's question itself."""

    answer: str


class QuestionForUser(BaseModel):
    """The question must be escalated to the human."""

    question_for_user: str


class ClarificationDecision(BaseModel):
    """Structured LLM output for the clarification step.

    Exactly one of answer / question_for_user is expected to be set.
    """

    answer: str | None = Field(
        default=None,
        description="Direct answer, only if the conversation history fully answers the question",
    )
    question_for_user: str | None = Field(
        default=None,
        description="Question to ask the user when the history is not enough",
    )
