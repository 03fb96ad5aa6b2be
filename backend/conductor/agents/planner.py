"""Planners — turn a free-text request into a parent task and ordered subtasks.

- TemplatePlanner: keyword templates, no LLM (default backend)
- LLMPlanner: structured LLM output routed to agents from the directory

Both also draft the optional delegation summary appended to a subtask's
first outbound message.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel, Field

from conductor.agents.directory import AgentDirectory
from conductor.config import ModelTier
from conductor.llm.layer import LLMLayer, UsageTracker
from conductor.models.conversation import ChatMessage
from conductor.models.plan import SubTaskPlan, TaskPlan
from conductor.models.task import DESCRIPTION_MAX_LENGTH, TITLE_MAX_LENGTH, Task

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).parent / "prompts"


def load_prompt(name: str, fallback: str) -> str:
    """Load a system prompt from prompts/<name>.md."""
    prompt_path = PROMPTS_DIR / f"{name}.md"
    if prompt_path.exists():
        return prompt_path.read_text(encoding="utf-8")
    return fallback


def format_transcript(messages: list[ChatMessage]) -> str:
    return "\n".join(f"{m.role}: {m.content}" for m in messages)


def clip(text: str, limit: int) -> str:
    """Shorten text to fit a task field, marking the cut with an ellipsis."""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


class Planner(ABC):
    @abstractmethod
    async def plan(self, text: str) -> TaskPlan:
        """Decompose a request. sub_tasks order is execution order."""
        ...

    async def draft_delegation(self, task: Task, history: list[ChatMessage]) -> str | None:
        """Context summary to send along with a subtask, or None."""
        return None


# === Template planner ===

TEMPLATES: dict[str, list[str]] = {
    "build a web application": [
        "Design UI/UX mockups",
        "Set up project structure",
        "Implement frontend components",
        "Create backend API",
        "Write tests",
    ],
    "write a blog post": [
        "Research topic",
        "Create outline",
        "Write first draft",
        "Edit and proofread",
        "Add images and formatting",
    ],
    "deploy an application": [
        "Set up deployment environment",
        "Configure CI/CD pipeline",
        "Deploy to staging",
        "Run integration tests",
        "Deploy to production",
    ],
}


class TemplatePlanner(Planner):
    """Fixed breakdowns for known requests; anything else is one subtask.

    Every subtask goes to the directory's default agent.
    """

    def __init__(self, directory: AgentDirectory) -> None:
        self.directory = directory

    async def plan(self, text: str) -> TaskPlan:
        agent = self.directory.default_agent
        if agent is None:
            raise ValueError("Agent directory is empty; cannot assign subtasks")

        request = text.strip()
        title = clip(request, TITLE_MAX_LENGTH)
        steps = TEMPLATES.get(request.lower())
        if steps is None:
            sub_tasks = [SubTaskPlan(
                title=title,
                description=clip(request, DESCRIPTION_MAX_LENGTH),
                agent_id=agent.id,
            )]
        else:
            sub_tasks = [
                SubTaskPlan(title=step, description=f"Execute task: {step}", agent_id=agent.id)
                for step in steps
            ]
        return TaskPlan(
            title=title,
            description=clip(f"Plan for: {request}", DESCRIPTION_MAX_LENGTH),
            sub_tasks=sub_tasks,
        )


# === LLM planner ===


class DelegationSummary(BaseModel):
    summary: str = Field(default="", description="Context the agent needs, or empty")


class LLMPlanner(Planner):
    """Plans with the LLM; unknown agent ids are rerouted to the default agent.

    Usage:
        planner = LLMPlanner(directory, LLMLayer())
        plan = await planner.plan("Qualify the lead from Acme and draft a proposal")
    """

    def __init__(
        self,
        directory: AgentDirectory,
        llm: LLMLayer,
        model_tier: ModelTier = "sonnet",
    ) -> None:
        self.directory = directory
        self.llm = llm
        self.model_tier = model_tier
        self.system_prompt = load_prompt("planner", "Break the request into ordered steps.")
        self.delegation_prompt = load_prompt("delegation", "Summarize the relevant context.")
        self.usage = UsageTracker("planner")

    def _directory_listing(self) -> str:
        lines = []
        for agent in self.directory.get_all():
            caps = f" (capabilities: {', '.join(agent.capabilities)})" if agent.capabilities else ""
            lines.append(f"- id: {agent.id}, name: {agent.name}: {agent.description}{caps}")
        return "\n".join(lines)

    async def plan(self, text: str) -> TaskPlan:
        system = self.llm.build_cached_system(
            f"{self.system_prompt}\n\n## Agent directory\n\n{self._directory_listing()}"
        )
        result, meta = await self.llm.complete_structured(
            messages=[{"role": "user", "content": text}],
            model_tier=self.model_tier,
            response_model=TaskPlan,
            system=system,
        )
        self.usage.record(meta, "plan")
        return self._route(result)

    def _route(self, plan: TaskPlan) -> TaskPlan:
        default = self.directory.default_agent
        if default is None:
            raise ValueError("Agent directory is empty; cannot assign subtasks")
        sub_tasks = []
        for step in plan.sub_tasks:
            if step.agent_id not in self.directory:
                logger.warning(
                    "Planner chose unknown agent %r for %r; using %s",
                    step.agent_id, step.title, default.id,
                )
                step = step.model_copy(update={"agent_id": default.id})
            sub_tasks.append(step.model_copy(update={
                "title": clip(step.title, TITLE_MAX_LENGTH),
                "description": clip(step.description, DESCRIPTION_MAX_LENGTH),
            }))
        return plan.model_copy(update={
            "title": clip(plan.title, TITLE_MAX_LENGTH),
            "description": clip(plan.description, DESCRIPTION_MAX_LENGTH),
            "sub_tasks": sub_tasks,
        })

    async def draft_delegation(self, task: Task, history: list[ChatMessage]) -> str | None:
        if not history:
            return None
        content = (
            f"## Conversation\n\n{format_transcript(history)}\n\n"
            f"## Step for {task.assigned_to}\n\n{task.title}: {task.description}"
        )
        try:
            result, meta = await self.llm.complete_structured(
                messages=[{"role": "user", "content": content}],
                model_tier="haiku",
                response_model=DelegationSummary,
                system=self.delegation_prompt,
            )
        except Exception as e:
            # The subtask still goes out with its description alone
            logger.warning("Delegation summary for %s failed: %s", task.id, e)
            return None
        self.usage.record(meta, f"delegation summary for {task.id}")
        return result.summary.strip() or None


def create_planner(backend: str, directory: AgentDirectory, llm: LLMLayer | None = None) -> Planner:
    if backend == "llm":
        return LLMPlanner(directory, llm or LLMLayer())
    return TemplatePlanner(directory)
