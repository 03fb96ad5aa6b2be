"""Conductor Agent — the single entry point for `do` and `did` messages.

`do`  (a user said something): answer a blocked subtask of the running plan,
      or plan the request from scratch when no plan is running.
`did` (a delegate finished): record the outcome, tell the user, and advance
      the plan on success; escalate clarification questions the conductor
      cannot answer itself.

Failures of external collaborators (planner/LLM, delegate delivery) become a
chat message in the originating conversation; invariant violations are
logged at error level and raised.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable

from conductor.agents.clarifier import Clarifier
from conductor.agents.planner import Planner
from conductor.config import settings
from conductor.errors import AgentNotFoundError, BlockedTaskConflictError, DeliveryError, TaskNotFoundError
from conductor.models.conversation import ChatMessage, ConversationState
from conductor.models.messages import (
    ChatRecipient,
    ClarificationInfo,
    DidClarification,
    DidError,
    DidSuccess,
    DoRequest,
    did_text,
)
from conductor.models.plan import ClarificationAnswer, TaskPlan
from conductor.models.task import BLOCKED_STATUSES, CreateTaskInput, Task, TaskFilters
from conductor.runtime.notifier import ChatNotifier
from conductor.runtime.runtime import Runtime
from conductor.state.conversation_state import ConversationStateManager
from conductor.tasks.store import TaskStore
from conductor.workflows.executor import WorkflowExecutor, WorkflowOutcome
from conductor.workflows.plan_summary import render_plan_summary

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = "Sorry, I couldn't process your request. Please rephrase."
DELIVERY_FAILED_MESSAGE = "Sorry, I couldn't reach the agent for this step. Reply here to try again."
COMPLETION_MESSAGE = "All tasks completed"

# Messages of the previous plan carried into a new plan in the same conversation
TRANSCRIPT_TAIL = 10


class ConductorAgent:
    """Reconciles inbound messages against the executor and conversation state.

    Usage:
        conductor = ConductorAgent(task_store, state_manager, runtime, notifier, planner, clarifier)
        await conductor.on_message(DoRequest(task_id="new", params=DoParams(message=text, conversation_id=cid)))
        await conductor.on_message(DidSuccess(task_id=subtask_id, result=ResultInfo(message="Qualified")))
    """

    def __init__(
        self,
        task_store: TaskStore,
        state_manager: ConversationStateManager,
        runtime: Runtime,
        notifier: ChatNotifier,
        planner: Planner,
        clarifier: Clarifier,
        executor: WorkflowExecutor | None = None,
        agent_id: str | None = None,
    ) -> None:
        self.task_store = task_store
        self.state_manager = state_manager
        self.runtime = runtime
        self.notifier = notifier
        self.planner = planner
        self.clarifier = clarifier
        self.agent_id = agent_id or settings.conductor_agent_id
        self.executor = executor or WorkflowExecutor(
            task_store, state_manager, runtime, planner=planner, agent_id=self.agent_id
        )
        self._completion_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def on_message(self, message: DoRequest | DidSuccess | DidError | DidClarification) -> None:
        if isinstance(message, DoRequest):
            await self.handle_do(message)
        elif isinstance(message, (DidSuccess, DidError, DidClarification)):
            await self.handle_did(message)
        else:
            raise TypeError(f"Unhandled message: {type(message).__name__}")

    # === do ===

    async def handle_do(self, message: DoRequest) -> None:
        text = message.params.message
        conversation_id = message.params.conversation_id or message.task_id

        states = await self.state_manager.get_conversation_states(conversation_id)
        parent = await self._latest_parent(states)

        if parent is not None and not parent.is_terminal:
            await self._answer_blocked_task(conversation_id, parent, states, text)
            return

        await self._start_plan(conversation_id, text, previous=parent)

    async def _latest_parent(self, states: list[ConversationState]) -> Task | None:
        """Most recently planned parent task among a conversation's states."""
        seen: set[str] = set()
        for state in reversed(states):
            if state.task_id in seen:
                continue
            seen.add(state.task_id)
            task = await self.task_store.get_task(state.task_id)
            if task is not None and task.parent_id is None:
                return task
        return None

    async def _answer_blocked_task(
        self,
        conversation_id: str,
        parent: Task,
        states: list[ConversationState],
        text: str,
    ) -> None:
        task_ids = list(dict.fromkeys(s.task_id for s in states))
        tasks = await self.task_store.list_tasks(TaskFilters(ids=task_ids))
        blocked = [t for t in tasks if t.status in BLOCKED_STATUSES and t.parent_id == parent.id]

        if not blocked:
            logger.error(
                "No blocked task for conversation %s although plan %s is %s",
                conversation_id, parent.id, parent.status,
            )
            return
        if len(blocked) > 1:
            ids = [t.id for t in blocked]
            logger.error("Multiple blocked tasks for conversation %s: %s", conversation_id, ids)
            raise BlockedTaskConflictError(conversation_id, ids)

        task = blocked[0]
        logger.info("Routing user reply in %s to blocked subtask %s", conversation_id, task.id)
        await self.state_manager.add_message(task.id, ChatMessage(role="user", content=text))
        if task.parent_id:
            await self.state_manager.add_message(task.parent_id, ChatMessage(role="user", content=text))

        await self._advance(self.executor.continue_subtask(task), conversation_id)
        await self.refresh_plan_summary(task.parent_id or task.id)

    async def _start_plan(self, conversation_id: str, text: str, previous: Task | None) -> None:
        try:
            plan = await self.planner.plan(text)
            parent, subtasks = await self.build_and_save_plan(plan)
        except Exception as e:
            logger.warning("Planning failed for conversation %s: %s", conversation_id, e, exc_info=True)
            await self.notifier.send(conversation_id, FALLBACK_MESSAGE)
            return

        initial = [ChatMessage(role="user", content=text)]
        if previous is not None:
            prior = await self.state_manager.get_state_by_task_id(previous.id)
            if prior is not None:
                initial = prior.chat_messages[-TRANSCRIPT_TAIL:] + initial

        await self.state_manager.create_initial_state(parent.id, conversation_id, initial)
        for subtask in subtasks:
            await self.state_manager.create_initial_state(subtask.id, conversation_id, [])

        await self.refresh_plan_summary(parent.id)
        await self._advance(self.executor.continue_workflow(parent.id), conversation_id)
        await self.refresh_plan_summary(parent.id)
        await self.handle_workflow_completion(parent.id)

    async def build_and_save_plan(self, plan: TaskPlan) -> tuple[Task, list[Task]]:
        """Persist the parent, then each subtask in plan order."""
        parent = await self.task_store.create_task(CreateTaskInput(
            title=plan.title,
            description=plan.description,
            created_by=self.agent_id,
            assigned_to=self.agent_id,
        ))
        subtasks = []
        for step in plan.sub_tasks:
            subtasks.append(await self.task_store.create_task(CreateTaskInput(
                title=step.title,
                description=step.description,
                created_by=self.agent_id,
                assigned_to=step.agent_id,
                parent_id=parent.id,
            )))
        logger.info("Plan saved: %s (%s) with %d subtasks", parent.id, parent.title, len(subtasks))
        return parent, subtasks

    # === did ===

    async def handle_did(self, message: DidSuccess | DidError | DidClarification) -> None:
        task = await self.task_store.get_task(message.task_id)
        if task is None:
            logger.error("Received did(%s) for unknown task %s", message.status, message.task_id)
            raise TaskNotFoundError(message.task_id)
        if task.is_terminal:
            logger.warning("Ignoring did(%s) for finished task %s", message.status, task.id)
            return

        updated = await self.executor.handle_subtask_result(task.id, message)
        state = await self.state_manager.get_state_by_task_id(task.id)
        conversation_id = state.conversation_id if state else None
        root_id = updated.parent_id or updated.id

        if isinstance(message, DidSuccess):
            await self._record_reply(updated, did_text(message))
            await self._forward_to_chat(message, conversation_id, updated)
            await self._advance(self.executor.continue_workflow(updated.id), conversation_id)
            await self.refresh_plan_summary(root_id)
            await self.handle_workflow_completion(root_id)
        elif isinstance(message, DidError):
            await self._record_reply(updated, did_text(message))
            await self._forward_to_chat(message, conversation_id, updated)
            await self.refresh_plan_summary(root_id)
        elif isinstance(message, DidClarification):
            await self._handle_clarification(message, updated, state)
        else:
            raise TypeError(f"Unhandled did variant: {type(message).__name__}")

    async def _handle_clarification(
        self,
        message: DidClarification,
        task: Task,
        state: ConversationState | None,
    ) -> None:
        if state is None:
            logger.warning("No conversation state for task %s; clarification dropped", task.id)
            return

        question = did_text(message)
        logger.info("Subtask %s needs clarification: %s", task.id, question)
        history_state = (
            await self.state_manager.get_state_by_task_id(task.parent_id) if task.parent_id else None
        ) or state
        result = await self.clarifier.answer(history_state.chat_messages, question)

        if isinstance(result, ClarificationAnswer):
            logger.info("Conductor answered clarification for %s itself", task.id)
            await self.state_manager.add_message(task.id, ChatMessage(role="user", content=result.answer))
            await self._advance(self.executor.continue_subtask(task), state.conversation_id)
            await self.refresh_plan_summary(task.parent_id or task.id)
            return

        await self._record_reply(task, result.question_for_user)
        await self._forward_to_chat(
            DidClarification(
                task_id=task.id,
                clarification=ClarificationInfo(message=result.question_for_user),
            ),
            state.conversation_id,
            task,
        )
        await self.refresh_plan_summary(task.parent_id or task.id)

    async def handle_workflow_completion(self, task_id: str) -> bool:
        """Announce a finished plan once.

        The announcement is recorded in the parent's execution log, so
        repeated calls for the same Done parent stay silent.

        Returns:
            True if the completion message was sent by this call.
        """
        task = await self.task_store.get_task(task_id)
        if task is None:
            return False
        if task.parent_id:
            task = await self.task_store.get_task(task.parent_id)
            if task is None:
                return False

        async with self._completion_locks[task.id]:
            task = await self.task_store.get_task(task.id)
            if task is None or not task.is_terminal:
                return False
            if COMPLETION_MESSAGE in (task.execution_logs or []):
                return False

            await self.task_store.add_execution_log(task.id, COMPLETION_MESSAGE)
            state = await self.state_manager.add_message(
                task.id, ChatMessage(role="assistant", content=COMPLETION_MESSAGE)
            )

        logger.info("Plan %s completed", task.id)
        if state is not None:
            await self.notifier.send(state.conversation_id, COMPLETION_MESSAGE)
        return True

    # === Helpers ===

    async def refresh_plan_summary(self, parent_id: str) -> None:
        """Send the plan summary, or update the one already in the chat."""
        parent = await self.task_store.get_task(parent_id)
        if parent is None:
            return
        state = await self.state_manager.get_state_by_task_id(parent.id)
        if state is None:
            return
        text = render_plan_summary(parent, await self.task_store.get_subtasks(parent.id))

        if state.plan_activity_id:
            await self.notifier.update(state.conversation_id, state.plan_activity_id, text)
        else:
            activity_id = await self.notifier.send(state.conversation_id, text)
            await self.state_manager.set_plan_activity_id(parent.id, activity_id)

    async def _record_reply(self, task: Task, text: str) -> None:
        """Append an assistant message to the subtask's and its parent's transcripts."""
        reply = ChatMessage(role="assistant", content=text)
        await self.state_manager.add_message(task.id, reply)
        if task.parent_id:
            await self.state_manager.add_message(task.parent_id, reply)

    async def _forward_to_chat(
        self,
        message: DidSuccess | DidError | DidClarification,
        conversation_id: str | None,
        task: Task,
    ) -> None:
        if conversation_id is None:
            logger.warning("No conversation for task %s; did(%s) not forwarded", task.id, message.status)
            return
        await self.runtime.send_message(
            message, ChatRecipient(conversation_id=conversation_id, by_agent_id=task.assigned_to)
        )

    async def _advance(self, step: Awaitable[WorkflowOutcome], conversation_id: str | None) -> WorkflowOutcome:
        """Run one executor step; delivery failures are reported to the chat."""
        try:
            return await step
        except (DeliveryError, AgentNotFoundError) as e:
            logger.warning("Dispatch failed in conversation %s: %s", conversation_id, e)
            if conversation_id:
                await self.notifier.send(conversation_id, DELIVERY_FAILED_MESSAGE)
            return "failed"
