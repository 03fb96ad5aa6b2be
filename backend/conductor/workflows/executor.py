"""Workflow Executor — walks a plan's subtasks strictly in order.

Each call performs at most one step (dispatch one subtask, or close a level)
and returns. The next step is driven by the delegate's `did` callback, so
every decision is re-derived from persisted task status and any call is safe
to repeat after a restart.

Usage:
    executor = WorkflowExecutor(task_store, state_manager, runtime)
    outcome = await executor.continue_workflow(parent.id)   # dispatches S1
    await executor.handle_subtask_result(s1.id, DidSuccess(task_id=s1.id))
    outcome = await executor.continue_workflow(s1.id)       # bubbles, dispatches S2
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

from conductor.config import settings
from conductor.errors import (
    AgentNotFoundError,
    DeliveryError,
    MissingAssigneeError,
    NestingDepthError,
    TaskNotFoundError,
)
from conductor.models.conversation import ChatMessage
from conductor.models.messages import (
    DelegateRecipient,
    DidClarification,
    DidError,
    DidSuccess,
    DoParams,
    DoRequest,
    did_text,
)
from conductor.models.task import Task
from conductor.state.conversation_state import ConversationStateManager
from conductor.tasks.store import TaskStore
from conductor.workflows.engine import TaskStateMachine

if TYPE_CHECKING:
    from conductor.agents.planner import Planner
    from conductor.runtime.runtime import Runtime

logger = logging.getLogger(__name__)

WorkflowOutcome = Literal["in-progress", "completed", "failed"]

DELIVERY_FAILED_LOG = "Delivery to {agent} failed: {error}"


class WorkflowExecutor:
    """Decides and performs the next step for a task tree (one level of nesting)."""

    def __init__(
        self,
        task_store: TaskStore,
        state_manager: ConversationStateManager,
        runtime: Runtime,
        planner: Planner | None = None,
        agent_id: str | None = None,
    ) -> None:
        self.task_store = task_store
        self.state_manager = state_manager
        self.runtime = runtime
        self.planner = planner
        self.agent_id = agent_id or settings.conductor_agent_id
        self.machine = TaskStateMachine()

    # === Entry points ===

    async def continue_workflow(self, task_or_id: Task | str) -> WorkflowOutcome:
        """Advance the tree containing this task by one step.

        A subtask is handed to continue_subtask; a parent dispatches its
        first non-Done child, or becomes Done when none is left.
        """
        task = await self._resolve(task_or_id)

        if task.parent_id:
            return await self.continue_subtask(task)

        if task.is_terminal:
            logger.debug("Task %s is already Done, nothing to continue", task.id)
            return "completed"

        subtasks = await self.task_store.get_subtasks(task.id)
        next_task = next((t for t in subtasks if not t.is_terminal), None)

        if next_task is None:
            await self._set_status(task, "Done")
            logger.info("Plan %s completed (%d subtasks)", task.id, len(subtasks))
            return "completed"

        if next_task.status == "Todo":
            await self._set_status(task, "InProgress")
            return await self.continue_subtask(next_task, parent=task)

        if next_task.status == "Error":
            logger.info("Plan %s halted: subtask %s is in Error", task.id, next_task.id)
            return "failed"

        # InProgress or WaitingForUserResponse: already dispatched, wait for its callback
        return "in-progress"

    async def continue_subtask(self, task: Task, parent: Task | None = None) -> WorkflowOutcome:
        """Dispatch a leaf task, or bubble completion to its parent if it is Done."""
        if parent is None and task.parent_id:
            parent = await self._resolve(task.parent_id)
        if parent is not None and parent.parent_id:
            raise NestingDepthError(task.id)

        if task.is_terminal:
            if parent is None:
                return "completed"
            return await self.continue_workflow(parent)

        if task.status == "InProgress":
            logger.debug("Subtask %s already dispatched", task.id)
            return "in-progress"

        if not task.assigned_to:
            raise MissingAssigneeError(task.id)

        conversation_id = await self._prepare_subtask(task, parent)
        task = await self._set_status(task, "InProgress")
        try:
            await self._dispatch(task, conversation_id)
        except (DeliveryError, AgentNotFoundError) as e:
            # The next user reply in the conversation re-dispatches it
            await self._set_status(task, "Error")
            await self.task_store.add_execution_log(
                task.id, DELIVERY_FAILED_LOG.format(agent=task.assigned_to, error=e)
            )
            raise
        return "in-progress"

    async def handle_subtask_result(
        self,
        task_id: str,
        message: DidSuccess | DidError | DidClarification,
    ) -> Task:
        """Record a delegate's outcome on the subtask.

        Returns:
            The updated task.

        Raises:
            TaskNotFoundError: If the task is unknown.
        """
        task = await self._resolve(task_id)
        text = did_text(message)

        if isinstance(message, DidSuccess):
            await self._set_status(task, "Done")
            task = await self.task_store.add_execution_log(task.id, text)
            if task.parent_id:
                await self.task_store.add_execution_log(
                    task.parent_id,
                    f"Subtask {task.title} completed with result: {text}",
                )
        elif isinstance(message, DidError):
            await self._set_status(task, "Error")
            task = await self.task_store.add_execution_log(task.id, text)
        elif isinstance(message, DidClarification):
            await self._set_status(task, "WaitingForUserResponse")
            task = await self.task_store.add_execution_log(task.id, text)
        else:
            raise TypeError(f"Unhandled did variant: {type(message).__name__}")

        logger.info("Subtask %s reported %s", task.id, message.status)
        return task

    # === Internals ===

    async def _resolve(self, task_or_id: Task | str) -> Task:
        if isinstance(task_or_id, Task):
            return task_or_id
        task = await self.task_store.get_task(task_or_id)
        if task is None:
            raise TaskNotFoundError(task_or_id)
        return task

    async def _set_status(self, task: Task, status: str) -> Task:
        if not self.machine.check(task.status, status):
            return task
        return await self.task_store.update_task_status(task.id, status)

    async def _prepare_subtask(self, task: Task, parent: Task | None) -> str | None:
        """Ensure the subtask's transcript holds its first outbound message.

        Returns:
            The conversation id the subtask belongs to, if known.
        """
        state = await self.state_manager.get_state_by_task_id(task.id)
        parent_state = (
            await self.state_manager.get_state_by_task_id(parent.id) if parent else None
        )

        if state is None:
            if parent_state is None:
                logger.warning("No conversation state for subtask %s or its parent", task.id)
                return None
            state = await self.state_manager.create_initial_state(
                task.id, parent_state.conversation_id, []
            )

        if state.messages:
            return state.conversation_id

        step = task.description or task.title
        content = step
        if self.planner is not None and parent_state is not None:
            summary = await self.planner.draft_delegation(task, parent_state.chat_messages)
            if summary:
                content = f"{content}\n\n{summary}"

        await self.state_manager.add_message(task.id, ChatMessage(role="user", content=content))
        if step:
            await self.task_store.add_execution_log(task.id, step)
        if parent is not None:
            delegated = f"[{task.assigned_to}] - {step}"
            await self.state_manager.add_message(parent.id, ChatMessage(role="assistant", content=delegated))
            await self.task_store.add_execution_log(parent.id, delegated)
        return state.conversation_id

    async def _dispatch(self, task: Task, conversation_id: str | None) -> None:
        state = await self.state_manager.get_state_by_task_id(task.id)
        last = state.last_message if state else None
        message = last.content if last else task.description
        if state is not None and _delivery_failed(task):
            # Nothing has reached the delegate yet; send every message addressed to it
            message = "\n\n".join(m.content for m in state.chat_messages if m.role == "user")
        request = DoRequest(
            task_id=task.id,
            params=DoParams(
                message=message,
                conversation_id=conversation_id,
            ),
        )
        await self.runtime.send_message(request, DelegateRecipient(id=task.assigned_to))
        logger.info("Dispatched subtask %s to %s", task.id, task.assigned_to)


def _delivery_failed(task: Task) -> bool:
    """True if the task's last recorded event is a failed dispatch."""
    if not task.execution_logs:
        return False
    prefix = DELIVERY_FAILED_LOG.format(agent=task.assigned_to, error="")
    return task.execution_logs[-1].startswith(prefix)
