"""Tests for WorkflowExecutor — sequencing, bubbling and callback handling."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

import pytest

from conductor.errors import DeliveryError, MissingAssigneeError, NestingDepthError, TaskNotFoundError
from conductor.models.conversation import ChatMessage
from conductor.models.messages import ClarificationInfo, DidClarification, DidError, DidSuccess, DoRequest
from conductor.models.task import CreateTaskInput


async def _plan(task_store, state_manager, n=3, conversation_id="conv-1", agent="lead-qualification"):
    parent = await task_store.create_task(CreateTaskInput(
        title="Plan", description="Plan for: test", created_by="conductor", assigned_to="conductor",
    ))
    subtasks = []
    for i in range(n):
        subtasks.append(await task_store.create_task(CreateTaskInput(
            title=f"Step {i + 1}", description=f"Do step {i + 1}", created_by="conductor",
            assigned_to=agent, parent_id=parent.id,
        )))
    await state_manager.create_initial_state(parent.id, conversation_id, [ChatMessage(role="user", content="test")])
    for s in subtasks:
        await state_manager.create_initial_state(s.id, conversation_id, [])
    return parent, subtasks


async def _statuses(task_store, tasks):
    return [(await task_store.get_task(t.id)).status for t in tasks]


@pytest.mark.asyncio
async def test_first_call_dispatches_only_first_subtask(task_store, state_manager, runtime, executor):
    parent, subtasks = await _plan(task_store, state_manager)

    outcome = await executor.continue_workflow(parent.id)

    assert outcome == "in-progress"
    assert await _statuses(task_store, subtasks) == ["InProgress", "Todo", "Todo"]
    assert (await task_store.get_task(parent.id)).status == "InProgress"
    assert runtime.dispatched_task_ids == [subtasks[0].id]

    request, recipient = runtime.delegated[0]
    assert isinstance(request, DoRequest)
    assert recipient.id == "lead-qualification"
    assert request.params.message == "Do step 1"
    assert request.params.conversation_id == "conv-1"


@pytest.mark.asyncio
async def test_sequential_dispatch(task_store, state_manager, runtime, executor):
    parent, (s1, s2, s3) = await _plan(task_store, state_manager)
    await executor.continue_workflow(parent.id)

    await executor.handle_subtask_result(s1.id, DidSuccess(task_id=s1.id))
    assert await executor.continue_workflow(s1.id) == "in-progress"

    assert await _statuses(task_store, [s1, s2, s3]) == ["Done", "InProgress", "Todo"]
    assert runtime.dispatched_task_ids == [s1.id, s2.id]


@pytest.mark.asyncio
async def test_reentry_does_not_redispatch(task_store, state_manager, runtime, executor):
    parent, subtasks = await _plan(task_store, state_manager)
    await executor.continue_workflow(parent.id)
    assert await executor.continue_workflow(parent.id) == "in-progress"
    assert await executor.continue_workflow(subtasks[0].id) == "in-progress"
    assert runtime.dispatched_task_ids == [subtasks[0].id]


@pytest.mark.asyncio
async def test_completion_bubbles_to_parent(task_store, state_manager, runtime, executor):
    parent, subtasks = await _plan(task_store, state_manager, n=2)
    await executor.continue_workflow(parent.id)
    for s in subtasks:
        await executor.handle_subtask_result(s.id, DidSuccess(task_id=s.id))
        outcome = await executor.continue_workflow(s.id)

    assert outcome == "completed"
    assert (await task_store.get_task(parent.id)).status == "Done"


@pytest.mark.asyncio
async def test_empty_plan_completes_immediately(task_store, state_manager, runtime, executor):
    parent, _ = await _plan(task_store, state_manager, n=0)
    assert await executor.continue_workflow(parent) == "completed"
    assert (await task_store.get_task(parent.id)).status == "Done"
    assert runtime.sent == []


@pytest.mark.asyncio
async def test_done_parent_is_noop(task_store, state_manager, runtime, executor):
    parent, _ = await _plan(task_store, state_manager, n=0)
    await executor.continue_workflow(parent.id)
    before = await task_store.get_task(parent.id)

    assert await executor.continue_workflow(parent.id) == "completed"

    after = await task_store.get_task(parent.id)
    assert after.updated_at == before.updated_at
    assert after.execution_logs == before.execution_logs
    assert runtime.sent == []


@pytest.mark.asyncio
async def test_error_halts_plan(task_store, state_manager, runtime, executor):
    parent, (s1, s2) = await _plan(task_store, state_manager, n=2)
    await executor.continue_workflow(parent.id)

    task = await executor.handle_subtask_result(s1.id, DidError(task_id=s1.id, error={"message": "CRM down"}))
    assert task.status == "Error"
    assert task.execution_logs[-1] == "CRM down"

    assert await executor.continue_workflow(parent.id) == "failed"
    assert (await task_store.get_task(s2.id)).status == "Todo"
    assert runtime.dispatched_task_ids == [s1.id]


@pytest.mark.asyncio
async def test_clarification_then_resume(task_store, state_manager, runtime, executor):
    parent, (s1, _s2) = await _plan(task_store, state_manager, n=2)
    await executor.continue_workflow(parent.id)

    task = await executor.handle_subtask_result(
        s1.id, DidClarification(task_id=s1.id, clarification=ClarificationInfo(message="Which region?"))
    )
    assert task.status == "WaitingForUserResponse"
    assert await executor.continue_workflow(parent.id) == "in-progress"
    assert runtime.dispatched_task_ids == [s1.id]

    await state_manager.add_message(s1.id, ChatMessage(role="user", content="EMEA"))
    assert await executor.continue_subtask(task) == "in-progress"

    assert (await task_store.get_task(s1.id)).status == "InProgress"
    assert runtime.dispatched_task_ids == [s1.id, s1.id]
    assert runtime.delegated[-1][0].params.message == "EMEA"


@pytest.mark.asyncio
async def test_first_message_written_once(task_store, state_manager, executor):
    parent, (s1, _s2) = await _plan(task_store, state_manager, n=2)
    await executor.continue_workflow(parent.id)
    await executor.handle_subtask_result(
        s1.id, DidClarification(task_id=s1.id, clarification=ClarificationInfo(message="?"))
    )
    await executor.continue_subtask(await task_store.get_task(s1.id))

    sub_state = await state_manager.get_state_by_task_id(s1.id)
    parent_state = await state_manager.get_state_by_task_id(parent.id)
    assert [m.content for m in sub_state.chat_messages] == ["Do step 1"]
    assert [m.content for m in parent_state.chat_messages] == ["test", "[lead-qualification] - Do step 1"]


@pytest.mark.asyncio
async def test_step_without_description_uses_title(task_store, state_manager, runtime, executor):
    parent = await task_store.create_task(CreateTaskInput(
        title="Plan", created_by="conductor", assigned_to="conductor",
    ))
    step = await task_store.create_task(CreateTaskInput(
        title="Score Acme", created_by="conductor", assigned_to="lead-qualification", parent_id=parent.id,
    ))
    await state_manager.create_initial_state(parent.id, "conv-1", [ChatMessage(role="user", content="test")])
    await state_manager.create_initial_state(step.id, "conv-1", [])

    await executor.continue_workflow(parent.id)

    assert (await task_store.get_task(step.id)).execution_logs == ["Score Acme"]
    assert (await task_store.get_task(parent.id)).execution_logs == ["[lead-qualification] - Score Acme"]
    assert runtime.delegated[0][0].params.message == "Score Acme"


@pytest.mark.asyncio
async def test_undelivered_subtask_is_marked_error(task_store, state_manager, runtime, executor):
    parent, (s1, s2) = await _plan(task_store, state_manager, n=2)
    runtime.unreachable.add("lead-qualification")

    with pytest.raises(DeliveryError):
        await executor.continue_workflow(parent.id)

    s1 = await task_store.get_task(s1.id)
    assert s1.status == "Error"
    assert s1.execution_logs[-1].startswith("Delivery to lead-qualification failed")
    assert (await task_store.get_task(s2.id)).status == "Todo"
    assert await executor.continue_workflow(parent.id) == "failed"

    runtime.unreachable.clear()
    assert await executor.continue_subtask(s1) == "in-progress"
    assert runtime.delegated[0][0].params.message == "Do step 1"


@pytest.mark.asyncio
async def test_success_logs_on_parent(task_store, state_manager, executor):
    parent, (s1,) = await _plan(task_store, state_manager, n=1)
    await executor.continue_workflow(parent.id)
    await executor.handle_subtask_result(s1.id, DidSuccess(task_id=s1.id, result={"message": "Qualified"}))

    logs = (await task_store.get_task(parent.id)).execution_logs
    assert "Subtask Step 1 completed with result: Qualified" in logs


@pytest.mark.asyncio
async def test_unknown_task_raises(executor):
    with pytest.raises(TaskNotFoundError):
        await executor.handle_subtask_result("nope", DidSuccess(task_id="nope"))
    with pytest.raises(TaskNotFoundError):
        await executor.continue_workflow("nope")


@pytest.mark.asyncio
async def test_missing_assignee_raises(task_store, state_manager, executor):
    parent, (s1,) = await _plan(task_store, state_manager, n=1, agent=None)
    with pytest.raises(MissingAssigneeError):
        await executor.continue_workflow(parent.id)


@pytest.mark.asyncio
async def test_grandchild_is_rejected(task_store, state_manager, executor):
    parent, (s1,) = await _plan(task_store, state_manager, n=1)
    grandchild = await task_store.create_task(CreateTaskInput(
        title="Too deep", created_by="conductor", assigned_to="lead-qualification", parent_id=s1.id,
    ))
    with pytest.raises(NestingDepthError):
        await executor.continue_workflow(grandchild.id)
