"""Tests for ConversationStateManager over both store backends."""

import asyncio
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from conductor.db.database import create_db_and_tables
from conductor.errors import StateAlreadyExistsError
from conductor.models.conversation import ChatMessage, ConversationState, make_state_id
from conductor.state.conversation_state import (
    ConversationStateManager,
    InMemoryConversationStateStore,
    SQLConversationStateStore,
)


def _sql_store():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    create_db_and_tables(engine)
    return SQLConversationStateStore(engine)


@pytest.fixture(params=["memory", "sql"])
def manager(request):
    store = InMemoryConversationStateStore() if request.param == "memory" else _sql_store()
    return ConversationStateManager(store)


def _msg(content: str, role: str = "user") -> ChatMessage:
    return ChatMessage(role=role, content=content)


@pytest.mark.asyncio
async def test_create_then_get(manager):
    created = await manager.create_initial_state("t1", "conv-1", [_msg("hello")])
    state = await manager.get_state_by_task_id("t1")
    assert state is not None
    assert state.state_id == created.state_id
    assert state.state_id.startswith("t1:")
    assert state.conversation_id == "conv-1"
    assert state.chat_messages == [_msg("hello")]


@pytest.mark.asyncio
async def test_create_twice_fails(manager):
    await manager.create_initial_state("t1", "conv-1", [])
    with pytest.raises(StateAlreadyExistsError) as exc:
        await manager.create_initial_state("t1", "conv-1", [_msg("again")])
    assert exc.value.task_id == "t1"
    state = await manager.get_state_by_task_id("t1")
    assert state.messages == []


@pytest.mark.asyncio
async def test_unknown_task_has_no_state(manager):
    assert await manager.get_state_by_task_id("missing") is None
    assert await manager.add_message("missing", _msg("x")) is None
    assert await manager.get_plan_activity_id("missing") is None
    assert await manager.set_plan_activity_id("missing", "a1") is False


@pytest.mark.asyncio
async def test_messages_are_append_only(manager):
    await manager.create_initial_state("t1", "conv-1", [_msg("first")])
    sequence = [_msg(f"m{i}", "assistant" if i % 2 else "user") for i in range(6)]
    for m in sequence:
        updated = await manager.add_message("t1", m)
        assert updated.last_message == m

    state = await manager.get_state_by_task_id("t1")
    assert state.chat_messages == [_msg("first"), *sequence]


@pytest.mark.asyncio
async def test_concurrent_appends_lose_nothing(manager):
    await manager.create_initial_state("t1", "conv-1", [])
    await asyncio.gather(*(manager.add_message("t1", _msg(f"m{i}")) for i in range(20)))
    state = await manager.get_state_by_task_id("t1")
    assert sorted(m.content for m in state.chat_messages) == sorted(f"m{i}" for i in range(20))


@pytest.mark.asyncio
async def test_conversation_states_lists_all_tasks(manager):
    await manager.create_initial_state("parent", "conv-1", [_msg("plan it")])
    await manager.create_initial_state("child-a", "conv-1", [])
    await manager.create_initial_state("child-b", "conv-1", [])
    await manager.create_initial_state("other", "conv-2", [])

    states = await manager.get_conversation_states("conv-1")
    assert [s.task_id for s in states] == ["parent", "child-a", "child-b"]
    assert await manager.get_conversation_states("conv-3") == []


@pytest.mark.asyncio
async def test_plan_activity_id(manager):
    await manager.create_initial_state("p1", "conv-1", [])
    assert await manager.get_plan_activity_id("p1") is None
    assert await manager.set_plan_activity_id("p1", "activity-9") is True
    assert await manager.get_plan_activity_id("p1") == "activity-9"


@pytest.mark.asyncio
async def test_most_recent_state_is_current():
    store = InMemoryConversationStateStore()
    manager = ConversationStateManager(store)
    old = datetime(2026, 1, 1, tzinfo=timezone.utc)
    new = old + timedelta(hours=1)
    await store.insert(ConversationState(
        state_id=make_state_id("t1", new), task_id="t1", conversation_id="round-2",
        messages=[], created_at=new,
    ))
    await store.insert(ConversationState(
        state_id=make_state_id("t1", old), task_id="t1", conversation_id="round-1",
        messages=[], created_at=old,
    ))

    state = await manager.get_state_by_task_id("t1")
    assert state.conversation_id == "round-2"
    await manager.add_message("t1", _msg("latest only"))
    states = await manager.get_conversation_states("round-1")
    assert states[0].messages == []


@pytest.mark.asyncio
async def test_returned_state_is_a_copy():
    manager = ConversationStateManager(InMemoryConversationStateStore())
    state = await manager.create_initial_state("t1", "conv-1", [_msg("a")])
    state.messages.append({"role": "user", "content": "tampered"})
    fresh = await manager.get_state_by_task_id("t1")
    assert fresh.chat_messages == [_msg("a")]
