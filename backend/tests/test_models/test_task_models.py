"""Tests for Task models and their wire representation."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from datetime import datetime, timezone

from conductor.models.conversation import ChatMessage, ConversationState, make_state_id
from conductor.models.task import Task, TaskRead


def test_task_defaults():
    task = Task(title="Plan")
    assert task.status == "Todo"
    assert task.is_leaf
    assert not task.is_terminal
    assert task.id


def test_task_read_round_trips_wire_json():
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    task = Task(
        id="p1", title="Plan", status="InProgress", created_by="conductor",
        sub_task_ids=["a", "b"], execution_logs=["started"], created_at=now, updated_at=now,
    )
    body = TaskRead.from_task(task).model_dump(mode="json", by_alias=True)
    assert body["subTaskIds"] == ["a", "b"]
    assert body["createdBy"] == "conductor"
    assert body["executionLogs"] == ["started"]

    back = TaskRead.model_validate(body).to_task()
    assert back.sub_task_ids == ["a", "b"]
    assert back.status == "InProgress"


def test_state_id_and_last_message():
    created = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    state = ConversationState(
        state_id=make_state_id("t1", created),
        task_id="t1",
        conversation_id="c1",
        messages=[{"role": "user", "content": "a"}, {"role": "assistant", "content": "b"}],
        created_at=created,
    )
    assert state.state_id == "t1:2026-03-01T12:00:00+00:00"
    assert state.last_message == ChatMessage(role="assistant", content="b")
    assert [m.content for m in state.chat_messages] == ["a", "b"]
