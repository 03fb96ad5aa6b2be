"""Tests for DelegateWatchdog — timing out silent delegates."""

import asyncio
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from datetime import datetime, timedelta, timezone

import pytest

from conductor.models.messages import DoParams, DoRequest
from conductor.workflows.watchdog import DelegateWatchdog


async def _start_plan(conductor, text="Write a blog post", conversation_id="conv-1"):
    await conductor.on_message(DoRequest(
        task_id="user-message",
        params=DoParams(message=text, conversation_id=conversation_id),
    ))


@pytest.mark.asyncio
async def test_no_overdue_before_deadline(conductor, task_store):
    await _start_plan(conductor)
    watchdog = DelegateWatchdog(conductor, task_store, timeout_seconds=600, interval_seconds=1, enabled=True)
    assert await watchdog.find_overdue() == []
    assert await watchdog.sweep() == []


@pytest.mark.asyncio
async def test_sweep_times_out_in_progress_subtask(conductor, task_store, notifier):
    await _start_plan(conductor)
    watchdog = DelegateWatchdog(conductor, task_store, timeout_seconds=600, interval_seconds=1, enabled=True)
    later = datetime.now(timezone.utc) + timedelta(seconds=601)

    overdue = await watchdog.find_overdue(later)
    assert len(overdue) == 1
    assert overdue[0].parent_id is not None

    timed_out = await watchdog.sweep(later)

    task = await task_store.get_task(timed_out[0])
    assert task.status == "Error"
    assert "did not respond" in task.execution_logs[-1]
    # the plan halts; the next subtask is not dispatched
    siblings = await task_store.get_subtasks(task.parent_id)
    assert [s.status for s in siblings][1:] == ["Todo"] * 4
    assert await watchdog.sweep(later) == []


@pytest.mark.asyncio
async def test_disabled_watchdog_does_not_start(conductor, task_store):
    watchdog = DelegateWatchdog(conductor, task_store, timeout_seconds=600, enabled=False)
    await watchdog.start()
    assert watchdog.is_running is False

    zero = DelegateWatchdog(conductor, task_store, timeout_seconds=0, enabled=True)
    await zero.start()
    assert zero.is_running is False


@pytest.mark.asyncio
async def test_start_stop(conductor, task_store):
    watchdog = DelegateWatchdog(conductor, task_store, timeout_seconds=600, interval_seconds=0.01, enabled=True)
    await watchdog.start()
    assert watchdog.is_running is True
    await asyncio.sleep(0.05)
    watchdog.stop()
    assert watchdog.is_running is False
    assert watchdog.get_status()["timeout_seconds"] == 600
