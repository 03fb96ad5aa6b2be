"""Tests for GET /health and the SSE hub."""

import json
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

import pytest
from fastapi.testclient import TestClient

from conductor.api.health import set_dependencies
from conductor.api.v1.sse import SSEHub, _format_sse
from conductor.main import app
from conductor.models.messages import SSEEvent
from conductor.workflows.watchdog import DelegateWatchdog


# === Health ===


def test_health_ok(task_store, conductor):
    set_dependencies(task_store, DelegateWatchdog(conductor, task_store, timeout_seconds=60, enabled=True))
    resp = TestClient(app).get("/health")

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["checks"]["database"]["status"] == "ok"
    assert data["checks"]["task_store"]["status"] == "ok"
    assert data["checks"]["watchdog"]["detail"] == "timeout=60s"


def test_health_disabled_watchdog_is_degraded(task_store, conductor):
    set_dependencies(task_store, DelegateWatchdog(conductor, task_store, enabled=False))
    data = TestClient(app).get("/health").json()

    assert data["status"] == "degraded"
    assert data["checks"]["watchdog"]["status"] == "warning"


def test_health_unreachable_store_is_unhealthy(task_store):
    class DownStore(type(task_store)):
        async def ping(self):
            raise ConnectionError("task service down")

    set_dependencies(DownStore(task_store._engine))
    data = TestClient(app).get("/health").json()

    assert data["status"] == "unhealthy"
    assert "task service down" in data["checks"]["task_store"]["detail"]


# === SSE hub ===


@pytest.mark.asyncio
async def test_broadcast_routes_by_conversation():
    hub = SSEHub()
    everything = hub.subscribe()
    conv1 = hub.subscribe_conversation("conv-1")
    conv2 = hub.subscribe_conversation("conv-2")

    sent = await hub.broadcast(SSEEvent(event_type="conversation.message", conversation_id="conv-1"))

    assert sent == 2
    assert everything.qsize() == 1
    assert conv1.qsize() == 1
    assert conv2.empty()
    assert hub.subscriber_count == 3


@pytest.mark.asyncio
async def test_event_generator_formats_and_stops():
    hub = SSEHub()
    queue = hub.subscribe()
    await hub.broadcast(SSEEvent(
        event_type="conversation.plan_updated", conversation_id="conv-1",
        activity_id="a1", payload={"text": "1/3 done"},
    ))
    await hub.disconnect_all()

    chunks = [chunk async for chunk in hub.event_generator(queue)]

    assert len(chunks) == 1
    event_line, data_line, _, _ = chunks[0].split("\n")
    assert event_line == "event: conversation.plan_updated"
    data = json.loads(data_line.removeprefix("data: "))
    assert data["activity_id"] == "a1"
    assert data["payload"] == {"text": "1/3 done"}


@pytest.mark.asyncio
async def test_event_generator_heartbeat():
    hub = SSEHub()
    queue = hub.subscribe()
    gen = hub.event_generator(queue, heartbeat_interval=0.01)

    assert await gen.__anext__() == ": heartbeat\n\n"
    await gen.aclose()
    assert hub.subscriber_count == 0


def test_subscriber_cap_evicts_oldest():
    hub = SSEHub()
    first = hub.subscribe()
    for _ in range(SSEHub.MAX_SUBSCRIBERS):
        hub.subscribe()

    assert hub.subscriber_count == SSEHub.MAX_SUBSCRIBERS
    assert first.get_nowait() is None


def test_format_sse():
    text = _format_sse(SSEEvent(event_type="conversation.message", conversation_id="c"))
    assert text.startswith("event: conversation.message\ndata: ")
    assert text.endswith("\n\n")
