"""Tests for HttpRuntime delivery and the SSE chat notifier."""

import os
import sys
from unittest.mock import AsyncMock, patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

import httpx
import pytest

from conductor.api.v1.sse import SSEHub
from conductor.errors import AgentNotFoundError, DeliveryError
from conductor.models.messages import (
    ChatRecipient,
    DelegateRecipient,
    DidSuccess,
    DoParams,
    DoRequest,
)
from conductor.runtime.notifier import SSEChatNotifier
from conductor.runtime.runtime import SENDER_HEADER, HttpRuntime


def _do():
    return DoRequest(task_id="s1", params=DoParams(message="Score Acme", conversation_id="conv-1"))


def _ok(status_code=200):
    return httpx.Response(status_code, json={"status": "accepted"}, request=httpx.Request("POST", "http://x"))


@pytest.mark.asyncio
async def test_delegate_post_to_recv(directory, notifier):
    runtime = HttpRuntime(directory, notifier, sender_id="conductor")
    mock = AsyncMock(return_value=_ok())
    with patch.object(httpx.AsyncClient, "post", mock):
        result = await runtime.send_message(_do(), DelegateRecipient(id="proposal-writer"))

    assert result is None
    assert mock.call_args.args[0] == "http://agents.test:4002/recv"
    assert mock.call_args.kwargs["headers"] == {SENDER_HEADER: "conductor"}
    assert mock.call_args.kwargs["json"] == {
        "type": "do",
        "taskId": "s1",
        "method": "handleMessage",
        "params": {"message": "Score Acme", "conversationId": "conv-1"},
    }


@pytest.mark.asyncio
async def test_delegate_connection_error(directory, notifier):
    runtime = HttpRuntime(directory, notifier)
    mock = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
    with patch.object(httpx.AsyncClient, "post", mock), pytest.raises(DeliveryError) as exc:
        await runtime.send_message(_do(), DelegateRecipient(id="lead-qualification"))
    assert exc.value.recipient == "lead-qualification"


@pytest.mark.asyncio
async def test_delegate_http_error_status(directory, notifier):
    runtime = HttpRuntime(directory, notifier)
    with patch.object(httpx.AsyncClient, "post", AsyncMock(return_value=_ok(503))), pytest.raises(DeliveryError):
        await runtime.send_message(_do(), DelegateRecipient(id="lead-qualification"))


@pytest.mark.asyncio
async def test_unknown_delegate(directory, notifier):
    with pytest.raises(AgentNotFoundError):
        await HttpRuntime(directory, notifier).send_message(_do(), DelegateRecipient(id="legal-review"))


@pytest.mark.asyncio
async def test_chat_recipient_goes_to_notifier(directory, notifier):
    runtime = HttpRuntime(directory, notifier)

    activity_id = await runtime.send_message(
        DidSuccess(task_id="s1", result={"message": "Acme scored 87"}),
        ChatRecipient(conversation_id="conv-1", by_agent_id="lead-qualification"),
    )
    await runtime.send_message(_do(), ChatRecipient(conversation_id="conv-1"))

    assert activity_id == "activity-1"
    assert notifier.texts("conv-1") == ["Acme scored 87", "Score Acme"]


@pytest.mark.asyncio
async def test_sse_notifier_send_and_update():
    hub = SSEHub()
    queue = hub.subscribe_conversation("conv-1")
    other = hub.subscribe_conversation("conv-2")
    notifier = SSEChatNotifier(hub)

    activity_id = await notifier.send("conv-1", "Plan ready")
    await notifier.update("conv-1", activity_id, "Plan updated")

    sent = queue.get_nowait()
    assert sent.event_type == "conversation.message"
    assert sent.activity_id == activity_id
    assert sent.payload == {"text": "Plan ready"}
    updated = queue.get_nowait()
    assert updated.event_type == "conversation.plan_updated"
    assert updated.activity_id == activity_id
    assert other.empty()
