"""SSE (Server-Sent Events) hub for live conversation updates.

The chat front-end subscribes per conversation; events follow the SSEEvent
schema defined in conductor.models.messages.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncGenerator

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from conductor.models.messages import SSEEvent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["sse"])

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


class SSEHub:
    """Central hub for broadcasting SSE events to connected clients.

    Usage:
        hub = SSEHub()

        await hub.broadcast(SSEEvent(
            event_type="conversation.message",
            conversation_id="conv-1",
            payload={"text": "Done!"},
        ))

        @router.get("/sse")
        async def sse_endpoint(conversation_id: str | None = None):
            return hub.create_response(conversation_id)
    """

    MAX_SUBSCRIBERS = 50  # Global subscribers; oldest is evicted beyond this

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[SSEEvent | None]] = []
        # conversation_id -> subscriber queues
        self._conversation_queues: dict[str, list[asyncio.Queue[SSEEvent | None]]] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers) + sum(len(q) for q in self._conversation_queues.values())

    def subscribe(self) -> asyncio.Queue[SSEEvent | None]:
        """Create a subscriber queue receiving every event. None signals disconnect."""
        if len(self._subscribers) >= self.MAX_SUBSCRIBERS:
            logger.warning(
                "SSE hub at capacity (%d/%d), evicting oldest subscriber",
                len(self._subscribers), self.MAX_SUBSCRIBERS,
            )
            oldest = self._subscribers.pop(0)
            try:
                oldest.put_nowait(None)
            except asyncio.QueueFull:
                pass

        queue: asyncio.Queue[SSEEvent | None] = asyncio.Queue(maxsize=100)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[SSEEvent | None]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def subscribe_conversation(self, conversation_id: str) -> asyncio.Queue[SSEEvent | None]:
        """Create a queue that only receives events for one conversation."""
        queue: asyncio.Queue[SSEEvent | None] = asyncio.Queue(maxsize=200)
        self._conversation_queues.setdefault(conversation_id, []).append(queue)
        return queue

    def unsubscribe_conversation(self, conversation_id: str, queue: asyncio.Queue[SSEEvent | None]) -> None:
        queues = self._conversation_queues.get(conversation_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._conversation_queues.pop(conversation_id, None)

    async def broadcast(self, event: SSEEvent) -> int:
        """Send an event to all matching subscribers.

        Returns:
            Number of subscribers that received the event.
        """
        sent = 0
        dead_queues = []
        for queue in self._subscribers:
            try:
                queue.put_nowait(event)
                sent += 1
            except asyncio.QueueFull:
                dead_queues.append(queue)
        for q in dead_queues:
            self._subscribers.remove(q)

        if event.conversation_id and event.conversation_id in self._conversation_queues:
            queues = self._conversation_queues[event.conversation_id]
            dead_conversation = []
            for q in queues:
                try:
                    q.put_nowait(event)
                    sent += 1
                except asyncio.QueueFull:
                    dead_conversation.append(q)
            for q in dead_conversation:
                queues.remove(q)

        return sent

    async def event_generator(
        self,
        queue: asyncio.Queue[SSEEvent | None],
        heartbeat_interval: float = 30.0,
    ) -> AsyncGenerator[str, None]:
        """Yield SSE-formatted strings from a queue, with heartbeat comments."""
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=heartbeat_interval)
                    if event is None:
                        break
                    yield _format_sse(event)
                except asyncio.TimeoutError:
                    yield ": heartbeat\n\n"
        finally:
            self.unsubscribe(queue)

    def create_response(self, conversation_id: str | None = None) -> StreamingResponse:
        """StreamingResponse for all events, or one conversation's events."""
        if conversation_id is None:
            return StreamingResponse(
                self.event_generator(self.subscribe()),
                media_type="text/event-stream",
                headers=_SSE_HEADERS,
            )

        queue = self.subscribe_conversation(conversation_id)

        async def _gen():
            try:
                async for chunk in self.event_generator(queue):
                    yield chunk
            finally:
                self.unsubscribe_conversation(conversation_id, queue)

        return StreamingResponse(_gen(), media_type="text/event-stream", headers=_SSE_HEADERS)

    async def disconnect_all(self) -> None:
        """Disconnect all subscribers (used during shutdown)."""
        queues = list(self._subscribers)
        for qs in self._conversation_queues.values():
            queues.extend(qs)
        for queue in queues:
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                pass
        self._subscribers.clear()
        self._conversation_queues.clear()


def _format_sse(event: SSEEvent) -> str:
    """Format an SSEEvent as `event: <type>\\ndata: <json>\\n\\n`."""
    data = {
        "event_type": event.event_type,
        "conversation_id": event.conversation_id,
        "task_id": event.task_id,
        "activity_id": event.activity_id,
        "payload": event.payload,
        "timestamp": event.timestamp.isoformat() if event.timestamp else None,
    }
    return f"event: {event.event_type}\ndata: {json.dumps(data, default=str)}\n\n"


# === Singleton hub instance ===

sse_hub = SSEHub()


@router.get("/sse")
async def sse_endpoint(conversation_id: str | None = None):
    """Stream conversation events.

    Connect via EventSource:
        new EventSource('/api/v1/sse?conversation_id=conv-1')
    """
    return sse_hub.create_response(conversation_id)
