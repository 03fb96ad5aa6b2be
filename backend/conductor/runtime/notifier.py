"""Chat notifiers — how the conductor talks back to the human.

SSEChatNotifier broadcasts on the SSE hub; the chat front-end subscribes to
GET /api/v1/sse?conversation_id=... and renders `conversation.message`
events, replacing the plan summary on `conversation.plan_updated`.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from uuid import uuid4

from conductor.api.v1.sse import SSEHub
from conductor.models.messages import SSEEvent

logger = logging.getLogger(__name__)


class ChatNotifier(ABC):
    @abstractmethod
    async def send(self, conversation_id: str, text: str) -> str:
        """Post a message to the conversation. Returns its activity id."""
        ...

    @abstractmethod
    async def update(self, conversation_id: str, activity_id: str, text: str) -> None:
        """Replace the content of a previously sent message."""
        ...


class SSEChatNotifier(ChatNotifier):
    def __init__(self, hub: SSEHub) -> None:
        self.hub = hub

    async def send(self, conversation_id: str, text: str) -> str:
        activity_id = str(uuid4())
        sent = await self.hub.broadcast(SSEEvent(
            event_type="conversation.message",
            conversation_id=conversation_id,
            activity_id=activity_id,
            payload={"text": text},
        ))
        logger.debug("Chat message %s → %s (%d subscribers)", activity_id, conversation_id, sent)
        return activity_id

    async def update(self, conversation_id: str, activity_id: str, text: str) -> None:
        await self.hub.broadcast(SSEEvent(
            event_type="conversation.plan_updated",
            conversation_id=conversation_id,
            activity_id=activity_id,
            payload={"text": text},
        ))
