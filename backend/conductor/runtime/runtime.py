"""Runtime — outbound message delivery for the conductor.

HttpRuntime routes by recipient:
- DelegateRecipient → POST {agent.url}/recv with the envelope as camelCase JSON
- ChatRecipient     → text rendered from the envelope, handed to the ChatNotifier
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from conductor.agents.directory import AgentDirectory
from conductor.config import settings
from conductor.errors import DeliveryError
from conductor.models.messages import (
    ChatRecipient,
    DelegateRecipient,
    DidClarification,
    DidError,
    DidSuccess,
    DoRequest,
    did_text,
)
from conductor.runtime.notifier import ChatNotifier

logger = logging.getLogger(__name__)

OutboundMessage = DoRequest | DidSuccess | DidError | DidClarification

SENDER_HEADER = "x-sender-id"


class Runtime(ABC):
    """Sends envelopes to delegate agents or to the chat."""

    @abstractmethod
    async def send_message(
        self,
        message: OutboundMessage,
        recipient: DelegateRecipient | ChatRecipient,
    ) -> str | None:
        """Deliver a message.

        Returns:
            The chat activity id for chat recipients, None for delegates.

        Raises:
            DeliveryError: If the message could not be delivered.
        """
        ...


class HttpRuntime(Runtime):
    """Delivers to delegates over HTTP and to the chat through a ChatNotifier.

    Usage:
        runtime = HttpRuntime(directory, SSEChatNotifier(sse_hub))
        await runtime.send_message(DoRequest(...), DelegateRecipient(id="proposal-writer"))
    """

    def __init__(
        self,
        directory: AgentDirectory,
        notifier: ChatNotifier,
        sender_id: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.directory = directory
        self.notifier = notifier
        self.sender_id = sender_id or settings.conductor_agent_id
        self.timeout = timeout or settings.http_timeout_seconds

    async def send_message(
        self,
        message: OutboundMessage,
        recipient: DelegateRecipient | ChatRecipient,
    ) -> str | None:
        if isinstance(recipient, DelegateRecipient):
            await self._send_to_delegate(message, recipient)
            return None
        if isinstance(recipient, ChatRecipient):
            text = message.params.message if isinstance(message, DoRequest) else did_text(message)
            return await self.notifier.send(recipient.conversation_id, text)
        raise TypeError(f"Unhandled recipient: {type(recipient).__name__}")

    async def _send_to_delegate(self, message: OutboundMessage, recipient: DelegateRecipient) -> None:
        agent = self.directory.get_or_raise(recipient.id)
        url = f"{agent.url.rstrip('/')}/recv"
        body = message.model_dump(mode="json", by_alias=True, exclude_none=True)
        logger.debug("→ %s %s", url, body)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(url, json=body, headers={SENDER_HEADER: self.sender_id})
        except httpx.HTTPError as e:
            logger.warning("Delivery to %s failed: %s", agent.id, e)
            raise DeliveryError(agent.id, str(e)) from e

        if resp.status_code >= 400:
            logger.warning("Delivery to %s rejected: HTTP %d", agent.id, resp.status_code)
            raise DeliveryError(agent.id, f"HTTP {resp.status_code}: {resp.text[:200]}")
