"""Message envelope models.

Includes: DoRequest, DidSuccess / DidError / DidClarification (the `did`
variants, discriminated by `status`), recipients, SSEEvent.

Wire JSON is camelCase (taskId, conversationId); Python attributes are
snake_case. Serialize with ``model_dump(by_alias=True, exclude_none=True)``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class _Envelope(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# === do ===


class DoParams(_Envelope):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    message: str
    conversation_id: str | None = None


class DoRequest(_Envelope):
    """Request to act: inbound from a user, or outbound to a delegate."""

    type: Literal["do"] = "do"
    task_id: str
    method: str = "handleMessage"
    params: DoParams


# === did ===


class ResultInfo(_Envelope):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    message: str | None = None


class ErrorInfo(_Envelope):
    code: int = 500
    message: str | None = None
    data: Any = None


class ClarificationInfo(_Envelope):
    message: str


class DidSuccess(_Envelope):
    type: Literal["did"] = "did"
    status: Literal["success"] = "success"
    task_id: str
    result: ResultInfo = Field(default_factory=ResultInfo)


class DidError(_Envelope):
    type: Literal["did"] = "did"
    status: Literal["error"] = "error"
    task_id: str
    error: ErrorInfo = Field(default_factory=ErrorInfo)


class DidClarification(_Envelope):
    type: Literal["did"] = "did"
    status: Literal["needs_clarification"] = "needs_clarification"
    task_id: str
    clarification: ClarificationInfo


DidRequest = Annotated[
    Union[DidSuccess, DidError, DidClarification],
    Field(discriminator="status"),
]

AgentMessage = Annotated[
    Union[DoRequest, DidRequest],
    Field(discriminator="type"),
]

_AGENT_MESSAGE = TypeAdapter(AgentMessage)

DEFAULT_SUCCESS_TEXT = "Done!"
DEFAULT_ERROR_TEXT = "There was an error"
DEFAULT_CLARIFICATION_TEXT = "Needs clarification"


def parse_agent_message(data: dict) -> DoRequest | DidSuccess | DidError | DidClarification:
    """Validate a raw JSON payload into the matching envelope variant.

    Raises:
        pydantic.ValidationError: If the payload matches no variant.
    """
    return _AGENT_MESSAGE.validate_python(data)


def did_text(message: DidSuccess | DidError | DidClarification) -> str:
    """Human-readable text carried by a `did` message."""
    if isinstance(message, DidSuccess):
        return message.result.message or DEFAULT_SUCCESS_TEXT
    if isinstance(message, DidError):
        return message.error.message or DEFAULT_ERROR_TEXT
    if isinstance(message, DidClarification):
        return message.clarification.message or DEFAULT_CLARIFICATION_TEXT
    raise TypeError(f"Unhandled did variant: {type(message).__name__}")


# === Recipients / initiators ===


class DelegateRecipient(BaseModel):
    """Another agent, addressed by its directory id."""

    type: Literal["delegate"] = "delegate"
    id: str


class ChatRecipient(BaseModel):
    """The chat thread a human is watching."""

    type: Literal["chat"] = "chat"
    conversation_id: str
    by_agent_id: str | None = None


Recipient = Annotated[
    Union[DelegateRecipient, ChatRecipient],
    Field(discriminator="type"),
]


# === SSE ===


class SSEEvent(BaseModel):
    """Schema for all Server-Sent Events."""

    event_type: Literal[
        "conversation.message",
        "conversation.plan_updated",
    ]
    conversation_id: str | None = None
    task_id: str | None = None
    activity_id: str | None = None
    payload: dict = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
