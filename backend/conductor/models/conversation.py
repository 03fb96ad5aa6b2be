"""Conversation state models.

Includes: ConversationState (SQL), ChatMessage (Pydantic).

One row per (task, planning round). The row with the latest created_at is
the current state for a task; older rows are kept as history.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field
from sqlmodel import JSON, Column, SQLModel
from sqlmodel import Field as SQLField

MessageRole = Literal["user", "assistant", "system"]


class ChatMessage(BaseModel):
    """A single transcript entry."""

    role: MessageRole
    content: str


def make_state_id(task_id: str, created_at: datetime) -> str:
    return f"{task_id}:{created_at.isoformat()}"


class ConversationState(SQLModel, table=True):
    """Durable transcript and metadata narrating one task."""

    __tablename__ = "conversation_state"

    state_id: str = SQLField(primary_key=True)
    task_id: str = SQLField(index=True)
    conversation_id: str = SQLField(index=True)
    messages: list[dict] = SQLField(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))
    # Handle of the rendered plan summary in the chat, for in-place updates
    plan_activity_id: str | None = None

    @property
    def chat_messages(self) -> list[ChatMessage]:
        return [ChatMessage(**m) for m in self.messages]

    @property
    def last_message(self) -> ChatMessage | None:
        if not self.messages:
            return None
        return ChatMessage(**self.messages[-1])


class ConversationStateRead(BaseModel):
    """API view of a ConversationState row."""

    state_id: str
    task_id: str
    conversation_id: str
    messages: list[ChatMessage] = Field(default_factory=list)
    created_at: datetime
    plan_activity_id: str | None = None

    @classmethod
    def from_state(cls, state: ConversationState) -> ConversationStateRead:
        return cls(
            state_id=state.state_id,
            task_id=state.task_id,
            conversation_id=state.conversation_id,
            messages=state.chat_messages,
            created_at=state.created_at,
            plan_activity_id=state.plan_activity_id,
        )
