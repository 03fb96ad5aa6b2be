"""Conversation API — chat-platform entry point and state inspection.

POST /api/v1/conversations/{id}/messages — A user message; runs the conductor inline
GET  /api/v1/conversations/{id}/states   — All conversation states, oldest first
GET  /api/v1/tasks/{id}/state            — Current conversation state of a task
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from conductor.agents.conductor import ConductorAgent
from conductor.models.conversation import ConversationStateRead
from conductor.models.messages import DoParams, DoRequest
from conductor.state.conversation_state import ConversationStateManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["conversations"])

# Inbound user messages carry no task yet
USER_MESSAGE_TASK_ID = "user-message"

_conductor: ConductorAgent | None = None
_state_manager: ConversationStateManager | None = None


def set_dependencies(conductor: ConductorAgent, state_manager: ConversationStateManager) -> None:
    global _conductor, _state_manager
    _conductor = conductor
    _state_manager = state_manager


class UserMessageRequest(BaseModel):
    message: str = Field(min_length=1, max_length=10_000)


class UserMessageAccepted(BaseModel):
    conversation_id: str
    accepted: bool = True


@router.post("/conversations/{conversation_id}/messages", response_model=UserMessageAccepted)
async def post_user_message(conversation_id: str, body: UserMessageRequest) -> UserMessageAccepted:
    """Hand a chat message to the conductor (new plan or reply to a blocked subtask)."""
    if _conductor is None:
        raise HTTPException(status_code=503, detail="Conductor not initialized.")
    request = DoRequest(
        task_id=USER_MESSAGE_TASK_ID,
        params=DoParams(message=body.message, conversation_id=conversation_id),
    )
    await _conductor.on_message(request)
    return UserMessageAccepted(conversation_id=conversation_id)


@router.get("/conversations/{conversation_id}/states", response_model=list[ConversationStateRead])
async def get_conversation_states(conversation_id: str) -> list[ConversationStateRead]:
    if _state_manager is None:
        raise HTTPException(status_code=503, detail="State manager not initialized.")
    states = await _state_manager.get_conversation_states(conversation_id)
    return [ConversationStateRead.from_state(s) for s in states]


@router.get("/tasks/{task_id}/state", response_model=ConversationStateRead)
async def get_task_state(task_id: str) -> ConversationStateRead:
    if _state_manager is None:
        raise HTTPException(status_code=503, detail="State manager not initialized.")
    state = await _state_manager.get_state_by_task_id(task_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"No conversation state for task {task_id}")
    return ConversationStateRead.from_state(state)
