"""Conversation State Manager — the durable ledger the executor reasons over.

Every task has at most one *current* conversation state: the most recently
created row for its task_id. Messages are append-only; the transcript is the
context sent to delegates, the planner and the clarifier.

Storage is pluggable:
- SQLConversationStateStore: SQLModel `conversation_state` table
- InMemoryConversationStateStore: process-local dicts (tests, dev)
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timezone

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from conductor.db.database import engine as default_engine
from conductor.errors import StateAlreadyExistsError
from conductor.models.conversation import ChatMessage, ConversationState, make_state_id

logger = logging.getLogger(__name__)


class ConversationStateStore(ABC):
    """Keyed storage for ConversationState rows."""

    @abstractmethod
    async def insert(self, state: ConversationState) -> ConversationState:
        ...

    @abstractmethod
    async def latest_for_task(self, task_id: str) -> ConversationState | None:
        ...

    @abstractmethod
    async def list_for_conversation(self, conversation_id: str) -> list[ConversationState]:
        """All states of a conversation, oldest first."""
        ...

    @abstractmethod
    async def append_message(self, state_id: str, message: dict) -> ConversationState | None:
        ...

    @abstractmethod
    async def set_plan_activity_id(self, state_id: str, activity_id: str) -> ConversationState | None:
        ...


class SQLConversationStateStore(ConversationStateStore):
    """ConversationState rows in SQLite (indexed on task_id and conversation_id)."""

    def __init__(self, engine: Engine | None = None) -> None:
        self._engine = engine or default_engine

    async def insert(self, state: ConversationState) -> ConversationState:
        with Session(self._engine) as session:
            session.add(state)
            session.commit()
            session.refresh(state)
            session.expunge(state)
            return state

    async def latest_for_task(self, task_id: str) -> ConversationState | None:
        stmt = (
            select(ConversationState)
            .where(ConversationState.task_id == task_id)
            .order_by(ConversationState.created_at.desc())  # type: ignore[union-attr]
        )
        with Session(self._engine) as session:
            state = session.exec(stmt).first()
            if state is not None:
                session.expunge(state)
            return state

    async def list_for_conversation(self, conversation_id: str) -> list[ConversationState]:
        stmt = (
            select(ConversationState)
            .where(ConversationState.conversation_id == conversation_id)
            .order_by(ConversationState.created_at)  # type: ignore[arg-type]
        )
        with Session(self._engine) as session:
            states = session.exec(stmt).all()
            for s in states:
                session.expunge(s)
        return list(states)

    async def append_message(self, state_id: str, message: dict) -> ConversationState | None:
        with Session(self._engine) as session:
            state = session.get(ConversationState, state_id)
            if state is None:
                return None
            # Reassign so the JSON column is flagged dirty
            state.messages = [*(state.messages or []), message]
            session.add(state)
            session.commit()
            session.refresh(state)
            session.expunge(state)
            return state

    async def set_plan_activity_id(self, state_id: str, activity_id: str) -> ConversationState | None:
        with Session(self._engine) as session:
            state = session.get(ConversationState, state_id)
            if state is None:
                return None
            state.plan_activity_id = activity_id
            session.add(state)
            session.commit()
            session.refresh(state)
            session.expunge(state)
            return state


class InMemoryConversationStateStore(ConversationStateStore):
    """Dict-backed store. Returns fresh objects so callers can't mutate stored rows."""

    def __init__(self) -> None:
        self._rows: dict[str, dict] = {}
        self._by_task: dict[str, list[str]] = defaultdict(list)
        self._by_conversation: dict[str, list[str]] = defaultdict(list)

    def _load(self, state_id: str) -> ConversationState:
        row = self._rows[state_id]
        return ConversationState(**{**row, "messages": list(row["messages"])})

    async def insert(self, state: ConversationState) -> ConversationState:
        self._rows[state.state_id] = {
            "state_id": state.state_id,
            "task_id": state.task_id,
            "conversation_id": state.conversation_id,
            "messages": list(state.messages or []),
            "created_at": state.created_at,
            "plan_activity_id": state.plan_activity_id,
        }
        self._by_task[state.task_id].append(state.state_id)
        self._by_conversation[state.conversation_id].append(state.state_id)
        return self._load(state.state_id)

    async def latest_for_task(self, task_id: str) -> ConversationState | None:
        ids = self._by_task.get(task_id)
        if not ids:
            return None
        latest = max(ids, key=lambda sid: self._rows[sid]["created_at"])
        return self._load(latest)

    async def list_for_conversation(self, conversation_id: str) -> list[ConversationState]:
        ids = sorted(
            self._by_conversation.get(conversation_id, []),
            key=lambda sid: self._rows[sid]["created_at"],
        )
        return [self._load(sid) for sid in ids]

    async def append_message(self, state_id: str, message: dict) -> ConversationState | None:
        row = self._rows.get(state_id)
        if row is None:
            return None
        row["messages"] = [*row["messages"], message]
        return self._load(state_id)

    async def set_plan_activity_id(self, state_id: str, activity_id: str) -> ConversationState | None:
        row = self._rows.get(state_id)
        if row is None:
            return None
        row["plan_activity_id"] = activity_id
        return self._load(state_id)


class ConversationStateManager:
    """Task-keyed operations over a ConversationStateStore.

    Writes for the same task_id are serialized with a per-task asyncio.Lock,
    so concurrent callbacks cannot interleave a read-modify-write.

    Usage:
        manager = ConversationStateManager(SQLConversationStateStore())
        await manager.create_initial_state(task.id, conversation_id, [ChatMessage(role="user", content=text)])
        await manager.add_message(task.id, ChatMessage(role="assistant", content="Done!"))
        state = await manager.get_state_by_task_id(task.id)
    """

    def __init__(self, store: ConversationStateStore) -> None:
        self.store = store
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def create_initial_state(
        self,
        task_id: str,
        conversation_id: str,
        initial_messages: list[ChatMessage] | None = None,
    ) -> ConversationState:
        """Create the first state for a task.

        Raises:
            StateAlreadyExistsError: If the task already has a current state.
        """
        async with self._locks[task_id]:
            existing = await self.store.latest_for_task(task_id)
            if existing is not None:
                raise StateAlreadyExistsError(task_id)

            created_at = datetime.now(timezone.utc)
            state = ConversationState(
                state_id=make_state_id(task_id, created_at),
                task_id=task_id,
                conversation_id=conversation_id,
                messages=[m.model_dump() for m in initial_messages or []],
                created_at=created_at,
            )
            return await self.store.insert(state)

    async def get_state_by_task_id(self, task_id: str) -> ConversationState | None:
        return await self.store.latest_for_task(task_id)

    async def get_conversation_states(self, conversation_id: str) -> list[ConversationState]:
        return await self.store.list_for_conversation(conversation_id)

    async def add_message(self, task_id: str, message: ChatMessage) -> ConversationState | None:
        """Append to the task's current transcript.

        Returns:
            The updated state, or None if the task has no state (nothing to update).
        """
        async with self._locks[task_id]:
            state = await self.store.latest_for_task(task_id)
            if state is None:
                logger.debug("No conversation state for task %s; message dropped", task_id)
                return None
            return await self.store.append_message(state.state_id, message.model_dump())

    async def set_plan_activity_id(self, task_id: str, activity_id: str) -> bool:
        async with self._locks[task_id]:
            state = await self.store.latest_for_task(task_id)
            if state is None:
                return False
            await self.store.set_plan_activity_id(state.state_id, activity_id)
            return True

    async def get_plan_activity_id(self, task_id: str) -> str | None:
        state = await self.store.latest_for_task(task_id)
        return state.plan_activity_id if state else None
