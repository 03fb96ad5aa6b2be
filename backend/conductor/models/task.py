"""Task models.

Includes: Task (SQL), CreateTaskInput / TaskFilters / TaskRead (Pydantic wire shapes).

A task with sub_task_ids is a plan; its children are leaves dispatched to
delegate agents in sub_task_ids order. Only one level of nesting exists.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlmodel import JSON, Column, SQLModel
from sqlmodel import Field as SQLField

TaskStatus = Literal["Todo", "InProgress", "WaitingForUserResponse", "Error", "Done"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"Done"})
BLOCKED_STATUSES: frozenset[str] = frozenset({"WaitingForUserResponse", "Error"})

TITLE_MAX_LENGTH = 500
DESCRIPTION_MAX_LENGTH = 10_000


class Task(SQLModel, table=True):
    """A unit of work: a plan (parent) or a subtask delegated to one agent."""

    __tablename__ = "task"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    title: str
    description: str = ""
    status: str = "Todo"  # TaskStatus
    assigned_to: str | None = SQLField(default=None, index=True)  # Agent ID
    created_by: str = ""
    parent_id: str | None = SQLField(default=None, index=True)
    # Order encodes execution sequence
    sub_task_ids: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    # Append-only audit trail (not the conversation)
    execution_logs: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_leaf(self) -> bool:
        return not self.sub_task_ids


# === Wire models (camelCase JSON, matching the task-management service) ===


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateTaskInput(_CamelModel):
    """Body of POST /tasks."""

    title: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH)
    description: str = Field(default="", max_length=DESCRIPTION_MAX_LENGTH)
    created_by: str
    assigned_to: str | None = None
    parent_id: str | None = None


class TaskFilters(_CamelModel):
    """Filters for listing tasks. Empty filters list everything."""

    status: TaskStatus | None = None
    assigned_to: str | None = None
    ids: list[str] | None = None


class StatusUpdate(_CamelModel):
    status: TaskStatus


class AssignUpdate(_CamelModel):
    agent: str


class ExecutionLogEntry(_CamelModel):
    log: str = Field(min_length=1)


class TaskRead(_CamelModel):
    """Serialized Task as exchanged with the task-management service."""

    id: str
    title: str
    description: str = ""
    status: TaskStatus = "Todo"
    assigned_to: str | None = None
    created_by: str = ""
    parent_id: str | None = None
    sub_task_ids: list[str] = Field(default_factory=list)
    execution_logs: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_task(cls, task: Task) -> TaskRead:
        return cls(
            id=task.id,
            title=task.title,
            description=task.description,
            status=task.status,
            assigned_to=task.assigned_to,
            created_by=task.created_by,
            parent_id=task.parent_id,
            sub_task_ids=list(task.sub_task_ids or []),
            execution_logs=list(task.execution_logs or []),
            created_at=task.created_at,
            updated_at=task.updated_at,
        )

    def to_task(self) -> Task:
        """Build a detached Task from the wire representation."""
        return Task(
            id=self.id,
            title=self.title,
            description=self.description,
            status=self.status,
            assigned_to=self.assigned_to,
            created_by=self.created_by,
            parent_id=self.parent_id,
            sub_task_ids=list(self.sub_task_ids),
            execution_logs=list(self.execution_logs),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
