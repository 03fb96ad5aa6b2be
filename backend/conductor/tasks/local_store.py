"""LocalTaskStore — SQLModel-backed task storage running inside the conductor.

Mirrors the task-management service semantics so the conductor can run
standalone (task_store_backend="local") and so the /tasks router can serve
the same REST surface the remote client consumes.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from conductor.db.database import engine as default_engine
from conductor.errors import TaskNotFoundError
from conductor.models.task import CreateTaskInput, Task, TaskFilters
from conductor.tasks.store import TaskStore

logger = logging.getLogger(__name__)


class LocalTaskStore(TaskStore):
    """Task CRUD over the `task` table.

    Usage:
        store = LocalTaskStore()
        parent = await store.create_task(CreateTaskInput(title="Plan", created_by="conductor"))
        child = await store.create_task(
            CreateTaskInput(title="Step 1", created_by="conductor", parent_id=parent.id)
        )
        [first] = await store.get_subtasks(parent.id)
    """

    def __init__(self, engine: Engine | None = None) -> None:
        self._engine = engine or default_engine

    async def create_task(self, task_input: CreateTaskInput) -> Task:
        with Session(self._engine) as session:
            parent = None
            if task_input.parent_id:
                parent = session.get(Task, task_input.parent_id)
                if parent is None:
                    raise TaskNotFoundError(task_input.parent_id)

            task = Task(
                title=task_input.title,
                description=task_input.description,
                status="Todo",
                created_by=task_input.created_by,
                assigned_to=task_input.assigned_to,
                parent_id=task_input.parent_id,
                sub_task_ids=[],
                execution_logs=[],
            )
            session.add(task)

            if parent is not None:
                # Reassign (not append) so SQLAlchemy sees the JSON column change
                parent.sub_task_ids = [*(parent.sub_task_ids or []), task.id]
                parent.updated_at = datetime.now(timezone.utc)
                session.add(parent)

            session.commit()
            session.refresh(task)
            session.expunge(task)
            return task

    async def get_task(self, task_id: str) -> Task | None:
        with Session(self._engine) as session:
            task = session.get(Task, task_id)
            if task is not None:
                session.expunge(task)
            return task

    async def get_subtasks(self, task_id: str) -> list[Task]:
        with Session(self._engine) as session:
            parent = session.get(Task, task_id)
            if parent is None:
                raise TaskNotFoundError(task_id)
            ids = list(parent.sub_task_ids or [])
            if not ids:
                return []
            rows = session.exec(select(Task).where(Task.id.in_(ids))).all()
            by_id = {t.id: t for t in rows}
            for t in rows:
                session.expunge(t)

        missing = [i for i in ids if i not in by_id]
        if missing:
            logger.warning("Task %s references missing subtasks: %s", task_id, missing)
        return [by_id[i] for i in ids if i in by_id]

    async def list_tasks(self, filters: TaskFilters | None = None) -> list[Task]:
        filters = filters or TaskFilters()
        stmt = select(Task)
        if filters.status is not None:
            stmt = stmt.where(Task.status == filters.status)
        if filters.assigned_to is not None:
            stmt = stmt.where(Task.assigned_to == filters.assigned_to)
        if filters.ids is not None:
            stmt = stmt.where(Task.id.in_(filters.ids))
        stmt = stmt.order_by(Task.created_at)  # type: ignore[arg-type]

        with Session(self._engine) as session:
            tasks = session.exec(stmt).all()
            for t in tasks:
                session.expunge(t)
        return list(tasks)

    async def update_task_status(self, task_id: str, status: str) -> Task:
        with Session(self._engine) as session:
            task = self._get_or_raise(session, task_id)
            if task.status != status:
                task.status = status
                task.updated_at = datetime.now(timezone.utc)
                session.add(task)
                session.commit()
                session.refresh(task)
            session.expunge(task)
            return task

    async def assign_task(self, task_id: str, agent_id: str) -> Task:
        with Session(self._engine) as session:
            task = self._get_or_raise(session, task_id)
            task.assigned_to = agent_id
            task.updated_at = datetime.now(timezone.utc)
            session.add(task)
            session.commit()
            session.refresh(task)
            session.expunge(task)
            return task

    async def add_execution_log(self, task_id: str, log: str) -> Task:
        with Session(self._engine) as session:
            task = self._get_or_raise(session, task_id)
            task.execution_logs = [*(task.execution_logs or []), log]
            task.updated_at = datetime.now(timezone.utc)
            session.add(task)
            session.commit()
            session.refresh(task)
            session.expunge(task)
            return task

    async def delete_task(self, task_id: str) -> bool:
        with Session(self._engine) as session:
            task = session.get(Task, task_id)
            if task is None:
                return False

            if task.parent_id:
                parent = session.get(Task, task.parent_id)
                if parent is not None:
                    parent.sub_task_ids = [i for i in (parent.sub_task_ids or []) if i != task_id]
                    parent.updated_at = datetime.now(timezone.utc)
                    session.add(parent)

            session.delete(task)
            session.commit()
            return True

    @staticmethod
    def _get_or_raise(session: Session, task_id: str) -> Task:
        task = session.get(Task, task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task
