"""Task API — the task-management REST surface, served in-process.

POST   /tasks                 — Create a task (links into parent when parentId is set)
GET    /tasks                 — List tasks (?status=&assignedTo=&ids=a,b)
GET    /tasks/{id}            — Get a task
GET    /tasks/{id}/subtasks   — Children in execution order
PATCH  /tasks/{id}/status     — Update status (idempotent)
PATCH  /tasks/{id}/assign     — Assign to an agent
POST   /tasks/{id}/logs       — Append an execution log entry
DELETE /tasks/{id}            — Delete (unlinks from parent)

JSON is camelCase, matching what TaskManagementClient sends and expects.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Response

from conductor.models.task import (
    AssignUpdate,
    CreateTaskInput,
    ExecutionLogEntry,
    StatusUpdate,
    TaskFilters,
    TaskRead,
    TaskStatus,
)
from conductor.tasks.store import TaskStore

router = APIRouter(prefix="/tasks", tags=["tasks"])

_store: TaskStore | None = None


def set_task_store(store: TaskStore) -> None:
    global _store
    _store = store


def _get_store() -> TaskStore:
    if _store is None:
        raise HTTPException(status_code=503, detail="Task store not initialized.")
    return _store


def _dump(model: TaskRead) -> dict:
    return model.model_dump(mode="json", by_alias=True)


@router.post("", status_code=201)
async def create_task(body: CreateTaskInput) -> dict:
    task = await _get_store().create_task(body)
    return _dump(TaskRead.from_task(task))


@router.get("")
async def list_tasks(
    status: TaskStatus | None = None,
    assigned_to: str | None = Query(default=None, alias="assignedTo"),
    ids: str | None = None,
) -> list[dict]:
    filters = TaskFilters(
        status=status,
        assigned_to=assigned_to,
        ids=[i for i in ids.split(",") if i] if ids is not None else None,
    )
    tasks = await _get_store().list_tasks(filters)
    return [_dump(TaskRead.from_task(t)) for t in tasks]


@router.get("/{task_id}")
async def get_task(task_id: str) -> dict:
    task = await _get_store().get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")
    return _dump(TaskRead.from_task(task))


@router.get("/{task_id}/subtasks")
async def get_subtasks(task_id: str) -> list[dict]:
    tasks = await _get_store().get_subtasks(task_id)
    return [_dump(TaskRead.from_task(t)) for t in tasks]


@router.patch("/{task_id}/status")
async def update_status(task_id: str, body: StatusUpdate) -> dict:
    task = await _get_store().update_task_status(task_id, body.status)
    return _dump(TaskRead.from_task(task))


@router.patch("/{task_id}/assign")
async def assign_task(task_id: str, body: AssignUpdate) -> dict:
    task = await _get_store().assign_task(task_id, body.agent)
    return _dump(TaskRead.from_task(task))


@router.post("/{task_id}/logs")
async def add_execution_log(task_id: str, body: ExecutionLogEntry) -> dict:
    task = await _get_store().add_execution_log(task_id, body.log)
    return _dump(TaskRead.from_task(task))


@router.delete("/{task_id}", status_code=204)
async def delete_task(task_id: str) -> Response:
    if not await _get_store().delete_task(task_id):
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")
    return Response(status_code=204)
