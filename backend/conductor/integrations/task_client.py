"""Task-management service client — REST/JSON over httpx.

Consumes the task service surface:
  POST   /tasks                 create
  GET    /tasks/{id}            get
  GET    /tasks/{id}/subtasks   ordered children
  GET    /tasks?status&assignedTo&ids
  PATCH  /tasks/{id}/status
  PATCH  /tasks/{id}/assign
  POST   /tasks/{id}/logs
  DELETE /tasks/{id}
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from conductor.config import settings
from conductor.errors import TaskNotFoundError, TaskServiceError
from conductor.models.task import CreateTaskInput, Task, TaskFilters, TaskRead
from conductor.tasks.store import TaskStore

logger = logging.getLogger(__name__)


class TaskManagementClient(TaskStore):
    """Async client for the task-management REST service.

    Usage:
        client = TaskManagementClient("http://localhost:3002")
        task = await client.get_task("abc")
        subtasks = await client.get_subtasks(task.id)
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None) -> None:
        base_url = base_url or settings.task_service_url
        self.base_url = base_url[:-1] if base_url.endswith("/") else base_url
        self._timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self._headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.request(method, url, json=json, params=params, headers=self._headers)

        if resp.status_code >= 400:
            detail = self._error_detail(resp)
            logger.warning("Task service %s %s failed (%d): %s", method, path, resp.status_code, detail)
            raise TaskServiceError(resp.status_code, detail)
        return resp

    @staticmethod
    def _error_detail(resp: httpx.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            return f"HTTP error! status: {resp.status_code}"
        if isinstance(body, dict):
            return str(body.get("error") or body.get("detail") or body)
        return str(body)

    @staticmethod
    def _to_task(data: dict) -> Task:
        return TaskRead.model_validate(data).to_task()

    async def create_task(self, task_input: CreateTaskInput) -> Task:
        resp = await self._request(
            "POST", "/tasks", json=task_input.model_dump(by_alias=True, exclude_none=True)
        )
        return self._to_task(resp.json())

    async def get_task(self, task_id: str) -> Task | None:
        try:
            resp = await self._request("GET", f"/tasks/{task_id}")
        except TaskServiceError as e:
            if e.status_code == 404:
                return None
            raise
        return self._to_task(resp.json())

    async def get_subtasks(self, task_id: str) -> list[Task]:
        try:
            resp = await self._request("GET", f"/tasks/{task_id}/subtasks")
        except TaskServiceError as e:
            if e.status_code == 404:
                raise TaskNotFoundError(task_id) from e
            raise
        return [self._to_task(item) for item in resp.json()]

    async def list_tasks(self, filters: TaskFilters | None = None) -> list[Task]:
        filters = filters or TaskFilters()
        params: dict[str, str] = {}
        if filters.status:
            params["status"] = filters.status
        if filters.assigned_to:
            params["assignedTo"] = filters.assigned_to
        if filters.ids is not None:
            if not filters.ids:
                return []
            params["ids"] = ",".join(filters.ids)
        resp = await self._request("GET", "/tasks", params=params or None)
        return [self._to_task(item) for item in resp.json()]

    async def update_task_status(self, task_id: str, status: str) -> Task:
        return await self._mutate("PATCH", f"/tasks/{task_id}/status", task_id, {"status": status})

    async def assign_task(self, task_id: str, agent_id: str) -> Task:
        return await self._mutate("PATCH", f"/tasks/{task_id}/assign", task_id, {"agent": agent_id})

    async def add_execution_log(self, task_id: str, log: str) -> Task:
        return await self._mutate("POST", f"/tasks/{task_id}/logs", task_id, {"log": log})

    async def delete_task(self, task_id: str) -> bool:
        try:
            await self._request("DELETE", f"/tasks/{task_id}")
        except TaskServiceError as e:
            if e.status_code == 404:
                return False
            raise
        return True

    async def ping(self) -> bool:
        await self._request("GET", "/tasks", params={"status": "InProgress"})
        return True

    async def _mutate(self, method: str, path: str, task_id: str, body: dict) -> Task:
        try:
            resp = await self._request(method, path, json=body)
        except TaskServiceError as e:
            if e.status_code == 404:
                raise TaskNotFoundError(task_id) from e
            raise
        return self._to_task(resp.json())
