"""TaskStore — the task persistence boundary the executor depends on.

Two implementations:
- LocalTaskStore (conductor.tasks.local_store): SQLModel tables in-process
- TaskManagementClient (conductor.integrations.task_client): remote REST service

Contracts relied upon by the workflow executor:
- get_subtasks returns children in exactly the parent's sub_task_ids order
- update_task_status is idempotent (same status → no change)
- get_task returns None for an unknown id instead of raising
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from conductor.models.task import CreateTaskInput, Task, TaskFilters


class TaskStore(ABC):
    """Abstract task CRUD surface."""

    @abstractmethod
    async def create_task(self, task_input: CreateTaskInput) -> Task:
        """Create a task; links it into its parent's sub_task_ids when parent_id is set."""
        ...

    @abstractmethod
    async def get_task(self, task_id: str) -> Task | None:
        ...

    @abstractmethod
    async def get_subtasks(self, task_id: str) -> list[Task]:
        ...

    @abstractmethod
    async def list_tasks(self, filters: TaskFilters | None = None) -> list[Task]:
        ...

    @abstractmethod
    async def update_task_status(self, task_id: str, status: str) -> Task:
        ...

    @abstractmethod
    async def assign_task(self, task_id: str, agent_id: str) -> Task:
        ...

    @abstractmethod
    async def add_execution_log(self, task_id: str, log: str) -> Task:
        ...

    @abstractmethod
    async def delete_task(self, task_id: str) -> bool:
        ...

    async def ping(self) -> bool:
        """Cheap reachability probe for health checks."""
        await self.list_tasks(TaskFilters(ids=[]))
        return True
