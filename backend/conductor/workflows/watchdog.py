"""Delegate Watchdog — times out subtasks whose delegate never calls back.

An InProgress subtask older than `delegate_timeout_seconds` is fed through
the conductor's normal `did` error path (code 408), so it becomes Error, the
transcripts record the timeout and the user is told. Nothing is retried
automatically; a user reply re-dispatches the subtask.

Usage:
    watchdog = DelegateWatchdog(conductor, task_store)
    await watchdog.start()
    # ... app runs ...
    watchdog.stop()
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from conductor.agents.conductor import ConductorAgent
from conductor.config import settings
from conductor.models.messages import DidError, ErrorInfo
from conductor.models.task import Task, TaskFilters
from conductor.tasks.store import TaskStore

logger = logging.getLogger(__name__)

TIMEOUT_CODE = 408


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DelegateWatchdog:
    """Periodic sweep over InProgress subtasks, as an asyncio background task."""

    def __init__(
        self,
        conductor: ConductorAgent,
        task_store: TaskStore,
        timeout_seconds: float | None = None,
        interval_seconds: float | None = None,
        enabled: bool | None = None,
    ) -> None:
        self.conductor = conductor
        self.task_store = task_store
        self.timeout_seconds = (
            settings.delegate_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        self.interval_seconds = (
            settings.watchdog_interval_seconds if interval_seconds is None else interval_seconds
        )
        self.enabled = settings.watchdog_enabled if enabled is None else enabled
        self._task: asyncio.Task | None = None
        self._running = False

    async def start(self) -> None:
        if not self.enabled or self.timeout_seconds <= 0:
            logger.info("Delegate watchdog disabled")
            return

        if self._running:
            logger.warning("Delegate watchdog already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Delegate watchdog started (timeout: %.0fs, interval: %.0fs)",
            self.timeout_seconds, self.interval_seconds,
        )

    def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            logger.info("Delegate watchdog stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)
                if not self._running:
                    break
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Delegate watchdog error: %s", e, exc_info=True)

    async def find_overdue(self, now: datetime | None = None) -> list[Task]:
        now = now or datetime.now(timezone.utc)
        deadline = now - timedelta(seconds=self.timeout_seconds)
        in_progress = await self.task_store.list_tasks(TaskFilters(status="InProgress"))
        return [
            t for t in in_progress
            if t.parent_id and _as_utc(t.updated_at) <= deadline
        ]

    async def sweep(self, now: datetime | None = None) -> list[str]:
        """Time out overdue subtasks.

        Returns:
            Ids of the subtasks that were timed out.
        """
        timed_out = []
        for task in await self.find_overdue(now):
            logger.warning(
                "Subtask %s (%s) got no response from %s within %.0fs",
                task.id, task.title, task.assigned_to, self.timeout_seconds,
            )
            message = DidError(
                task_id=task.id,
                error=ErrorInfo(
                    code=TIMEOUT_CODE,
                    message=(
                        f"{task.assigned_to} did not respond to \"{task.title}\" "
                        f"within {int(self.timeout_seconds)} seconds."
                    ),
                ),
            )
            try:
                await self.conductor.on_message(message)
            except Exception as e:
                logger.error("Timing out subtask %s failed: %s", task.id, e, exc_info=True)
                continue
            timed_out.append(task.id)
        return timed_out

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    def get_status(self) -> dict:
        """Watchdog status for health checks."""
        return {
            "enabled": self.enabled,
            "running": self.is_running,
            "timeout_seconds": self.timeout_seconds,
            "interval_seconds": self.interval_seconds,
        }
