"""Health check endpoint — database and task store reachability."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import text

from conductor.config import settings
from conductor.db.database import engine
from conductor.tasks.store import TaskStore

router = APIRouter()

VERSION = "0.1.0"

_task_store: TaskStore | None = None
_watchdog = None


def set_dependencies(task_store: TaskStore, watchdog=None) -> None:
    global _task_store, _watchdog
    _task_store = task_store
    _watchdog = watchdog


class HealthStatus(BaseModel):
    status: str  # "healthy" | "degraded" | "unhealthy"
    version: str
    checks: dict[str, dict]
    timestamp: datetime


@router.get("/health", response_model=HealthStatus)
async def health_check() -> HealthStatus:
    checks: dict[str, dict] = {}
    overall_healthy = True
    has_warning = False

    # 1. SQLite DB
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
            wal = conn.execute(text("PRAGMA journal_mode")).fetchone()
            checks["database"] = {"status": "ok", "detail": f"journal_mode={wal[0]}"}
    except Exception as e:
        checks["database"] = {"status": "error", "detail": str(e)}
        overall_healthy = False

    # 2. Task store
    if _task_store is None:
        checks["task_store"] = {"status": "warning", "detail": "not initialized"}
        has_warning = True
    else:
        try:
            await _task_store.ping()
            checks["task_store"] = {"status": "ok", "detail": settings.task_store_backend}
        except Exception as e:
            checks["task_store"] = {"status": "error", "detail": str(e)[:200]}
            overall_healthy = False

    # 3. Watchdog
    if _watchdog is not None:
        watchdog_status = _watchdog.get_status()
        checks["watchdog"] = {
            "status": "ok" if watchdog_status["enabled"] else "warning",
            "detail": f"timeout={watchdog_status['timeout_seconds']:.0f}s",
        }
        has_warning = has_warning or not watchdog_status["enabled"]

    if not overall_healthy:
        status = "unhealthy"
    elif has_warning:
        status = "degraded"
    else:
        status = "healthy"

    return HealthStatus(
        status=status,
        version=VERSION,
        checks=checks,
        timestamp=datetime.now(timezone.utc),
    )
