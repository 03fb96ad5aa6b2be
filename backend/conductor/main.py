"""Conductor FastAPI Application.

Entry point for the server: uvicorn conductor.main:app
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from conductor.agents.clarifier import create_clarifier
from conductor.agents.conductor import ConductorAgent
from conductor.agents.directory import load_directory
from conductor.agents.planner import create_planner
from conductor.api.health import router as health_router
from conductor.api.health import set_dependencies as set_health_deps
from conductor.api.recv import router as recv_router
from conductor.api.recv import set_conductor
from conductor.api.v1.conversations import router as conversations_router
from conductor.api.v1.conversations import set_dependencies as set_conversation_deps
from conductor.api.v1.sse import router as sse_router
from conductor.api.v1.sse import sse_hub
from conductor.api.v1.tasks import router as tasks_router
from conductor.api.v1.tasks import set_task_store
from conductor.config import settings
from conductor.db.database import create_db_and_tables
from conductor.errors import BlockedTaskConflictError, TaskNotFoundError
from conductor.integrations.task_client import TaskManagementClient
from conductor.llm.layer import LLMLayer
from conductor.runtime.notifier import SSEChatNotifier
from conductor.runtime.runtime import HttpRuntime
from conductor.state.conversation_state import ConversationStateManager, SQLConversationStateStore
from conductor.tasks.local_store import LocalTaskStore
from conductor.tasks.store import TaskStore
from conductor.workflows.watchdog import DelegateWatchdog

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_task_store() -> TaskStore:
    if settings.task_store_backend == "remote":
        logger.info("Using remote task service at %s", settings.task_service_url)
        return TaskManagementClient(settings.task_service_url)
    return LocalTaskStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    create_db_and_tables()

    directory = load_directory()
    task_store = create_task_store()
    state_manager = ConversationStateManager(SQLConversationStateStore())
    notifier = SSEChatNotifier(sse_hub)
    runtime = HttpRuntime(directory, notifier)

    llm = None
    if "llm" in (settings.planner_backend, settings.clarifier_backend):
        llm = LLMLayer()
    planner = create_planner(settings.planner_backend, directory, llm)
    clarifier = create_clarifier(settings.clarifier_backend, llm)

    conductor = ConductorAgent(task_store, state_manager, runtime, notifier, planner, clarifier)
    watchdog = DelegateWatchdog(conductor, task_store)

    set_task_store(task_store)
    set_conductor(conductor)
    set_conversation_deps(conductor, state_manager)
    set_health_deps(task_store, watchdog)

    await watchdog.start()
    logger.info(
        "Conductor %s ready: %d agents, planner=%s, clarifier=%s, task store=%s",
        settings.conductor_agent_id, len(directory), settings.planner_backend,
        settings.clarifier_backend, settings.task_store_backend,
    )

    yield

    watchdog.stop()
    await sse_hub.disconnect_all()


app = FastAPI(
    title="Conductor",
    description="Plans user requests and drives delegate agents through them, one subtask at a time",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "x-sender-id"],
)


@app.exception_handler(TaskNotFoundError)
async def task_not_found_handler(request: Request, exc: TaskNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(BlockedTaskConflictError)
async def blocked_task_conflict_handler(request: Request, exc: BlockedTaskConflictError):
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "taskIds": exc.task_ids},
    )


# Anything unhandled becomes a generic 500; details stay in the log
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    if isinstance(exc, HTTPException):
        raise exc
    logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error."},
    )


app.include_router(health_router)
app.include_router(recv_router)
app.include_router(tasks_router)
app.include_router(conversations_router)
app.include_router(sse_router)
