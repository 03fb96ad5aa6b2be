"""Shared test fixtures for conductor backend tests."""

import os
import sys

import pytest

# Ensure backend is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
os.environ.setdefault("DATABASE_URL", "sqlite:///test.db")
os.environ.setdefault("ANTHROPIC_API_KEY", "test")

from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from conductor.agents.clarifier import EchoClarifier
from conductor.agents.conductor import ConductorAgent
from conductor.agents.directory import AgentDirectory
from conductor.agents.planner import TemplatePlanner
from conductor.db.database import create_db_and_tables
from conductor.errors import DeliveryError
from conductor.models.agent import AgentInfo
from conductor.models.messages import ChatRecipient, DelegateRecipient
from conductor.runtime.notifier import ChatNotifier
from conductor.runtime.runtime import Runtime
from conductor.state.conversation_state import ConversationStateManager, InMemoryConversationStateStore
from conductor.tasks.local_store import LocalTaskStore
from conductor.workflows.executor import WorkflowExecutor


class RecordingNotifier(ChatNotifier):
    """Keeps every chat message and in-place update."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []      # (conversation_id, text, activity_id)
        self.updates: list[tuple[str, str, str]] = []   # (conversation_id, activity_id, text)

    async def send(self, conversation_id: str, text: str) -> str:
        activity_id = f"activity-{len(self.sent) + 1}"
        self.sent.append((conversation_id, text, activity_id))
        return activity_id

    async def update(self, conversation_id: str, activity_id: str, text: str) -> None:
        self.updates.append((conversation_id, activity_id, text))

    def texts(self, conversation_id: str | None = None) -> list[str]:
        return [t for c, t, _ in self.sent if conversation_id is None or c == conversation_id]


class RecordingRuntime(Runtime):
    """Records outbound messages; delegate ids in `unreachable` fail delivery."""

    def __init__(self, notifier: RecordingNotifier | None = None, unreachable: set[str] | None = None) -> None:
        self.notifier = notifier or RecordingNotifier()
        self.unreachable = unreachable or set()
        self.sent: list[tuple] = []

    async def send_message(self, message, recipient):
        if isinstance(recipient, DelegateRecipient) and recipient.id in self.unreachable:
            raise DeliveryError(recipient.id, "connection refused")
        self.sent.append((message, recipient))
        if isinstance(recipient, ChatRecipient):
            return await self.notifier.send(recipient.conversation_id, message.model_dump_json())
        return None

    @property
    def delegated(self) -> list[tuple]:
        return [(m, r) for m, r in self.sent if isinstance(r, DelegateRecipient)]

    @property
    def dispatched_task_ids(self) -> list[str]:
        return [m.task_id for m, _ in self.delegated]

    @property
    def to_chat(self) -> list[tuple]:
        return [(m, r) for m, r in self.sent if isinstance(r, ChatRecipient)]


def make_engine():
    """Fresh in-memory SQLite engine with all tables."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(engine)
    return engine


def make_directory() -> AgentDirectory:
    return AgentDirectory([
        AgentInfo(id="lead-qualification", name="Lead Qualification", url="http://agents.test:4000"),
        AgentInfo(id="meeting-coordinator", name="Meeting Coordinator", url="http://agents.test:4001"),
        AgentInfo(id="proposal-writer", name="Proposal Writer", url="http://agents.test:4002"),
    ])


@pytest.fixture
def db_engine():
    return make_engine()


@pytest.fixture
def task_store(db_engine):
    return LocalTaskStore(db_engine)


@pytest.fixture
def state_manager():
    return ConversationStateManager(InMemoryConversationStateStore())


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def runtime(notifier):
    return RecordingRuntime(notifier)


@pytest.fixture
def directory():
    return make_directory()


@pytest.fixture
def executor(task_store, state_manager, runtime):
    return WorkflowExecutor(task_store, state_manager, runtime)


@pytest.fixture
def conductor(task_store, state_manager, runtime, notifier, directory):
    return ConductorAgent(
        task_store,
        state_manager,
        runtime,
        notifier,
        planner=TemplatePlanner(directory),
        clarifier=EchoClarifier(),
    )
