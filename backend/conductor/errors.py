"""Conductor exception hierarchy.

Invariant violations (conflicting blocked tasks, unknown tasks, nesting
beyond one level) are raised; expected absences (no conversation state yet)
are returned as None by the stores instead.
"""

from __future__ import annotations


class ConductorError(Exception):
    """Base class for all conductor errors."""


class StateAlreadyExistsError(ConductorError):
    """Raised when an initial conversation state is created twice for a task."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Conversation state already exists for task {task_id}")


class TaskNotFoundError(ConductorError):
    """Raised when a task id does not resolve in the task store."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class BlockedTaskConflictError(ConductorError):
    """Raised when a conversation has more than one task waiting on the user."""

    def __init__(self, conversation_id: str, task_ids: list[str]) -> None:
        self.conversation_id = conversation_id
        self.task_ids = task_ids
        super().__init__(
            f"Multiple blocked tasks for conversation {conversation_id}: {', '.join(task_ids)}"
        )


class NestingDepthError(ConductorError):
    """Raised when a task's parent itself has a parent."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} is nested more than one level deep")


class MissingAssigneeError(ConductorError):
    """Raised when a task about to be dispatched has no assigned agent."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} has no assigned agent")


class IllegalTransitionError(ConductorError):
    """Raised when attempting an illegal task status transition."""

    def __init__(self, from_state: str, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Illegal transition: {from_state} → {to_state}. "
            f"See LEGAL_TRANSITIONS for valid transitions."
        )


class AgentNotFoundError(ConductorError):
    """Raised when an agent id is not present in the agent directory."""

    def __init__(self, agent_id: str) -> None:
        self.agent_id = agent_id
        super().__init__(f"Agent {agent_id} not found")


class DeliveryError(ConductorError):
    """Raised when an outbound message could not be delivered."""

    def __init__(self, recipient: str, detail: str) -> None:
        self.recipient = recipient
        self.detail = detail
        super().__init__(f"Failed to deliver message to {recipient}: {detail}")


class TaskServiceError(ConductorError):
    """Raised when the remote task-management service returns an error."""

    def __init__(self, status_code: int, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Task service error ({status_code}): {detail}")
