"""Task state machine — transition table and guard enforcement.

The engine is stateless: the state lives in Task.status, so any process
can re-derive "what next" from the store after a restart.
"""

from __future__ import annotations

from conductor.errors import IllegalTransitionError
from conductor.models.task import TERMINAL_STATUSES

# === State Transition Table ===
# Key: (from_state, to_state) → guard description
# Absent pair → illegal transition

LEGAL_TRANSITIONS: dict[tuple[str, str], str] = {
    # From Todo
    ("Todo", "InProgress"): "Subtask dispatched, or plan starts its first subtask",
    ("Todo", "Done"): "Plan has no remaining subtasks",
    # From InProgress
    ("InProgress", "Done"): "Delegate reported success, or last subtask finished",
    ("InProgress", "Error"): "Delegate reported an error or missed its deadline",
    ("InProgress", "WaitingForUserResponse"): "Delegate asked for clarification",
    # From WaitingForUserResponse
    ("WaitingForUserResponse", "InProgress"): "Clarification answered, re-dispatch",
    ("WaitingForUserResponse", "Done"): "Late success callback",
    ("WaitingForUserResponse", "Error"): "Late error callback",
    # From Error
    ("Error", "InProgress"): "Explicit re-dispatch after human follow-up",
    ("Error", "Done"): "Late success after watchdog timeout",
    ("Error", "WaitingForUserResponse"): "Late clarification after watchdog timeout",
    # Terminal: Done — no transitions out
}


class TaskStateMachine:
    """Guards task status changes.

    Usage:
        machine = TaskStateMachine()
        if machine.check(task.status, "InProgress"):
            await store.update_task_status(task.id, "InProgress")
    """

    def check(self, from_state: str, to_state: str) -> bool:
        """Validate a transition.

        Returns:
            True if the status changes, False for a same-status no-op.

        Raises:
            IllegalTransitionError: If the transition is not legal.
        """
        if from_state == to_state:
            return False
        if from_state in TERMINAL_STATUSES:
            raise IllegalTransitionError(from_state, to_state)
        if (from_state, to_state) not in LEGAL_TRANSITIONS:
            raise IllegalTransitionError(from_state, to_state)
        return True

    def can_transition(self, from_state: str, to_state: str) -> bool:
        """Check if a transition is legal without raising."""
        if from_state in TERMINAL_STATUSES:
            return False
        return (from_state, to_state) in LEGAL_TRANSITIONS

    def get_valid_transitions(self, from_state: str) -> list[str]:
        """Get all valid target states from a given state."""
        if from_state in TERMINAL_STATUSES:
            return []
        return [to for (fr, to) in LEGAL_TRANSITIONS if fr == from_state]
