"""Plan summary — markdown rendering of a plan for the chat.

Sent once when the plan is saved, then replaced in place (by activity id)
as subtask statuses change.
"""

from __future__ import annotations

from conductor.models.task import Task

STATUS_ICONS = {
    "Todo": "⚪",
    "InProgress": "⏳",
    "WaitingForUserResponse": "❓",
    "Error": "❌",
    "Done": "✅",
}


def render_plan_summary(parent: Task, subtasks: list[Task]) -> str:
    """Render the parent and its ordered subtasks with status markers."""
    done = sum(1 for t in subtasks if t.is_terminal)
    lines = [
        f"{STATUS_ICONS.get(parent.status, '⚪')} **{parent.title}** ({done}/{len(subtasks)} done)",
    ]
    if parent.description:
        lines.append(f"_{parent.description}_")
    lines.append("")
    for i, task in enumerate(subtasks, start=1):
        icon = STATUS_ICONS.get(task.status, "⚪")
        lines.append(f"{i}. {icon} {task.title} (@{task.assigned_to or 'Unassigned'})")
    return "\n".join(lines)
