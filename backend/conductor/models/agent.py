"""Agent directory models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class AgentInfo(BaseModel):
    """A delegate agent reachable over HTTP."""

    id: str                 # e.g., "lead-qualification"
    name: str               # e.g., "Lead Qualification"
    url: str                # Base URL; messages are POSTed to {url}/recv
    description: str = ""   # Shown to the LLM planner when routing subtasks
    capabilities: list[str] = Field(default_factory=list)
