"""Agent Directory — resolves delegate agent ids to network addresses.

Loaded from a YAML file (settings.agent_directory_path) or the bundled
directory.yaml next to this module.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from conductor.config import settings
from conductor.errors import AgentNotFoundError
from conductor.models.agent import AgentInfo

logger = logging.getLogger(__name__)

DEFAULT_DIRECTORY_PATH = Path(__file__).parent / "directory.yaml"


class AgentDirectory:
    """In-memory lookup of known delegate agents."""

    def __init__(self, agents: list[AgentInfo] | None = None) -> None:
        self._agents: dict[str, AgentInfo] = {}
        for agent in agents or []:
            self.register(agent)

    def register(self, agent: AgentInfo) -> None:
        if agent.id in self._agents:
            logger.warning("Agent %s registered twice; keeping the latest entry", agent.id)
        self._agents[agent.id] = agent

    def get_all(self) -> list[AgentInfo]:
        return list(self._agents.values())

    def get_by_id(self, agent_id: str) -> AgentInfo | None:
        return self._agents.get(agent_id)

    def get_by_name(self, name: str) -> AgentInfo | None:
        for agent in self._agents.values():
            if agent.name == name:
                return agent
        return None

    def get_or_raise(self, agent_id: str) -> AgentInfo:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        return agent

    @property
    def default_agent(self) -> AgentInfo | None:
        """First registered agent; used when a plan names no known agent."""
        return next(iter(self._agents.values()), None)

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    @classmethod
    def from_yaml(cls, path: str | Path) -> AgentDirectory:
        """Load a directory from a YAML file with a top-level `agents` list."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Agent directory not found: {path}")
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        agents = [AgentInfo(**entry) for entry in data.get("agents", [])]
        logger.info("Loaded %d agents from %s", len(agents), path)
        return cls(agents)


def load_directory() -> AgentDirectory:
    """Factory: directory from settings, or the bundled default."""
    path = settings.agent_directory_path or DEFAULT_DIRECTORY_PATH
    return AgentDirectory.from_yaml(path)
