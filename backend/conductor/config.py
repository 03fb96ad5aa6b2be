"""Conductor configuration — settings, model tiers, service endpoints."""

from typing import Literal

from pydantic_settings import BaseSettings

ModelTier = Literal["opus", "sonnet", "haiku"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Identity of this orchestrating agent
    conductor_agent_id: str = "conductor"
    conductor_name: str = "Conductor"
    conductor_url: str = "http://localhost:3000"

    # Database (conversation state + local task store)
    database_url: str = "sqlite:///data/conductor.db"

    # Task store: "local" = in-process SQLModel tables, "remote" = task-management service
    task_store_backend: Literal["local", "remote"] = "local"
    task_service_url: str = "http://localhost:3002"

    # Delegate agents (YAML file with `agents: [{id, name, url}]`; empty = built-in list)
    agent_directory_path: str = ""
    http_timeout_seconds: float = 10.0

    # Delegate watchdog (0 = no deadline)
    watchdog_enabled: bool = True
    delegate_timeout_seconds: float = 900.0
    watchdog_interval_seconds: float = 60.0

    # Planner / clarification backends
    planner_backend: Literal["template", "llm"] = "template"
    clarifier_backend: Literal["echo", "llm"] = "echo"

    # LLM
    anthropic_api_key: str = ""
    default_max_tokens: int = 2048
    default_max_retries: int = 2
    default_temperature: float = 0.0
    model_opus: str = "claude-opus-4-6"
    model_sonnet: str = "claude-sonnet-4-6"
    model_haiku: str = "claude-haiku-4-5-20251001"

    # CORS (comma-separated origins)
    cors_origins: str = "http://localhost:3000"

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()


def get_model_map() -> dict[str, str]:
    """Resolve model map from settings (env-overridable)."""
    return {
        "opus": settings.model_opus,
        "sonnet": settings.model_sonnet,
        "haiku": settings.model_haiku,
    }


MODEL_MAP: dict[str, str] = get_model_map()
