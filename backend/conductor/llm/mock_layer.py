"""Mock LLM Layer for testing the planner and clarifier without API calls."""

from __future__ import annotations

from pydantic import BaseModel

from conductor.config import ModelTier
from conductor.llm.layer import LLMResponse, estimate_cost


class MockLLMLayer:
    """Returns predefined responses for testing.

    Usage:
        mock = MockLLMLayer({
            "sonnet:TaskPlan": TaskPlan(
                title="Qualify lead",
                sub_tasks=[SubTaskPlan(title="Score", description="...", agent_id="lead-qualification")],
            ),
        })
        result, meta = await mock.complete_structured(
            messages=[...],
            model_tier="sonnet",
            response_model=TaskPlan,
        )

    A value that is an Exception instance is raised instead of returned.
    """

    def __init__(self, responses: dict[str, BaseModel | Exception] | None = None) -> None:
        self.responses = responses or {}
        self.call_log: list[dict] = []

    def _mock_meta(self, model_tier: ModelTier) -> LLMResponse:
        return LLMResponse(
            model_version=f"mock-{model_tier}",
            input_tokens=100,
            output_tokens=50,
            stop_reason="end_turn",
            cost=estimate_cost(model_tier, 100, 50),
        )

    async def complete_structured(
        self,
        messages: list[dict],
        model_tier: ModelTier,
        response_model: type[BaseModel],
        system: str | list[dict] | None = None,
        max_tokens: int | None = None,
        max_retries: int | None = None,
        temperature: float | None = None,
    ) -> tuple[BaseModel, LLMResponse]:
        """Return predefined response or construct a default instance."""
        key = f"{model_tier}:{response_model.__name__}"
        self.call_log.append({
            "method": "complete_structured",
            "model_tier": model_tier,
            "response_model": response_model.__name__,
            "messages": messages,
            "system": system,
            "temperature": temperature,
        })
        result = self.responses.get(key)
        if isinstance(result, Exception):
            raise result
        if result is None:
            result = _build_default(response_model)
        return result, self._mock_meta(model_tier)

    def build_cached_system(self, text: str) -> list[dict]:
        return [{"type": "text", "text": text, "cache_control": {"type": "ephemeral"}}]


def _build_default(model: type[BaseModel]) -> BaseModel:
    """Build a default instance of a Pydantic model, filling required str/list fields."""
    try:
        return model()
    except Exception:
        pass
    defaults = {}
    for name, field_info in model.model_fields.items():
        if field_info.is_required():
            annotation = field_info.annotation
            if annotation is list or getattr(annotation, "__origin__", None) is list:
                defaults[name] = []
            elif annotation is int:
                defaults[name] = 0
            else:
                defaults[name] = ""
    return model(**defaults)
