"""LLM Layer — every planner and clarifier LLM call goes through this layer.

Uses AsyncAnthropic + Instructor for structured outputs. Calls are wrapped in
retry with exponential backoff and a circuit breaker, so a flapping API turns
into a fast failure the conductor can answer with a fallback chat message.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import anthropic
import instructor
from pydantic import BaseModel

from conductor.config import MODEL_MAP, ModelTier, settings

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Metadata from an LLM call."""

    model_version: str = ""          # Exact model ID from API response
    input_tokens: int = 0
    output_tokens: int = 0
    cached_input_tokens: int = 0
    stop_reason: str = ""
    cost: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# USD per million tokens
PRICES: dict[str, dict[str, float]] = {
    "opus":   {"input": 15.0, "output": 75.0, "cache_read": 1.50},
    "sonnet": {"input": 3.0,  "output": 15.0, "cache_read": 0.30},
    "haiku":  {"input": 0.80, "output": 4.0,  "cache_read": 0.08},
}


def estimate_cost(
    model_tier: ModelTier,
    input_tokens: int,
    output_tokens: int,
    cached_input_tokens: int = 0,
) -> float:
    """Estimated USD cost of one call; cached input is billed at the cache-read rate."""
    p = PRICES[model_tier]
    cost = (
        ((input_tokens - cached_input_tokens) / 1_000_000) * p["input"]
        + (cached_input_tokens / 1_000_000) * p["cache_read"]
        + (output_tokens / 1_000_000) * p["output"]
    )
    return round(cost, 6)


@dataclass
class UsageTracker:
    """Running token and cost totals for one LLM-backed component."""

    name: str
    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cached_input_tokens: int = 0
    total_cost: float = 0.0

    def record(self, meta: LLMResponse, purpose: str) -> None:
        self.calls += 1
        self.input_tokens += meta.input_tokens
        self.output_tokens += meta.output_tokens
        self.cached_input_tokens += meta.cached_input_tokens
        self.total_cost += meta.cost
        logger.info(
            "%s %s via %s: %d in (%d cached) / %d out tokens, $%.4f (total $%.4f over %d calls)",
            self.name, purpose, meta.model_version, meta.input_tokens, meta.cached_input_tokens,
            meta.output_tokens, meta.cost, self.total_cost, self.calls,
        )


class CircuitBreaker:
    """Simple circuit breaker for external API calls.

    States: CLOSED (normal) → OPEN (fail-fast) → HALF_OPEN (probe).
    Opens after `failure_threshold` consecutive failures.
    Auto-resets to HALF_OPEN after `reset_timeout` seconds.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, reset_timeout: float = 60.0) -> None:
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._state = self.CLOSED
        self._failure_count = 0
        self._last_failure_time: float = 0.0

    @property
    def state(self) -> str:
        if self._state == self.OPEN:
            if time.monotonic() - self._last_failure_time >= self.reset_timeout:
                self._state = self.HALF_OPEN
        return self._state

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = self.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()
        if self._failure_count >= self.failure_threshold:
            self._state = self.OPEN
            logger.warning("Circuit breaker OPEN after %d consecutive failures", self._failure_count)

    def allow_request(self) -> bool:
        return self.state in (self.CLOSED, self.HALF_OPEN)


class CircuitBreakerOpenError(Exception):
    """Raised when the circuit breaker is open and rejecting requests."""


async def _retry_with_backoff(
    coro_factory,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    circuit_breaker: CircuitBreaker | None = None,
):
    """Retry an async call with exponential backoff.

    Args:
        coro_factory: Callable that returns a new coroutine each time.
        max_retries: Maximum number of retries (0 = no retry).
        base_delay: Initial delay in seconds.
        max_delay: Maximum delay cap.
        circuit_breaker: Optional circuit breaker instance.

    Returns:
        The result of the successful call.
    """
    if circuit_breaker and not circuit_breaker.allow_request():
        raise CircuitBreakerOpenError("Circuit breaker is open. Anthropic API calls temporarily disabled.")

    last_exception = None
    for attempt in range(max_retries + 1):
        try:
            result = await coro_factory()
            if circuit_breaker:
                circuit_breaker.record_success()
            return result
        except (anthropic.RateLimitError, anthropic.APIConnectionError, anthropic.InternalServerError) as e:
            last_exception = e
            if circuit_breaker:
                circuit_breaker.record_failure()
            if attempt < max_retries:
                delay = min(base_delay * (2 ** attempt), max_delay)
                logger.warning(
                    "LLM call attempt %d/%d failed (%s), retrying in %.1fs",
                    attempt + 1, max_retries + 1, type(e).__name__, delay,
                )
                await asyncio.sleep(delay)
            else:
                raise
        except Exception:
            # Non-retryable errors (auth, bad request, etc.)
            if circuit_breaker:
                circuit_breaker.record_failure()
            raise

    raise last_exception  # type: ignore[misc]


class LLMLayer:
    """Centralized LLM access for the planner and clarifier.

    complete_structured returns a Pydantic-validated object (Instructor
    re-asks on validation failure) plus call metadata.
    """

    def __init__(self) -> None:
        self.raw_client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
        self.client = instructor.from_anthropic(self.raw_client)
        self.circuit_breaker = CircuitBreaker(failure_threshold=5, reset_timeout=60.0)

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
        """Structured output with Pydantic validation + auto-retry.

        Args:
            messages: Conversation messages.
            model_tier: "opus", "sonnet", or "haiku".
            response_model: Pydantic model class for output validation.
            system: System prompt (str or list of cache_control blocks).
            max_tokens: Max output tokens.
            max_retries: Instructor retry count on validation failure.
            temperature: Sampling temperature (0.0 = deterministic).

        Returns:
            Tuple of (validated Pydantic model, LLMResponse metadata).
        """
        kwargs: dict[str, Any] = {
            "model": MODEL_MAP[model_tier],
            "max_tokens": max_tokens or settings.default_max_tokens,
            "messages": messages,
            "response_model": response_model,
            "max_retries": max_retries or settings.default_max_retries,
            "temperature": temperature if temperature is not None else settings.default_temperature,
        }
        if system:
            kwargs["system"] = system

        result, raw_response = await _retry_with_backoff(
            coro_factory=lambda: self.client.messages.create_with_completion(**kwargs),
            max_retries=3,
            circuit_breaker=self.circuit_breaker,
        )

        meta = self._extract_metadata(raw_response, model_tier)
        logger.debug(
            "LLM %s → %s (%d in / %d out tokens, $%.4f)",
            meta.model_version, response_model.__name__,
            meta.input_tokens, meta.output_tokens, meta.cost,
        )
        return result, meta

    def _extract_metadata(
        self, response: anthropic.types.Message, model_tier: ModelTier
    ) -> LLMResponse:
        """Extract metadata from an Anthropic API response."""
        usage = response.usage
        input_tokens = getattr(usage, "input_tokens", 0)
        output_tokens = getattr(usage, "output_tokens", 0)
        cached = getattr(usage, "cache_read_input_tokens", 0) or 0

        return LLMResponse(
            model_version=response.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cached_input_tokens=cached,
            stop_reason=response.stop_reason or "",
            cost=estimate_cost(model_tier, input_tokens, output_tokens, cached),
        )

    def build_cached_system(self, text: str) -> list[dict]:
        """Build a system prompt with ephemeral cache_control.

        The planner and clarifier prompts are static, so repeated calls hit the cache.
        """
        return [
            {
                "type": "text",
                "text": text,
                "cache_control": {"type": "ephemeral"},
            }
        ]
