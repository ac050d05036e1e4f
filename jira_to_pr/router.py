"""
jira-to-pr Router: Vendor-Agnostic Model Access

Routes generator calls through LiteLLM so the agents never know which
provider (Anthropic, OpenAI, Ollama) is behind them. Tracks token usage
and estimated cost. No automatic retries: a failed call propagates.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable

import litellm
from loguru import logger
from pydantic import BaseModel

from jira_to_pr.config_loader import AIConfig


# ---------------------------------------------------------------------------
# Usage Tracking
# ---------------------------------------------------------------------------

@dataclass
class UsageRecord:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0
    call_count: int = 0


@dataclass
class UsageTracker:
    """Tracks token + dollar spend across a run."""
    usage: UsageRecord = field(default_factory=UsageRecord)

    def record(self, response: Any) -> None:
        """Record usage from a LiteLLM response (or a rebuilt stream)."""
        usage = getattr(response, "usage", None)
        if usage:
            self.usage.prompt_tokens += getattr(usage, "prompt_tokens", 0) or 0
            self.usage.completion_tokens += getattr(usage, "completion_tokens", 0) or 0
            self.usage.total_tokens += getattr(usage, "total_tokens", 0) or 0

        try:
            self.usage.estimated_cost += litellm.completion_cost(completion_response=response)
        except Exception as e:
            # Unknown pricing for local or custom models
            logger.debug(f"[ROUTER] Cost unavailable: {e}")

        self.usage.call_count += 1

    def summary(self) -> dict:
        return {
            "total_tokens": self.usage.total_tokens,
            "estimated_cost": round(self.usage.estimated_cost, 4),
            "call_count": self.usage.call_count,
        }


# ---------------------------------------------------------------------------
# Model capability helpers
# ---------------------------------------------------------------------------

def _is_o_series_model(model: str) -> bool:
    """OpenAI o-series reasoning models and GPT-5 don't support temperature."""
    normalized = model.lower().replace("openai/", "")
    return normalized.startswith(("o1", "o3", "o4", "gpt-5"))


def _build_kwargs(
    model: str,
    messages: list[dict[str, str]],
    temperature: float,
    max_tokens: int,
    api_key: str | None,
    api_base: str | None,
) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
    }
    if not _is_o_series_model(model):
        kwargs["temperature"] = temperature
    if api_key:
        kwargs["api_key"] = api_key
    if api_base:
        kwargs["api_base"] = api_base
    return kwargs


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class RouterResponse(BaseModel):
    content: str
    model: str
    tokens_used: int = 0
    cost: float = 0.0
    latency_ms: int = 0


class Router:
    """
    Agents call `router.complete(role, messages, on_token=...)`.
    The router resolves the model, streams when asked, and records usage.
    """

    ROLES = ("scout", "implementer")

    def __init__(self, config: AIConfig):
        self.config = config
        self.tracker = UsageTracker()
        self._role_model_map = {role: config.litellm_model for role in self.ROLES}

        litellm.suppress_debug_info = True

    def resolve_model(self, role: str) -> str:
        model = self._role_model_map.get(role)
        if not model:
            raise ValueError(f"Unknown agent role: {role}. Known: {list(self._role_model_map)}")
        return model

    def complete(
        self,
        role: str,
        messages: list[dict[str, str]],
        temperature: float = 0.2,
        max_tokens: int = 8192,
        on_token: Callable[[str], None] | None = None,
    ) -> RouterResponse:
        """Send a completion request through LiteLLM.

        When on_token is given the response is streamed and every text
        delta is passed to it as it arrives; the call still returns only
        once the stream is complete.
        """
        model = self.resolve_model(role)
        start = time.monotonic()

        logger.debug(f"[ROUTER] {role} → {model} ({len(messages)} messages)")

        kwargs = _build_kwargs(
            model, messages, temperature, max_tokens,
            self.config.api_key or None, self.config.base_url,
        )

        if on_token is None:
            response = litellm.completion(**kwargs)
            content = response.choices[0].message.content or ""
        else:
            chunks = []
            parts = []
            for chunk in litellm.completion(stream=True, **kwargs):
                chunks.append(chunk)
                delta = chunk.choices[0].delta.content if chunk.choices else None
                if delta:
                    parts.append(delta)
                    on_token(delta)
            content = "".join(parts)
            response = litellm.stream_chunk_builder(chunks, messages=messages)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        self.tracker.record(response)

        logger.debug(
            f"[ROUTER] {role} complete, "
            f"{self.tracker.usage.total_tokens} tokens, "
            f"${self.tracker.usage.estimated_cost:.4f}, "
            f"{elapsed_ms}ms"
        )

        return RouterResponse(
            content=content,
            model=model,
            tokens_used=getattr(getattr(response, "usage", None), "total_tokens", 0) or 0,
            cost=self.tracker.usage.estimated_cost,
            latency_ms=elapsed_ms,
        )
