"""Session cost estimation from OpenRouter list prices."""
from __future__ import annotations

from typing import Iterable

from loguru import logger

from council_client.models.session import MemberResult

# USD per 1M tokens
MODEL_PRICING: dict[str, dict[str, float]] = {
    # OpenAI
    "openai/gpt-4o": {"input": 2.50, "output": 10.00},
    "openai/gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "openai/gpt-4-turbo": {"input": 10.00, "output": 30.00},
    "openai/gpt-3.5-turbo": {"input": 0.50, "output": 1.50},
    # Anthropic
    "anthropic/claude-3.5-sonnet": {"input": 3.00, "output": 15.00},
    "anthropic/claude-3-opus": {"input": 15.00, "output": 75.00},
    "anthropic/claude-3-sonnet": {"input": 3.00, "output": 15.00},
    "anthropic/claude-3-haiku": {"input": 0.25, "output": 1.25},
    # Google
    "google/gemini-2.0-flash-exp": {"input": 0.00, "output": 0.00},
    "google/gemini-pro": {"input": 0.125, "output": 0.375},
    "google/gemini-1.5-pro": {"input": 1.25, "output": 5.00},
    # Meta
    "meta-llama/llama-3.1-70b-instruct": {"input": 0.52, "output": 0.75},
    "meta-llama/llama-3.1-8b-instruct": {"input": 0.06, "output": 0.06},
    # Mistral
    "mistralai/mistral-large": {"input": 2.00, "output": 6.00},
    "mistralai/mistral-medium": {"input": 2.70, "output": 8.10},
    "mistralai/mixtral-8x7b-instruct": {"input": 0.24, "output": 0.24},
}

DEFAULT_PRICING = MODEL_PRICING["openai/gpt-4o"]

# Token budgets the backend uses per council call and per synthesis call.
MEMBER_TOKENS = (500, 300)
SYNTHESIS_TOKENS = (1500, 500)


def get_model_pricing(model: str) -> dict[str, float]:
    if model in MODEL_PRICING:
        return MODEL_PRICING[model]

    for key, pricing in MODEL_PRICING.items():
        if key.split("/", 1)[1] in model:
            return pricing

    logger.warning(f"Unknown model pricing, using default: {model}")
    return DEFAULT_PRICING


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    pricing = get_model_pricing(model)
    return (input_tokens / 1_000_000) * pricing["input"] + (output_tokens / 1_000_000) * pricing["output"]


def estimate_session_cost(results: Iterable[MemberResult], synthesizer_model: str) -> float:
    """Estimate the cost of one council session.

    Members without a known model are not counted, matching how the backend
    totals a session.
    """
    total = 0.0
    for result in results:
        if result.succeeded and result.model:
            total += calculate_cost(result.model, *MEMBER_TOKENS)
    return total + calculate_cost(synthesizer_model, *SYNTHESIS_TOKENS)
