"""Provider-specific prompt length limits (characters)."""

from __future__ import annotations

from typing import TypedDict


class ProviderLimit(TypedDict):
    max_input_chars: int
    warn_threshold: int


PROVIDER_LIMITS: dict[str, ProviderLimit] = {
    "chatgpt": {"max_input_chars": 32_000, "warn_threshold": 25_000},
    "claude": {"max_input_chars": 120_000, "warn_threshold": 100_000},
    "gemini": {"max_input_chars": 120_000, "warn_threshold": 100_000},
    "gemini-pro": {"max_input_chars": 120_000, "warn_threshold": 100_000},
    "gemini-exp": {"max_input_chars": 120_000, "warn_threshold": 100_000},
    "qwen": {"max_input_chars": 120_000, "warn_threshold": 100_000},
    "grok": {"max_input_chars": 120_000, "warn_threshold": 100_000},
}


def get_limit(provider_id: str) -> ProviderLimit | None:
    """Unknown providers have no limit."""
    return PROVIDER_LIMITS.get(provider_id)


def is_too_long(provider_id: str, prompt: str) -> bool:
    limit = get_limit(provider_id)
    return limit is not None and len(prompt) > limit["max_input_chars"]


def is_near_limit(provider_id: str, prompt: str) -> bool:
    limit = get_limit(provider_id)
    return limit is not None and len(prompt) > limit["warn_threshold"]
