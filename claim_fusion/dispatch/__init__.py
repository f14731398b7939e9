"""Provider adapter registry.

Adapters register themselves on import under an adapter kind ("anthropic",
"openai_compat"). Provider ids ("claude", "chatgpt", ...) map onto a kind.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from claim_fusion.config import Settings
    from claim_fusion.contracts import ProviderAdapter

_REGISTRY: dict[str, type] = {}

# provider id -> adapter kind; anything unlisted speaks the OpenAI-compatible protocol
PROVIDER_KINDS: dict[str, str] = {
    "claude": "anthropic",
}


def register_adapter(kind: str, cls: type) -> None:
    _REGISTRY[kind] = cls


def get_adapter(kind: str, **kwargs) -> "ProviderAdapter":
    if kind not in _REGISTRY:
        available = ", ".join(_REGISTRY) or "(none)"
        raise KeyError(f"Unknown adapter kind {kind!r}. Available: {available}")
    return _REGISTRY[kind](**kwargs)


def available_adapters() -> list[str]:
    return list(_REGISTRY)


def _adapter_kwargs(provider_id: str, settings: "Settings") -> dict:
    if PROVIDER_KINDS.get(provider_id) == "anthropic":
        return {
            "name": provider_id,
            "api_key": settings.anthropic_api_key,
            "model": settings.claude_model,
            "max_tokens": settings.max_tokens,
        }
    return {
        "name": provider_id,
        "api_key": settings.openai_api_key,
        "base_url": settings.openai_base_url,
        "model": settings.chatgpt_model,
        "max_tokens": settings.max_tokens,
    }


def build_adapters(
    provider_ids: list[str], settings: "Settings"
) -> dict[str, "ProviderAdapter"]:
    """Instantiate one adapter per provider id that has credentials."""
    import claim_fusion.dispatch.anthropic_adapter  # noqa: F401
    import claim_fusion.dispatch.openai_compat  # noqa: F401

    adapters: dict[str, ProviderAdapter] = {}
    for provider_id in dict.fromkeys(provider_ids):
        if not settings.has_credentials(provider_id):
            print(
                f"WARNING: no credentials for provider '{provider_id}', not registering it",
                file=sys.stderr,
            )
            continue
        kind = PROVIDER_KINDS.get(provider_id, "openai_compat")
        adapters[provider_id] = get_adapter(kind, **_adapter_kwargs(provider_id, settings))
    return adapters
