"""Settings loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv


def _load_env() -> None:
    """Load .env from project root if it exists."""
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if env_path.exists():
        load_dotenv(env_path)


_load_env()


def _split_csv(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def _parse_pairs(raw: str) -> dict[str, str]:
    """Parse "a:b,c:d" into {"a": "b", "c": "d"}. Malformed pairs are skipped."""
    pairs: dict[str, str] = {}
    for part in _split_csv(raw):
        if ":" not in part:
            continue
        src, dst = part.split(":", 1)
        if src.strip() and dst.strip():
            pairs[src.strip()] = dst.strip()
    return pairs


@dataclass(frozen=True)
class Settings:
    # API Keys
    anthropic_api_key: str = field(default_factory=lambda: os.environ.get("ANTHROPIC_API_KEY", ""))
    openai_api_key: str = field(default_factory=lambda: os.environ.get("OPENAI_API_KEY", ""))

    # OpenAI-compatible endpoint
    openai_base_url: str = field(
        default_factory=lambda: os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1")
    )

    # Providers
    providers: list[str] = field(
        default_factory=lambda: _split_csv(os.environ.get("PROVIDERS", "claude,chatgpt"))
    )
    mapper_provider: str = field(
        default_factory=lambda: os.environ.get("MAPPER_PROVIDER", "claude")
    )
    auth_fallbacks: dict[str, str] = field(
        default_factory=lambda: _parse_pairs(os.environ.get("AUTH_FALLBACKS", ""))
    )

    # Models
    claude_model: str = field(
        default_factory=lambda: os.environ.get("CLAUDE_MODEL", "claude-sonnet-4-6")
    )
    chatgpt_model: str = field(default_factory=lambda: os.environ.get("CHATGPT_MODEL", "gpt-4o"))
    max_tokens: int = field(default_factory=lambda: int(os.environ.get("MAX_TOKENS", "4096")))

    # Dispatch
    dispatch_timeout: float = field(
        default_factory=lambda: float(os.environ.get("DISPATCH_TIMEOUT", "300"))
    )

    # Circuit breaker
    circuit_failure_threshold: int = field(
        default_factory=lambda: int(os.environ.get("CIRCUIT_FAILURE_THRESHOLD", "3"))
    )
    circuit_failure_window_s: float = field(
        default_factory=lambda: float(os.environ.get("CIRCUIT_FAILURE_WINDOW_S", "60"))
    )
    circuit_cooldown_s: float = field(
        default_factory=lambda: float(os.environ.get("CIRCUIT_COOLDOWN_S", "30"))
    )

    # Embeddings (fastembed, optional)
    embedding_model: str = field(
        default_factory=lambda: os.environ.get("EMBEDDING_MODEL", "BAAI/bge-small-en-v1.5")
    )

    # Substrate
    knn_k: int = field(default_factory=lambda: int(os.environ.get("KNN_K", "5")))
    basin_bandwidth: int = field(
        default_factory=lambda: int(os.environ.get("BASIN_BANDWIDTH", "0"))
    )
    basin_min_valley_depth_sigma: float = field(
        default_factory=lambda: float(os.environ.get("BASIN_MIN_VALLEY_DEPTH_SIGMA", "0.25"))
    )

    # Checkpointing
    checkpoint_db: str = field(
        default_factory=lambda: os.environ.get("CHECKPOINT_DB", "checkpoints/turns.db")
    )
    checkpoint_backend: str = field(
        default_factory=lambda: os.environ.get("CHECKPOINT_BACKEND", "sqlite")
    )

    # Run event log
    run_log_dir: str = field(default_factory=lambda: os.environ.get("RUN_LOG_DIR", "runs/"))

    # Provider context persistence
    context_dir: str = field(default_factory=lambda: os.environ.get("CONTEXT_DIR", "contexts/"))

    def available_providers(self) -> list[str]:
        """Return configured providers that have credentials."""
        available: list[str] = []
        for name in self.providers:
            if name == "claude" and self.anthropic_api_key:
                available.append(name)
            elif name != "claude" and self.openai_api_key:
                available.append(name)
        return available

    def has_credentials(self, provider_id: str) -> bool:
        if provider_id == "claude":
            return bool(self.anthropic_api_key)
        return bool(self.openai_api_key)

    def validate(self, *, require_mapper: bool = True) -> list[str]:
        """Return list of validation errors. Empty list means valid.

        ``require_mapper=False`` is for fully replayed turns that never call the mapper.
        """
        errors = []
        if not self.providers:
            errors.append("PROVIDERS must name at least one provider")
        if require_mapper and not self.has_credentials(self.mapper_provider):
            errors.append(f"No credentials configured for MAPPER_PROVIDER '{self.mapper_provider}'")
        if self.knn_k < 1:
            errors.append("KNN_K must be >= 1")
        if self.circuit_failure_threshold < 1:
            errors.append("CIRCUIT_FAILURE_THRESHOLD must be >= 1")
        if self.dispatch_timeout < 0:
            errors.append("DISPATCH_TIMEOUT must be >= 0")
        if self.basin_bandwidth < 0:
            errors.append("BASIN_BANDWIDTH must be >= 0 (0 = adaptive)")
        if self.checkpoint_backend not in ("sqlite", "none"):
            errors.append(
                f"CHECKPOINT_BACKEND must be 'sqlite' or 'none', got '{self.checkpoint_backend}'"
            )
        return errors

    def warnings(self) -> list[str]:
        """Return list of non-fatal configuration warnings."""
        warns: list[str] = []
        missing = [p for p in self.providers if not self.has_credentials(p)]
        if missing:
            warns.append(f"No credentials for provider(s): {', '.join(missing)}")
        for src, dst in self.auth_fallbacks.items():
            if not self.has_credentials(dst):
                warns.append(f"Auth fallback {src} -> {dst} has no credentials for '{dst}'")
        if 0 < self.dispatch_timeout < 30:
            warns.append(
                f"DISPATCH_TIMEOUT={self.dispatch_timeout}s is aggressive. "
                "Long answers stream for minutes; consider >= 120s."
            )
        return warns


def get_settings() -> Settings:
    """Create Settings from current environment."""
    return Settings()
