"""File-based provider-context store, one JSON file per session."""

from __future__ import annotations

import asyncio
import json
import re
from datetime import datetime, timezone
from pathlib import Path

from claim_fusion.contracts import ProviderContext

_SAFE_ID = re.compile(r"[^A-Za-z0-9_.-]")


class ProviderContextStore:
    """JSON-backed store for per-provider conversation contexts.

    Layout: <context_dir>/<session_id>.json ->
        {"<thread_id>": {"<role>": {"<provider_id>": ProviderContext}}}
    Missing or corrupt files read as empty.
    """

    def __init__(self, context_dir: str | Path, *, thread_id: str = "") -> None:
        self._dir = Path(context_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._thread_id = thread_id
        self._locks: dict[str, asyncio.Lock] = {}

    def _path(self, session_id: str) -> Path:
        return self._dir / f"{_SAFE_ID.sub('_', session_id)}.json"

    def _load(self, session_id: str) -> dict:
        path = self._path(session_id)
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return data if isinstance(data, dict) else {}
        except (json.JSONDecodeError, OSError):
            return {}

    def _save(self, session_id: str, data: dict) -> None:
        self._path(session_id).write_text(
            json.dumps(data, indent=2, ensure_ascii=False),
            encoding="utf-8",
        )

    async def persist_provider_contexts(
        self, session_id: str, updates: dict[str, dict], role: str
    ) -> None:
        """Merge updated contexts for the session's current thread."""
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            data = self._load(session_id)
            by_role = data.setdefault(self._thread_id, {}).setdefault(role, {})
            now = datetime.now(timezone.utc).isoformat()
            for provider_id, context in updates.items():
                by_role[provider_id] = ProviderContext(
                    provider_id=provider_id,
                    session_id=session_id,
                    thread_id=self._thread_id,
                    role=role,
                    context=context,
                    updated_at=now,
                )
            await asyncio.to_thread(self._save, session_id, data)

    def get_provider_contexts(
        self, session_id: str, thread_id: str, *, context_role: str | None = None
    ) -> dict[str, ProviderContext]:
        """Read contexts for a thread; without a role, later roles win per provider."""
        by_role = self._load(session_id).get(thread_id, {})
        if context_role is not None:
            return dict(by_role.get(context_role, {}))
        merged: dict[str, ProviderContext] = {}
        for contexts in by_role.values():
            merged.update(contexts)
        return merged

    def clear(self, session_id: str) -> None:
        self._path(session_id).unlink(missing_ok=True)
