"""Append-only JSONL event log for turn observability.

One file per turn: <log_dir>/<thread_id>/events.jsonl. Every pipeline node
appends one event carrying the turn's thread id, collection sizes in and out,
any warnings the node raised, and the error message if it failed.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from claim_fusion.contracts import RunEvent


class EventLog:
    """JSONL-backed event log for a single turn.

    File-based like the provider-context store: directory auto-creation,
    graceful degradation on read errors.
    """

    _FILENAME = "events.jsonl"

    def __init__(self, log_dir: str | Path, thread_id: str) -> None:
        self.thread_id = thread_id
        self._dir = Path(log_dir) / thread_id
        self._dir.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._dir / self._FILENAME

    def emit(self, event: RunEvent) -> None:
        """Append a single event as a JSON line, stamped with this turn's thread id."""
        event = {**event, "thread_id": self.thread_id}
        line = json.dumps(event, ensure_ascii=False, default=str)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")

    def read_all(self) -> list[RunEvent]:
        """Read all events. Skips corrupt lines, returns [] on missing file."""
        if not self.path.exists():
            return []
        events: list[RunEvent] = []
        try:
            for line in self.path.read_text(encoding="utf-8").splitlines():
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
        except OSError:
            return []
        return events

    def summary(self) -> dict:
        """Node count, total elapsed seconds, failed nodes and warning count for the turn."""
        events = self.read_all()
        return {
            "nodes": len(events),
            "elapsed_s": round(sum(e.get("elapsed_s", 0.0) for e in events), 3),
            "failed_nodes": [e["node"] for e in events if e.get("status") == "error"],
            "warnings": sum(len(e.get("warnings", [])) for e in events),
        }

    @staticmethod
    def make_event(
        *,
        node: str,
        elapsed_s: float,
        inputs_summary: dict[str, int] | None = None,
        outputs_summary: dict[str, int] | None = None,
        status: str = "ok",
        warnings: list[str] | None = None,
        error: str | None = None,
    ) -> RunEvent:
        """Factory for creating a RunEvent with timestamp."""
        return RunEvent(
            node=node,
            ts=datetime.now(timezone.utc).isoformat(),
            elapsed_s=round(elapsed_s, 3),
            inputs_summary=inputs_summary or {},
            outputs_summary=outputs_summary or {},
            status=status,
            warnings=list(warnings or []),
            error=error,
        )
