"""Streaming display for real-time progress during graph execution."""

from __future__ import annotations

import sys
from typing import Any

# Human-readable labels for graph node names
NODE_LABELS: dict[str, str] = {
    "dispatch": "Asking providers",
    "shadow": "Extracting statements",
    "embed": "Embedding",
    "substrate": "Building substrate",
    "cluster": "Clustering paragraphs",
    "map": "Mapping claims",
    "provenance": "Reconstructing provenance",
    "structure": "Analyzing structure",
    "claim_graph": "Assembling claim graph",
    "blast_radius": "Scoring blast radius",
    "survey": "Drafting survey",
    "audit": "Auditing completeness",
    "report": "Rendering report",
}


class StreamDisplay:
    """Handles stream events from LangGraph astream and prints progress to stderr."""

    def __init__(self, *, verbose: bool = False) -> None:
        self._verbose = verbose
        self._current_node: str | None = None
        self._provider_status: dict[str, str] = {}

    def _print(self, msg: str) -> None:
        print(msg, file=sys.stderr, flush=True)

    def handle_update(self, update: dict[str, Any]) -> None:
        """Handle an 'updates' stream event (node_name -> state_update)."""
        for node_name, state_delta in update.items():
            label = NODE_LABELS.get(node_name, node_name)
            self._current_node = node_name
            self._print(f"  [{label}]")

            if self._verbose and isinstance(state_delta, dict):
                self._print_details(node_name, state_delta)

    def handle_custom(self, event: dict[str, Any]) -> None:
        """Handle a 'custom' stream event (granular progress from nodes)."""
        kind = event.get("kind", "")
        msg = event.get("message", "")

        if kind in ("provider_status", "provider_complete"):
            pid = event.get("provider_id", "?")
            status = event.get("status", "")
            # Only print transitions
            if self._provider_status.get(pid) != status:
                self._provider_status[pid] = status
                self._print(f"    {pid}: {status}")
        elif kind == "dispatch_settled":
            self._print(f"    settled: {event.get('completed', 0)}/{event.get('total', 0)} completed")
        elif kind == "substrate_summary":
            t_v = event.get("t_v")
            t_v_str = f"{t_v:.3f}" if isinstance(t_v, (int, float)) else "none"
            self._print(
                f"    Substrate: {event.get('node_count', 0)} nodes, "
                f"{event.get('region_count', 0)} regions, health {event.get('health', '?')}, "
                f"T_v {t_v_str}"
            )
            if event.get("degenerate"):
                self._print(f"    Degenerate: {event.get('degenerate_reason')}")
        elif kind == "mapper_summary":
            self._print(
                f"    Mapper: {event.get('status', '?')} "
                f"({event.get('claims', 0)} claims, {event.get('edges', 0)} edges)"
            )
        elif kind == "claims_summary":
            self._print(
                f"    Claims: {event.get('claims', 0)} in {event.get('tiers', 0)} tier(s), "
                f"{event.get('forcing_points', 0)} forcing point(s)"
            )
        elif kind == "blast_radius_summary":
            reason = event.get("skip_reason")
            if reason:
                self._print(f"    Blast radius: survey skipped ({reason})")
            else:
                self._print(
                    f"    Blast radius: {event.get('axes', 0)} axis(es), "
                    f"ceiling {event.get('ceiling', 0)}"
                )
        elif msg:
            count = event.get("count")
            count_str = f" ({count})" if count is not None else ""
            self._print(f"    {msg}{count_str}")

    def _print_details(self, node_name: str, state_delta: dict) -> None:
        """Print verbose details about what a node produced."""
        counts: dict[str, str] = {}
        for key in ("provider_texts", "statements", "paragraphs", "regions", "clusters", "claims", "edges"):
            if key in state_delta:
                counts[key] = str(len(state_delta[key]))
        if "survey_questions" in state_delta:
            counts["questions"] = str(len(state_delta["survey_questions"]))

        if counts:
            detail = ", ".join(f"{k}={v}" for k, v in counts.items())
            self._print(f"    -> {detail}")
