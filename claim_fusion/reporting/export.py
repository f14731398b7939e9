"""Claim artifact assembly and JSON export.

The artifact is the per-turn result handed to callers: claims, edges, tiers,
forcing points, shadow statements, the substrate summary and the audit reports.
"""

from __future__ import annotations

import json
import sys
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from claim_fusion.contracts import ClaimArtifact

if TYPE_CHECKING:
    from claim_fusion.graph.state import TurnState


def build_artifact(state: "TurnState") -> ClaimArtifact:
    """Collect the caller-facing fields of a finished turn.

    Optional stages that did not run leave their field as None (reports) or
    empty (lists), never absent.
    """
    mapper = state.get("mapper_output") or {}
    claim_graph = state.get("claim_graph") or {}
    return ClaimArtifact(
        query=state.get("query", ""),
        mapper_status=mapper.get("status", "parse_failed"),
        narrative=mapper.get("narrative", "") or "",
        claims=list(state.get("claims", [])),
        edges=list(state.get("edges", [])),
        conditionals=list(state.get("conditionals", [])),
        tiers=list(claim_graph.get("tiers", [])),
        forcing_points=list(claim_graph.get("forcing_points", [])),
        statements=list(state.get("statements", [])),
        paragraphs=list(state.get("paragraphs", [])),
        clusters=list(state.get("clusters", [])),
        substrate_summary=dict(state.get("substrate_summary") or {}),
        blast_radius=state.get("blast_radius") or None,
        survey_questions=list(state.get("survey_questions", [])),
        completeness=state.get("completeness") or None,
        alignment=state.get("alignment") or None,
    )


def _default(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, set):
        return sorted(value)
    return str(value)


def artifact_to_json(artifact: ClaimArtifact, *, indent: int | None = 2) -> str:
    """Serialize an artifact. Enums become their values."""
    return json.dumps(artifact, indent=indent, ensure_ascii=False, default=_default)


def export_artifact(artifact: ClaimArtifact, output_path: str | Path) -> bool:
    """Write the artifact as JSON.

    Returns:
        True if the file was written, False otherwise.
    """
    path = Path(output_path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(artifact_to_json(artifact), encoding="utf-8")
    except OSError as e:
        print(f"ERROR: artifact export failed: {e}", file=sys.stderr)
        return False
    return True
