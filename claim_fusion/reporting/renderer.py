"""Markdown artifact rendering with YAML frontmatter."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

import yaml

from claim_fusion.audit.fates import high_signal_orphans
from claim_fusion.contracts import ClaimArtifact
from claim_fusion.reporting.export import build_artifact

if TYPE_CHECKING:
    from claim_fusion.graph.state import TurnState

_FLAG_LABELS = {
    "is_keystone": "keystone",
    "is_articulation_point": "articulation point",
    "is_leverage_inversion": "leverage inversion",
    "is_contested": "contested",
    "is_high_support": "high support",
}

_EXCERPT_CHARS = 400


def _value(v) -> str:
    return getattr(v, "value", v)


def _flags(claim: dict) -> str:
    return ", ".join(label for key, label in _FLAG_LABELS.items() if claim.get(key))


def render_report(state: "TurnState", artifact: ClaimArtifact | None = None) -> str:
    """Render a full Markdown report for one turn."""
    artifact = artifact or build_artifact(state)
    query = artifact["query"]
    claims = artifact["claims"]
    summary = artifact["substrate_summary"]
    completeness = artifact["completeness"]
    blast = artifact["blast_radius"]
    scores = {s["claim_id"]: s for s in (blast or {}).get("scores", [])}

    # --- YAML Frontmatter ---
    frontmatter = {
        "title": f"Claim Map: {query}",
        "generated": datetime.now(timezone.utc).isoformat(),
        "thread_id": state.get("thread_id", ""),
        "models": state.get("model_count", len(state.get("provider_texts", []))),
        "statements": len(artifact["statements"]),
        "paragraphs": len(artifact["paragraphs"]),
        "claims": len(claims),
        "mapper_status": artifact["mapper_status"],
        "substrate_health": summary.get("health", "untrusted"),
        "degenerate_substrate": bool(summary.get("degenerate", True)),
    }
    if completeness:
        frontmatter["statement_coverage"] = round(completeness["statements"]["coverage_ratio"], 4)
        frontmatter["region_coverage"] = round(completeness["regions"]["coverage_ratio"], 4)

    lines: list[str] = []
    lines.append("---")
    lines.append(yaml.safe_dump(frontmatter, default_flow_style=False, sort_keys=False).strip())
    lines.append("---")
    lines.append("")

    # --- Title ---
    lines.append(f"# {query}")
    lines.append("")

    # --- Synthesis ---
    if artifact["narrative"]:
        lines.append("## Synthesis")
        lines.append("")
        lines.append(artifact["narrative"])
        lines.append("")
    elif artifact["mapper_status"] == "parse_failed":
        lines.append("## Provider Answers")
        lines.append("")
        lines.append("*The claim mapper output could not be parsed; raw answers follow.*")
        lines.append("")
        for pt in state.get("provider_texts", []):
            text = pt["text"].strip()
            if len(text) > _EXCERPT_CHARS:
                text = text[:_EXCERPT_CHARS].rstrip() + "..."
            lines.append(f"### Model {pt['model_index']} ({pt['provider_id']})")
            lines.append("")
            lines.append(text)
            lines.append("")

    # --- Claims ---
    if claims:
        lines.append("## Claims")
        lines.append("")
        lines.append("| Claim | Label | Models | Support | Tier | Blast radius | Evidence |")
        lines.append("|-------|-------|--------|---------|------|--------------|----------|")
        for c in claims:
            models = ", ".join(str(s) for s in c["supporters"]) or "-"
            score = scores.get(c["id"])
            br = f"{score['composite']:.2f}" if score and not score["suppressed"] else "-"
            lines.append(
                f"| {c['id']} | {c['label']} | {models} | {c['support_ratio']:.0%} | "
                f"{c['tier']} | {br} | {len(c['source_statement_ids'])} |"
            )
        lines.append("")
        for c in claims:
            flags = _flags(c)
            lines.append(f"### {c['label']}")
            lines.append("")
            if c["text"]:
                lines.append(c["text"])
                lines.append("")
            if flags:
                lines.append(f"- **Structure**: {flags}")
            if c.get("challenges"):
                lines.append(f"- **Challenges**: {c['challenges']}")
            if c["source_region_ids"]:
                lines.append(f"- **Regions**: {', '.join(c['source_region_ids'])}")
            if flags or c.get("challenges") or c["source_region_ids"]:
                lines.append("")

    # --- Tiers + Forcing Points ---
    if artifact["tiers"]:
        lines.append("## Tiers")
        lines.append("")
        for tier in artifact["tiers"]:
            kind = "foundation" if tier["is_foundation"] else "conflict"
            lines.append(f"- **Tier {tier['index']}** ({kind}): {', '.join(tier['claim_ids'])}")
        lines.append("")

    if artifact["forcing_points"]:
        lines.append("## Forcing Points")
        lines.append("")
        for fp in artifact["forcing_points"]:
            lines.append(f"- **{fp['id']}** [{fp['kind']}] {fp['question']} ({', '.join(fp['claim_ids'])})")
        lines.append("")

    # --- Survey ---
    if artifact["survey_questions"]:
        lines.append("## Survey")
        lines.append("")
        for q in artifact["survey_questions"]:
            lines.append(f"- {q['question']} *(axis {q['axis_id']}, {q['claim_id']})*")
        lines.append("")
    elif blast and blast["skip_reason"]:
        lines.append(f"*No survey questions: {blast['skip_reason']}.*")
        lines.append("")

    # --- Substrate ---
    if summary:
        lines.append("## Substrate")
        lines.append("")
        lines.append(f"- **Nodes**: {summary.get('node_count', 0)}")
        lines.append(
            f"- **Edges**: {summary.get('knn_edge_count', 0)} k-NN, "
            f"{summary.get('mutual_edge_count', 0)} mutual, {summary.get('strong_edge_count', 0)} strong"
        )
        lines.append(f"- **Components**: {summary.get('component_count', 0)}")
        lines.append(
            f"- **Basin inversion**: {_value(summary.get('basin_status', ''))} "
            f"(health {_value(summary.get('health', ''))}, "
            f"D={summary.get('discrimination_range', 0.0):.3f})"
        )
        lines.append(
            f"- **Threshold**: {summary.get('effective_threshold', 0.0):.3f} "
            f"({summary.get('threshold_source', '')})"
        )
        if summary.get("degenerate"):
            lines.append(f"- **Degenerate**: {summary.get('degenerate_reason')}")
        lines.append("")

    # --- Completeness ---
    if completeness:
        st = completeness["statements"]
        rg = completeness["regions"]
        lines.append("## Completeness")
        lines.append("")
        lines.append(
            f"- **Statements**: {st['in_claims']}/{st['total']} in claims "
            f"({st['coverage_ratio']:.0%}); {st['orphaned']} orphaned, "
            f"{st['unaddressed']} unaddressed, {st['noise']} noise"
        )
        lines.append(
            f"- **Regions**: {rg['attended']}/{rg['total']} attended ({rg['coverage_ratio']:.0%})"
        )
        lines.append("")
        unaddressed = completeness["recovery"].get("unaddressed_statements", [])
        if unaddressed:
            lines.append("### Unaddressed")
            lines.append("")
            for item in unaddressed:
                lines.append(
                    f"- [{item['statement_id']}] {item['text']} "
                    f"*(model {item['model_index']}, sim {item['query_similarity']:.2f})*"
                )
            lines.append("")

    orphans = high_signal_orphans(state.get("fates") or {})
    if orphans:
        by_id = {s["id"]: s for s in artifact["statements"]}
        lines.append("### High-Signal Orphans")
        lines.append("")
        for f in orphans:
            text = by_id.get(f["statement_id"], {}).get("text", "")
            lines.append(f"- [{f['statement_id']}] {text}")
        lines.append("")

    # --- Alignment ---
    alignment = artifact["alignment"]
    if alignment and (alignment["split_alerts"] or alignment["merge_alerts"]):
        lines.append("## Alignment Alerts")
        lines.append("")
        for alert in alignment["split_alerts"]:
            lines.append(
                f"- **Split**: {alert['claim_label']} spans {', '.join(alert['region_ids'])} "
                f"(distance {alert['max_inter_region_distance']:.2f})"
            )
        for alert in alignment["merge_alerts"]:
            lines.append(
                f"- **Merge**: {alert['label_a']} / {alert['label_b']} "
                f"(similarity {alert['similarity']:.2f})"
            )
        lines.append("")

    # --- Providers ---
    dispatch = state.get("dispatch_result")
    if dispatch:
        lines.append("## Providers")
        lines.append("")
        for pid, status in dispatch["statuses"].items():
            line = f"- **{pid}**: {_value(status)}"
            result = dispatch["results"].get(pid)
            error = (dispatch["errors"].get(pid) or dispatch["skipped"].get(pid))
            if result and result.get("soft_error"):
                line += f" (partial: {result['soft_error']['message']})"
            elif error:
                line += f" ({_value(error['error_type'])}: {error['message']})"
            lines.append(line)
        lines.append("")

    # --- Metadata ---
    lines.append("---")
    lines.append("")
    lines.append(
        f"*{frontmatter['models']} model(s) | {len(artifact['statements'])} statements | "
        f"{len(claims)} claims | mapper {artifact['mapper_status']}*"
    )

    return "\n".join(lines)
