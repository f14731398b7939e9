"""Unattended regions: substrate regions no claim cites a statement from."""

from __future__ import annotations

from claim_fusion.contracts import (
    Claim,
    Paragraph,
    Region,
    Statement,
    Substrate,
    UnattendedRegion,
)
from claim_fusion.geometry.knn import adjacency


def find_unattended_regions(
    substrate: Substrate,
    paragraphs: list[Paragraph],
    claims: list[Claim],
    regions: list[Region],
    statements: list[Statement],
) -> list[UnattendedRegion]:
    paragraph_statements = {p["id"]: p["statement_ids"] for p in paragraphs}
    paragraph_of = {sid: p["id"] for p in paragraphs for sid in p["statement_ids"]}

    claims_by_paragraph: dict[str, set[str]] = {}
    for c in claims:
        for sid in c["source_statement_ids"]:
            pid = paragraph_of.get(sid)
            if pid:
                claims_by_paragraph.setdefault(pid, set()).add(c["id"])

    stance_of = {s["id"]: s["stance"] for s in statements}
    nodes = {n["paragraph_id"]: n for n in substrate["nodes"]}
    mutual = adjacency(list(nodes), substrate["mutual_edges"])

    unattended: list[UnattendedRegion] = []
    for region in regions:
        if any(nid in claims_by_paragraph for nid in region["node_ids"]):
            continue
        statement_ids = [sid for nid in region["node_ids"] for sid in paragraph_statements.get(nid, [])]
        if not statement_ids:
            continue

        members = [nodes[nid] for nid in region["node_ids"] if nid in nodes]
        denom = max(1, len(members))
        avg_isolation = sum(n["isolation_score"] for n in members) / denom
        avg_mutual = sum(n["mutual_degree"] for n in members) / denom
        stances = {stance_of[sid] for sid in statement_ids if sid in stance_of}

        likely, reason = False, "insufficient_signals"
        if avg_isolation > 0.8 and len(region["node_ids"]) == 1:
            reason = "isolated_noise"
        elif len(stances) >= 2:
            likely, reason = True, "stance_diversity"
        elif avg_mutual >= 2 and len(region["node_ids"]) >= 2:
            likely, reason = True, "high_connectivity"

        bridges: list[str] = []
        for nid in region["node_ids"]:
            for neighbour in mutual.get(nid, []):
                for cid in sorted(claims_by_paragraph.get(neighbour, ())):
                    if cid not in bridges:
                        bridges.append(cid)
        if len(bridges) > 1 and not likely:
            likely, reason = True, "bridge_region"

        unattended.append(
            UnattendedRegion(
                id=region["id"],
                node_ids=list(region["node_ids"]),
                statement_ids=statement_ids,
                statement_count=len(statement_ids),
                model_diversity=len({n["model_index"] for n in members}),
                avg_isolation=avg_isolation,
                likely_claim=likely,
                reason=reason,
                bridges_to=bridges,
            )
        )
    return unattended
