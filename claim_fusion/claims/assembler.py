"""Claim graph assembler: conflict tiers and forcing points.

Claims outside every conflict component form the foundation tier (0). Each
conflict component (union-find over ``conflicts`` edges) becomes its own tier,
numbered from 1 in order of its first claim's appearance. An empty foundation
is omitted, so the conflict tiers keep their numbers.
"""

from __future__ import annotations

from claim_fusion.contracts import (
    Claim,
    ClaimEdge,
    ClaimGraph,
    Conditional,
    EdgeType,
    ForcingPoint,
    Tier,
)


def conflict_components(claim_ids: list[str], edges: list[ClaimEdge]) -> list[list[str]]:
    """Groups of >= 2 claims joined by conflicts edges, in first-appearance order."""
    parent = {cid: cid for cid in claim_ids}

    def find(x: str) -> str:
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return x

    for e in edges:
        if e["type"] != EdgeType.CONFLICTS:
            continue
        if e["source"] not in parent or e["target"] not in parent:
            continue
        ra, rb = find(e["source"]), find(e["target"])
        if ra != rb:
            parent[rb] = ra

    groups: dict[str, list[str]] = {}
    for cid in claim_ids:
        groups.setdefault(find(cid), []).append(cid)
    # dicts keep insertion order, which is first-claim appearance
    return [members for members in groups.values() if len(members) > 1]


def build_tiers(
    claim_ids: list[str],
    edges: list[ClaimEdge],
    conditionals: list[Conditional],
) -> list[Tier]:
    components = conflict_components(claim_ids, edges)
    in_conflict = {cid for comp in components for cid in comp}

    tiers: list[Tier] = []
    foundation = [cid for cid in claim_ids if cid not in in_conflict]
    if foundation:
        tiers.append(Tier(index=0, claim_ids=foundation, is_foundation=True, conditional_ids=[]))
    for i, comp in enumerate(components, start=1):
        tiers.append(Tier(index=i, claim_ids=comp, is_foundation=False, conditional_ids=[]))

    for cond in conditionals:
        affected = set(cond["affected_claims"])
        for tier in tiers:
            if affected & set(tier["claim_ids"]):
                tier["conditional_ids"].append(cond["id"])
    return tiers


def _justification(claim_ids: list[str], claims: dict[str, Claim]) -> list[str]:
    """First source statement of each claim, without repeats."""
    picked: list[str] = []
    for cid in claim_ids:
        claim = claims.get(cid)
        if claim is None:
            continue
        for sid in claim["source_statement_ids"]:
            if sid not in picked:
                picked.append(sid)
                break
    return picked


def derive_forcing_points(
    claims: list[Claim],
    edges: list[ClaimEdge],
    conditionals: list[Conditional],
    tiers: list[Tier],
) -> list[ForcingPoint]:
    by_id = {c["id"]: c for c in claims}
    tier_of = {cid: t["index"] for t in tiers for cid in t["claim_ids"]}
    points: list[ForcingPoint] = []

    for cond in conditionals:
        affected = [cid for cid in cond["affected_claims"] if cid in by_id]
        if not affected:
            continue
        points.append(
            ForcingPoint(
                id=f"fp_{len(points)}",
                kind="conditional",
                question=cond["question"],
                claim_ids=affected,
                statement_ids=_justification(affected, by_id),
                tier=min(tier_of.get(cid, 0) for cid in affected),
                source_id=cond["id"],
            )
        )

    for e in edges:
        if e["type"] != EdgeType.CONFLICTS:
            continue
        a, b = by_id.get(e["source"]), by_id.get(e["target"])
        if a is None or b is None:
            continue
        question = e.get("question") or f'"{a["label"]}" or "{b["label"]}"?'
        pair = [a["id"], b["id"]]
        points.append(
            ForcingPoint(
                id=f"fp_{len(points)}",
                kind="conflict",
                question=question,
                claim_ids=pair,
                statement_ids=_justification(pair, by_id),
                tier=tier_of.get(a["id"], 0),
                source_id=f"{a['id']}->{b['id']}",
            )
        )
    return points


def assemble_claim_graph(
    claims: list[Claim],
    edges: list[ClaimEdge],
    conditionals: list[Conditional],
) -> tuple[list[Claim], ClaimGraph]:
    """Assign tiers to copies of the claims and derive forcing points."""
    ids = [c["id"] for c in claims]
    tiers = build_tiers(ids, edges, conditionals)
    tier_of = {cid: t["index"] for t in tiers for cid in t["claim_ids"]}
    tiered = [{**c, "tier": tier_of.get(c["id"], 0)} for c in claims]
    graph = ClaimGraph(
        tiers=tiers,
        forcing_points=derive_forcing_points(tiered, edges, conditionals, tiers),
        conflict_components=conflict_components(ids, edges),
    )
    return tiered, graph
