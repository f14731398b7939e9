"""Structural analysis of the claim graph.

Per claim: support ratio, degrees, structural leverage and the high-support,
contested, isolated, leverage-inversion, keystone and articulation-point
flags. Per graph: cascade risks over prerequisite edges, articulation points
(Tarjan, undirected), connected components, convergence ratio.

Structural leverage = supports/prerequisite out-degree
                    + transitive prerequisite dependents
                    + conflict edges touched.
"""

from __future__ import annotations

import math
from collections import deque

from claim_fusion.contracts import CascadeRisk, Claim, ClaimEdge, EdgeType, StructuralAnalysis

HIGH_SUPPORT_RATIO = 0.3
KEYSTONE_MIN_OUT = 2
KEYSTONE_DOMINANCE = 1.5


def top_n_count(total: int, ratio: float) -> int:
    return max(1, math.ceil(total * ratio))


def cascade_risks(claim_ids: list[str], edges: list[ClaimEdge]) -> list[CascadeRisk]:
    """Transitive prerequisite dependents per source, with the depth they reach."""
    children: dict[str, list[str]] = {}
    for e in edges:
        if e["type"] == EdgeType.PREREQUISITE:
            children.setdefault(e["source"], []).append(e["target"])

    risks: list[CascadeRisk] = []
    for source in claim_ids:
        if not children.get(source):
            continue
        depth_of: dict[str, int] = {source: 0}
        queue = deque([source])
        while queue:
            current = queue.popleft()
            for child in children.get(current, []):
                if child not in depth_of:
                    depth_of[child] = depth_of[current] + 1
                    queue.append(child)
        dependents = [cid for cid in depth_of if cid != source]
        risks.append(
            CascadeRisk(
                source_id=source,
                dependent_ids=dependents,
                depth=max(depth_of.values()),
            )
        )
    return risks


def _undirected(claim_ids: list[str], edges: list[ClaimEdge]) -> dict[str, list[str]]:
    adj: dict[str, list[str]] = {cid: [] for cid in claim_ids}
    for e in edges:
        if e["source"] in adj and e["target"] in adj:
            adj[e["source"]].append(e["target"])
            adj[e["target"]].append(e["source"])
    return adj


def articulation_points(claim_ids: list[str], edges: list[ClaimEdge]) -> list[str]:
    """Claims whose removal disconnects the undirected claim graph."""
    adj = _undirected(claim_ids, edges)
    discovery: dict[str, int] = {}
    low: dict[str, int] = {}
    points: set[str] = set()
    clock = [0]

    def dfs(u: str, parent: str | None) -> None:
        clock[0] += 1
        discovery[u] = low[u] = clock[0]
        children = 0
        for v in adj[u]:
            if v not in discovery:
                children += 1
                dfs(v, u)
                low[u] = min(low[u], low[v])
                if parent is not None and low[v] >= discovery[u]:
                    points.add(u)
            elif v != parent:
                low[u] = min(low[u], discovery[v])
        if parent is None and children > 1:
            points.add(u)

    for cid in claim_ids:
        if cid not in discovery:
            dfs(cid, None)
    return [cid for cid in claim_ids if cid in points]


def connected_components(claim_ids: list[str], edges: list[ClaimEdge]) -> list[list[str]]:
    adj = _undirected(claim_ids, edges)
    seen: set[str] = set()
    components: list[list[str]] = []
    for start in claim_ids:
        if start in seen:
            continue
        seen.add(start)
        component = []
        queue = deque([start])
        while queue:
            node = queue.popleft()
            component.append(node)
            for nxt in adj[node]:
                if nxt not in seen:
                    seen.add(nxt)
                    queue.append(nxt)
        components.append(sorted(component, key=claim_ids.index))
    return components


def find_keystone(claim_ids: list[str], edges: list[ClaimEdge]) -> tuple[str | None, float]:
    """(keystone id, dominance) over supports/prerequisite out-degree."""
    out = {cid: 0 for cid in claim_ids}
    for e in edges:
        if e["type"] in (EdgeType.SUPPORTS, EdgeType.PREREQUISITE) and e["source"] in out:
            out[e["source"]] += 1
    ranked = sorted(out.items(), key=lambda kv: -kv[1])
    if not ranked:
        return None, 0.0
    top_id, top_out = ranked[0]
    second = ranked[1][1] if len(ranked) > 1 else 0
    if second > 0:
        dominance = top_out / second
    else:
        dominance = 10.0 if top_out > 0 else 0.0
    if dominance >= KEYSTONE_DOMINANCE and top_out >= KEYSTONE_MIN_OUT:
        return top_id, dominance
    return None, dominance


def convergence_ratio(claims: list[Claim]) -> float:
    """Share of claims at or above the support level of the top 30%."""
    if not claims:
        return 0.0
    counts = sorted((len(c["supporters"]) for c in claims), reverse=True)
    level = counts[top_n_count(len(claims), HIGH_SUPPORT_RATIO) - 1] or 1
    return sum(1 for n in counts if n >= level) / len(claims)


def analyze_structure(
    claims: list[Claim],
    edges: list[ClaimEdge],
    model_count: int,
) -> tuple[list[Claim], StructuralAnalysis]:
    """Return enriched copies of the claims plus the graph-level analysis."""
    if model_count <= 0:
        model_count = len({s for c in claims for s in c["supporters"]}) or 1
    ids = [c["id"] for c in claims]
    known = set(ids)
    edges = [e for e in edges if e["source"] in known and e["target"] in known]

    risks = cascade_risks(ids, edges)
    dependents = {r["source_id"]: len(r["dependent_ids"]) for r in risks}
    points = set(articulation_points(ids, edges))
    keystone_id, _ = find_keystone(ids, edges)

    top_count = top_n_count(len(claims), HIGH_SUPPORT_RATIO) if claims else 0
    by_support = sorted(claims, key=lambda c: -len(c["supporters"]))
    high_support = {c["id"] for c in by_support[:top_count]}

    enriched: list[Claim] = []
    for c in claims:
        cid = c["id"]
        outgoing = [e for e in edges if e["source"] == cid]
        incoming = [e for e in edges if e["target"] == cid]
        conflicts = [e for e in outgoing + incoming if e["type"] == EdgeType.CONFLICTS]
        structural_out = sum(
            1 for e in outgoing if e["type"] in (EdgeType.SUPPORTS, EdgeType.PREREQUISITE)
        )
        is_high = cid in high_support
        inversion = not is_high and any(
            e["type"] == EdgeType.PREREQUISITE and e["target"] in high_support for e in outgoing
        )
        enriched.append(
            {
                **c,
                "support_ratio": len(c["supporters"]) / model_count,
                "edges": outgoing,
                "in_degree": len(incoming),
                "out_degree": len(outgoing),
                "leverage": float(structural_out + dependents.get(cid, 0) + len(conflicts)),
                "is_high_support": is_high,
                "is_contested": bool(conflicts),
                "is_isolated": not outgoing and not incoming,
                "is_leverage_inversion": inversion,
                "is_keystone": cid == keystone_id,
                "is_articulation_point": cid in points,
            }
        )

    analysis = StructuralAnalysis(
        model_count=model_count,
        convergence_ratio=convergence_ratio(claims),
        cascade_risks=risks,
        articulation_points=[cid for cid in ids if cid in points],
        leverage_inversions=[c["id"] for c in enriched if c["is_leverage_inversion"]],
        keystone_id=keystone_id,
        components=connected_components(ids, edges),
    )
    return enriched, analysis
