"""Geometric substrate: paragraphs embedded into a similarity graph.

Nodes are paragraphs. Three edge sets (k-NN, mutual, strong) plus topology
(union-find components over strong edges) and the basin-inversion threshold.
Degenerate inputs produce a fully-populated substrate with ``degenerate=True``
rather than raising.
"""

from __future__ import annotations

from claim_fusion.contracts import (
    BasinStatus,
    Component,
    Paragraph,
    SimilarityEdge,
    Substrate,
    SubstrateNode,
    Topology,
)
from claim_fusion.geometry.basin import (
    DEFAULT_MIN_VALLEY_DEPTH_SIGMA,
    empty_basin,
    compute_basin_inversion,
)
from claim_fusion.geometry.embeddings import mean_std
from claim_fusion.geometry.knn import (
    adjacency,
    build_graphs,
    quantize,
    similarity_matrix,
    similarity_stats,
    soft_threshold,
    strong_edges,
)

MIN_PARAGRAPHS = 3


def compute_topology(ids: list[str], strong: list[SimilarityEdge]) -> Topology:
    """Connected components over strong edges, largest first, ids ``comp_<n>``."""
    n = len(ids)
    if n == 0:
        return Topology(components=[], component_count=0, largest_component_ratio=0.0, isolation_ratio=1.0)

    parent = {node: node for node in ids}

    def find(x: str) -> str:
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return x

    for e in strong:
        ra, rb = find(e["source"]), find(e["target"])
        if ra != rb:
            parent[max(ra, rb)] = min(ra, rb)

    groups: dict[str, list[str]] = {}
    for node in ids:
        groups.setdefault(find(node), []).append(node)

    components: list[Component] = []
    for members in groups.values():
        members.sort()
        member_set = set(members)
        internal = sum(1 for e in strong if e["source"] in member_set and e["target"] in member_set)
        possible = len(members) * (len(members) - 1) / 2
        components.append(
            Component(
                id="",
                node_ids=members,
                size=len(members),
                internal_density=internal / possible if possible > 0 else 0.0,
            )
        )
    components.sort(key=lambda c: (-c["size"], c["node_ids"][0]))
    for i, c in enumerate(components):
        c["id"] = f"comp_{i}"

    connected = {e["source"] for e in strong} | {e["target"] for e in strong}
    return Topology(
        components=components,
        component_count=len(components),
        largest_component_ratio=components[0]["size"] / n,
        isolation_ratio=sum(1 for node in ids if node not in connected) / n,
    )


def build_substrate(
    paragraphs: list[Paragraph],
    vectors: list[list[float]] | None,
    *,
    k: int = 5,
    bandwidth: int = 0,
    min_valley_depth_sigma: float = DEFAULT_MIN_VALLEY_DEPTH_SIGMA,
    min_paragraphs: int = MIN_PARAGRAPHS,
) -> Substrate:
    """Build the substrate from paragraphs and one vector per paragraph."""
    ids = [p["id"] for p in paragraphs]

    if len(ids) < min_paragraphs:
        return _degenerate(paragraphs, "insufficient_paragraphs")
    if not vectors or len(vectors) != len(ids):
        return _degenerate(paragraphs, "embedding_failure")

    matrix = similarity_matrix(vectors)
    knn, mutual, ranked = build_graphs(ids, matrix, k)
    top_k = [e["similarity"] for node in ids for e in ranked[node]]
    if top_k and len(set(top_k)) == 1:
        return _degenerate(paragraphs, "all_embeddings_identical")

    top1 = {node: (ranked[node][0]["similarity"] if ranked[node] else 0.0) for node in ids}
    threshold = soft_threshold(list(top1.values()))
    strong = strong_edges(mutual, threshold)
    topology = compute_topology(ids, strong)
    basin = compute_basin_inversion(
        ids, matrix, bandwidth=bandwidth, min_valley_depth_sigma=min_valley_depth_sigma
    )
    stats = similarity_stats(top_k)

    knn_adj = adjacency(ids, knn)
    mutual_adj = adjacency(ids, mutual)
    strong_adj = adjacency(ids, strong)
    component_of = {node: c["id"] for c in topology["components"] for node in c["node_ids"]}

    nodes: list[SubstrateNode] = []
    for i, p in enumerate(paragraphs):
        node = p["id"]
        sims = ranked[node]
        others = [matrix[i][j] for j in range(len(ids)) if j != i]
        mu, sigma = mean_std(others)
        nodes.append(
            SubstrateNode(
                paragraph_id=node,
                model_index=p["model_index"],
                statement_ids=list(p["statement_ids"]),
                top1_sim=top1[node],
                avg_topk_sim=quantize(sum(e["similarity"] for e in sims) / len(sims)) if sims else 0.0,
                isolation_score=quantize(1 - top1[node]),
                knn_degree=len(knn_adj[node]),
                mutual_degree=len(mutual_adj[node]),
                strong_degree=len(strong_adj[node]),
                mutual_rank_threshold=quantize(mu + sigma),
                mutual_neighborhood_patch=sorted([node, *mutual_adj[node]]),
                component_id=component_of.get(node),
                region_id=None,
            )
        )

    warnings = []
    if stats["p95"] < threshold:
        warnings.append(
            f"sparse regime: p95 similarity {stats['p95']:.3f} < soft threshold {threshold:.3f}"
        )
    if stats["max"] < 0.7:
        warnings.append(f"extremely low max similarity {stats['max']:.3f}")
    if stats["mean"] < 0.4:
        warnings.append(f"low mean similarity {stats['mean']:.3f}")

    degenerate_reason = None
    if basin["degenerate"]:
        degenerate_reason = (
            "untrusted_geometry" if basin["status"] == BasinStatus.OK else basin["status"].value
        )

    if basin["t_v"] is not None and not basin["degenerate"]:
        effective, source = basin["t_v"], "valley"
    else:
        effective, source = basin["t_high"], "mu_sigma"

    return Substrate(
        nodes=nodes,
        knn_edges=knn,
        mutual_edges=mutual,
        strong_edges=strong,
        soft_threshold=threshold,
        similarity_stats=stats,
        basin=basin,
        topology=topology,
        degenerate=basin["degenerate"],
        degenerate_reason=degenerate_reason,
        effective_threshold=effective,
        threshold_source=source,
        warnings=warnings,
    )


def _degenerate(paragraphs: list[Paragraph], reason: str) -> Substrate:
    """Every node isolated in its own component; effective threshold = soft minimum."""
    ids = [p["id"] for p in paragraphs]
    components = [
        Component(id=f"comp_{i}", node_ids=[node], size=1, internal_density=0.0)
        for i, node in enumerate(ids)
    ]
    nodes = [
        SubstrateNode(
            paragraph_id=p["id"],
            model_index=p["model_index"],
            statement_ids=list(p["statement_ids"]),
            top1_sim=0.0,
            avg_topk_sim=0.0,
            isolation_score=1.0,
            knn_degree=0,
            mutual_degree=0,
            strong_degree=0,
            mutual_rank_threshold=0.0,
            mutual_neighborhood_patch=[p["id"]],
            component_id=f"comp_{i}",
            region_id=None,
        )
        for i, p in enumerate(paragraphs)
    ]
    threshold = soft_threshold([])
    return Substrate(
        nodes=nodes,
        knn_edges=[],
        mutual_edges=[],
        strong_edges=[],
        soft_threshold=threshold,
        similarity_stats=similarity_stats([]),
        basin=empty_basin(len(ids), 0),
        topology=Topology(
            components=components,
            component_count=len(ids),
            largest_component_ratio=1 / len(ids) if ids else 0.0,
            isolation_ratio=1.0,
        ),
        degenerate=True,
        degenerate_reason=reason,
        effective_threshold=threshold,
        threshold_source="soft",
        warnings=[f"degenerate substrate: {reason}"],
    )


def substrate_summary(substrate: Substrate) -> dict:
    """Compact view for prompts, reports and stream events."""
    basin = substrate["basin"]
    return {
        "node_count": len(substrate["nodes"]),
        "knn_edge_count": len(substrate["knn_edges"]),
        "mutual_edge_count": len(substrate["mutual_edges"]),
        "strong_edge_count": len(substrate["strong_edges"]),
        "component_count": substrate["topology"]["component_count"],
        "isolation_ratio": round(substrate["topology"]["isolation_ratio"], 4),
        "soft_threshold": substrate["soft_threshold"],
        "effective_threshold": round(substrate["effective_threshold"], 6),
        "threshold_source": substrate["threshold_source"],
        "degenerate": substrate["degenerate"],
        "degenerate_reason": substrate["degenerate_reason"],
        "basin_status": basin["status"].value,
        "health": basin["health"].value,
        "discrimination_range": round(basin["discrimination_range"], 4),
        "t_v": basin["t_v"],
        "basin_count": len(basin["basins"]),
        "warnings": list(substrate["warnings"]),
    }
