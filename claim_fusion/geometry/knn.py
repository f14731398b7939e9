"""Pairwise similarity and the three paragraph graphs (k-NN, mutual, strong).

Similarities are quantized to 1e-6 and neighbour ties break lexicographically
on id, so identical inputs always give identical graphs.
"""

from __future__ import annotations

from claim_fusion.contracts import SimilarityEdge, SimilarityStats
from claim_fusion.geometry.embeddings import cosine_similarity, mean_std

QUANTIZATION = 1e6

# Soft threshold: p80 of top-1 similarities, clamped
SOFT_THRESHOLD_PERCENTILE = 0.80
SOFT_THRESHOLD_MIN = 0.55
SOFT_THRESHOLD_MAX = 0.78


def quantize(value: float) -> float:
    return round(value * QUANTIZATION) / QUANTIZATION


def _key(a: str, b: str) -> tuple[str, str]:
    return (a, b) if a < b else (b, a)


def similarity_matrix(vectors: list[list[float]]) -> list[list[float]]:
    """Symmetric quantized cosine matrix; the diagonal is 1.0."""
    n = len(vectors)
    matrix = [[0.0] * n for _ in range(n)]
    for i in range(n):
        matrix[i][i] = 1.0
        for j in range(i + 1, n):
            sim = quantize(cosine_similarity(vectors[i], vectors[j]))
            matrix[i][j] = sim
            matrix[j][i] = sim
    return matrix


def ranked_neighbors(
    ids: list[str], matrix: list[list[float]], k: int
) -> dict[str, list[SimilarityEdge]]:
    """Top-k neighbours per node, rank 1 = most similar."""
    out: dict[str, list[SimilarityEdge]] = {}
    for i, node in enumerate(ids):
        sims = [(ids[j], matrix[i][j]) for j in range(len(ids)) if j != i]
        sims.sort(key=lambda t: (-t[1], t[0]))
        out[node] = [
            SimilarityEdge(source=node, target=target, similarity=sim, rank=rank)
            for rank, (target, sim) in enumerate(sims[:k], start=1)
        ]
    return out


def build_graphs(
    ids: list[str], matrix: list[list[float]], k: int = 5
) -> tuple[list[SimilarityEdge], list[SimilarityEdge], dict[str, list[SimilarityEdge]]]:
    """Return (knn_edges, mutual_edges, ranked) with undirected, deduplicated edges.

    A k-NN edge exists when either endpoint ranks the other in its top k; a
    mutual edge when both do, with rank = the better of the two ranks.
    """
    ranked = ranked_neighbors(ids, matrix, k)
    rank_of = {
        node: {e["target"]: e["rank"] for e in edges} for node, edges in ranked.items()
    }

    knn: dict[tuple[str, str], SimilarityEdge] = {}
    for node, edges in ranked.items():
        for e in edges:
            knn.setdefault(_key(node, e["target"]), e)

    mutual: list[SimilarityEdge] = []
    for (a, b), e in knn.items():
        if b in rank_of[a] and a in rank_of[b]:
            mutual.append(
                SimilarityEdge(
                    source=a,
                    target=b,
                    similarity=e["similarity"],
                    rank=min(rank_of[a][b], rank_of[b][a]),
                )
            )

    knn_edges = [knn[key] for key in sorted(knn)]
    mutual.sort(key=lambda e: (e["source"], e["target"]))
    return knn_edges, mutual, ranked


def soft_threshold(top1_sims: list[float]) -> float:
    sims = sorted(s for s in top1_sims if s > 0)
    if not sims:
        return SOFT_THRESHOLD_MIN
    raw = sims[min(int(len(sims) * SOFT_THRESHOLD_PERCENTILE), len(sims) - 1)]
    return quantize(max(SOFT_THRESHOLD_MIN, min(SOFT_THRESHOLD_MAX, raw)))


def strong_edges(mutual: list[SimilarityEdge], threshold: float) -> list[SimilarityEdge]:
    return [e for e in mutual if e["similarity"] >= threshold]


def similarity_stats(top_k_sims: list[float]) -> SimilarityStats:
    if not top_k_sims:
        return SimilarityStats(max=0.0, p95=0.0, p80=0.0, p50=0.0, mean=0.0)
    sims = sorted(top_k_sims)

    def pct(p: float) -> float:
        return sims[min(int(len(sims) * p), len(sims) - 1)]

    mu, _ = mean_std(sims)
    return SimilarityStats(max=sims[-1], p95=pct(0.95), p80=pct(0.80), p50=pct(0.50), mean=mu)


def adjacency(ids: list[str], edges: list[SimilarityEdge]) -> dict[str, list[str]]:
    """Undirected neighbour lists, sorted."""
    adj: dict[str, list[str]] = {node: [] for node in ids}
    for e in edges:
        adj[e["source"]].append(e["target"])
        adj[e["target"]].append(e["source"])
    return {node: sorted(neigh) for node, neigh in adj.items()}
