"""Paragraph clustering: group paragraphs by embedding similarity.

Average-linkage agglomerative clustering over cosine distance, with pairs of
clusters joined by a mutual k-NN edge pulled 10% closer. Merging stops once the
closest pair is farther than 1 - similarity_threshold. Each cluster gets a
centroid member, cohesion scores, and uncertainty flags.

Deterministic given the same vectors. Zero LLM calls.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass

from claim_fusion.contracts import Cluster, Paragraph, SimilarityEdge
from claim_fusion.geometry.embeddings import cosine_similarity, mean_vector
from claim_fusion.geometry.knn import quantize, similarity_matrix

MUTUAL_BONUS = 0.9
DUMBBELL_GAP = 0.10
REPRESENTATIVE_CHARS = 700


@dataclass(frozen=True)
class ClusteringConfig:
    similarity_threshold: float = 0.72
    max_clusters: int = 40
    low_cohesion_threshold: float = 0.70
    max_cluster_size: int = 8
    stance_diversity_threshold: int = 3
    contested_ratio_threshold: float = 0.30
    min_paragraphs: int = 3


DEFAULT_CONFIG = ClusteringConfig()


def _singletons(paragraphs: list[Paragraph]) -> list[Cluster]:
    return [
        Cluster(
            id=f"pc_{i}",
            paragraph_ids=[p["id"]],
            statement_ids=list(p["statement_ids"]),
            representative_paragraph_id=p["id"],
            representative_text=_clip(p["text"]),
            size=1,
            cohesion=1.0,
            pairwise_cohesion=1.0,
            uncertain=False,
            uncertainty_reasons=[],
        )
        for i, p in enumerate(paragraphs)
    ]


def _clip(text: str) -> str:
    if len(text) <= REPRESENTATIVE_CHARS:
        return text
    return text[:REPRESENTATIVE_CHARS].strip() + "..."


def agglomerate(
    ids: list[str],
    matrix: list[list[float]],
    config: ClusteringConfig = DEFAULT_CONFIG,
    mutual_edges: list[SimilarityEdge] | None = None,
) -> list[list[int]]:
    """Return clusters as sorted index lists, ordered by their smallest member."""
    n = len(ids)
    if n < config.min_paragraphs:
        return [[i] for i in range(n)]

    index = {nid: i for i, nid in enumerate(ids)}
    members: dict[int, list[int]] = {i: [i] for i in range(n)}
    raw: dict[tuple[int, int], float] = {}
    mutual: set[tuple[int, int]] = set()
    for e in mutual_edges or []:
        a, b = index.get(e["source"]), index.get(e["target"])
        if a is not None and b is not None:
            mutual.add((min(a, b), max(a, b)))
    for i in range(n):
        for j in range(i + 1, n):
            raw[(i, j)] = 1 - matrix[i][j]

    def effective(pair: tuple[int, int]) -> float:
        d = quantize(raw[pair])
        return quantize(d * MUTUAL_BONUS) if pair in mutual else d

    limit = 1 - config.similarity_threshold
    while len(members) > 1:
        best = min(raw, key=lambda pair: (effective(pair), pair))
        if effective(best) > limit:
            break

        i, j = best
        size_i, size_j = len(members[i]), len(members[j])
        for k in members:
            if k in (i, j):
                continue
            ki = (min(k, i), max(k, i))
            kj = (min(k, j), max(k, j))
            raw[ki] = (size_i * raw[ki] + size_j * raw[kj]) / (size_i + size_j)
            if kj in mutual:
                mutual.add(ki)
        members[i] = sorted(members[i] + members[j])
        del members[j]
        for pair in [p for p in raw if j in p]:
            del raw[pair]

    if len(members) > config.max_clusters:
        print(
            f"WARNING: Clustering produced {len(members)} clusters "
            f"(max {config.max_clusters}); paragraphs are highly fragmented",
            file=sys.stderr,
        )
    return [members[k] for k in sorted(members)]


def _centroid(idx: list[int], ids: list[str], vectors: list[list[float]]) -> str:
    """Member nearest the normalized mean; ties go to the smaller id."""
    if len(idx) == 1:
        return ids[idx[0]]
    center = mean_vector([vectors[i] for i in idx])
    scored = [(-quantize(cosine_similarity(vectors[i], center)), ids[i]) for i in idx]
    return min(scored)[1]


def _cohesion(idx: list[int], centroid: int, matrix: list[list[float]]) -> float:
    others = [matrix[i][centroid] for i in idx if i != centroid]
    return sum(others) / len(others) if others else 1.0


def _pairwise_cohesion(idx: list[int], matrix: list[list[float]]) -> float:
    sims = [matrix[a][b] for n, a in enumerate(idx) for b in idx[n + 1 :]]
    return sum(sims) / len(sims) if sims else 1.0


def detect_uncertainty(
    members: list[Paragraph],
    cohesion: float,
    pairwise: float,
    config: ClusteringConfig = DEFAULT_CONFIG,
) -> list[str]:
    reasons = []
    size = len(members)
    if cohesion < config.low_cohesion_threshold:
        reasons.append("low_cohesion")
    if (
        size >= 4
        and cohesion >= config.low_cohesion_threshold
        and pairwise < config.low_cohesion_threshold
        and cohesion - pairwise >= DUMBBELL_GAP
    ):
        reasons.append("dumbbell_cluster")
    if size > config.max_cluster_size:
        reasons.append("oversized")
    if len({p["dominant_stance"] for p in members}) >= config.stance_diversity_threshold:
        reasons.append("stance_diversity")
    contested = sum(1 for p in members if p["contested"])
    if size and contested / size > config.contested_ratio_threshold:
        reasons.append("high_contested_ratio")
    has_tension = any(p["signals"]["tension"] for p in members)
    has_conditional = any(p["signals"]["conditional"] for p in members)
    if has_tension and has_conditional and size > 1:
        reasons.append("conflicting_signals")
    return reasons


def build_clusters(
    paragraphs: list[Paragraph],
    vectors: list[list[float]] | None,
    *,
    mutual_edges: list[SimilarityEdge] | None = None,
    config: ClusteringConfig = DEFAULT_CONFIG,
) -> list[Cluster]:
    """Cluster paragraphs; uncertain clusters first, then by size, ids ``pc_<n>``.

    Without vectors, or with fewer than ``min_paragraphs`` paragraphs, every
    paragraph is its own cluster.
    """
    if len(paragraphs) < config.min_paragraphs or not vectors or len(vectors) != len(paragraphs):
        return _singletons(paragraphs)

    ids = [p["id"] for p in paragraphs]
    matrix = similarity_matrix(vectors)
    groups = agglomerate(ids, matrix, config, mutual_edges)

    clusters: list[Cluster] = []
    for idx in groups:
        members = [paragraphs[i] for i in idx]
        rep = _centroid(idx, ids, vectors)
        rep_index = ids.index(rep)
        cohesion = _cohesion(idx, rep_index, matrix)
        pairwise = _pairwise_cohesion(idx, matrix)
        reasons = detect_uncertainty(members, cohesion, pairwise, config)

        statement_ids: list[str] = []
        for p in members:
            for sid in p["statement_ids"]:
                if sid not in statement_ids:
                    statement_ids.append(sid)

        clusters.append(
            Cluster(
                id="",
                paragraph_ids=[p["id"] for p in members],
                statement_ids=statement_ids,
                representative_paragraph_id=rep,
                representative_text=_clip(paragraphs[rep_index]["text"]),
                size=len(members),
                cohesion=quantize(cohesion),
                pairwise_cohesion=quantize(pairwise),
                uncertain=bool(reasons),
                uncertainty_reasons=reasons,
            )
        )

    clusters.sort(key=lambda c: (not c["uncertain"], -c["size"]))
    for i, c in enumerate(clusters):
        c["id"] = f"pc_{i}"
    return clusters


def safe_build_clusters(
    paragraphs: list[Paragraph],
    vectors: list[list[float]] | None,
    **kwargs,
) -> list[Cluster]:
    """build_clusters that never raises: on failure it warns and returns []."""
    try:
        return build_clusters(paragraphs, vectors, **kwargs)
    except Exception as e:
        print(f"WARNING: Clustering failed, continuing without clusters: {e}", file=sys.stderr)
        return []
