"""Claim/geometry alignment over statement embeddings.

A claim's vector is the normalised mean of its source statements' vectors.
A statement is covered when some claim vector reaches 0.50 cosine. Regions
under 25% coverage with at least two statements are unattended. A claim
whose source regions sit more than 0.85 apart (1 - cosine of centroids)
raises a split alert; two claims at 0.92 cosine or above raise a merge alert.
"""

from __future__ import annotations

from claim_fusion.contracts import AlignmentReport, Claim, Region, RegionCoverage
from claim_fusion.geometry.embeddings import cosine_similarity, mean_vector

COVERAGE_THRESHOLD = 0.50
SPLIT_THRESHOLD = 0.85
MERGE_THRESHOLD = 0.92
UNATTENDED_COVERAGE = 0.25
UNATTENDED_MIN_STATEMENTS = 2


def claim_vectors(
    claims: list[Claim], statement_vectors: dict[str, list[float]]
) -> dict[str, list[float]]:
    out: dict[str, list[float]] = {}
    for c in claims:
        vecs = [statement_vectors[sid] for sid in c["source_statement_ids"] if sid in statement_vectors]
        if vecs:
            out[c["id"]] = mean_vector(vecs)
    return out


def _centroid(region: Region, statement_vectors: dict[str, list[float]]) -> list[float] | None:
    vecs = [statement_vectors[sid] for sid in region["statement_ids"] if sid in statement_vectors]
    return mean_vector(vecs) if vecs else None


def compute_alignment(
    claims: list[Claim],
    regions: list[Region],
    statement_vectors: dict[str, list[float]],
    *,
    coverage_threshold: float = COVERAGE_THRESHOLD,
    split_threshold: float = SPLIT_THRESHOLD,
    merge_threshold: float = MERGE_THRESHOLD,
) -> AlignmentReport:
    vectors = claim_vectors(claims, statement_vectors)

    coverages: list[RegionCoverage] = []
    total = covered_total = 0
    for region in regions:
        covered = 0
        best_id: str | None = None
        best_sim = 0.0
        for sid in region["statement_ids"]:
            svec = statement_vectors.get(sid)
            if svec is None:
                continue
            top_sim, top_id = 0.0, None
            for cid, cvec in vectors.items():
                sim = cosine_similarity(svec, cvec)
                if sim > top_sim:
                    top_sim, top_id = sim, cid
            if top_sim >= coverage_threshold:
                covered += 1
            if top_sim > best_sim:
                best_sim, best_id = top_sim, top_id
        count = len(region["statement_ids"])
        coverages.append(
            RegionCoverage(
                region_id=region["id"],
                total_statements=count,
                covered_statements=covered,
                coverage_ratio=covered / count if count else 0.0,
                best_claim_id=best_id,
                best_claim_similarity=best_sim,
            )
        )
        total += count
        covered_total += covered

    unattended = [
        rc["region_id"]
        for rc in coverages
        if rc["coverage_ratio"] < UNATTENDED_COVERAGE
        and rc["total_statements"] >= UNATTENDED_MIN_STATEMENTS
    ]

    regions_by_id = {r["id"]: r for r in regions}
    centroids: dict[str, list[float] | None] = {}
    split_alerts: list[dict] = []
    for c in claims:
        if c["id"] not in vectors or len(c["source_region_ids"]) < 2:
            continue
        region_ids = c["source_region_ids"]
        for rid in region_ids:
            if rid not in centroids and rid in regions_by_id:
                centroids[rid] = _centroid(regions_by_id[rid], statement_vectors)
        max_dist = 0.0
        for i, a in enumerate(region_ids):
            for b in region_ids[i + 1 :]:
                ca, cb = centroids.get(a), centroids.get(b)
                if ca is None or cb is None:
                    continue
                max_dist = max(max_dist, 1 - cosine_similarity(ca, cb))
        if max_dist > split_threshold:
            split_alerts.append(
                {
                    "claim_id": c["id"],
                    "claim_label": c["label"],
                    "region_ids": list(region_ids),
                    "max_inter_region_distance": max_dist,
                }
            )

    labels = {c["id"]: c["label"] for c in claims}
    ids = list(vectors)
    merge_alerts: list[dict] = []
    for i, a in enumerate(ids):
        for b in ids[i + 1 :]:
            sim = cosine_similarity(vectors[a], vectors[b])
            if sim >= merge_threshold:
                merge_alerts.append(
                    {
                        "claim_a": a,
                        "claim_b": b,
                        "label_a": labels[a],
                        "label_b": labels[b],
                        "similarity": sim,
                    }
                )

    return AlignmentReport(
        region_coverages=coverages,
        split_alerts=split_alerts,
        merge_alerts=merge_alerts,
        global_coverage=covered_total / total if total else 0.0,
        unattended_region_ids=unattended,
    )
