"""Competitive allocation: sparse, claim-exclusive evidence assignment.

For statement S, the threshold tau_S is mu + sigma of S's similarities across
all competing claims (mu alone when exactly two compete). S goes to every
claim it beats tau_S on, weighted by its normalised excess over tau_S.
"""

from __future__ import annotations

from claim_fusion.contracts import CompetitiveAllocation
from claim_fusion.geometry.embeddings import cosine_similarity, mean_std


def statement_threshold(sims: list[float]) -> float:
    mu, sigma = mean_std(sims)
    if len(sims) == 2:
        return mu
    return mu + sigma


def competitive_weights(
    sims: dict[str, float], thresholds: dict[str, float]
) -> dict[str, float]:
    """Weights over the claims whose similarity exceeds their threshold.

    Weight = (sim - tau) / sum of excesses, so assigned weights sum to 1.
    Returns {} when no claim clears its threshold.
    """
    excess = {
        cid: sim - thresholds[cid]
        for cid, sim in sims.items()
        if cid in thresholds and sim > thresholds[cid]
    }
    total = sum(excess.values())
    if total <= 0:
        return {}
    return {cid: e / total for cid, e in excess.items()}


def allocate_competitive(
    claim_vectors: dict[str, list[float]],
    statement_vectors: dict[str, list[float]],
    statement_paragraph: dict[str, str],
) -> CompetitiveAllocation:
    """Run the competitive pass over every statement with a vector.

    A single claim never beats its own mean, so a one-claim map allocates
    nothing here and relies on the claim-centric pool.
    """
    weights: dict[str, dict[str, float]] = {}
    thresholds: dict[str, float] = {}
    claim_statements: dict[str, list[str]] = {cid: [] for cid in claim_vectors}

    for sid, svec in statement_vectors.items():
        sims = {cid: cosine_similarity(svec, cvec) for cid, cvec in claim_vectors.items()}
        if not sims:
            continue
        tau = statement_threshold(list(sims.values()))
        thresholds[sid] = tau
        assigned = competitive_weights(sims, {cid: tau for cid in sims})
        if assigned:
            weights[sid] = assigned
            for cid in assigned:
                claim_statements[cid].append(sid)

    claim_paragraphs: dict[str, list[str]] = {}
    for cid, sids in claim_statements.items():
        seen: list[str] = []
        for sid in sids:
            pid = statement_paragraph.get(sid)
            if pid and pid not in seen:
                seen.append(pid)
        claim_paragraphs[cid] = seen

    return CompetitiveAllocation(
        weights=weights,
        thresholds=thresholds,
        claim_statements=claim_statements,
        claim_paragraphs=claim_paragraphs,
    )


def claim_bulk(allocation: CompetitiveAllocation, claim_id: str) -> float:
    """Total competitive weight a claim received across all statements."""
    return sum(w.get(claim_id, 0.0) for w in allocation["weights"].values())
