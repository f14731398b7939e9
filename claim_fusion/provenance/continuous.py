"""Continuous field: unthresholded per-claim evidence score for every statement.

    z_claim = (sim(S, C) - mu_C) / sigma_C            over all statements
    core    = {S : z_claim > 1.0}
    z_core  = standardised mean similarity of S to the core
    evidence_score = z_claim + z_core
"""

from __future__ import annotations

from claim_fusion.contracts import ContinuousField, EvidenceScore
from claim_fusion.geometry.embeddings import cosine_similarity, mean_std, normalize

CORE_Z = 1.0
RECOVERY_MIN_SCORE = 2.0


def _z(value: float, mu: float, sigma: float) -> float:
    return (value - mu) / sigma if sigma > 0 else 0.0


def mean_similarity_to(
    sid: str,
    vec: list[float],
    members: set[str],
    member_sum: list[float],
) -> float:
    """Mean cosine of a normalized vector to a set of normalized vectors, self excluded.

    member_sum is the element-wise sum of the members' vectors. A statement
    that is the set's only member scores 1.0.
    """
    total = sum(a * b for a, b in zip(vec, member_sum))
    count = len(members)
    if sid in members:
        total -= sum(a * a for a in vec)
        count -= 1
        if count == 0:
            return 1.0
    return total / count if count > 0 else 0.0


def vector_sum(vectors: list[list[float]]) -> list[float]:
    if not vectors:
        return []
    out = [0.0] * len(vectors[0])
    for v in vectors:
        for i, x in enumerate(v):
            out[i] += x
    return out


def compute_continuous_field(
    claim_id: str,
    claim_vector: list[float],
    statement_vectors: dict[str, list[float]],
) -> ContinuousField:
    unit = {sid: normalize(v) for sid, v in statement_vectors.items()}
    sims = {sid: cosine_similarity(v, claim_vector) for sid, v in unit.items()}
    mu, sigma = mean_std(list(sims.values()))
    z_claim = {sid: _z(s, mu, sigma) for sid, s in sims.items()}
    core = {sid for sid, z in z_claim.items() if z > CORE_Z}

    core_sim: dict[str, float] = {}
    if core:
        core_sum = vector_sum([unit[sid] for sid in sorted(core)])
        core_sim = {sid: mean_similarity_to(sid, v, core, core_sum) for sid, v in unit.items()}
    core_mu, core_sigma = mean_std(list(core_sim.values()))

    scores: dict[str, EvidenceScore] = {}
    for sid in statement_vectors:
        z_core = _z(core_sim[sid], core_mu, core_sigma) if core_sim else 0.0
        scores[sid] = EvidenceScore(
            statement_id=sid,
            sim=sims[sid],
            z_claim=z_claim[sid],
            z_core=z_core,
            evidence_score=z_claim[sid] + z_core,
            in_core=sid in core,
        )

    return ContinuousField(
        claim_id=claim_id,
        mu=mu,
        sigma=sigma,
        core_statement_ids=[sid for sid in statement_vectors if sid in core],
        scores=scores,
    )


def recovery_candidates(
    field: ContinuousField,
    assigned: list[str],
    *,
    min_score: float = RECOVERY_MIN_SCORE,
) -> list[str]:
    """Statements with strong continuous evidence the competitive pass left out."""
    taken = set(assigned)
    hits = [
        s for s in field["scores"].values()
        if s["statement_id"] not in taken and s["evidence_score"] >= min_score
    ]
    hits.sort(key=lambda s: (-s["evidence_score"], s["statement_id"]))
    return [s["statement_id"] for s in hits]
