"""Blast radius: how much the answer changes if a claim is removed.

Composite = weighted sum of five [0, 1] components:

    cascade breadth      0.30   transitive prerequisite dependents / (claims - 1)
    exclusive evidence   0.25   share of the claim's statements no other claim cites
    structural leverage  0.20   min-max normalised across claims (0.5 when flat)
    query relevance      0.15   mean raw cosine of source statements, mapped to [0, 1]
    articulation point   0.10   1 when removing the claim disconnects the graph

Then, in order: consensus discount, sole-source off-topic discount,
redundancy discount, and the 0.20 floor. Surviving claims are grouped into
axes by evidence overlap; the question ceiling (at most 3) follows the
number of independent conflict clusters.
"""

from __future__ import annotations

from claim_fusion.contracts import (
    BlastRadiusAxis,
    BlastRadiusComponents,
    BlastRadiusResult,
    BlastRadiusScore,
    CascadeRisk,
    Claim,
    ClaimEdge,
    ClaimExclusivity,
    ClaimOverlap,
    EdgeType,
    QueryRelevance,
    StructuralAnalysis,
)

W_CASCADE = 0.30
W_EXCLUSIVE = 0.25
W_LEVERAGE = 0.20
W_QUERY = 0.15
W_ARTICULATION = 0.10

CONSENSUS_DISCOUNT_MAX = 0.50
SOLE_SOURCE_DISCOUNT = 0.50
SOLE_SOURCE_QUERY_THRESHOLD = 0.30  # raw cosine
REDUNDANT_JACCARD = 0.50
REDUNDANCY_DISCOUNT_FACTOR = 0.40
COMPOSITE_FLOOR = 0.20
AXIS_JACCARD = 0.30
ZERO_GATE_CONVERGENCE = 0.70
SOLE_SOURCE_COMPOSITE_THRESHOLD = 0.50
MAX_QUESTIONS = 3


def consensus_factor(support_ratio: float, model_count: int) -> float:
    """Discount for agreement; full strength (0.50) from four models up."""
    strength = CONSENSUS_DISCOUNT_MAX * min(model_count / 4, 1.0)
    return 1 - support_ratio * strength


def redundancy_factor(jaccard: float) -> float:
    return 1 - jaccard * REDUNDANCY_DISCOUNT_FACTOR


def mean_query_similarity(
    statement_ids: list[str], query_relevance: dict[str, QueryRelevance] | None
) -> float:
    if not query_relevance:
        return 0.0
    sims = [query_relevance[sid]["query_similarity"] for sid in statement_ids if sid in query_relevance]
    return sum(sims) / len(sims) if sims else 0.0


def score_claims(
    claims: list[Claim],
    *,
    cascade_risks: list[CascadeRisk],
    exclusivity: dict[str, ClaimExclusivity],
    articulation_points: list[str],
    query_relevance: dict[str, QueryRelevance] | None = None,
    statement_models: dict[str, int] | None = None,
) -> list[BlastRadiusScore]:
    """Unmodified composite scores, one per claim."""
    total = len(claims)
    cascades = {r["source_id"]: r for r in cascade_risks}
    articulation = set(articulation_points)
    levers = [c["leverage"] for c in claims]
    lo, hi = (min(levers), max(levers)) if levers else (0.0, 0.0)

    scores: list[BlastRadiusScore] = []
    for c in claims:
        risk = cascades.get(c["id"])
        cascade = min(len(risk["dependent_ids"]) / max(total - 1, 1), 1.0) if risk else 0.0
        excl = exclusivity.get(c["id"])
        exclusive = excl["exclusivity_ratio"] if excl else 0.0
        leverage = (c["leverage"] - lo) / (hi - lo) if hi > lo else 0.5
        query = mean_query_similarity(c["source_statement_ids"], query_relevance)
        query_norm = max(0.0, min(1.0, (query + 1) / 2))
        is_ap = 1.0 if c["id"] in articulation else 0.0

        composite = (
            W_CASCADE * cascade
            + W_EXCLUSIVE * exclusive
            + W_LEVERAGE * leverage
            + W_QUERY * query_norm
            + W_ARTICULATION * is_ap
        )
        score = BlastRadiusScore(
            claim_id=c["id"],
            claim_label=c["label"],
            composite=composite,
            raw_composite=composite,
            components=BlastRadiusComponents(
                cascade_breadth=cascade,
                exclusive_evidence=exclusive,
                leverage=leverage,
                query_relevance=query,
                articulation_point=is_ap,
            ),
            modifiers=[],
            suppressed=False,
            suppression_reason=None,
        )

        # Mapper credits more models than the evidence traces back to
        if statement_models and c["source_statement_ids"]:
            traced = {statement_models[sid] for sid in c["source_statement_ids"] if sid in statement_models}
            if 0 < len(traced) < len(c["supporters"]):
                score["fragile_consensus"] = {
                    "mapper_supporter_count": len(c["supporters"]),
                    "geometric_model_diversity": len(traced),
                }
        scores.append(score)
    return scores


def apply_modifiers(
    scores: list[BlastRadiusScore],
    claims: list[Claim],
    overlap: list[ClaimOverlap],
    model_count: int,
) -> None:
    """Consensus, sole-source, redundancy, then the floor. Mutates scores."""
    by_claim = {c["id"]: c for c in claims}
    by_score = {s["claim_id"]: s for s in scores}

    for s in scores:
        claim = by_claim.get(s["claim_id"])
        if claim is None:
            continue
        factor = consensus_factor(claim["support_ratio"], model_count)
        s["composite"] *= factor
        if factor < 0.99:
            s["modifiers"].append(
                f"consensus: x{factor:.2f} (support={claim['support_ratio']:.2f}, models={model_count})"
            )

    for s in scores:
        claim = by_claim.get(s["claim_id"])
        if claim is None:
            continue
        query = s["components"]["query_relevance"]
        if len(claim["supporters"]) == 1 and query < SOLE_SOURCE_QUERY_THRESHOLD:
            s["composite"] *= SOLE_SOURCE_DISCOUNT
            s["modifiers"].append(f"sole_source_offtopic: x{SOLE_SOURCE_DISCOUNT:.2f} (qrel={query:.2f})")

    for entry in sorted(overlap, key=lambda o: -o["jaccard"]):
        if entry["jaccard"] <= REDUNDANT_JACCARD:
            break
        a, b = by_score.get(entry["claim_a"]), by_score.get(entry["claim_b"])
        if a is None or b is None:
            continue
        winner, loser = (a, b) if a["composite"] >= b["composite"] else (b, a)
        factor = redundancy_factor(entry["jaccard"])
        loser["composite"] *= factor
        loser["modifiers"].append(
            f"redundancy: x{factor:.2f} (jaccard={entry['jaccard']:.2f} with {winner['claim_id']})"
        )

    for s in scores:
        if s["composite"] < COMPOSITE_FLOOR:
            s["suppressed"] = True
            s["suppression_reason"] = f"below_floor({s['composite']:.3f})"


def should_skip_survey(
    claims: list[Claim],
    scores: list[BlastRadiusScore],
    convergence_ratio: float,
    conflict_edge_count: int,
) -> tuple[bool, str | None]:
    if convergence_ratio <= ZERO_GATE_CONVERGENCE:
        return False, None
    if any(c["is_leverage_inversion"] for c in claims):
        return False, None
    supporters = {c["id"]: len(c["supporters"]) for c in claims}
    if any(
        supporters.get(s["claim_id"]) == 1
        and s["composite"] > SOLE_SOURCE_COMPOSITE_THRESHOLD
        and not s["suppressed"]
        for s in scores
    ):
        return False, None
    if conflict_edge_count > 0:
        return False, None
    return True, (
        f"convergence={convergence_ratio:.2f}, no_leverage_inversions, "
        "no_sole_source_outliers, no_conflicts"
    )


def cluster_axes(
    surviving: list[BlastRadiusScore], overlap: list[ClaimOverlap]
) -> list[BlastRadiusAxis]:
    """Single-linkage groups of surviving claims sharing > 30% evidence."""
    ids = [s["claim_id"] for s in surviving]
    composite = {s["claim_id"]: s["composite"] for s in surviving}
    adj: dict[str, set[str]] = {cid: set() for cid in ids}
    for entry in overlap:
        a, b = entry["claim_a"], entry["claim_b"]
        if entry["jaccard"] > AXIS_JACCARD and a in adj and b in adj:
            adj[a].add(b)
            adj[b].add(a)

    groups: list[list[str]] = []
    seen: set[str] = set()
    for start in ids:
        if start in seen:
            continue
        group, stack = [], [start]
        while stack:
            cur = stack.pop()
            if cur in seen:
                continue
            seen.add(cur)
            group.append(cur)
            stack.extend(n for n in adj[cur] if n not in seen)
        groups.append(group)

    axes: list[BlastRadiusAxis] = []
    for group in groups:
        rep = max(group, key=lambda cid: composite[cid])
        axes.append(
            BlastRadiusAxis(
                id="",
                claim_ids=group,
                representative_claim_id=rep,
                max_blast_radius=composite[rep],
            )
        )
    axes.sort(key=lambda a: -a["max_blast_radius"])
    for i, axis in enumerate(axes):
        axis["id"] = f"axis_{i}"
    return axes


def _conflict_cluster_count(edges: list[ClaimEdge]) -> int:
    adj: dict[str, set[str]] = {}
    for e in edges:
        if e["type"] == EdgeType.CONFLICTS:
            adj.setdefault(e["source"], set()).add(e["target"])
            adj.setdefault(e["target"], set()).add(e["source"])
    count, seen = 0, set()
    for start in adj:
        if start in seen:
            continue
        count += 1
        stack = [start]
        while stack:
            cur = stack.pop()
            if cur not in seen:
                seen.add(cur)
                stack.extend(adj[cur] - seen)
    return count


def question_ceiling(
    axes: list[BlastRadiusAxis], edges: list[ClaimEdge], claims: list[Claim]
) -> int:
    if not axes:
        return 0
    conflicts = _conflict_cluster_count(edges)
    if conflicts == 0:
        sole_source_outlier = any(
            len(c["supporters"]) == 1 and (c["is_leverage_inversion"] or c["is_keystone"])
            for c in claims
        )
        return min(1 if sole_source_outlier else 2, len(axes))
    if conflicts <= 2:
        return min(2, len(axes))
    return min(MAX_QUESTIONS, len(axes))


def _meta(scores, total, conflict_edges, axis_count, convergence) -> dict:
    return {
        "total_claims": total,
        "suppressed_count": sum(1 for s in scores if s["suppressed"]),
        "candidate_count": sum(1 for s in scores if not s["suppressed"] and s["composite"] > 0),
        "conflict_edge_count": conflict_edges,
        "axis_count": axis_count,
        "convergence_ratio": convergence,
    }


def compute_blast_radius(
    claims: list[Claim],
    edges: list[ClaimEdge],
    analysis: StructuralAnalysis,
    *,
    exclusivity: dict[str, ClaimExclusivity],
    overlap: list[ClaimOverlap],
    query_relevance: dict[str, QueryRelevance] | None = None,
    statement_models: dict[str, int] | None = None,
) -> BlastRadiusResult:
    convergence = analysis["convergence_ratio"]
    if not claims:
        return BlastRadiusResult(
            scores=[],
            axes=[],
            question_ceiling=0,
            skip_survey=True,
            skip_reason="no_claims",
            meta=_meta([], 0, 0, 0, convergence),
        )

    scores = score_claims(
        claims,
        cascade_risks=analysis["cascade_risks"],
        exclusivity=exclusivity,
        articulation_points=analysis["articulation_points"],
        query_relevance=query_relevance,
        statement_models=statement_models,
    )
    apply_modifiers(scores, claims, overlap, analysis["model_count"])

    conflict_edges = sum(1 for e in edges if e["type"] == EdgeType.CONFLICTS)
    skip, reason = should_skip_survey(claims, scores, convergence, conflict_edges)
    if skip:
        return BlastRadiusResult(
            scores=scores,
            axes=[],
            question_ceiling=0,
            skip_survey=True,
            skip_reason=reason,
            meta=_meta(scores, len(claims), conflict_edges, 0, convergence),
        )

    surviving = [s for s in scores if not s["suppressed"] and s["composite"] > 0]
    axes = cluster_axes(surviving, overlap)
    ceiling = question_ceiling(axes, edges, claims)
    return BlastRadiusResult(
        scores=scores,
        axes=axes[:ceiling],
        question_ceiling=ceiling,
        skip_survey=ceiling == 0,
        skip_reason="no_high_blast_radius_axes" if ceiling == 0 else None,
        meta=_meta(scores, len(claims), conflict_edges, len(axes), convergence),
    )
