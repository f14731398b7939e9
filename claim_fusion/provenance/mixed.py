"""Mixed-method provenance: merge the competitive and claim-centric paragraph pools.

Pool statements are classified against the corpus-wide similarity of every
statement to the claim:

    core      global_sim >= global_mu
    boundary  global_mu - global_sigma <= global_sim < global_mu
    removed   below that floor

A boundary statement is kept only when it sits at least as close to the
claim's core as to the corpus at large (differential = corpus_sim - core_sim
<= 0, with no margin). Kept statements whose model is not a declared
supporter are dropped last; what remains is canonical.
"""

from __future__ import annotations

from claim_fusion.contracts import (
    CompetitiveAllocation,
    EvidenceClass,
    MixedProvenance,
    Paragraph,
    PoolOrigin,
    PoolParagraph,
    StatementVerdict,
)
from claim_fusion.geometry.embeddings import cosine_similarity, mean_std, normalize
from claim_fusion.provenance.continuous import mean_similarity_to, vector_sum


def classify_global(sim: float, mu: float, sigma: float) -> EvidenceClass:
    if sim >= mu:
        return EvidenceClass.CORE
    if sim >= mu - sigma:
        return EvidenceClass.BOUNDARY
    return EvidenceClass.REMOVED


def promote_boundary(core_sim: float, corpus_sim: float) -> tuple[bool, float]:
    """(kept, differential) for a boundary statement; kept iff differential <= 0."""
    differential = corpus_sim - core_sim
    return differential <= 0, differential


def build_paragraph_pool(
    claim_id: str,
    claim_vector: list[float],
    paragraphs: list[Paragraph],
    paragraph_vectors: dict[str, list[float]],
    allocation: CompetitiveAllocation,
) -> list[PoolParagraph]:
    """Union of competitive paragraphs and those above mu + sigma of paragraph-to-claim similarity."""
    sims = {
        p["id"]: cosine_similarity(paragraph_vectors[p["id"]], claim_vector)
        for p in paragraphs
        if p["id"] in paragraph_vectors
    }
    mu, sigma = mean_std(list(sims.values()))
    centric = {pid for pid, s in sims.items() if s > mu + sigma}
    competitive = set(allocation["claim_paragraphs"].get(claim_id, []))

    pool: list[PoolParagraph] = []
    for p in paragraphs:
        pid = p["id"]
        if pid in competitive and pid in centric:
            origin = PoolOrigin.BOTH
        elif pid in competitive:
            origin = PoolOrigin.COMPETITIVE_ONLY
        elif pid in centric:
            origin = PoolOrigin.CLAIM_CENTRIC_ONLY
        else:
            continue
        pool.append(PoolParagraph(paragraph_id=pid, origin=origin))
    return pool


def compute_mixed_provenance(
    claim_id: str,
    claim_vector: list[float],
    supporters: list[int],
    paragraphs: list[Paragraph],
    paragraph_vectors: dict[str, list[float]],
    statement_vectors: dict[str, list[float]],
    statement_models: dict[str, int],
    allocation: CompetitiveAllocation,
) -> MixedProvenance:
    pool = build_paragraph_pool(claim_id, claim_vector, paragraphs, paragraph_vectors, allocation)

    unit = {sid: normalize(v) for sid, v in statement_vectors.items()}
    global_sims = {sid: cosine_similarity(v, claim_vector) for sid, v in unit.items()}
    g_mu, g_sigma = mean_std(list(global_sims.values()))

    by_id = {p["id"]: p for p in paragraphs}
    pool_ids = [
        sid
        for entry in pool
        for sid in by_id[entry["paragraph_id"]]["statement_ids"]
        if sid in unit
    ]

    classes = {sid: classify_global(global_sims[sid], g_mu, g_sigma) for sid in pool_ids}
    core = {sid for sid, cls in classes.items() if cls == EvidenceClass.CORE}
    core_sum = vector_sum([unit[sid] for sid in pool_ids if sid in core])
    corpus = set(unit)
    corpus_sum = vector_sum([unit[sid] for sid in unit])

    verdicts: list[StatementVerdict] = []
    for sid in pool_ids:
        cls = classes[sid]
        core_sim = corpus_sim = differential = None
        if cls == EvidenceClass.CORE:
            kept, reason = True, "core"
        elif cls == EvidenceClass.REMOVED:
            kept, reason = False, "below_floor"
        elif not core:
            kept, reason = False, "boundary_no_core"
        else:
            core_sim = mean_similarity_to(sid, unit[sid], core, core_sum)
            corpus_sim = mean_similarity_to(sid, unit[sid], corpus, corpus_sum)
            kept, differential = promote_boundary(core_sim, corpus_sim)
            reason = "boundary_promoted" if kept else "boundary_generic"
        verdicts.append(
            StatementVerdict(
                statement_id=sid,
                global_sim=global_sims[sid],
                evidence_class=cls,
                core_sim=core_sim,
                corpus_sim=corpus_sim,
                differential=differential,
                kept=kept,
                reason=reason,
            )
        )

    allowed = set(supporters)
    canonical: list[str] = []
    dropped: list[str] = []
    for v in verdicts:
        if not v["kept"]:
            continue
        if statement_models.get(v["statement_id"]) in allowed:
            canonical.append(v["statement_id"])
        else:
            dropped.append(v["statement_id"])

    return MixedProvenance(
        claim_id=claim_id,
        paragraph_pool=pool,
        global_mu=g_mu,
        global_sigma=g_sigma,
        verdicts=verdicts,
        canonical_statement_ids=canonical,
        dropped_by_supporter_filter=dropped,
    )
