"""Provenance reconstruction: attach statement evidence to every mapper claim.

Each claim is embedded as "label. text". The mixed-method merge decides its
canonical statements. When that yields nothing (one claim, weak geometry,
missing vectors) the claim falls back to plain similarity matching:
statements with sim > 0.45 (top 12), else paragraphs with sim > 0.5 (top 5).
The supporter filter applies to both paths.
"""

from __future__ import annotations

from claim_fusion.contracts import (
    Claim,
    MapperClaim,
    Paragraph,
    ProvenanceResult,
    Region,
    Statement,
)
from claim_fusion.geometry.embeddings import cosine_similarity
from claim_fusion.provenance.competitive import allocate_competitive, claim_bulk
from claim_fusion.provenance.continuous import compute_continuous_field, recovery_candidates
from claim_fusion.provenance.mixed import compute_mixed_provenance

STATEMENT_MATCH_THRESHOLD = 0.45
STATEMENT_MATCH_LIMIT = 12
PARAGRAPH_MATCH_THRESHOLD = 0.5
PARAGRAPH_MATCH_LIMIT = 5


def claim_embedding_text(claim: MapperClaim) -> str:
    return f"{claim['label']}. {claim.get('text') or ''}".strip()


def new_claim(mapper_claim: MapperClaim, model_count: int) -> Claim:
    """A Claim with structural fields at their defaults."""
    supporters = list(mapper_claim.get("supporters") or [])
    return Claim(
        id=mapper_claim["id"],
        label=mapper_claim["label"],
        text=mapper_claim.get("text", ""),
        supporters=supporters,
        challenges=mapper_claim.get("challenges"),
        support_ratio=len(supporters) / model_count if model_count > 0 else 0.0,
        source_statement_ids=[],
        source_region_ids=[],
        provenance_bulk=0.0,
        tier=0,
        edges=[],
        leverage=0.0,
        in_degree=0,
        out_degree=0,
        is_high_support=False,
        is_contested=False,
        is_isolated=False,
        is_leverage_inversion=False,
        is_keystone=False,
        is_articulation_point=False,
    )


def match_by_similarity(
    claim_vector: list[float],
    statements: list[Statement],
    paragraphs: list[Paragraph],
    statement_vectors: dict[str, list[float]],
    paragraph_vectors: dict[str, list[float]],
) -> list[str]:
    scored = [
        (cosine_similarity(claim_vector, statement_vectors[s["id"]]), s["id"])
        for s in statements
        if s["id"] in statement_vectors
    ]
    hits = sorted(
        [(sim, sid) for sim, sid in scored if sim > STATEMENT_MATCH_THRESHOLD],
        key=lambda t: (-t[0], t[1]),
    )
    if hits:
        return [sid for _, sid in hits[:STATEMENT_MATCH_LIMIT]]

    para_hits = sorted(
        [
            (cosine_similarity(claim_vector, paragraph_vectors[p["id"]]), p["id"], p)
            for p in paragraphs
            if p["id"] in paragraph_vectors
        ],
        key=lambda t: (-t[0], t[1]),
    )
    out: list[str] = []
    for sim, _, p in para_hits[:PARAGRAPH_MATCH_LIMIT]:
        if sim <= PARAGRAPH_MATCH_THRESHOLD:
            break
        out.extend(sid for sid in p["statement_ids"] if sid not in out)
    return out


def _region_ids(statement_ids: list[str], paragraphs: list[Paragraph], regions: list[Region]) -> list[str]:
    para_of = {sid: p["id"] for p in paragraphs for sid in p["statement_ids"]}
    wanted = {para_of[sid] for sid in statement_ids if sid in para_of}
    return [r["id"] for r in regions if wanted & set(r["node_ids"])]


def reconstruct_provenance(
    mapper_claims: list[MapperClaim],
    statements: list[Statement],
    paragraphs: list[Paragraph],
    regions: list[Region],
    *,
    claim_vectors: dict[str, list[float]],
    statement_vectors: dict[str, list[float]],
    paragraph_vectors: dict[str, list[float]],
    model_count: int,
) -> ProvenanceResult:
    order = {s["id"]: i for i, s in enumerate(statements)}
    models = {s["id"]: s["model_index"] for s in statements}
    statement_paragraph = {sid: p["id"] for p in paragraphs for sid in p["statement_ids"]}

    allocation = allocate_competitive(claim_vectors, statement_vectors, statement_paragraph)

    claims: list[Claim] = []
    mixed = {}
    recovery: dict[str, list[str]] = {}
    method: dict[str, str] = {}
    for mc in mapper_claims:
        claim = new_claim(mc, model_count)
        cid = claim["id"]
        vector = claim_vectors.get(cid)
        if vector is None or not statement_vectors:
            method[cid] = "none"
            claims.append(claim)
            continue

        result = compute_mixed_provenance(
            cid,
            vector,
            claim["supporters"],
            paragraphs,
            paragraph_vectors,
            statement_vectors,
            models,
            allocation,
        )
        mixed[cid] = result
        source = list(result["canonical_statement_ids"])
        method[cid] = "mixed"
        if not source:
            allowed = set(claim["supporters"])
            matched = match_by_similarity(
                vector, statements, paragraphs, statement_vectors, paragraph_vectors
            )
            source = [sid for sid in matched if models.get(sid) in allowed]
            method[cid] = "similarity"

        field = compute_continuous_field(cid, vector, statement_vectors)
        recovery[cid] = recovery_candidates(field, allocation["claim_statements"].get(cid, []))

        claim["source_statement_ids"] = sorted(
            {sid for sid in source if sid in order}, key=lambda sid: order[sid]
        )
        claim["source_region_ids"] = _region_ids(claim["source_statement_ids"], paragraphs, regions)
        claim["provenance_bulk"] = claim_bulk(allocation, cid)
        claims.append(claim)

    return ProvenanceResult(
        claims=claims,
        allocation=allocation,
        mixed=mixed,
        recovery=recovery,
        method=method,
    )
