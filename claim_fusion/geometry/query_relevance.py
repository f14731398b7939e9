"""Per-statement relevance to the user query.

``query_similarity`` is the raw cosine in [-1, 1] and is what every threshold
compares against; ``query_similarity_normalized`` = (cos + 1) / 2 is display only.
"""

from __future__ import annotations

from claim_fusion.contracts import Paragraph, QueryRelevance, Statement, Substrate
from claim_fusion.geometry.embeddings import cosine_similarity


def _clamp01(x: float) -> float:
    return min(1.0, max(0.0, x))


def compute_query_relevance(
    query_vector: list[float] | None,
    statements: list[Statement],
    paragraphs: list[Paragraph],
    substrate: Substrate,
    *,
    statement_vectors: dict[str, list[float]] | None = None,
    paragraph_vectors: dict[str, list[float]] | None = None,
) -> dict[str, QueryRelevance]:
    """Score every statement against the query embedding.

    Uses the statement's own vector when present, else its paragraph's, else 0.
    ``recusant`` is 1 minus the min-max normalised mutual degree of the
    statement's paragraph: high for statements in sparse parts of the substrate.
    """
    statement_vectors = statement_vectors or {}
    paragraph_vectors = paragraph_vectors or {}
    paragraph_of = {sid: p["id"] for p in paragraphs for sid in p["statement_ids"]}
    degree_of = {n["paragraph_id"]: n["mutual_degree"] for n in substrate["nodes"]}

    degrees = {s["id"]: degree_of.get(paragraph_of.get(s["id"], ""), 0) for s in statements}
    lo = min(degrees.values(), default=0)
    hi = max(degrees.values(), default=0)

    out: dict[str, QueryRelevance] = {}
    for s in statements:
        pid = paragraph_of.get(s["id"])
        stmt_vec = statement_vectors.get(s["id"])
        para_vec = paragraph_vectors.get(pid) if pid else None

        if query_vector and stmt_vec:
            sim, source = cosine_similarity(query_vector, stmt_vec), "statement"
        elif query_vector and para_vec:
            sim, source = cosine_similarity(query_vector, para_vec), "paragraph"
        else:
            sim, source = 0.0, "none"

        density = _clamp01((degrees[s["id"]] - lo) / (hi - lo)) if hi > lo else 0.0
        out[s["id"]] = QueryRelevance(
            query_similarity=sim,
            query_similarity_normalized=_clamp01((sim + 1) / 2),
            embedding_source=source,
            paragraph_sim=cosine_similarity(query_vector, para_vec) if query_vector and para_vec else 0.0,
            recusant=_clamp01(1 - density),
        )
    return out
