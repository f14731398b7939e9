"""Statement fates: where every extracted statement ended up.

    primary      cited by exactly one claim
    supporting   cited by two or more claims
    unaddressed  uncited, but relevant to the query (raw cosine >= 0.55)
    orphan       uncited, inside a connected part of the substrate
    noise        uncited, from an isolated paragraph or one with no geometry
"""

from __future__ import annotations

from claim_fusion.contracts import (
    Claim,
    Fate,
    Paragraph,
    QueryRelevance,
    Statement,
    StatementFate,
    Substrate,
)
from claim_fusion.shadow.extractor import signal_weight

UNADDRESSED_QUERY_GATE = 0.55
HIGH_SIGNAL_WEIGHT = 2


def statement_claims(claims: list[Claim]) -> dict[str, list[str]]:
    out: dict[str, list[str]] = {}
    for c in claims:
        for sid in c["source_statement_ids"]:
            out.setdefault(sid, []).append(c["id"])
    return out


def build_statement_fates(
    statements: list[Statement],
    paragraphs: list[Paragraph],
    claims: list[Claim],
    substrate: Substrate | None,
    query_relevance: dict[str, QueryRelevance] | None = None,
) -> dict[str, StatementFate]:
    cited = statement_claims(claims)
    paragraph_of = {sid: p["id"] for p in paragraphs for sid in p["statement_ids"]}
    nodes = {n["paragraph_id"]: n for n in substrate["nodes"]} if substrate else {}
    region_size: dict[str, int] = {}
    for n in nodes.values():
        if n["region_id"]:
            region_size[n["region_id"]] = region_size.get(n["region_id"], 0) + 1
    query_relevance = query_relevance or {}

    fates: dict[str, StatementFate] = {}
    for s in statements:
        claim_ids = cited.get(s["id"], [])
        node = nodes.get(paragraph_of.get(s["id"], ""))
        region_id = node["region_id"] if node else None
        qrel = query_relevance.get(s["id"])
        query_sim = qrel["query_similarity"] if qrel else 0.0

        if claim_ids:
            fate = Fate.PRIMARY if len(claim_ids) == 1 else Fate.SUPPORTING
            reason = f"cited by {len(claim_ids)} claim(s): {', '.join(claim_ids)}"
        elif qrel and qrel["embedding_source"] != "none" and query_sim >= UNADDRESSED_QUERY_GATE:
            fate = Fate.UNADDRESSED
            reason = f"relevant to the query ({query_sim:.2f}) but cited by no claim"
        elif node and (node["mutual_degree"] > 0 or region_size.get(region_id or "", 0) > 1):
            fate = Fate.ORPHAN
            reason = f"in region {region_id} but cited by no claim"
        elif node:
            fate = Fate.NOISE
            reason = "isolated paragraph"
        else:
            fate = Fate.NOISE
            reason = "no geometric coordinates"

        fates[s["id"]] = StatementFate(
            statement_id=s["id"],
            fate=fate,
            region_id=region_id,
            claim_ids=claim_ids,
            reason=reason,
            stance=s["stance"],
            confidence=s["confidence"],
            signal_weight=signal_weight(s["signals"]),
            isolation=node["isolation_score"] if node else 1.0,
            query_similarity=query_sim,
        )
    return fates


def high_signal_orphans(fates: dict[str, StatementFate], limit: int = 10) -> list[StatementFate]:
    """Orphans carrying a conditional or sequence signal, strongest first."""
    orphans = [
        f for f in fates.values()
        if f["fate"] == Fate.ORPHAN and f["signal_weight"] >= HIGH_SIGNAL_WEIGHT
    ]
    orphans.sort(key=lambda f: -f["signal_weight"])
    return orphans[:limit]
