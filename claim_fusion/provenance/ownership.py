"""Statement ownership, claim exclusivity, and pairwise claim overlap."""

from __future__ import annotations

from claim_fusion.contracts import Claim, ClaimExclusivity, ClaimOverlap


def statement_ownership(claims: list[Claim]) -> dict[str, set[str]]:
    """statement_id -> ids of the claims citing it."""
    owners: dict[str, set[str]] = {}
    for c in claims:
        for sid in c["source_statement_ids"]:
            owners.setdefault(sid, set()).add(c["id"])
    return owners


def claim_exclusivity(
    claims: list[Claim], ownership: dict[str, set[str]] | None = None
) -> dict[str, ClaimExclusivity]:
    ownership = ownership if ownership is not None else statement_ownership(claims)
    out: dict[str, ClaimExclusivity] = {}
    for c in claims:
        exclusive = [sid for sid in c["source_statement_ids"] if len(ownership.get(sid, ())) <= 1]
        shared = [sid for sid in c["source_statement_ids"] if len(ownership.get(sid, ())) > 1]
        total = len(exclusive) + len(shared)
        out[c["id"]] = ClaimExclusivity(
            exclusive_ids=exclusive,
            shared_ids=shared,
            exclusivity_ratio=len(exclusive) / total if total else 0.0,
        )
    return out


def jaccard(a: set[str], b: set[str]) -> float:
    """Two empty sets are identical (1.0); one empty set shares nothing (0.0)."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def claim_overlap(claims: list[Claim]) -> list[ClaimOverlap]:
    """Pairs with non-zero Jaccard overlap of their statement sets, highest first."""
    sets = [(c["id"], set(c["source_statement_ids"])) for c in claims]
    pairs = []
    for i, (a, set_a) in enumerate(sets):
        for b, set_b in sets[i + 1 :]:
            score = jaccard(set_a, set_b)
            if score > 0:
                pairs.append(ClaimOverlap(claim_a=a, claim_b=b, jaccard=score))
    pairs.sort(key=lambda p: -p["jaccard"])
    return pairs
