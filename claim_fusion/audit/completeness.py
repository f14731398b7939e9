"""Completeness report: statement and region coverage plus recovery previews."""

from __future__ import annotations

from claim_fusion.contracts import (
    CompletenessReport,
    Fate,
    Statement,
    StatementFate,
    UnattendedRegion,
)

RECOVERY_STATEMENT_LIMIT = 10
RECOVERY_REGION_LIMIT = 5
PREVIEWS_PER_REGION = 3


def build_completeness_report(
    fates: dict[str, StatementFate],
    unattended: list[UnattendedRegion],
    statements: list[Statement],
    total_regions: int,
) -> CompletenessReport:
    counts = {fate: 0 for fate in Fate}
    for f in fates.values():
        counts[f["fate"]] += 1
    total = len(fates)
    in_claims = counts[Fate.PRIMARY] + counts[Fate.SUPPORTING]

    attended = max(0, total_regions - len(unattended))
    by_id = {s["id"]: s for s in statements}

    unaddressed = sorted(
        (f for f in fates.values() if f["fate"] == Fate.UNADDRESSED),
        key=lambda f: -f["query_similarity"],
    )
    recovered = [
        {
            "statement_id": f["statement_id"],
            "text": by_id[f["statement_id"]]["text"],
            "model_index": by_id[f["statement_id"]]["model_index"],
            "query_similarity": f["query_similarity"],
        }
        for f in unaddressed[:RECOVERY_STATEMENT_LIMIT]
        if f["statement_id"] in by_id
    ]
    previews = [
        {
            "region_id": region["id"],
            "statement_previews": [
                by_id[sid]["text"] for sid in region["statement_ids"][:PREVIEWS_PER_REGION] if sid in by_id
            ],
        }
        for region in unattended[:RECOVERY_REGION_LIMIT]
    ]

    return CompletenessReport(
        statements={
            "total": total,
            "in_claims": in_claims,
            "orphaned": counts[Fate.ORPHAN],
            "unaddressed": counts[Fate.UNADDRESSED],
            "noise": counts[Fate.NOISE],
            "coverage_ratio": in_claims / total if total else 1.0,
        },
        regions={
            "total": total_regions,
            "attended": attended,
            "unattended": len(unattended),
            "coverage_ratio": attended / total_regions if total_regions else 1.0,
        },
        recovery={
            "unaddressed_statements": recovered,
            "unattended_region_previews": previews,
        },
    )
