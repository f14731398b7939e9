"""Survey step: one yes/no question per high-blast-radius axis.

The blast-radius scorer has already decided which claims matter; the model
only phrases, for each axis, the real-world condition that would make its
claim inapplicable to this user.
"""

from __future__ import annotations

import json

from claim_fusion.claims.mapper import extract_json
from claim_fusion.contracts import BlastRadiusAxis, Claim, SurveyQuestion

SURVEY_INSTRUCTIONS = """\
You are a survey methodologist. A structural analysis marked the claims below \
as high impact: removing any of them would change the answer. For EACH axis \
independently, find the hidden assumption about the user's situation that must \
hold for the claim to matter, and write one yes/no question about one \
observable fact the user can report.

Skip an axis when no answer could make its claim structurally irrelevant. \
Fewer questions is better. Zero is valid. Ask at most {ceiling}.

Output STRICT JSON (no markdown, no commentary):
{{
  "questions": [
    {{"axis_id": "axis_0", "claim_id": "claim_3", "question": "Do you ...?"}}
  ]
}}
"""


def build_survey_prompt(
    query: str,
    claims: list[Claim],
    axes: list[BlastRadiusAxis],
    ceiling: int,
) -> str:
    by_id = {c["id"]: c for c in claims}
    blocks = []
    for axis in axes:
        lines = [f"## {axis['id']} (blast radius {axis['max_blast_radius']:.2f})"]
        for cid in axis["claim_ids"]:
            c = by_id.get(cid)
            if c is None:
                continue
            models = ", ".join(str(s) for s in c["supporters"]) or "none"
            lines.append(f"[{cid}] {c['label']} [Models: {models}]\n{c['text']}".strip())
        blocks.append("\n".join(lines))
    return (
        SURVEY_INSTRUCTIONS.format(ceiling=ceiling)
        + f"\n<original_query>{query}</original_query>\n\n<axes>\n"
        + "\n\n".join(blocks)
        + "\n</axes>\n"
    )


def parse_survey_output(
    raw_text: str,
    axes: list[BlastRadiusAxis],
    ceiling: int,
) -> list[SurveyQuestion] | None:
    """Questions for known axes, one per axis, at most ``ceiling``.

    Returns None when the reply holds no parseable questions array.
    """
    candidate = extract_json(raw_text or "")
    if not candidate:
        return None
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or not isinstance(data.get("questions"), list):
        return None

    axes_by_id = {a["id"]: a for a in axes}
    out: list[SurveyQuestion] = []
    used: set[str] = set()
    for item in data["questions"]:
        if len(out) >= ceiling:
            break
        if not isinstance(item, dict):
            continue
        axis = axes_by_id.get(str(item.get("axis_id") or ""))
        question = str(item.get("question") or "").strip()
        if axis is None or not question or axis["id"] in used:
            continue
        claim_id = str(item.get("claim_id") or "")
        if claim_id not in axis["claim_ids"]:
            claim_id = axis["representative_claim_id"]
        used.add(axis["id"])
        out.append(SurveyQuestion(axis_id=axis["id"], claim_id=claim_id, question=question))
    return out
