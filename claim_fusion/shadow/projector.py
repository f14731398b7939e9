"""Paragraph projection: regroup shadow statements into citation-sized paragraphs."""

from __future__ import annotations

from claim_fusion.contracts import (
    Paragraph,
    ParagraphStatement,
    Stance,
    Statement,
    StatementSignals,
)
from claim_fusion.shadow.extractor import STANCE_PRIORITY

MAX_STATEMENT_CHARS = 320


def _precedence(stance: Stance) -> int:
    return STANCE_PRIORITY.index(stance)


def _clip(text: str, limit: int = MAX_STATEMENT_CHARS) -> str:
    text = (text or "").strip()
    return text if len(text) <= limit else text[:limit].strip()


def dominant_stance(
    stances: list[Stance], weight_by_stance: dict[Stance, float]
) -> tuple[Stance, bool]:
    """Pick a paragraph's stance and flag prescriptive/cautionary or
    assertive/uncertain mixes as contested.

    A contested paragraph takes its highest-priority stance. Otherwise the
    stance with the largest summed confidence wins, ties broken by priority.
    """
    present = set(stances)
    if not present:
        return Stance.ASSERTIVE, False

    contested = (
        {Stance.PRESCRIPTIVE, Stance.CAUTIONARY} <= present
        or {Stance.ASSERTIVE, Stance.UNCERTAIN} <= present
    )
    if contested:
        return min(present, key=_precedence), True

    best = max(present, key=lambda s: (weight_by_stance.get(s, 0.0), -_precedence(s)))
    return best, False


def project_paragraphs(statements: list[Statement]) -> list[Paragraph]:
    """Group statements by (model_index, paragraph_index), ordered by model then position.

    Ids ``p_<n>`` follow that order, so identical statements give identical paragraphs.
    """
    groups: dict[tuple[int, int], list[tuple[int, int, Statement]]] = {}
    for encounter, stmt in enumerate(statements):
        loc = stmt["location"]
        key = (stmt["model_index"], loc["paragraph_index"])
        groups.setdefault(key, []).append((loc["sentence_index"], encounter, stmt))

    paragraphs: list[Paragraph] = []
    for i, key in enumerate(sorted(groups)):
        model_index, paragraph_index = key
        members = [stmt for _, _, stmt in sorted(groups[key], key=lambda g: (g[0], g[1]))]

        signals = StatementSignals(
            sequence=any(s["signals"]["sequence"] for s in members),
            tension=any(s["signals"]["tension"] for s in members),
            conditional=any(s["signals"]["conditional"] for s in members),
        )

        weights: dict[Stance, float] = {}
        for s in members:
            weights[s["stance"]] = weights.get(s["stance"], 0.0) + s["confidence"]
        stance, contested = dominant_stance([s["stance"] for s in members], weights)

        paragraphs.append(
            Paragraph(
                id=f"p_{i}",
                model_index=model_index,
                paragraph_index=paragraph_index,
                statement_ids=[s["id"] for s in members],
                dominant_stance=stance,
                contested=contested,
                confidence=max(s["confidence"] for s in members),
                signals=signals,
                statements=[
                    ParagraphStatement(
                        id=s["id"],
                        text=_clip(s["text"]),
                        stance=s["stance"],
                        signals=s["signals"],
                    )
                    for s in members
                ],
                text=members[0]["full_paragraph"],
            )
        )
    return paragraphs


def statement_to_paragraph(paragraphs: list[Paragraph]) -> dict[str, str]:
    """statement_id -> paragraph_id."""
    return {sid: p["id"] for p in paragraphs for sid in p["statement_ids"]}
