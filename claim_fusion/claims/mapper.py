"""Mapper step: ask one provider to label claims over the pre-semantic summary.

The prompt carries the query, the substrate summary, and every paragraph
grouped by cluster. The reply is a <map> JSON object (claims, edges,
conditionals) followed by a <narrative>. A reply that cannot be parsed
yields status "parse_failed" and the turn continues with raw text only.
"""

from __future__ import annotations

import json
import re
import sys

from claim_fusion.contracts import (
    ClaimEdge,
    Cluster,
    Conditional,
    EdgeType,
    MapperClaim,
    MapperOutput,
    Paragraph,
)

MAPPER_INSTRUCTIONS = """\
You are mapping positions, not topics. {model_phrase} answered the query below. \
A position is a stance: something that can be supported, opposed, or traded \
against another. Where several sources reach the same position, record every \
supporter. Where only one source sees something, keep it as its own claim.

Paragraphs are grouped by embedding similarity. Groups marked uncertain may \
mix positions; split them when they do.

Output the map first, then the narrative:

<map>
{{
  "claims": [
    {{
      "id": "claim_1",
      "label": "verb-phrase stating the position",
      "text": "the mechanism or evidence behind it (one paragraph max)",
      "supporters": [1, 2],
      "challenges": null
    }}
  ],
  "edges": [
    {{"from": "claim_1", "to": "claim_2", "type": "supports|conflicts|tradeoff|prerequisite"}}
  ],
  "conditionals": [
    {{"id": "cond_1", "question": "Does ...?", "affected_claims": ["claim_2"]}}
  ]
}}
</map>
<narrative>
Prose that walks the reader through the map using [Label|claim_N] anchors.
</narrative>

Rules:
- ids are sequential: claim_1, claim_2, ...
- supporters are model numbers. Mentioning a topic is not support.
- conflicts: both cannot be acted on. tradeoff: they optimize for different ends.
  prerequisite: "to" depends on "from" being true.
- conditionals are questions about the user's situation that decide between claims.
"""

_MAP_TAG = re.compile(r"<map\b[^>]*>(.*?)</map\s*>", re.IGNORECASE | re.DOTALL)
_MAP_OPEN = re.compile(r"<map\b[^>]*>", re.IGNORECASE)
_NARRATIVE_TAG = re.compile(r"<narrative\b[^>]*>(.*?)</narrative\s*>", re.IGNORECASE | re.DOTALL)
_ESCAPED_ANGLE = re.compile(r"\\+(?=[<>])")


def extract_json(text: str) -> str:
    """Extract JSON from model response, handling fenced blocks and prose wrapping."""
    cleaned = text.strip()

    # Handle ```json fenced blocks
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")[1:]
        json_lines = []
        for line in lines:
            if line.strip() == "```":
                break
            json_lines.append(line)
        cleaned = "\n".join(json_lines).strip()

    if cleaned.startswith("{") or cleaned.startswith("["):
        return cleaned

    start = cleaned.find("{")
    if start != -1:
        depth = 0
        for i in range(start, len(cleaned)):
            if cleaned[i] == "{":
                depth += 1
            elif cleaned[i] == "}":
                depth -= 1
                if depth == 0:
                    return cleaned[start : i + 1]
        return cleaned[start:]

    return ""


def _load(text: str) -> dict | None:
    candidate = extract_json(text)
    if not candidate:
        return None
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


# --- Prompt ---


def _paragraph_line(p: Paragraph) -> str:
    return f"[Model {p['model_index']} | {p['id']}] {p['text'].strip()}"


def _summary_block(summary: dict | None) -> str:
    if not summary:
        return "(no geometry available)"
    keys = (
        "node_count",
        "component_count",
        "threshold_source",
        "effective_threshold",
        "health",
        "basin_status",
        "degenerate",
    )
    return "\n".join(f"{k}: {summary.get(k)}" for k in keys if k in summary)


def build_mapper_prompt(
    query: str,
    paragraphs: list[Paragraph],
    clusters: list[Cluster],
    substrate_summary: dict | None = None,
) -> str:
    model_count = len({p["model_index"] for p in paragraphs})
    model_phrase = "One model" if model_count == 1 else f"{model_count} models"

    by_id = {p["id"]: p for p in paragraphs}
    blocks: list[str] = []
    placed: set[str] = set()
    for c in clusters:
        members = [by_id[pid] for pid in c["paragraph_ids"] if pid in by_id]
        if not members:
            continue
        header = f"## Group {c['id']} ({len(members)} paragraphs"
        if c["uncertain"]:
            header += f", uncertain: {', '.join(c['uncertainty_reasons'])}"
        header += ")"
        blocks.append("\n".join([header] + [_paragraph_line(p) for p in members]))
        placed.update(p["id"] for p in members)

    # Paragraphs the clustering did not cover, grouped by model
    loose = [p for p in paragraphs if p["id"] not in placed]
    for model_index in sorted({p["model_index"] for p in loose}):
        lines = [_paragraph_line(p) for p in loose if p["model_index"] == model_index]
        blocks.append("\n".join([f"## Model {model_index}"] + lines))

    return (
        MAPPER_INSTRUCTIONS.format(model_phrase=model_phrase)
        + f"\n<original_query>{query}</original_query>\n\n"
        + f"<substrate>\n{_summary_block(substrate_summary)}\n</substrate>\n\n"
        + "<responses>\n"
        + "\n\n".join(blocks)
        + "\n</responses>\n"
    )


# --- Parsing ---


def _supporters(raw) -> list[int]:
    if not isinstance(raw, list):
        return []
    out = set()
    for v in raw:
        try:
            n = int(v)
        except (TypeError, ValueError):
            continue
        if n >= 1:
            out.add(n)
    return sorted(out)


def _claims(raw: list) -> list[MapperClaim]:
    claims: list[MapperClaim] = []
    seen: set[str] = set()
    for item in raw:
        if not isinstance(item, dict):
            continue
        label = str(item.get("label") or "").strip()
        text = str(item.get("text") or "").strip()
        if not label and not text:
            continue
        cid = str(item.get("id") or "").strip() or f"claim_{len(claims) + 1}"
        if cid in seen:
            cid = f"claim_{len(claims) + 1}"
        seen.add(cid)
        challenges = item.get("challenges")
        claims.append(
            MapperClaim(
                id=cid,
                label=label or text[:80],
                text=text,
                supporters=_supporters(item.get("supporters")),
                challenges=str(challenges) if challenges else None,
            )
        )
    return claims


def _edges(raw: list, claim_ids: set[str]) -> list[ClaimEdge]:
    valid_types = {t.value for t in EdgeType}
    edges: list[ClaimEdge] = []
    seen: set[tuple[str, str, str]] = set()
    for item in raw:
        if not isinstance(item, dict):
            continue
        source = str(item.get("from") or item.get("source") or "")
        target = str(item.get("to") or item.get("target") or "")
        kind = str(item.get("type") or "").strip().lower()
        if kind not in valid_types or source == target:
            continue
        if source not in claim_ids or target not in claim_ids:
            continue
        if (source, target, kind) in seen:
            continue
        seen.add((source, target, kind))
        edge = ClaimEdge(source=source, target=target, type=EdgeType(kind))
        if item.get("question"):
            edge["question"] = str(item["question"])
        edges.append(edge)
    return edges


def _conditionals(raw: list, claim_ids: set[str]) -> list[Conditional]:
    out: list[Conditional] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        question = str(item.get("question") or "").strip()
        affected = item.get("affected_claims", item.get("affectedClaims")) or []
        affected = [str(c) for c in affected if str(c) in claim_ids]
        if not question or not affected:
            continue
        cond_id = str(item.get("id") or "").strip() or f"cond_{len(out) + 1}"
        out.append(Conditional(id=cond_id, question=question, affected_claims=affected))
    return out


def parse_mapper_output(raw_text: str) -> MapperOutput:
    text = _ESCAPED_ANGLE.sub("", raw_text or "")

    narratives = _NARRATIVE_TAG.findall(text)
    narrative = narratives[-1].strip() if narratives else ""

    maps = _MAP_TAG.findall(text)
    map_content = maps[-1] if maps else None
    if map_content is None:
        opened = _MAP_OPEN.search(text)
        if opened:
            map_content = text[opened.end() :]

    data = _load(map_content) if map_content else None
    if data is None:
        data = _load(text)

    if data is None or not isinstance(data.get("claims"), list):
        return MapperOutput(
            status="parse_failed",
            claims=[],
            edges=[],
            conditionals=[],
            narrative=narrative,
            raw_text=raw_text,
            error="no map object with a claims array",
        )

    claims = _claims(data["claims"])
    ids = {c["id"] for c in claims}
    edges = _edges(data.get("edges") or [], ids)
    conditionals = _conditionals(data.get("conditionals") or [], ids)
    if not narrative and isinstance(data.get("narrative"), str):
        narrative = data["narrative"].strip()

    return MapperOutput(
        status="ok" if claims else "empty",
        claims=claims,
        edges=edges,
        conditionals=conditionals,
        narrative=narrative,
        raw_text=raw_text,
    )


def failed_mapper_output(raw_text: str, error: str) -> MapperOutput:
    print(f"WARNING: Mapper step failed, continuing with raw text only: {error}", file=sys.stderr)
    return MapperOutput(
        status="parse_failed",
        claims=[],
        edges=[],
        conditionals=[],
        narrative="",
        raw_text=raw_text,
        error=error,
    )
