"""Shadow statement extraction: mechanical sentence-level parsing of provider text.

Deterministic and model-free. Each provider answer is split into paragraphs
(blank-line separated) and sentences; substantive sentences are classified by
stance, tagged with sequence/tension/conditional signals, filtered through the
exclusion rules, and given ids ``s_<n>`` in model-then-position order. Running
twice over the same answers yields the same ids.
"""

from __future__ import annotations

import re
import sys
from dataclasses import dataclass

from claim_fusion.contracts import (
    ProviderText,
    ShadowExtraction,
    Stance,
    Statement,
    StatementLocation,
    StatementSignals,
)

SENTENCE_LIMIT = 2000
STATEMENT_LIMIT = 2000
MIN_WORDS = 5

# Highest priority first
STANCE_PRIORITY: list[Stance] = [
    Stance.PREREQUISITE,
    Stance.DEPENDENT,
    Stance.CAUTIONARY,
    Stance.PRESCRIPTIVE,
    Stance.UNCERTAIN,
    Stance.ASSERTIVE,
]


def _compile(patterns: list[str]) -> list[re.Pattern[str]]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


STANCE_PATTERNS: dict[Stance, list[re.Pattern[str]]] = {
    Stance.CAUTIONARY: _compile([
        r"\bdon'?t\b", r"\bdo\s+not\b", r"\bavoid\b", r"\bnever\b", r"\brisk\b",
        r"\bcareful\b", r"\bcaution\b", r"\bwarning\b", r"\bdanger\b", r"\bpitfall\b",
        r"\btrap\b", r"\bmistake\b", r"\berror\b", r"\bproblem\s+with\b",
        r"\bwatch\s+out\b", r"\bbe\s+aware\b", r"\bbeware\b",
        r"\bcan\s+lead\s+to\s+problems\b", r"\bshould\s+not\b", r"\bshouldn'?t\b",
    ]),
    Stance.PREREQUISITE: _compile([
        r"\bbefore\b", r"\bfirst\b", r"\bprior\s+to\b", r"\brequires?\b",
        r"\bneeds?\s+to\s+have\b", r"\bprerequisite\b", r"\bprecondition\b",
        r"\bmust\s+(come|happen|occur)\s+before\b", r"\bfoundation\s+for\b",
        r"\bgroundwork\b", r"\bcan'?t\s+.{0,20}\s+without\s+first\b",
        r"\benables?\b", r"\bunblocks?\b", r"\ballows?\s+you\s+to\b", r"\binitially\b",
    ]),
    Stance.DEPENDENT: _compile([
        r"\bafter\b", r"\bonce\b", r"\bthen\s+you\s+can\b", r"\bfollowing\s+this\b",
        r"\bsubsequent\b", r"\bonly\s+after\b",
        r"\bwhen\s+.{0,20}\s+is\s+(done|complete|ready)\b",
        r"\bhaving\s+(done|completed|established)\b", r"\bin\s+the\s+next\s+step\b",
        r"\bdownstream\b",
    ]),
    Stance.PRESCRIPTIVE: _compile([
        r"\bshould\b", r"\bmust\b", r"\bought\s+to\b", r"\bneed\s+to\b", r"\bhave\s+to\b",
        r"\bensure\b", r"\bmake\s+sure\b", r"\balways\b", r"\brequired\b",
        r"\bessential\b", r"\bcritical\s+to\b", r"\bimperative\b", r"\brecommend\b",
        r"\bsuggest\b", r"\badvise\b", r"\bconsider\b", r"\buse\b", r"\bimplement\b",
        r"\bapply\b",
    ]),
    Stance.UNCERTAIN: _compile([
        r"\bmight\b", r"\bmay\b", r"\bcould\b", r"\bpossibly\b", r"\bperhaps\b",
        r"\bmaybe\b", r"\bunclear\b", r"\bunknown\b", r"\buncertain\b", r"\bdepends\b",
        r"\bnot\s+sure\b", r"\bhard\s+to\s+(say|know|tell)\b", r"\bdifficult\s+to\s+know\b",
        r"\b(it|that)\s+varies\b", r"\btypically\b", r"\busually\b",
        r"\bin\s+some\s+cases\b",
    ]),
    Stance.ASSERTIVE: _compile([
        r"\bis\b", r"\bare\b", r"\bwas\b", r"\bwere\b", r"\bdoes\b", r"\bdo\b",
        r"\bhas\b", r"\bhave\b", r"\bworks?\b", r"\bperforms?\b", r"\bprovides?\b",
        r"\boffers?\b", r"\bincludes?\b", r"\bexists?\b", r"\bcontains?\b",
        r"\bsupports?\b",
    ]),
}

SIGNAL_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    "sequence": _compile([
        r"\bbefore\b", r"\bafter\b", r"\bfirst\b", r"\bthen\b", r"\bnext\b",
        r"\bfinally\b", r"\bonce\b", r"\brequires?\b", r"\bdepends\s+on\b",
        r"\bprior\s+to\b", r"\bsubsequent\b", r"\bfollowing\b", r"\bpreceding\b",
        r"\bstep\s+\d+\b", r"\bphase\s+\d+\b", r"\benables?\b", r"\bunblocks?\b",
    ]),
    "tension": _compile([
        r"\bbut\b", r"\bhowever\b", r"\balthough\b", r"\bthough\b", r"\bdespite\b",
        r"\bnevertheless\b", r"\byet\b", r"\binstead\b", r"\brather\s+than\b",
        r"\bon\s+the\s+other\s+hand\b", r"\bin\s+contrast\b", r"\bconversely\b",
        r"\bversus\b", r"\bvs\.?\b", r"\bor\b", r"\btrade-?off\b", r"\bbalance\b",
        r"\btension\b", r"\bcompeting\b", r"\bconflicts?\s+with\b",
    ]),
    "conditional": _compile([
        r"\bif\b", r"\bwhen\b", r"\bunless\b", r"\bassuming\b", r"\bprovided\s+that\b",
        r"\bgiven\s+that\b", r"\bin\s+case\b", r"\bcontingent\s+on\b",
        r"\bsubject\s+to\b", r"\bdepending\s+on\b", r"\bfor\s+(this|that|these)\s+case\b",
        r"\bin\s+(some|certain|specific)\s+cases\b", r"\bonly\s+if\b", r"\bonly\s+when\b",
    ]),
}


@dataclass(frozen=True)
class ExclusionRule:
    id: str
    applies_to: frozenset[Stance]
    pattern: re.Pattern[str]
    reason: str
    hard: bool


_ALL = frozenset(Stance)


def _rule(rule_id: str, stances, pattern: str, reason: str, *, hard: bool = True, flags=re.IGNORECASE):
    return ExclusionRule(rule_id, frozenset(stances), re.compile(pattern, flags), reason, hard)


# Only hard rules exclude; soft rules are reported by exclusion_violations()
EXCLUSION_RULES: list[ExclusionRule] = [
    _rule("question_mark", _ALL, r"\?$", "Question, not statement", flags=0),
    _rule("too_short", _ALL, r"^.{0,15}$", "Too short to be substantive", flags=re.DOTALL),
    _rule("meta_let_me", _ALL, r"^(let me|let's|i('ll| will| would)|allow me to)\b",
          "Meta-framing, not claim"),
    _rule("meta_note", _ALL,
          r"^(note that|it'?s worth (noting|mentioning)|keep in mind|remember that)\b",
          "Meta-commentary, not claim"),
    _rule("quoted_material", _ALL, "^\"[^\"]{10,}\"$|^“[^”]{10,}”$",
          "Quoted material, not original claim", flags=0),
    # prescriptive
    _rule("prescriptive_epistemic_should", [Stance.PRESCRIPTIVE],
          r"\bshould\s+(be|have\s+been)\s+(clear|obvious|noted|apparent|evident|unsurprising)\b",
          "Epistemic 'should', not prescriptive"),
    _rule("prescriptive_conditional_should", [Stance.PRESCRIPTIVE],
          r"\bif\s+.{5,40}\s+should\b", "Conditional 'should'", hard=False),
    _rule("prescriptive_hypothetical", [Stance.PRESCRIPTIVE],
          r"\b(you|one)\s+could\s+(also|potentially|possibly)\b",
          "Suggestion, not prescription", hard=False),
    _rule("prescriptive_question_form", [Stance.PRESCRIPTIVE],
          r"\bshould\s+(you|we|i|they)\s+.{0,30}\?", "Prescriptive in question form"),
    _rule("prescriptive_rhetorical", [Stance.PRESCRIPTIVE],
          r"\b(surely|certainly)\s+(you|we|one)\s+(can|would|could)\s+agree\b",
          "Rhetorical appeal, not prescription"),
    _rule("prescriptive_past_tense", [Stance.PRESCRIPTIVE],
          r"\bshould\s+have\s+(been|done|had|made|used)\b",
          "Past counterfactual", hard=False),
    _rule("prescriptive_attributed", [Stance.PRESCRIPTIVE],
          r"\b(they|he|she|the\s+\w+)\s+(say|says|said|suggest|argues?)\s+.{0,20}should\b",
          "Attributed prescription, not asserted", hard=False),
    # cautionary
    _rule("cautionary_hypothetical", [Stance.CAUTIONARY],
          r"\b(might|could)\s+(potentially\s+)?(cause|create|lead\s+to)\b",
          "Hypothetical risk", hard=False),
    _rule("cautionary_past_reference", [Stance.CAUTIONARY],
          r"\b(should\s+have\s+avoided|shouldn'?t\s+have\s+done)\b",
          "Past counterfactual, not active warning"),
    _rule("cautionary_rhetorical", [Stance.CAUTIONARY],
          r"\byou\s+(wouldn'?t|would\s+not)\s+want\s+to\b",
          "Rhetorical framing", hard=False),
    _rule("cautionary_generic", [Stance.CAUTIONARY],
          r"\b(be\s+careful|watch\s+out)\s*$", "Too generic", hard=False),
    # prerequisite
    _rule("prereq_temporal_before", [Stance.PREREQUISITE],
          r"\b(long\s+before|just\s+before|shortly\s+before|right\s+before|the\s+day\s+before)\b",
          "Temporal narration, not dependency"),
    _rule("prereq_before_meeting", [Stance.PREREQUISITE],
          r"\bbefore\s+(the\s+)?(meeting|call|event|conference|session|interview)\b",
          "Temporal reference", hard=False),
    _rule("prereq_narrative_first", [Stance.PREREQUISITE],
          r"\bfirst\s+(time|day|week|month|year|attempt)\b",
          "Narrative 'first', not dependency"),
    _rule("prereq_requires_subject", [Stance.PREREQUISITE],
          r"\brequires\s+(a|an|the|some|more|less)\s+(lot|bit|degree|amount)\s+of\b",
          "Quantitative requirement", hard=False),
    _rule("prereq_hypothetical", [Stance.PREREQUISITE],
          r"\bif\s+you\s+were\s+to\s+.{0,30}\s+(first|before)\b",
          "Hypothetical scenario", hard=False),
    # dependent
    _rule("dependent_simple_temporal", [Stance.DEPENDENT],
          r"\b(after|following)\s+(the|this|that)\s+(meeting|call|event|lunch|break)\b",
          "Calendar event", hard=False),
    _rule("dependent_narrative_after", [Stance.DEPENDENT],
          r"\bafter\s+(a\s+)?(long|short|brief|while|time|period)\b",
          "Narrative time passage, not dependency"),
    _rule("dependent_once_upon", [Stance.DEPENDENT], r"\bonce\s+upon\s+a\s+time\b",
          "Narrative framing"),
    _rule("dependent_then_rhetorical", [Stance.DEPENDENT], r"\bthen\s+(what|why|how|where|who)\b",
          "Rhetorical question, not dependency"),
    # assertive
    _rule("assertive_narrative_was", [Stance.ASSERTIVE],
          r"^(it|this|that)\s+was\s+(a|an|the)\s+(great|good|bad|terrible|amazing|awful)\b",
          "Narrative evaluation", hard=False),
    _rule("assertive_hypothetical_would", [Stance.ASSERTIVE], r"\bwould\s+be\b",
          "Hypothetical, not actual state", hard=False),
    _rule("assertive_metaphor", [Stance.ASSERTIVE], r"\b(is\s+like|are\s+like)\s+(a|an)\b",
          "Metaphorical comparison", hard=False),
    # uncertain
    _rule("uncertain_rhetorical", [Stance.UNCERTAIN],
          r"\b(who knows|god knows|anyone'?s guess)\b", "Rhetorical uncertainty"),
    _rule("uncertain_politeness", [Stance.UNCERTAIN],
          r"\b(might|may|could)\s+I\s+(ask|suggest|recommend)\b", "Politeness marker"),
    _rule("uncertain_narrative", [Stance.UNCERTAIN], r"\bmight\s+have\s+been\b",
          "Past speculation", hard=False),
]

_META_PATTERNS = _compile([
    r"^(sure|okay|yes|no|well|so|now)[,.]?\s",
    r"^(let me|I'll|I will|I can|I would)\b",
    r"^(here's|here is|this is|that's|that is)\s+(a|an|the|my)\s+(summary|overview|breakdown|list)",
    r"\b(as I mentioned|as discussed|as noted)\b",
    r"^(to summarize|in summary|in conclusion)\b",
])

_ABBREVIATION = re.compile(r"\b(Mr|Mrs|Ms|Dr|Prof|Inc|Ltd|vs|etc|e\.g|i\.e)\.", re.IGNORECASE)
_NUMBERED = re.compile(r"\b(\d+)\.")
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")
_PARAGRAPH_BREAK = re.compile(r"\n\n+")
_PROTECT = "|||"


# --- Classification ---


def classify_stance(text: str) -> tuple[Stance, float]:
    """Highest-priority matching stance and its confidence.

    Confidence is ``min(1, 0.5 + 0.15 * matches)`` where matches counts the
    winning stance's patterns. No match at all means assertive at 0.5.
    """
    for stance in STANCE_PRIORITY:
        matches = sum(1 for p in STANCE_PATTERNS[stance] if p.search(text))
        if matches:
            return stance, min(1.0, 0.5 + matches * 0.15)
    return Stance.ASSERTIVE, 0.5


def detect_signals(text: str) -> StatementSignals:
    return StatementSignals(
        sequence=any(p.search(text) for p in SIGNAL_PATTERNS["sequence"]),
        tension=any(p.search(text) for p in SIGNAL_PATTERNS["tension"]),
        conditional=any(p.search(text) for p in SIGNAL_PATTERNS["conditional"]),
    )


def signal_weight(signals: StatementSignals) -> int:
    """Conditional 3, sequence 2, tension 1."""
    weight = 0
    if signals.get("conditional"):
        weight += 3
    if signals.get("sequence"):
        weight += 2
    if signals.get("tension"):
        weight += 1
    return weight


def is_excluded(text: str, stance: Stance) -> bool:
    return any(
        rule.hard and rule.pattern.search(text)
        for rule in EXCLUSION_RULES
        if stance in rule.applies_to
    )


def exclusion_violations(text: str, stance: Stance) -> list[dict[str, str]]:
    """All matching rules, soft included, for debugging."""
    return [
        {"id": r.id, "reason": r.reason, "severity": "hard" if r.hard else "soft"}
        for r in EXCLUSION_RULES
        if stance in r.applies_to and r.pattern.search(text)
    ]


# --- Splitting ---


def split_paragraphs(text: str) -> list[str]:
    return [p.strip() for p in _PARAGRAPH_BREAK.split(text or "") if p.strip()]


def split_sentences(paragraph: str) -> list[str]:
    """Split on terminal punctuation, protecting abbreviations and list numbers."""
    protected = _ABBREVIATION.sub(lambda m: m.group(1) + _PROTECT, paragraph)
    protected = _NUMBERED.sub(lambda m: m.group(1) + _PROTECT, protected)
    sentences = []
    for part in _SENTENCE_BREAK.split(protected):
        part = part.replace(_PROTECT, ".").strip()
        if part:
            sentences.append(part)
    return sentences


def is_substantive(sentence: str) -> bool:
    """Reject headings, tables, bare list markers, meta talk and short fragments."""
    trimmed = sentence.strip()
    if len(trimmed.split()) < MIN_WORDS:
        return False

    if re.match(r"^#{1,6}\s", trimmed):
        return False
    if re.fullmatch(r"\*{2}[^*]+\*{2}", trimmed) or re.fullmatch(r"__[^_]+__", trimmed):
        return False
    if re.fullmatch(r"\|.*\|", trimmed) and len(trimmed.split("|")) > 2:
        return False
    if re.fullmatch(r"[|\s\-:]+", trimmed):
        return False
    if re.fullmatch(r"[-*+]\s*", trimmed) or re.fullmatch(r"\d+\.\s*", trimmed):
        return False

    return not any(p.search(trimmed) for p in _META_PATTERNS)


# --- Extraction ---


def extract_statements(responses: list[ProviderText]) -> ShadowExtraction:
    """Extract shadow statements from provider answers.

    Responses are processed in ascending model_index order. Extraction stops
    at SENTENCE_LIMIT sentences or STATEMENT_LIMIT statements.
    """
    statements: list[Statement] = []
    candidates = 0
    excluded = 0
    sentences_seen = 0
    truncated = False

    for response in sorted(responses, key=lambda r: r["model_index"]):
        for p_idx, paragraph in enumerate(split_paragraphs(response["text"])):
            for s_idx, sentence in enumerate(split_sentences(paragraph)):
                sentences_seen += 1
                if sentences_seen > SENTENCE_LIMIT:
                    truncated = True
                    break
                if not is_substantive(sentence):
                    continue

                candidates += 1
                stance, confidence = classify_stance(sentence)
                if is_excluded(sentence, stance):
                    excluded += 1
                    continue

                statements.append(
                    Statement(
                        id=f"s_{len(statements)}",
                        model_index=response["model_index"],
                        text=sentence,
                        stance=stance,
                        confidence=confidence,
                        signals=detect_signals(sentence),
                        location=StatementLocation(paragraph_index=p_idx, sentence_index=s_idx),
                        full_paragraph=paragraph,
                    )
                )
                if len(statements) >= STATEMENT_LIMIT:
                    truncated = True
                    break
            if truncated:
                break
        if truncated:
            break

    if truncated:
        print(
            f"WARNING: Statement extraction truncated at {len(statements)} statements "
            f"({sentences_seen} sentences)",
            file=sys.stderr,
        )

    return ShadowExtraction(
        statements=statements,
        meta=_build_meta(statements, candidates, excluded, sentences_seen),
    )


def _build_meta(
    statements: list[Statement], candidates: int, excluded: int, sentences: int
) -> dict:
    by_model: dict[int, int] = {}
    by_stance = {s.value: 0 for s in Stance}
    by_signal = {"sequence": 0, "tension": 0, "conditional": 0}
    for stmt in statements:
        by_model[stmt["model_index"]] = by_model.get(stmt["model_index"], 0) + 1
        by_stance[stmt["stance"].value] += 1
        for name in by_signal:
            if stmt["signals"][name]:
                by_signal[name] += 1
    return {
        "total_statements": len(statements),
        "by_model": by_model,
        "by_stance": by_stance,
        "by_signal": by_signal,
        "candidates_processed": candidates,
        "candidates_excluded": excluded,
        "sentences_processed": min(sentences, SENTENCE_LIMIT),
    }
