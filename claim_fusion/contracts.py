"""Single source of truth for all types, enums, and protocols."""

from __future__ import annotations

from enum import Enum
from typing import Awaitable, Callable, NotRequired, Protocol, TypedDict, runtime_checkable

# --- Enums ---


class ProviderStatus(str, Enum):
    QUEUED = "queued"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class CircuitStatus(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class ErrorType(str, Enum):
    CIRCUIT_OPEN = "circuit_open"
    INPUT_TOO_LONG = "input_too_long"
    PROVIDER_AUTH_FAILED = "provider_auth_failed"
    PROVIDER_ERROR = "provider_error"
    EMPTY_RESPONSE = "empty_response"
    PARSE_FAILED = "parse_failed"
    DEGENERATE_SUBSTRATE = "degenerate_substrate"


class Stance(str, Enum):
    PRESCRIPTIVE = "prescriptive"
    CAUTIONARY = "cautionary"
    PREREQUISITE = "prerequisite"
    DEPENDENT = "dependent"
    ASSERTIVE = "assertive"
    UNCERTAIN = "uncertain"


class EdgeType(str, Enum):
    SUPPORTS = "supports"
    CONFLICTS = "conflicts"
    TRADEOFF = "tradeoff"
    PREREQUISITE = "prerequisite"


class PoolOrigin(str, Enum):
    BOTH = "both"
    COMPETITIVE_ONLY = "competitive-only"
    CLAIM_CENTRIC_ONLY = "claim-centric-only"


class EvidenceClass(str, Enum):
    CORE = "core"
    BOUNDARY = "boundary"
    REMOVED = "removed"


class SubstrateHealth(str, Enum):
    USABLE = "usable"  # D >= 0.10
    MARGINAL = "marginal"  # 0.05 - 0.10
    UNTRUSTED = "untrusted"  # < 0.05


class BasinStatus(str, Enum):
    OK = "ok"
    UNDIFFERENTIATED = "undifferentiated"
    NO_BASIN_STRUCTURE = "no_basin_structure"
    INSUFFICIENT_DATA = "insufficient_data"


class Fate(str, Enum):
    PRIMARY = "primary"
    SUPPORTING = "supporting"
    UNADDRESSED = "unaddressed"
    ORPHAN = "orphan"
    NOISE = "noise"


# --- Dispatch ---


class SoftError(TypedDict):
    name: str
    message: str


class ClassifiedError(TypedDict):
    error_type: ErrorType
    code: str  # finer transport detail: "timeout" | "rate_limited" | "network" | ...
    message: str
    retryable: bool
    retry_after_ms: int | None
    requires_reauth: bool


class ProviderReply(TypedDict):
    """What a provider adapter returns from ask()."""

    text: str
    meta: dict
    ok: bool
    soft_error: NotRequired[SoftError]
    error: NotRequired[dict]  # {"code", "status", "message"} when ok is False


class AttemptDecision(TypedDict):
    allowed: bool
    reason: NotRequired[str]  # "circuit_open" | "circuit_half_open"
    retry_after_ms: NotRequired[int]
    is_probe: NotRequired[bool]


class CircuitSnapshot(TypedDict):
    provider_id: str
    status: CircuitStatus
    failures_in_window: int
    opened_at: float | None
    retry_after_ms: int | None
    last_error: str | None


class ProviderResult(TypedDict):
    """One provider's entry in a settled dispatch."""

    provider_id: str
    status: ProviderStatus
    text: str
    meta: dict
    soft_error: SoftError | None
    error: ClassifiedError | None
    fallback_from: NotRequired[str]


class DispatchEvent(TypedDict):
    kind: str  # "provider_status" | "delta" | "provider_complete" | "settled"
    session_id: str
    provider_id: NotRequired[str]
    status: NotRequired[ProviderStatus]
    delta: NotRequired[str]
    statuses: NotRequired[dict[str, ProviderStatus]]
    completed_count: NotRequired[int]
    total_count: NotRequired[int]
    result: NotRequired[dict]  # the DispatchResult, on "settled" only


class DispatchResult(TypedDict):
    session_id: str
    step_id: str
    results: dict[str, ProviderResult]  # attempted providers only
    statuses: dict[str, ProviderStatus]  # every requested provider
    skipped: dict[str, ClassifiedError]
    errors: dict[str, ClassifiedError]
    completed_count: int
    total_count: int


class ProviderContext(TypedDict):
    provider_id: str
    session_id: str
    thread_id: str
    role: str  # "batch" | "mapping" | "survey"
    context: dict
    updated_at: str


class TokenUsage(TypedDict):
    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    timestamp: str


# --- Shadow extraction ---


class StatementSignals(TypedDict):
    sequence: bool
    tension: bool
    conditional: bool


class StatementLocation(TypedDict):
    paragraph_index: int
    sentence_index: int


class Statement(TypedDict):
    id: str  # "s_0"
    model_index: int  # 1-based, matches mapper supporter indices
    text: str
    stance: Stance
    confidence: float
    signals: StatementSignals
    location: StatementLocation
    full_paragraph: str


class ProviderText(TypedDict):
    """One provider answer entering the synthesis pipeline."""

    provider_id: str
    model_index: int  # 1-based, in requested provider order
    text: str


class ShadowExtraction(TypedDict):
    statements: list[Statement]
    meta: dict


class ParagraphStatement(TypedDict):
    id: str
    text: str
    stance: Stance
    signals: StatementSignals


class Paragraph(TypedDict):
    id: str  # "p_0"
    model_index: int
    paragraph_index: int
    statement_ids: list[str]
    dominant_stance: Stance
    contested: bool
    confidence: float
    signals: StatementSignals
    statements: list[ParagraphStatement]
    text: str


# --- Geometry ---


class EmbeddingStatus(TypedDict):
    backend: str
    available: bool
    model: str
    dimensions: int


class SimilarityEdge(TypedDict):
    source: str
    target: str
    similarity: float
    rank: int


class SimilarityStats(TypedDict):
    max: float
    p95: float
    p80: float
    p50: float
    mean: float


class SubstrateNode(TypedDict):
    paragraph_id: str
    model_index: int
    statement_ids: list[str]
    top1_sim: float
    avg_topk_sim: float
    isolation_score: float
    knn_degree: int
    mutual_degree: int
    strong_degree: int
    mutual_rank_threshold: float
    mutual_neighborhood_patch: list[str]
    component_id: str | None
    region_id: str | None


class Peak(TypedDict):
    bin: int
    center: float
    height: float
    prominence: float


class Basin(TypedDict):
    basin_id: int
    node_ids: list[str]
    trench_depth: float  # max similarity to any node outside the basin


class BridgePair(TypedDict):
    node_a: str
    node_b: str
    similarity: float
    delta_from_valley: float


class BasinInversion(TypedDict):
    status: BasinStatus
    health: SubstrateHealth
    degenerate: bool
    node_count: int
    pair_count: int
    mu: float
    sigma: float
    p10: float
    p90: float
    discrimination_range: float
    t_v: float | None
    t_low: float
    t_high: float
    pct_high: float
    pct_mid: float
    pct_low: float
    bin_count: int
    bin_width: float
    bandwidth: int
    histogram: list[int]
    smoothed: list[float]
    peaks: list[Peak]
    valley_depth_sigma: float | None
    bimodality: float | None  # Sarle's coefficient of the pair similarities
    basins: list[Basin]
    bridge_pairs: list[BridgePair]


class Component(TypedDict):
    id: str  # "comp_0"
    node_ids: list[str]
    size: int
    internal_density: float


class Topology(TypedDict):
    components: list[Component]
    component_count: int
    largest_component_ratio: float
    isolation_ratio: float


class Substrate(TypedDict):
    nodes: list[SubstrateNode]
    knn_edges: list[SimilarityEdge]
    mutual_edges: list[SimilarityEdge]
    strong_edges: list[SimilarityEdge]
    soft_threshold: float
    similarity_stats: SimilarityStats
    basin: BasinInversion
    topology: Topology
    degenerate: bool
    degenerate_reason: str | None
    effective_threshold: float
    threshold_source: str  # "valley" | "mu_sigma" | "soft"
    warnings: list[str]


class GeometricCoordinates(TypedDict):
    paragraph_id: str
    component_id: str | None
    region_id: str | None
    isolation_score: float


class Region(TypedDict):
    id: str  # "r_0"
    kind: str  # "component" | "patch"
    node_ids: list[str]
    statement_ids: list[str]
    source_id: str
    model_indices: list[int]


class QueryRelevance(TypedDict):
    query_similarity: float  # raw cosine [-1, 1]
    query_similarity_normalized: float  # display only
    embedding_source: str  # "statement" | "paragraph" | "none"
    paragraph_sim: float
    recusant: float


class Cluster(TypedDict):
    id: str  # "pc_0"
    paragraph_ids: list[str]
    statement_ids: list[str]
    representative_paragraph_id: str
    representative_text: str
    size: int
    cohesion: float
    pairwise_cohesion: float
    uncertain: bool
    uncertainty_reasons: list[str]


# --- Mapper ---


class MapperClaim(TypedDict):
    id: str  # "claim_1"
    label: str
    text: str
    supporters: list[int]
    challenges: str | None


class ClaimEdge(TypedDict):
    source: str
    target: str
    type: EdgeType
    question: NotRequired[str]


class Conditional(TypedDict):
    id: str
    question: str
    affected_claims: list[str]


class MapperOutput(TypedDict):
    status: str  # "ok" | "parse_failed" | "empty"
    claims: list[MapperClaim]
    edges: list[ClaimEdge]
    conditionals: list[Conditional]
    narrative: str
    raw_text: str
    error: NotRequired[str]


# --- Provenance ---


class CompetitiveAllocation(TypedDict):
    weights: dict[str, dict[str, float]]  # statement_id -> claim_id -> weight
    thresholds: dict[str, float]  # statement_id -> tau_S
    claim_statements: dict[str, list[str]]  # claim_id -> assigned statement ids
    claim_paragraphs: dict[str, list[str]]


class EvidenceScore(TypedDict):
    statement_id: str
    sim: float
    z_claim: float
    z_core: float
    evidence_score: float
    in_core: bool


class ContinuousField(TypedDict):
    claim_id: str
    mu: float
    sigma: float
    core_statement_ids: list[str]
    scores: dict[str, EvidenceScore]


class PoolParagraph(TypedDict):
    paragraph_id: str
    origin: PoolOrigin


class StatementVerdict(TypedDict):
    statement_id: str
    global_sim: float
    evidence_class: EvidenceClass
    core_sim: float | None
    corpus_sim: float | None
    differential: float | None
    kept: bool
    reason: str


class MixedProvenance(TypedDict):
    claim_id: str
    paragraph_pool: list[PoolParagraph]
    global_mu: float
    global_sigma: float
    verdicts: list[StatementVerdict]
    canonical_statement_ids: list[str]
    dropped_by_supporter_filter: list[str]


class ProvenanceResult(TypedDict):
    claims: list[Claim]
    allocation: CompetitiveAllocation
    mixed: dict[str, MixedProvenance]
    recovery: dict[str, list[str]]  # claim_id -> continuous-field recovery candidates
    method: dict[str, str]  # claim_id -> "mixed" | "similarity" | "none"


class ClaimExclusivity(TypedDict):
    exclusive_ids: list[str]
    shared_ids: list[str]
    exclusivity_ratio: float


class ClaimOverlap(TypedDict):
    claim_a: str
    claim_b: str
    jaccard: float


# --- Claims ---


class Claim(TypedDict):
    id: str
    label: str
    text: str
    supporters: list[int]
    challenges: str | None
    support_ratio: float
    source_statement_ids: list[str]
    source_region_ids: list[str]
    provenance_bulk: float
    tier: int
    edges: list[ClaimEdge]
    leverage: float
    in_degree: int
    out_degree: int
    is_high_support: bool
    is_contested: bool
    is_isolated: bool
    is_leverage_inversion: bool
    is_keystone: bool
    is_articulation_point: bool


class CascadeRisk(TypedDict):
    source_id: str
    dependent_ids: list[str]
    depth: int


class StructuralAnalysis(TypedDict):
    model_count: int
    convergence_ratio: float
    cascade_risks: list[CascadeRisk]
    articulation_points: list[str]
    leverage_inversions: list[str]
    keystone_id: str | None
    components: list[list[str]]


class Tier(TypedDict):
    index: int
    claim_ids: list[str]
    is_foundation: bool
    conditional_ids: list[str]


class ForcingPoint(TypedDict):
    id: str  # "fp_0"
    kind: str  # "conditional" | "conflict"
    question: str
    claim_ids: list[str]
    statement_ids: list[str]
    tier: int
    source_id: str


class ClaimGraph(TypedDict):
    tiers: list[Tier]
    forcing_points: list[ForcingPoint]
    conflict_components: list[list[str]]


# --- Blast radius ---


class BlastRadiusComponents(TypedDict):
    cascade_breadth: float
    exclusive_evidence: float
    leverage: float
    query_relevance: float  # raw cosine, never normalized for threshold checks
    articulation_point: float


class BlastRadiusScore(TypedDict):
    claim_id: str
    claim_label: str
    composite: float
    raw_composite: float
    components: BlastRadiusComponents
    modifiers: list[str]
    suppressed: bool
    suppression_reason: str | None
    fragile_consensus: NotRequired[dict]


class BlastRadiusAxis(TypedDict):
    id: str  # "axis_0"
    claim_ids: list[str]
    representative_claim_id: str
    max_blast_radius: float


class BlastRadiusResult(TypedDict):
    scores: list[BlastRadiusScore]
    axes: list[BlastRadiusAxis]
    question_ceiling: int
    skip_survey: bool
    skip_reason: str | None
    meta: dict


class SurveyQuestion(TypedDict):
    axis_id: str
    claim_id: str
    question: str


# --- Audit ---


class StatementFate(TypedDict):
    statement_id: str
    fate: Fate
    region_id: str | None
    claim_ids: list[str]
    reason: str
    stance: Stance
    confidence: float
    signal_weight: int
    isolation: float
    query_similarity: float


class UnattendedRegion(TypedDict):
    id: str
    node_ids: list[str]
    statement_ids: list[str]
    statement_count: int
    model_diversity: int
    avg_isolation: float
    likely_claim: bool
    reason: str
    bridges_to: list[str]


class RegionCoverage(TypedDict):
    region_id: str
    total_statements: int
    covered_statements: int
    coverage_ratio: float
    best_claim_id: str | None
    best_claim_similarity: float


class AlignmentReport(TypedDict):
    region_coverages: list[RegionCoverage]
    split_alerts: list[dict]
    merge_alerts: list[dict]
    global_coverage: float
    unattended_region_ids: list[str]


class CompletenessReport(TypedDict):
    statements: dict
    regions: dict
    recovery: dict


# --- Turn output ---


class ClaimArtifact(TypedDict):
    query: str
    mapper_status: str
    narrative: str
    claims: list[Claim]
    edges: list[ClaimEdge]
    conditionals: list[Conditional]
    tiers: list[Tier]
    forcing_points: list[ForcingPoint]
    statements: list[Statement]
    paragraphs: list[Paragraph]
    clusters: list[Cluster]
    substrate_summary: dict
    blast_radius: BlastRadiusResult | None
    survey_questions: list[SurveyQuestion]
    completeness: CompletenessReport | None
    alignment: AlignmentReport | None


class RunEvent(TypedDict, total=False):
    node: str
    thread_id: str
    ts: str
    elapsed_s: float
    inputs_summary: dict[str, int]
    outputs_summary: dict[str, int]
    status: str
    warnings: list[str]  # warnings this node added to the turn
    error: str | None


# --- Protocols ---


ChunkCallback = Callable[[str], None]


@runtime_checkable
class ProviderAdapter(Protocol):
    """One capability: ask a provider, streaming chunks through on_chunk.

    Cancellation arrives as asyncio task cancellation at any await point.
    """

    name: str

    async def ask(
        self,
        prompt: str,
        context: dict | None,
        session_id: str,
        on_chunk: ChunkCallback | None = None,
    ) -> ProviderReply: ...


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Batch text embedder with a reported availability status."""

    def embed(self, texts: list[str]) -> list[list[float]]: ...

    def status(self) -> EmbeddingStatus: ...


@runtime_checkable
class ContextStore(Protocol):
    def persist_provider_contexts(
        self, session_id: str, updates: dict[str, dict], role: str
    ) -> Awaitable[None]: ...

    def get_provider_contexts(
        self, session_id: str, thread_id: str, *, context_role: str | None = None
    ) -> dict[str, ProviderContext]: ...
