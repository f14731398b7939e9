"""TurnState: the single state object flowing through the turn graph."""

from __future__ import annotations

import operator
from typing import Annotated, TypedDict

from claim_fusion.contracts import (
    AlignmentReport,
    BlastRadiusResult,
    Claim,
    ClaimArtifact,
    ClaimEdge,
    ClaimGraph,
    ClassifiedError,
    Cluster,
    CompletenessReport,
    Conditional,
    DispatchResult,
    EmbeddingStatus,
    MapperOutput,
    Paragraph,
    ProviderText,
    QueryRelevance,
    Region,
    Statement,
    StatementFate,
    StructuralAnalysis,
    Substrate,
    SurveyQuestion,
    UnattendedRegion,
)

# --- Scalar reducers (last-write-wins) ---


def _replace(existing: str, new: str) -> str:
    return new


def _replace_int(existing: int, new: int) -> int:
    return new


def _replace_list(existing: list, new: list) -> list:
    """Replace-last-write for list fields (overwrites, not appends)."""
    return new


def _replace_dict(existing: dict, new: dict) -> dict:
    """Replace-last-write for dict fields."""
    return new


# --- Graph State ---


class TurnState(TypedDict):
    # Input (set once)
    query: str
    thread_id: Annotated[str, _replace]
    provider_ids: Annotated[list[str], _replace_list]

    # Replayed model output (--responses); empty means "ask the provider"
    mapper_raw: Annotated[str, _replace]
    survey_raw: Annotated[str, _replace]

    # Fan-out
    dispatch_result: Annotated[DispatchResult, _replace_dict]
    provider_texts: Annotated[list[ProviderText], _replace_list]
    provider_errors: Annotated[dict[str, ClassifiedError], _replace_dict]
    model_count: Annotated[int, _replace_int]

    # Shadow extraction
    statements: Annotated[list[Statement], _replace_list]
    paragraphs: Annotated[list[Paragraph], _replace_list]
    shadow_meta: Annotated[dict, _replace_dict]

    # Embeddings
    query_vector: Annotated[list[float], _replace_list]
    statement_vectors: Annotated[dict[str, list[float]], _replace_dict]
    paragraph_vectors: Annotated[dict[str, list[float]], _replace_dict]
    embedding_status: Annotated[EmbeddingStatus, _replace_dict]

    # Geometry
    substrate: Annotated[Substrate, _replace_dict]
    substrate_summary: Annotated[dict, _replace_dict]
    regions: Annotated[list[Region], _replace_list]
    query_relevance: Annotated[dict[str, QueryRelevance], _replace_dict]
    clusters: Annotated[list[Cluster], _replace_list]

    # Mapper + provenance + structure
    mapper_output: Annotated[MapperOutput, _replace_dict]
    claims: Annotated[list[Claim], _replace_list]
    edges: Annotated[list[ClaimEdge], _replace_list]
    conditionals: Annotated[list[Conditional], _replace_list]
    provenance: Annotated[dict, _replace_dict]
    structural: Annotated[StructuralAnalysis, _replace_dict]
    claim_graph: Annotated[ClaimGraph, _replace_dict]

    # Blast radius + survey
    blast_radius: Annotated[BlastRadiusResult, _replace_dict]
    survey_questions: Annotated[list[SurveyQuestion], _replace_list]

    # Audit
    fates: Annotated[dict[str, StatementFate], _replace_dict]
    unattended_regions: Annotated[list[UnattendedRegion], _replace_list]
    alignment: Annotated[AlignmentReport, _replace_dict]
    completeness: Annotated[CompletenessReport, _replace_dict]

    # Output
    artifact: Annotated[ClaimArtifact, _replace_dict]
    report: Annotated[str, _replace]

    # Accumulated across nodes
    warnings: Annotated[list[str], operator.add]
