"""StateGraph construction: wires the turn pipeline from fan-out to report."""

from __future__ import annotations

import inspect
import sys
import time

from langchain_core.runnables import RunnableConfig
from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.graph import END, StateGraph
from langgraph.graph.state import CompiledStateGraph

from claim_fusion.audit.alignment import compute_alignment
from claim_fusion.audit.completeness import build_completeness_report
from claim_fusion.audit.coverage import find_unattended_regions
from claim_fusion.audit.fates import build_statement_fates
from claim_fusion.claims.assembler import assemble_claim_graph
from claim_fusion.claims.mapper import (
    build_mapper_prompt,
    failed_mapper_output,
    parse_mapper_output,
)
from claim_fusion.claims.structure import analyze_structure
from claim_fusion.claims.survey import build_survey_prompt, parse_survey_output
from claim_fusion.clustering.engine import safe_build_clusters
from claim_fusion.config import Settings
from claim_fusion.contracts import (
    DispatchEvent,
    EmbeddingProvider,
    ProviderStatus,
    ProviderText,
)
from claim_fusion.dispatch.dispatcher import FanoutDispatcher, has_usable_text
from claim_fusion.dispatch.errors import AllProvidersFailedError, ProviderError
from claim_fusion.event_log.writer import EventLog
from claim_fusion.geometry.embeddings import embed_safely, unavailable_status
from claim_fusion.geometry.query_relevance import compute_query_relevance
from claim_fusion.geometry.regions import attach_regions, build_regions
from claim_fusion.geometry.substrate import build_substrate, substrate_summary
from claim_fusion.graph.state import TurnState
from claim_fusion.provenance.ownership import (
    claim_exclusivity,
    claim_overlap,
    statement_ownership,
)
from claim_fusion.provenance.reconstruct import claim_embedding_text, reconstruct_provenance
from claim_fusion.reporting.export import build_artifact
from claim_fusion.reporting.renderer import render_report
from claim_fusion.scoring.blast_radius import compute_blast_radius
from claim_fusion.shadow.extractor import extract_statements
from claim_fusion.shadow.projector import project_paragraphs


def _get_stream_writer(config: RunnableConfig | None) -> callable | None:
    """Safely extract a stream writer from LangGraph config, if available."""
    if config is None:
        return None
    try:
        from langgraph.config import get_stream_writer

        return get_stream_writer()
    except (ImportError, Exception):
        return None


def _count_summary(values: dict | None) -> dict[str, int]:
    """Collection sizes for the run event log; non-empty strings count as 1."""
    summary: dict[str, int] = {}
    for key, value in (values or {}).items():
        if isinstance(value, (list, dict)):
            summary[key] = len(value)
        elif isinstance(value, str) and value:
            summary[key] = 1
    return summary


def _wrap_with_logging(node_name: str, fn, event_log: EventLog):
    """Wrap a node (sync or async, with or without config) so it emits a RunEvent."""
    accepts_config = "config" in inspect.signature(fn).parameters

    async def wrapped(state: TurnState, config: RunnableConfig | None = None) -> dict:
        start = time.monotonic()
        status = "ok"
        error: str | None = None
        result: dict = {}
        try:
            out = fn(state, config) if accepts_config else fn(state)
            if inspect.isawaitable(out):
                out = await out
            result = out or {}
            return result
        except Exception as e:
            status = "error"
            error = f"{type(e).__name__}: {e}"
            raise
        finally:
            event_log.emit(
                EventLog.make_event(
                    node=node_name,
                    elapsed_s=time.monotonic() - start,
                    inputs_summary=_count_summary(state),
                    outputs_summary=_count_summary(result),
                    status=status,
                    warnings=result.get("warnings"),
                    error=error,
                )
            )

    wrapped.__name__ = f"{node_name}_logged"
    return wrapped


def build_graph(
    settings: Settings,
    *,
    dispatcher: FanoutDispatcher | None = None,
    embedder: EmbeddingProvider | None = None,
    checkpointer: BaseCheckpointSaver | None = None,
    event_log: EventLog | None = None,
) -> CompiledStateGraph:
    """Build and compile the turn graph.

    ``dispatcher`` may be None when every model answer is replayed from state
    (provider_texts, mapper_raw, survey_raw). ``embedder`` None disables geometry.
    """
    timeout = settings.dispatch_timeout or None

    async def _ask_single(prompt: str, state: TurnState, step_id: str) -> str:
        """Ask the mapper provider once. Raises the dispatcher's fatal errors."""
        if dispatcher is None:
            raise ProviderError("no mapper provider available", code="no_dispatcher")
        thread_id = state.get("thread_id", "")
        result = await dispatcher.dispatch(
            prompt,
            [settings.mapper_provider],
            session_id=thread_id,
            step_id=step_id,
            thread_id=thread_id,
            timeout=timeout,
        )
        return next((r["text"] for r in result["results"].values() if has_usable_text(r)), "")

    # --- Node functions (closures over dispatcher / embedder) ---

    async def dispatch_node(state: TurnState, config: RunnableConfig | None = None) -> dict:
        """Fan the query out, or accept replayed provider answers as-is."""
        writer = _get_stream_writer(config)
        replayed = state.get("provider_texts") or []
        if replayed:
            if writer:
                writer({"kind": "dispatch_progress", "message": f"replaying {len(replayed)} response(s)"})
            return {"model_count": len(replayed), "provider_errors": {}}

        if dispatcher is None:
            raise RuntimeError("No provider dispatcher configured and no replayed responses given")

        def on_event(event: DispatchEvent) -> None:
            if not writer or event["kind"] == "delta":
                return
            if event["kind"] == "settled":
                writer(
                    {
                        "kind": "dispatch_settled",
                        "completed": event.get("completed_count", 0),
                        "total": event.get("total_count", 0),
                    }
                )
                return
            status = event.get("status")
            writer(
                {
                    "kind": event["kind"],
                    "provider_id": event.get("provider_id", ""),
                    "status": status.value if isinstance(status, ProviderStatus) else str(status),
                }
            )

        thread_id = state.get("thread_id", "")
        provider_ids = state.get("provider_ids") or settings.providers
        result = await dispatcher.dispatch(
            state["query"],
            provider_ids,
            session_id=thread_id,
            step_id="batch",
            thread_id=thread_id,
            timeout=timeout,
            on_event=on_event,
        )

        texts: list[ProviderText] = []
        for pid in list(provider_ids) + [p for p in result["results"] if p not in provider_ids]:
            r = result["results"].get(pid)
            if r is not None and has_usable_text(r):
                texts.append(ProviderText(provider_id=pid, model_index=len(texts) + 1, text=r["text"]))

        return {
            "dispatch_result": result,
            "provider_texts": texts,
            "provider_errors": {**result["skipped"], **result["errors"]},
            "model_count": len(texts),
        }

    async def shadow_node(state: TurnState) -> dict:
        extraction = extract_statements(state.get("provider_texts", []))
        statements = extraction["statements"]
        return {
            "statements": statements,
            "paragraphs": project_paragraphs(statements),
            "shadow_meta": extraction["meta"],
        }

    async def embed_node(state: TurnState, config: RunnableConfig | None = None) -> dict:
        """Embed query, statements and paragraphs in one batch."""
        writer = _get_stream_writer(config)
        statements = state.get("statements", [])
        paragraphs = state.get("paragraphs", [])
        texts = [state["query"]] + [s["text"] for s in statements] + [p["text"] for p in paragraphs]
        vectors = embed_safely(embedder, texts) if statements else None

        if vectors is None:
            return {
                "query_vector": [],
                "statement_vectors": {},
                "paragraph_vectors": {},
                "embedding_status": unavailable_status(settings.embedding_model),
                "warnings": ["embeddings unavailable: geometry disabled for this turn"],
            }

        n = len(statements)
        if writer:
            writer({"kind": "embed_progress", "message": "complete", "count": len(vectors)})
        return {
            "query_vector": vectors[0],
            "statement_vectors": {s["id"]: v for s, v in zip(statements, vectors[1 : n + 1])},
            "paragraph_vectors": {p["id"]: v for p, v in zip(paragraphs, vectors[n + 1 :])},
            "embedding_status": embedder.status(),
        }

    async def substrate_node(state: TurnState, config: RunnableConfig | None = None) -> dict:
        writer = _get_stream_writer(config)
        paragraphs = state.get("paragraphs", [])
        paragraph_vectors = state.get("paragraph_vectors", {})
        vectors = [paragraph_vectors[p["id"]] for p in paragraphs] if paragraph_vectors else None

        substrate = build_substrate(
            paragraphs,
            vectors,
            k=settings.knn_k,
            bandwidth=settings.basin_bandwidth,
            min_valley_depth_sigma=settings.basin_min_valley_depth_sigma,
        )
        regions = build_regions(substrate)
        substrate = attach_regions(substrate, regions)
        summary = substrate_summary(substrate)

        warnings: list[str] = []
        if substrate["degenerate"]:
            msg = f"degenerate substrate ({substrate['degenerate_reason']}), using coarse heuristics"
            print(f"WARNING: {msg}", file=sys.stderr)
            warnings.append(msg)

        relevance = compute_query_relevance(
            state.get("query_vector") or None,
            state.get("statements", []),
            paragraphs,
            substrate,
            statement_vectors=state.get("statement_vectors", {}),
            paragraph_vectors=paragraph_vectors,
        )
        if writer:
            writer({"kind": "substrate_summary", **summary, "region_count": len(regions)})
        return {
            "substrate": substrate,
            "substrate_summary": summary,
            "regions": regions,
            "query_relevance": relevance,
            "warnings": warnings,
        }

    async def cluster_node(state: TurnState) -> dict:
        paragraphs = state.get("paragraphs", [])
        paragraph_vectors = state.get("paragraph_vectors", {})
        vectors = [paragraph_vectors[p["id"]] for p in paragraphs] if paragraph_vectors else None
        substrate = state.get("substrate")
        clusters = safe_build_clusters(
            paragraphs,
            vectors,
            mutual_edges=substrate["mutual_edges"] if substrate else None,
        )
        return {"clusters": clusters}

    async def map_node(state: TurnState, config: RunnableConfig | None = None) -> dict:
        """Ask the mapper for claims, edges and conditionals over the paragraphs."""
        writer = _get_stream_writer(config)
        raw = state.get("mapper_raw") or ""
        if not raw:
            prompt = build_mapper_prompt(
                state["query"],
                state.get("paragraphs", []),
                state.get("clusters", []),
                state.get("substrate_summary"),
            )
            try:
                raw = await _ask_single(prompt, state, "mapping")
            except (AllProvidersFailedError, ProviderError) as e:
                output = failed_mapper_output("", str(e))
                return {
                    "mapper_output": output,
                    "claims": [],
                    "edges": [],
                    "conditionals": [],
                    "warnings": [f"mapper failed: {output['error']}"],
                }

        output = parse_mapper_output(raw)
        warnings: list[str] = []
        if output["status"] == "parse_failed":
            print(
                f"WARNING: Mapper output could not be parsed, continuing with raw text only: "
                f"{output.get('error', '')}",
                file=sys.stderr,
            )
            warnings.append(f"mapper parse failed: {output.get('error', '')}")
        if writer:
            writer(
                {
                    "kind": "mapper_summary",
                    "status": output["status"],
                    "claims": len(output["claims"]),
                    "edges": len(output["edges"]),
                }
            )
        return {
            "mapper_output": output,
            "edges": output["edges"],
            "conditionals": output["conditionals"],
            "warnings": warnings,
        }

    async def provenance_node(state: TurnState) -> dict:
        mapper_claims = state["mapper_output"]["claims"]
        statement_vectors = state.get("statement_vectors", {})
        claim_vectors: dict[str, list[float]] = {}
        if statement_vectors and mapper_claims:
            vectors = embed_safely(embedder, [claim_embedding_text(mc) for mc in mapper_claims])
            if vectors:
                claim_vectors = {mc["id"]: v for mc, v in zip(mapper_claims, vectors)}

        result = reconstruct_provenance(
            mapper_claims,
            state.get("statements", []),
            state.get("paragraphs", []),
            state.get("regions", []),
            claim_vectors=claim_vectors,
            statement_vectors=statement_vectors,
            paragraph_vectors=state.get("paragraph_vectors", {}),
            model_count=state.get("model_count", 0),
        )
        return {
            "claims": result["claims"],
            "provenance": {k: v for k, v in result.items() if k != "claims"},
        }

    async def structure_node(state: TurnState) -> dict:
        claims, analysis = analyze_structure(
            state.get("claims", []), state.get("edges", []), state.get("model_count", 0)
        )
        return {"claims": claims, "structural": analysis}

    async def claim_graph_node(state: TurnState, config: RunnableConfig | None = None) -> dict:
        writer = _get_stream_writer(config)
        claims, claim_graph = assemble_claim_graph(
            state.get("claims", []), state.get("edges", []), state.get("conditionals", [])
        )
        if writer:
            writer(
                {
                    "kind": "claims_summary",
                    "claims": len(claims),
                    "tiers": len(claim_graph["tiers"]),
                    "forcing_points": len(claim_graph["forcing_points"]),
                }
            )
        return {"claims": claims, "claim_graph": claim_graph}

    async def blast_radius_node(state: TurnState, config: RunnableConfig | None = None) -> dict:
        writer = _get_stream_writer(config)
        claims = state.get("claims", [])
        ownership = statement_ownership(claims)
        result = compute_blast_radius(
            claims,
            state.get("edges", []),
            state["structural"],
            exclusivity=claim_exclusivity(claims, ownership),
            overlap=claim_overlap(claims),
            query_relevance=state.get("query_relevance"),
            statement_models={s["id"]: s["model_index"] for s in state.get("statements", [])},
        )
        if writer:
            writer(
                {
                    "kind": "blast_radius_summary",
                    "axes": len(result["axes"]),
                    "ceiling": result["question_ceiling"],
                    "skip_reason": result["skip_reason"],
                }
            )
        return {"blast_radius": result}

    async def survey_node(state: TurnState) -> dict:
        blast = state["blast_radius"]
        raw = state.get("survey_raw") or ""
        if not raw:
            prompt = build_survey_prompt(
                state["query"], state.get("claims", []), blast["axes"], blast["question_ceiling"]
            )
            try:
                raw = await _ask_single(prompt, state, "survey")
            except (AllProvidersFailedError, ProviderError) as e:
                print(f"WARNING: Survey step failed, no questions this turn: {e}", file=sys.stderr)
                return {"survey_questions": [], "warnings": [f"survey failed: {e}"]}

        questions = parse_survey_output(raw, blast["axes"], blast["question_ceiling"])
        if questions is None:
            print("WARNING: Survey output could not be parsed, no questions this turn", file=sys.stderr)
            return {"survey_questions": [], "warnings": ["survey parse failed"]}
        return {"survey_questions": questions}

    async def audit_node(state: TurnState) -> dict:
        statements = state.get("statements", [])
        paragraphs = state.get("paragraphs", [])
        claims = state.get("claims", [])
        regions = state.get("regions", [])
        substrate = state.get("substrate")
        statement_vectors = state.get("statement_vectors", {})

        fates = build_statement_fates(
            statements, paragraphs, claims, substrate, state.get("query_relevance")
        )
        unattended = (
            find_unattended_regions(substrate, paragraphs, claims, regions, statements)
            if substrate
            else []
        )
        update = {
            "fates": fates,
            "unattended_regions": unattended,
            "completeness": build_completeness_report(fates, unattended, statements, len(regions)),
        }
        if statement_vectors and claims:
            update["alignment"] = compute_alignment(claims, regions, statement_vectors)
        return update

    async def report_node(state: TurnState) -> dict:
        """Assemble the claim artifact and render the Markdown report."""
        artifact = build_artifact(state)
        return {"artifact": artifact, "report": render_report(state, artifact)}

    # --- Routing ---

    def route_after_map(state: TurnState) -> str:
        """Unparseable mapper output skips straight to the audit."""
        if state["mapper_output"]["status"] == "parse_failed":
            return "audit"
        return "provenance"

    def route_after_blast_radius(state: TurnState) -> str:
        if state["blast_radius"]["skip_survey"]:
            return "audit"
        return "survey"

    # --- Build graph ---

    graph = StateGraph(TurnState)

    nodes = {
        "dispatch": dispatch_node,
        "shadow": shadow_node,
        "embed": embed_node,
        "substrate": substrate_node,
        "cluster": cluster_node,
        "map": map_node,
        "provenance": provenance_node,
        "structure": structure_node,
        "claim_graph": claim_graph_node,
        "blast_radius": blast_radius_node,
        "survey": survey_node,
        "audit": audit_node,
        "report": report_node,
    }
    for name, fn in nodes.items():
        graph.add_node(name, _wrap_with_logging(name, fn, event_log) if event_log else fn)

    # Wire edges: dispatch -> shadow -> embed -> substrate -> cluster -> map -> ...
    graph.set_entry_point("dispatch")
    graph.add_edge("dispatch", "shadow")
    graph.add_edge("shadow", "embed")
    graph.add_edge("embed", "substrate")
    graph.add_edge("substrate", "cluster")
    graph.add_edge("cluster", "map")

    # Conditional: map -> provenance, or map -> audit on parse failure
    graph.add_conditional_edges(
        "map",
        route_after_map,
        {"provenance": "provenance", "audit": "audit"},
    )
    graph.add_edge("provenance", "structure")
    graph.add_edge("structure", "claim_graph")
    graph.add_edge("claim_graph", "blast_radius")

    # Conditional: blast_radius -> survey, or blast_radius -> audit when skipped
    graph.add_conditional_edges(
        "blast_radius",
        route_after_blast_radius,
        {"survey": "survey", "audit": "audit"},
    )
    graph.add_edge("survey", "audit")
    graph.add_edge("audit", "report")
    graph.add_edge("report", END)

    return graph.compile(checkpointer=checkpointer)
