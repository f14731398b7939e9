"""CLI entry point: python -m claim_fusion <question>"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import os
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from claim_fusion.config import Settings, get_settings
from claim_fusion.contracts import ProviderText
from claim_fusion.dispatch.errors import AllProvidersFailedError, InputTooLongError
from claim_fusion.graph.builder import build_graph
from claim_fusion.reporting.export import build_artifact, export_artifact
from claim_fusion.streaming import StreamDisplay


def _generate_thread_id() -> str:
    """Generate a unique thread ID: turn-YYYYMMDD-HHMMSS-XXXX."""
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    suffix = os.urandom(2).hex()
    return f"turn-{ts}-{suffix}"


@asynccontextmanager
async def _make_checkpointer(settings: Settings, db_path: str):
    """Yield the appropriate checkpointer based on settings, or None."""
    if settings.checkpoint_backend == "none":
        yield None
        return

    from langgraph.checkpoint.sqlite.aio import AsyncSqliteSaver

    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    async with AsyncSqliteSaver.from_conn_string(db_path) as checkpointer:
        yield checkpointer


def load_responses(path: str | Path) -> tuple[list[ProviderText], str, str]:
    """Read recorded model answers for replay.

    Accepts either a list of ``{"provider_id", "text"}`` objects or an object
    ``{"responses": [...], "mapper": "...", "survey": "..."}``. Returns the
    provider texts (1-based model indices in file order) plus the recorded
    mapper and survey replies ("" when absent).
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, list):
        data = {"responses": data}
    if not isinstance(data, dict) or not isinstance(data.get("responses"), list):
        raise ValueError(f"{path}: expected a list of responses or an object with 'responses'")

    texts: list[ProviderText] = []
    for i, item in enumerate(data["responses"]):
        if not isinstance(item, dict) or not str(item.get("text") or "").strip():
            continue
        texts.append(
            ProviderText(
                provider_id=str(item.get("provider_id") or f"model_{i + 1}"),
                model_index=len(texts) + 1,
                text=str(item["text"]),
            )
        )
    return texts, str(data.get("mapper") or ""), str(data.get("survey") or "")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="claim-fusion",
        description="Ask several models at once and fuse their answers into a claim map",
    )
    parser.add_argument(
        "question",
        type=str,
        nargs="?",
        default=None,
        help="The question to put to every provider",
    )
    parser.add_argument(
        "--providers",
        type=str,
        nargs="+",
        default=None,
        help="Provider ids to ask (default: PROVIDERS from config)",
    )
    parser.add_argument(
        "--responses",
        type=str,
        default=None,
        metavar="FILE",
        help="Replay recorded provider answers from a JSON file instead of dispatching",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output file path for the report (default: stdout + output/<timestamp>.md)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds before an unfinished fan-out is cut off (default: DISPATCH_TIMEOUT)",
    )
    parser.add_argument(
        "--no-stream",
        action="store_true",
        default=False,
        help="Disable streaming output (use blocking ainvoke)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=False,
        help="Show detailed progress during streaming",
    )
    parser.add_argument(
        "--no-log",
        action="store_true",
        default=False,
        help="Disable run event logging",
    )
    parser.add_argument(
        "--list-threads",
        action="store_true",
        default=False,
        help="List recent turns from the checkpoint database",
    )
    parser.add_argument(
        "--dump-state",
        type=str,
        default=None,
        metavar="THREAD_ID",
        help="Export checkpoint state as JSON for a given thread ID",
    )
    args = parser.parse_args(argv)

    standalone = args.list_threads or args.dump_state
    if not args.question and not standalone:
        parser.error("a question is required (or use --list-threads / --dump-state THREAD_ID)")

    return args


async def _execute(
    graph,
    input_state: dict,
    config: dict,
    *,
    no_stream: bool,
    verbose: bool,
) -> dict:
    """Execute the graph with streaming or blocking invocation. Returns the final state."""
    if no_stream:
        return await graph.ainvoke(input_state, config=config)

    display = StreamDisplay(verbose=verbose)
    final: dict = {}

    async for event in graph.astream(
        input_state,
        config=config,
        stream_mode=["updates", "custom", "values"],
    ):
        if isinstance(event, tuple) and len(event) == 2:
            stream_mode, payload = event
            if stream_mode == "updates":
                display.handle_update(payload)
            elif stream_mode == "custom":
                display.handle_custom(payload)
            elif stream_mode == "values":
                final = payload

    return final


def _output_report(result: dict, *, output_path_override: str | None, question: str) -> None:
    """Print report to stdout and save it, with the JSON artifact beside it."""
    report = result.get("report", "")
    if not report:
        print("WARNING: No report generated.", file=sys.stderr)
        sys.exit(1)

    sys.stdout.buffer.write(report.encode("utf-8"))
    sys.stdout.buffer.write(b"\n")
    sys.stdout.buffer.flush()

    output_dir = Path(__file__).resolve().parent.parent / "output"

    if output_path_override:
        output_path = Path(output_path_override)
    else:
        ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        safe_q = "".join(c if c.isalnum() or c in "-_ " else "" for c in question[:50])
        safe_q = safe_q.strip().replace(" ", "-").lower()
        output_path = output_dir / f"{ts}-{safe_q}.md"

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(report, encoding="utf-8")
    print(f"\nReport saved to: {output_path}", file=sys.stderr)

    artifact = result.get("artifact") or build_artifact(result)
    json_path = output_path.with_suffix(".json")
    if export_artifact(artifact, json_path):
        print(f"Artifact saved to: {json_path}", file=sys.stderr)

    completeness = artifact.get("completeness") or {}
    coverage = completeness.get("statements", {}).get("coverage_ratio")
    coverage_str = f"{coverage:.0%}" if coverage is not None else "n/a"
    print(
        f"Completed: {len(result.get('provider_texts', []))} model(s) | "
        f"{len(artifact['statements'])} statements | {len(artifact['claims'])} claims | "
        f"coverage {coverage_str} | mapper {artifact['mapper_status']}",
        file=sys.stderr,
    )


async def _list_threads(settings: Settings, db_path: str) -> None:
    """List recent turns from the checkpoint database."""
    if settings.checkpoint_backend == "none":
        print("Checkpointing is disabled.", file=sys.stderr)
        return

    if not Path(db_path).exists():
        print("No checkpoint database found.", file=sys.stderr)
        return

    async with _make_checkpointer(settings, db_path) as checkpointer:
        seen: dict[str, str] = {}  # thread_id -> status (first = latest checkpoint)
        async for cp in checkpointer.alist(None, limit=100):
            thread_id = cp.config["configurable"].get("thread_id", "unknown")
            if thread_id in seen:
                continue
            has_next = bool(cp.metadata.get("writes"))
            seen[thread_id] = "in-progress" if has_next else "completed"
        if not seen:
            print("No threads found.", file=sys.stderr)
            return
        for thread_id, status in seen.items():
            print(f"  {thread_id}  [{status}]")


async def _dump_state(settings: Settings, db_path: str, thread_id: str, output: str | None) -> None:
    """Export checkpoint state as JSON for a given thread ID."""
    if settings.checkpoint_backend == "none":
        print("ERROR: Checkpointing is disabled.", file=sys.stderr)
        sys.exit(1)

    if not Path(db_path).exists():
        print(f"ERROR: Checkpoint database not found: {db_path}", file=sys.stderr)
        sys.exit(1)

    async with _make_checkpointer(settings, db_path) as checkpointer:
        graph = build_graph(settings, checkpointer=checkpointer)
        config = {"configurable": {"thread_id": thread_id}}

        snapshot = await graph.aget_state(config=config)
        if not snapshot or not snapshot.values:
            print(f"ERROR: No checkpoint found for thread '{thread_id}'", file=sys.stderr)
            sys.exit(1)

        state_json = json.dumps(snapshot.values, indent=2, default=str, ensure_ascii=False)

        if output:
            Path(output).write_text(state_json, encoding="utf-8")
            print(f"State exported to: {output}", file=sys.stderr)
        else:
            print(state_json)


def _make_dispatcher(settings: Settings, provider_ids: list[str], context_dir: str, thread_id: str):
    """Adapters for the fan-out, the mapper and any auth fallbacks; None if none have credentials."""
    from claim_fusion.dispatch import build_adapters
    from claim_fusion.dispatch.dispatcher import FanoutDispatcher
    from claim_fusion.dispatch.health import HealthTracker
    from claim_fusion.sessions.store import ProviderContextStore

    wanted = list(provider_ids) + [settings.mapper_provider] + list(settings.auth_fallbacks.values())
    adapters = build_adapters(wanted, settings)
    if not adapters:
        return None
    return FanoutDispatcher(
        adapters,
        health=HealthTracker(
            failure_threshold=settings.circuit_failure_threshold,
            failure_window_s=settings.circuit_failure_window_s,
            cooldown_s=settings.circuit_cooldown_s,
        ),
        context_store=ProviderContextStore(context_dir, thread_id=thread_id),
        auth_fallbacks=settings.auth_fallbacks,
    )


async def run(args: argparse.Namespace) -> None:
    settings = get_settings()
    if args.timeout is not None:
        settings = dataclasses.replace(settings, dispatch_timeout=args.timeout)

    # Replayed answers (loaded before validation: a full replay needs no mapper credentials)
    provider_texts: list[ProviderText] = []
    mapper_raw = survey_raw = ""
    if args.responses:
        try:
            provider_texts, mapper_raw, survey_raw = load_responses(args.responses)
        except (OSError, ValueError) as e:
            print(f"ERROR: cannot read responses: {e}", file=sys.stderr)
            sys.exit(1)

    # Validate
    errors = settings.validate(require_mapper=not (provider_texts and mapper_raw))
    if errors:
        for err in errors:
            print(f"ERROR: {err}", file=sys.stderr)
        sys.exit(1)
    for warning in settings.warnings():
        print(f"WARNING: {warning}", file=sys.stderr)

    # Resolve paths
    project_root = Path(__file__).resolve().parent.parent
    db_path = str(project_root / settings.checkpoint_db)
    run_log_dir = str(project_root / settings.run_log_dir)
    context_dir = str(project_root / settings.context_dir)

    # --- Standalone operations (no graph execution) ---

    if args.list_threads:
        await _list_threads(settings, db_path)
        return

    if args.dump_state:
        await _dump_state(settings, db_path, args.dump_state, args.output)
        return

    # --- New turn ---

    from claim_fusion.event_log.writer import EventLog
    from claim_fusion.geometry.embeddings import get_embedding_provider

    provider_ids = args.providers or settings.providers
    thread_id = _generate_thread_id()
    dispatcher = _make_dispatcher(settings, provider_ids, context_dir, thread_id)
    if dispatcher is None and not provider_texts:
        print("ERROR: No provider has credentials and no --responses file was given.", file=sys.stderr)
        sys.exit(1)
    embedder = get_embedding_provider(settings.embedding_model)

    event_log = None if args.no_log else EventLog(run_log_dir, thread_id)

    initial_state = {
        "query": args.question,
        "thread_id": thread_id,
        "provider_ids": provider_ids,
        "provider_texts": provider_texts,
        "mapper_raw": mapper_raw,
        "survey_raw": survey_raw,
        "warnings": [],
    }

    print(f"Thread: {thread_id}", file=sys.stderr)
    print(f"Question: {args.question}", file=sys.stderr)
    if provider_texts:
        print(f"Replaying {len(provider_texts)} recorded response(s)", file=sys.stderr)
    else:
        print(f"Providers: {', '.join(provider_ids)}", file=sys.stderr)
    print("---", file=sys.stderr)

    async with _make_checkpointer(settings, db_path) as checkpointer:
        graph = build_graph(
            settings,
            dispatcher=dispatcher,
            embedder=embedder,
            checkpointer=checkpointer,
            event_log=event_log,
        )
        config = {"configurable": {"thread_id": thread_id}} if checkpointer else {}

        try:
            result = await _execute(
                graph,
                initial_state,
                config,
                no_stream=args.no_stream,
                verbose=args.verbose,
            )
        except (AllProvidersFailedError, InputTooLongError) as e:
            print(f"ERROR: {e}", file=sys.stderr)
            sys.exit(1)
        finally:
            if dispatcher is not None:
                await dispatcher.drain()

    _output_report(result, output_path_override=args.output, question=args.question)

    if event_log is not None:
        log_summary = event_log.summary()
        print(
            f"Event log: {event_log.path} ({log_summary['nodes']} nodes, "
            f"{log_summary['elapsed_s']:.1f}s, {log_summary['warnings']} warning(s))",
            file=sys.stderr,
        )


def main() -> None:
    args = parse_args()
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
