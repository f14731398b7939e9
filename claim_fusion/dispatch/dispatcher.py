"""Fan-out dispatcher: one concurrent task per provider, joined by a settlement barrier.

Per dispatch:
  1. input-length limits and circuit-breaker state decide who is skipped
  2. the remaining providers run concurrently, each isolated in its own task
  3. streamed deltas are aggregated per provider so a late failure keeps its text
  4. a caller deadline races the whole fan-out; stragglers are cancelled
  5. health bookkeeping happens once per provider, then "settled" fires once
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field

from claim_fusion.contracts import (
    ClassifiedError,
    ContextStore,
    DispatchEvent,
    DispatchResult,
    ErrorType,
    ProviderAdapter,
    ProviderResult,
    ProviderStatus,
    SoftError,
)
from claim_fusion.dispatch.errors import (
    AllProvidersFailedError,
    CircuitOpenError,
    InputTooLongError,
    ProviderError,
    classify_error,
)
from claim_fusion.dispatch.health import HealthTracker
from claim_fusion.dispatch.limits import is_near_limit, is_too_long

EventCallback = Callable[[DispatchEvent], None]


@dataclass
class ProviderTask:
    """One outstanding request to one provider. Lives until settlement."""

    session_id: str
    step_id: str
    provider_id: str
    prompt: str
    status: ProviderStatus = ProviderStatus.QUEUED
    chunks: list[str] = field(default_factory=list)
    task: asyncio.Task | None = None

    @property
    def aggregated_text(self) -> str:
        return "".join(self.chunks)


def has_usable_text(result: ProviderResult) -> bool:
    return result["status"] == ProviderStatus.COMPLETED and bool(result["text"].strip())


class FanoutDispatcher:
    """Runs a prompt against N providers concurrently."""

    def __init__(
        self,
        adapters: dict[str, ProviderAdapter],
        *,
        health: HealthTracker | None = None,
        context_store: ContextStore | None = None,
        auth_fallbacks: dict[str, str] | None = None,
    ) -> None:
        self._adapters = adapters
        self.health = health or HealthTracker()
        self._context_store = context_store
        self._auth_fallbacks = auth_fallbacks or {}
        self._active: dict[str, dict[str, ProviderTask]] = {}
        self._background: set[asyncio.Task] = set()

    # --- Cancellation registry ---

    def abort(self, session_id: str) -> int:
        """Cancel every in-flight provider task for a session. Returns how many were cancelled."""
        cancelled = 0
        for pt in list(self._active.get(session_id, {}).values()):
            if pt.task is not None and not pt.task.done():
                pt.task.cancel()
                cancelled += 1
        return cancelled

    def in_flight(self, session_id: str) -> list[str]:
        return [
            pid
            for pid, pt in self._active.get(session_id, {}).items()
            if pt.task is not None and not pt.task.done()
        ]

    # --- Public entry points ---

    async def dispatch(
        self,
        prompt: str,
        provider_ids: list[str],
        *,
        session_id: str,
        step_id: str = "batch",
        thread_id: str = "",
        bypass_health: bool = False,
        timeout: float | None = None,
        on_event: EventCallback | None = None,
        allow_fallback: bool = True,
    ) -> DispatchResult:
        """Fan a prompt out and wait for every provider to resolve.

        Raises InputTooLongError when every provider is over its limit and
        AllProvidersFailedError when no provider produced any text. Every other
        failure is reported per provider in the returned result.
        """
        emit = on_event or (lambda _event: None)
        result = await self._dispatch_once(
            prompt,
            provider_ids,
            session_id=session_id,
            step_id=step_id,
            thread_id=thread_id,
            bypass_health=bypass_health,
            timeout=timeout,
            emit=emit,
        )

        if allow_fallback:
            await self._apply_auth_fallbacks(
                result,
                prompt,
                requested=provider_ids,
                thread_id=thread_id,
                bypass_health=bypass_health,
                timeout=timeout,
                emit=emit,
            )

        emit(
            DispatchEvent(
                kind="settled",
                session_id=session_id,
                statuses=dict(result["statuses"]),
                completed_count=result["completed_count"],
                total_count=result["total_count"],
                result=result,
            )
        )
        self._persist_contexts(session_id, result, role=step_id)

        if not any(has_usable_text(r) for r in result["results"].values()):
            raise AllProvidersFailedError(result["errors"])
        return result

    async def stream(
        self, prompt: str, provider_ids: list[str], **kwargs
    ) -> AsyncIterator[DispatchEvent]:
        """Async-iterate progress events; the last one is "settled".

        Fatal fan-out errors are re-raised after the settled event is yielded.
        """
        queue: asyncio.Queue = asyncio.Queue()

        async def _run() -> DispatchResult:
            try:
                return await self.dispatch(
                    prompt, provider_ids, on_event=queue.put_nowait, **kwargs
                )
            finally:
                queue.put_nowait(None)

        task = asyncio.create_task(_run())
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
        finally:
            if not task.done():
                task.cancel()
        await task

    # --- Internals ---

    async def _dispatch_once(
        self,
        prompt: str,
        provider_ids: list[str],
        *,
        session_id: str,
        step_id: str,
        thread_id: str,
        bypass_health: bool,
        timeout: float | None,
        emit: EventCallback,
    ) -> DispatchResult:
        requested = list(dict.fromkeys(provider_ids))
        statuses: dict[str, ProviderStatus] = {pid: ProviderStatus.QUEUED for pid in requested}
        skipped: dict[str, ClassifiedError] = {}
        progress = {"completed": 0, "total": len(requested)}

        def _status(pid: str, status: ProviderStatus) -> None:
            statuses[pid] = status
            if status in (ProviderStatus.COMPLETED, ProviderStatus.FAILED, ProviderStatus.SKIPPED):
                progress["completed"] += 1
            emit(
                DispatchEvent(
                    kind="provider_status",
                    session_id=session_id,
                    provider_id=pid,
                    status=status,
                    completed_count=progress["completed"],
                    total_count=progress["total"],
                )
            )

        # Input length: checked before the breaker so an oversize prompt never
        # consumes a half-open probe.
        configured = [pid for pid in requested if pid in self._adapters]
        too_long = [pid for pid in configured if is_too_long(pid, prompt)]
        if configured and len(too_long) == len(configured):
            raise InputTooLongError(
                f"Prompt of {len(prompt)} chars exceeds the limit of every provider",
                provider_ids=too_long,
            )

        runnable: list[str] = []
        probes: set[str] = set()
        for pid in requested:
            if pid not in self._adapters:
                skipped[pid] = classify_error(
                    ProviderError(f"No adapter configured for '{pid}'", code="unconfigured")
                )
                _status(pid, ProviderStatus.SKIPPED)
                continue
            if pid in too_long:
                skipped[pid] = classify_error(
                    InputTooLongError(f"Prompt too long for {pid} ({len(prompt)} chars)")
                )
                _status(pid, ProviderStatus.SKIPPED)
                continue
            if not bypass_health:
                decision = self.health.should_attempt(pid)
                if not decision["allowed"]:
                    skipped[pid] = classify_error(
                        CircuitOpenError(pid, decision.get("retry_after_ms"))
                    )
                    _status(pid, ProviderStatus.SKIPPED)
                    continue
                if decision.get("is_probe"):
                    probes.add(pid)
            if is_near_limit(pid, prompt):
                print(
                    f"WARNING: prompt of {len(prompt)} chars is close to {pid}'s input limit",
                    file=sys.stderr,
                )
            runnable.append(pid)

        try:
            contexts: dict = {}
            if self._context_store is not None and runnable:
                stored = self._context_store.get_provider_contexts(
                    session_id, thread_id, context_role=step_id
                )
                contexts = {pid: ctx["context"] for pid, ctx in stored.items()}

            registry = self._active.setdefault(session_id, {})
            timed_out: set[str] = set()
            tasks: dict[str, ProviderTask] = {}
            for pid in runnable:
                pt = ProviderTask(session_id=session_id, step_id=step_id, provider_id=pid, prompt=prompt)
                pt.task = asyncio.create_task(
                    self._run_provider(pt, contexts.get(pid), emit, _status, timed_out)
                )
                tasks[pid] = pt
                registry[pid] = pt

            results: dict[str, ProviderResult] = {}
            try:
                if tasks:
                    pending_tasks = {pt.task for pt in tasks.values()}
                    _, pending = await asyncio.wait(pending_tasks, timeout=timeout or None)
                    if pending:
                        for pid, pt in tasks.items():
                            if pt.task in pending:
                                timed_out.add(pid)
                                pt.task.cancel()
                        await asyncio.gather(*pending, return_exceptions=True)
                    for pid, pt in tasks.items():
                        if pt.task.cancelled():
                            # Aborted before the coroutine got to run
                            res = self._failure(pt, ProviderError(f"{pid} aborted", code="aborted"))
                            _status(pid, res["status"])
                            results[pid] = res
                        else:
                            results[pid] = pt.task.result()
            finally:
                for pid, pt in tasks.items():
                    if pt.task is not None and not pt.task.done():
                        pt.task.cancel()
                    if registry.get(pid) is pt:
                        del registry[pid]
                if not registry:
                    self._active.pop(session_id, None)

            # Health bookkeeping: exactly once per provider per dispatch
            recorded: set[str] = set()
            for pid, res in results.items():
                if pid in recorded:
                    continue
                recorded.add(pid)
                if res["status"] == ProviderStatus.COMPLETED and res["soft_error"] is None:
                    self.health.record_success(pid)
                    continue
                code = res["error"]["code"] if res["error"] else res["meta"].get("error_code")
                if code == "aborted":
                    # A caller abort says nothing about provider health
                    continue
                reason = res["error"]["message"] if res["error"] else res["soft_error"]["message"]
                self.health.record_failure(pid, reason)
        finally:
            # Aborted or never-started probes gave no verdict
            for pid in probes:
                self.health.release_probe(pid)

        errors: dict[str, ClassifiedError] = dict(skipped)
        for pid, res in results.items():
            if res["status"] == ProviderStatus.FAILED and res["error"] is not None:
                errors[pid] = res["error"]

        return DispatchResult(
            session_id=session_id,
            step_id=step_id,
            results=results,
            statuses=statuses,
            skipped=skipped,
            errors=errors,
            completed_count=progress["completed"],
            total_count=progress["total"],
        )

    async def _run_provider(
        self,
        pt: ProviderTask,
        context: dict | None,
        emit: EventCallback,
        set_status: Callable[[str, ProviderStatus], None],
        timed_out: set[str],
    ) -> ProviderResult:
        adapter = self._adapters[pt.provider_id]

        def on_chunk(delta: str) -> None:
            if not delta:
                return
            pt.chunks.append(delta)
            if pt.status == ProviderStatus.QUEUED:
                pt.status = ProviderStatus.STREAMING
                set_status(pt.provider_id, ProviderStatus.STREAMING)
            emit(
                DispatchEvent(
                    kind="delta",
                    session_id=pt.session_id,
                    provider_id=pt.provider_id,
                    delta=delta,
                )
            )

        try:
            reply = await adapter.ask(pt.prompt, context, pt.session_id, on_chunk)
        except asyncio.CancelledError:
            code = "timeout" if pt.provider_id in timed_out else "aborted"
            result = self._failure(pt, ProviderError(f"{pt.provider_id} {code}", code=code))
        except Exception as exc:  # noqa: BLE001 - one provider must never sink the fan-out
            result = self._failure(pt, exc)
        else:
            if not reply.get("ok", True):
                err = reply.get("error") or {}
                result = self._failure(
                    pt,
                    ProviderError(
                        err.get("message") or f"{pt.provider_id} returned ok=false",
                        code=err.get("code") or "provider_error",
                        status=err.get("status"),
                        details=err,
                    ),
                )
            else:
                text = reply.get("text") or pt.aggregated_text
                if not text.strip():
                    result = self._failure(
                        pt, ProviderError(f"{pt.provider_id} returned no text", code="empty_response")
                    )
                else:
                    result = ProviderResult(
                        provider_id=pt.provider_id,
                        status=ProviderStatus.COMPLETED,
                        text=text,
                        meta=reply.get("meta") or {},
                        soft_error=reply.get("soft_error"),
                        error=None,
                    )

        pt.status = result["status"]
        set_status(pt.provider_id, result["status"])
        emit(
            DispatchEvent(
                kind="provider_complete",
                session_id=pt.session_id,
                provider_id=pt.provider_id,
                status=result["status"],
            )
        )
        return result

    def _failure(self, pt: ProviderTask, exc: BaseException) -> ProviderResult:
        classified = classify_error(exc)
        partial = pt.aggregated_text
        if partial.strip():
            # Partial answers beat none: keep the streamed text, flag it
            return ProviderResult(
                provider_id=pt.provider_id,
                status=ProviderStatus.COMPLETED,
                text=partial,
                meta={
                    "partial": True,
                    "error_type": classified["error_type"].value,
                    "error_code": classified["code"],
                },
                soft_error=SoftError(name=exc.__class__.__name__, message=classified["message"]),
                error=None,
            )
        return ProviderResult(
            provider_id=pt.provider_id,
            status=ProviderStatus.FAILED,
            text="",
            meta={},
            soft_error=None,
            error=classified,
        )

    async def _apply_auth_fallbacks(
        self,
        result: DispatchResult,
        prompt: str,
        *,
        requested: list[str],
        thread_id: str,
        bypass_health: bool,
        timeout: float | None,
        emit: EventCallback,
    ) -> None:
        """Swap auth-failed providers for their configured substitutes and retry once."""
        substitutes: dict[str, str] = {}
        for pid, err in result["errors"].items():
            if err["error_type"] != ErrorType.PROVIDER_AUTH_FAILED:
                continue
            fallback = self._auth_fallbacks.get(pid)
            if fallback and fallback not in requested and fallback not in substitutes.values():
                substitutes[pid] = fallback
        if not substitutes:
            return

        print(
            "WARNING: auth failure, substituting "
            + ", ".join(f"{src} -> {dst}" for src, dst in substitutes.items()),
            file=sys.stderr,
        )
        try:
            retry = await self._dispatch_once(
                prompt,
                list(substitutes.values()),
                session_id=result["session_id"],
                step_id=result["step_id"],
                thread_id=thread_id,
                bypass_health=bypass_health,
                timeout=timeout,
                emit=emit,
            )
        except InputTooLongError as e:
            print(f"WARNING: auth fallback skipped: {e}", file=sys.stderr)
            return

        origin = {dst: src for src, dst in substitutes.items()}
        for pid, res in retry["results"].items():
            res["fallback_from"] = origin[pid]
            result["results"][pid] = res
        result["statuses"].update(retry["statuses"])
        result["skipped"].update(retry["skipped"])
        result["errors"].update(retry["errors"])
        result["completed_count"] += retry["completed_count"]
        result["total_count"] += retry["total_count"]

    def _persist_contexts(self, session_id: str, result: DispatchResult, *, role: str) -> None:
        """Fire-and-forget write of updated provider contexts."""
        if self._context_store is None:
            return
        updates = {
            pid: res["meta"]["context"]
            for pid, res in result["results"].items()
            if res["status"] == ProviderStatus.COMPLETED and "context" in res["meta"]
        }
        if not updates:
            return

        task = asyncio.create_task(
            self._context_store.persist_provider_contexts(session_id, updates, role)
        )
        self._background.add(task)
        task.add_done_callback(self._on_persist_done)

    def _on_persist_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            print(f"WARNING: provider context persistence failed: {exc}", file=sys.stderr)

    async def drain(self) -> None:
        """Wait for outstanding background persistence writes."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
