"""Per-provider circuit breaker.

closed -> open after `failure_threshold` failures inside a sliding window.
open -> half_open once the cooldown has elapsed; exactly one probe is let through.
half_open -> closed on success, back to open on failure.
A probe that never reports (aborted, or never started) is released with
`release_probe`, which re-opens the circuit with its cooldown already served.

State is partitioned by provider id and every mutation holds that provider's
lock, so concurrent dispatches never need cross-provider locking.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

from claim_fusion.contracts import AttemptDecision, CircuitSnapshot, CircuitStatus

DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_FAILURE_WINDOW_S = 60.0
DEFAULT_COOLDOWN_S = 30.0


@dataclass
class _CircuitState:
    status: CircuitStatus = CircuitStatus.CLOSED
    failures: deque = field(default_factory=deque)  # monotonic timestamps
    opened_at: float | None = None
    last_error: str | None = None
    lock: threading.Lock = field(default_factory=threading.Lock)


class HealthTracker:
    """Process-wide circuit-breaker state keyed by provider id."""

    def __init__(
        self,
        *,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        failure_window_s: float = DEFAULT_FAILURE_WINDOW_S,
        cooldown_s: float = DEFAULT_COOLDOWN_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.failure_window_s = failure_window_s
        self.cooldown_s = cooldown_s
        self._clock = clock
        self._states: dict[str, _CircuitState] = {}
        self._registry_lock = threading.Lock()

    def _state(self, provider_id: str) -> _CircuitState:
        with self._registry_lock:
            state = self._states.get(provider_id)
            if state is None:
                state = _CircuitState()
                self._states[provider_id] = state
            return state

    def _prune(self, state: _CircuitState, now: float) -> None:
        cutoff = now - self.failure_window_s
        while state.failures and state.failures[0] < cutoff:
            state.failures.popleft()

    def should_attempt(self, provider_id: str) -> AttemptDecision:
        state = self._state(provider_id)
        with state.lock:
            if state.status == CircuitStatus.CLOSED:
                return AttemptDecision(allowed=True)

            if state.status == CircuitStatus.OPEN:
                now = self._clock()
                opened_at = state.opened_at if state.opened_at is not None else now
                elapsed = now - opened_at
                if elapsed >= self.cooldown_s:
                    state.status = CircuitStatus.HALF_OPEN
                    return AttemptDecision(allowed=True, is_probe=True)
                return AttemptDecision(
                    allowed=False,
                    reason="circuit_open",
                    retry_after_ms=int((self.cooldown_s - elapsed) * 1000),
                )

            # Half-open: a probe is already in flight
            return AttemptDecision(allowed=False, reason="circuit_half_open")

    def record_success(self, provider_id: str) -> None:
        state = self._state(provider_id)
        with state.lock:
            state.failures.clear()
            state.status = CircuitStatus.CLOSED
            state.opened_at = None
            state.last_error = None

    def record_failure(self, provider_id: str, error: BaseException | str | None = None) -> None:
        state = self._state(provider_id)
        with state.lock:
            now = self._clock()
            state.last_error = str(error) if error is not None else None

            if state.status == CircuitStatus.HALF_OPEN:
                state.status = CircuitStatus.OPEN
                state.opened_at = now
                return

            state.failures.append(now)
            self._prune(state, now)
            if len(state.failures) >= self.failure_threshold:
                state.status = CircuitStatus.OPEN
                state.opened_at = now

    def release_probe(self, provider_id: str) -> None:
        """Give back a half-open probe that produced no verdict; the next attempt probes again."""
        state = self._state(provider_id)
        with state.lock:
            if state.status != CircuitStatus.HALF_OPEN:
                return
            state.status = CircuitStatus.OPEN
            state.opened_at = self._clock() - self.cooldown_s

    def reset(self, provider_id: str) -> None:
        """Force a provider's circuit closed and forget its failures."""
        self.record_success(provider_id)

    def snapshot(self, provider_id: str) -> CircuitSnapshot:
        state = self._state(provider_id)
        with state.lock:
            now = self._clock()
            self._prune(state, now)
            retry_after_ms = None
            if state.status == CircuitStatus.OPEN and state.opened_at is not None:
                remaining = self.cooldown_s - (now - state.opened_at)
                retry_after_ms = max(0, int(remaining * 1000))
            return CircuitSnapshot(
                provider_id=provider_id,
                status=state.status,
                failures_in_window=len(state.failures),
                opened_at=state.opened_at,
                retry_after_ms=retry_after_ms,
                last_error=state.last_error,
            )

    def health_report(self) -> dict[str, CircuitSnapshot]:
        with self._registry_lock:
            provider_ids = list(self._states)
        return {pid: self.snapshot(pid) for pid in provider_ids}
