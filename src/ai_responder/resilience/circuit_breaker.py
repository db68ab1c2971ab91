from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ai_responder.telemetry.noop import NoOpTelemetry

T = TypeVar("T")


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerSnapshot:
    state: BreakerState
    failure_count: int
    last_failure_at: Optional[float]
    opened_at: Optional[float]


@dataclass(frozen=True)
class CircuitOpenFallback:
    """Routing decision: the request went to the fallback path. Logged, never raised."""

    breaker: str
    state: BreakerState
    reason: str
    trace_id: Optional[str] = None

    def to_event(self) -> dict:
        return {"breaker": self.breaker, "state": self.state.value, "reason": self.reason, "trace_id": self.trace_id}


@dataclass
class CircuitBreaker:
    failure_threshold: int = 5
    reset_timeout_s: float = 60.0
    clock: Callable[[], float] = time.monotonic
    telemetry: Any = None
    name: str = "response_pipeline"

    def __post_init__(self):
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._last_failure_at: float | None = None
        self._opened_at: float | None = None
        self._trial_in_flight = False
        self._lock = asyncio.Lock()
        if self.telemetry is None:
            self.telemetry = NoOpTelemetry()

    @property
    def state(self) -> BreakerState:
        return self._state

    def snapshot(self) -> CircuitBreakerSnapshot:
        return CircuitBreakerSnapshot(
            state=self._state,
            failure_count=self._failures,
            last_failure_at=self._last_failure_at,
            opened_at=self._opened_at,
        )

    def _emit(self, name: str, payload: dict) -> None:
        logging.info(json.dumps({"event": name, **payload}, ensure_ascii=False))
        self.telemetry.event(name, payload)

    def _transition(self, new_state: BreakerState) -> None:
        old = self._state
        if old == new_state:
            return
        self._state = new_state
        self._emit(
            "circuit_state_changed",
            {"breaker": self.name, "from": old.value, "to": new_state.value, "failure_count": self._failures},
        )

    async def _admit(self) -> str:
        """Returns "primary", "trial" or a fallback reason."""
        async with self._lock:
            if self._state == BreakerState.OPEN and self.clock() - (self._opened_at or 0.0) >= self.reset_timeout_s:
                self._transition(BreakerState.HALF_OPEN)
            if self._state == BreakerState.CLOSED:
                return "primary"
            if self._state == BreakerState.HALF_OPEN:
                if not self._trial_in_flight:
                    self._trial_in_flight = True
                    return "trial"
                return "trial_in_flight"
            return "circuit_open"

    async def record_success(self, *, trial: bool = False) -> None:
        async with self._lock:
            if not trial:
                # a late success from before the circuit opened must not close it
                if self._state == BreakerState.CLOSED:
                    self._failures = 0
                return
            self._trial_in_flight = False
            if self._state != BreakerState.HALF_OPEN:
                return
            self._failures = 0
            self._opened_at = None
            self._transition(BreakerState.CLOSED)

    async def record_failure(self, *, trial: bool = False, reason: str = "error") -> None:
        async with self._lock:
            now = self.clock()
            self._last_failure_at = now
            if trial:
                self._trial_in_flight = False
                self._opened_at = now
                self._transition(BreakerState.OPEN)
                return
            if self._state != BreakerState.CLOSED:
                return
            self._failures += 1
            logging.warning(
                json.dumps(
                    {"event": "circuit_failure_recorded", "breaker": self.name,
                     "failure_count": self._failures, "reason": reason},
                    ensure_ascii=False,
                )
            )
            if self._failures >= self.failure_threshold:
                self._opened_at = now
                self._transition(BreakerState.OPEN)

    async def _release_trial(self) -> None:
        async with self._lock:
            self._trial_in_flight = False

    async def call(
        self,
        primary: Callable[[], Awaitable[T]],
        fallback: Callable[[], Awaitable[T]],
        *,
        is_failure: Callable[[T], bool] | None = None,
        trace_id: str | None = None,
    ) -> T:
        """
        Runs `primary` while the circuit allows it, otherwise `fallback`.
        A primary exception, or a result flagged by `is_failure`, counts as a failure and is served by `fallback`.
        """
        admission = await self._admit()
        if admission not in ("primary", "trial"):
            return await self._fallback(fallback, reason=admission, trace_id=trace_id)

        trial = admission == "trial"
        try:
            result = await primary()
        except asyncio.CancelledError:
            if trial:
                await self._release_trial()
            raise
        except Exception as exc:
            reason = getattr(exc, "code", type(exc).__name__)
            await self.record_failure(trial=trial, reason=reason)
            return await self._fallback(fallback, reason="primary_failed", trace_id=trace_id)

        if is_failure is not None and is_failure(result):
            await self.record_failure(trial=trial, reason="failed_result")
            return await self._fallback(fallback, reason="primary_failed", trace_id=trace_id)
        await self.record_success(trial=trial)
        return result

    async def _fallback(self, fallback: Callable[[], Awaitable[T]], *, reason: str, trace_id: str | None) -> T:
        decision = CircuitOpenFallback(breaker=self.name, state=self._state, reason=reason, trace_id=trace_id)
        self._emit("circuit_fallback_used", decision.to_event())
        return await fallback()
