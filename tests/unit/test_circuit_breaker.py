import asyncio

import pytest

from ai_responder.resilience.circuit_breaker import BreakerState, CircuitBreaker
from ai_responder.telemetry.events import RecordingTelemetry


class ManualClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


async def _boom():
    raise RuntimeError("pipeline down")


async def _ok():
    return "primary"


async def _fallback():
    return "fallback"


def _breaker(clock, **kwargs):
    return CircuitBreaker(failure_threshold=2, reset_timeout_s=30.0, clock=clock, **kwargs)


@pytest.mark.asyncio
async def test_opens_after_threshold_and_serves_fallback():
    clock = ManualClock()
    telemetry = RecordingTelemetry()
    breaker = _breaker(clock, telemetry=telemetry)

    assert await breaker.call(_boom, _fallback) == "fallback"
    assert breaker.state == BreakerState.CLOSED
    assert await breaker.call(_boom, _fallback) == "fallback"
    assert breaker.state == BreakerState.OPEN

    calls = []

    async def primary():
        calls.append(1)
        return "primary"

    assert await breaker.call(primary, _fallback) == "fallback"
    assert calls == []
    reasons = [e["reason"] for e in telemetry.events if e["name"] == "circuit_fallback_used"]
    assert reasons == ["primary_failed", "primary_failed", "circuit_open"]


@pytest.mark.asyncio
async def test_half_open_trial_success_closes():
    clock = ManualClock()
    telemetry = RecordingTelemetry()
    breaker = _breaker(clock, telemetry=telemetry)
    await breaker.call(_boom, _fallback)
    await breaker.call(_boom, _fallback)

    clock.now += 30.0
    assert await breaker.call(_ok, _fallback) == "primary"
    assert breaker.state == BreakerState.CLOSED
    assert breaker.snapshot().failure_count == 0

    transitions = [(e["from"], e["to"]) for e in telemetry.events if e["name"] == "circuit_state_changed"]
    assert transitions == [("closed", "open"), ("open", "half_open"), ("half_open", "closed")]


@pytest.mark.asyncio
async def test_trial_failure_reopens_for_a_full_timeout():
    clock = ManualClock()
    breaker = _breaker(clock)
    await breaker.call(_boom, _fallback)
    await breaker.call(_boom, _fallback)

    clock.now += 30.0
    assert await breaker.call(_boom, _fallback) == "fallback"
    assert breaker.state == BreakerState.OPEN

    clock.now += 10.0
    assert await breaker.call(_ok, _fallback) == "fallback"
    clock.now += 20.0
    assert await breaker.call(_ok, _fallback) == "primary"


@pytest.mark.asyncio
async def test_only_one_trial_in_half_open():
    clock = ManualClock()
    breaker = _breaker(clock)
    await breaker.call(_boom, _fallback)
    await breaker.call(_boom, _fallback)
    clock.now += 30.0

    release = asyncio.Event()
    started = asyncio.Event()

    async def slow_primary():
        started.set()
        await release.wait()
        return "primary"

    trial = asyncio.create_task(breaker.call(slow_primary, _fallback))
    await started.wait()
    assert breaker.state == BreakerState.HALF_OPEN
    assert await breaker.call(_ok, _fallback) == "fallback"

    release.set()
    assert await trial == "primary"
    assert breaker.state == BreakerState.CLOSED


@pytest.mark.asyncio
async def test_failed_result_counts_as_failure():
    breaker = _breaker(ManualClock())

    async def failed():
        return {"success": False}

    for _ in range(2):
        out = await breaker.call(failed, _fallback, is_failure=lambda r: not r["success"])
        assert out == "fallback"
    assert breaker.state == BreakerState.OPEN


@pytest.mark.asyncio
async def test_success_resets_failure_count():
    breaker = _breaker(ManualClock())
    await breaker.call(_boom, _fallback)
    await breaker.call(_ok, _fallback)
    await breaker.call(_boom, _fallback)
    assert breaker.state == BreakerState.CLOSED
    assert breaker.snapshot().failure_count == 1


@pytest.mark.asyncio
async def test_cancelled_trial_releases_the_slot():
    clock = ManualClock()
    breaker = _breaker(clock)
    await breaker.call(_boom, _fallback)
    await breaker.call(_boom, _fallback)
    clock.now += 30.0

    started = asyncio.Event()

    async def hangs():
        started.set()
        await asyncio.sleep(3600)

    trial = asyncio.create_task(breaker.call(hangs, _fallback))
    await started.wait()
    trial.cancel()
    with pytest.raises(asyncio.CancelledError):
        await trial

    assert await breaker.call(_ok, _fallback) == "primary"


@pytest.mark.asyncio
async def test_late_success_does_not_close_an_open_circuit():
    clock = ManualClock()
    breaker = _breaker(clock)

    release = asyncio.Event()
    started = asyncio.Event()

    async def slow_ok():
        started.set()
        await release.wait()
        return "primary"

    slow = asyncio.create_task(breaker.call(slow_ok, _fallback))
    await started.wait()
    await breaker.call(_boom, _fallback)
    await breaker.call(_boom, _fallback)
    assert breaker.state == BreakerState.OPEN

    release.set()
    assert await slow == "primary"
    assert breaker.state == BreakerState.OPEN
    assert await breaker.call(_ok, _fallback) == "fallback"

    clock.now += 30.0
    assert await breaker.call(_ok, _fallback) == "primary"
    assert breaker.state == BreakerState.CLOSED
