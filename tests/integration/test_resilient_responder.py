import pytest

from ai_responder.domain.models import GenerateOptions
from ai_responder.errors import ValidationError
from ai_responder.fakes.fake_llm import FakeLLM
from ai_responder.llm.errors import LLMError
from ai_responder.resilience.circuit_breaker import BreakerState, CircuitBreaker
from ai_responder.resilience.legacy import CANNED_ESCALATION_MESSAGE, LegacyResponder
from ai_responder.resilience.responder import ResilientResponder

from support import TENANT_ID, Stack


def _responder(stack, legacy_llm, *, threshold=2):
    legacy = LegacyResponder(
        llm=legacy_llm,
        cache=stack.cache,
        data_source=stack.data,
        telemetry=stack.telemetry,
    )
    breaker = CircuitBreaker(failure_threshold=threshold, reset_timeout_s=60.0, telemetry=stack.telemetry)
    return ResilientResponder(service=stack.service, legacy=legacy, breaker=breaker)


@pytest.mark.asyncio
async def test_healthy_pipeline_is_not_marked_fallback():
    stack = Stack()
    responder = _responder(stack, FakeLLM(drafts=["legacy"]))
    result = await responder.generate(TENANT_ID, "Hola", GenerateOptions(is_preview=True))
    assert result.used_fallback is False
    assert result.response == "Con gusto te ayudo."
    assert responder.breaker.state == BreakerState.CLOSED


@pytest.mark.asyncio
async def test_breaker_opens_and_legacy_answers():
    stack = Stack(llm=FakeLLM(raise_exc=RuntimeError("graph down"), raise_on=("text",)))
    legacy_llm = FakeLLM(drafts=["Hola, soy Sofía. ¿En qué te ayudo?"])
    responder = _responder(stack, legacy_llm)
    options = GenerateOptions(is_preview=True)

    for _ in range(2):
        result = await responder.generate(TENANT_ID, "Hola", options)
        assert result.used_fallback is True
        assert result.success is True
        assert result.response == "Hola, soy Sofía. ¿En qué te ayudo?"
    assert responder.breaker.state == BreakerState.OPEN

    pipeline_calls = len(stack.llm.calls)
    result = await responder.generate(TENANT_ID, "Hola", options)
    assert result.used_fallback is True
    assert len(stack.llm.calls) == pipeline_calls
    assert "circuit_fallback_used" in stack.telemetry.names()


@pytest.mark.asyncio
async def test_legacy_uses_cached_prompt():
    stack = Stack(llm=FakeLLM(raise_exc=RuntimeError("graph down"), raise_on=("text",), synthesized=["PROMPT V1"]))
    legacy_llm = FakeLLM(drafts=["ok"])
    responder = _responder(stack, legacy_llm)
    result = await responder.generate(TENANT_ID, "Hola", GenerateOptions(is_preview=True))

    assert result.prompt_source == "cache"
    assert legacy_llm.calls[0]["messages"][0] == {"role": "system", "content": "PROMPT V1"}
    assert result.agents_used == ("legacy",)


@pytest.mark.asyncio
async def test_legacy_failure_returns_canned_handoff():
    stack = Stack(llm=FakeLLM(raise_exc=RuntimeError("graph down"), raise_on=("text",)))
    responder = _responder(stack, FakeLLM(raise_exc=LLMError("provider down")))
    result = await responder.generate(TENANT_ID, "Hola", GenerateOptions(is_preview=True))

    assert result.response == CANNED_ESCALATION_MESSAGE
    assert (result.escalated, result.escalation_reason) == (True, "fallback_unavailable")
    assert result.used_fallback is True
    assert "fallback_strategy_used" in stack.telemetry.names()


@pytest.mark.asyncio
async def test_validation_error_does_not_trip_breaker():
    stack = Stack()
    responder = _responder(stack, FakeLLM(), threshold=1)
    with pytest.raises(ValidationError):
        await responder.generate(TENANT_ID, "", GenerateOptions())
    assert responder.breaker.state == BreakerState.CLOSED
    assert responder.breaker.snapshot().failure_count == 0
