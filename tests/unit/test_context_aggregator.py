import asyncio
from dataclasses import replace

import pytest

from ai_responder.errors import ContextLoadFailed
from ai_responder.fakes.fake_llm import FakeLLM
from ai_responder.orchestrator.context_aggregator import ContextAggregator, ContextTimeouts
from ai_responder.utils.hashing import compute_context_hash

from support import TENANT_ID, Stack, make_data_source, make_snapshot


class SlowLLM(FakeLLM):
    async def synthesize(self, prompt, *, config=None, context=None):
        await asyncio.sleep(0.01)
        return await super().synthesize(prompt, config=config, context=context)


@pytest.mark.asyncio
async def test_first_generation_scenario_caches_version_one():
    stack = Stack(llm=FakeLLM(synthesized=["Eres Sofía de Clínica Sonrisa."]))
    resolution = await stack.aggregator.get_optimized_prompt(TENANT_ID, "whatsapp")
    assert resolution.source == "generated"
    assert resolution.from_cache is False
    assert resolution.version == 1
    row = await stack.cache.get_any(TENANT_ID, "whatsapp")
    assert row.source_hash == compute_context_hash(make_snapshot())


@pytest.mark.asyncio
async def test_get_optimized_prompt_is_idempotent():
    stack = Stack()
    first = await stack.aggregator.get_optimized_prompt(TENANT_ID, "whatsapp")
    second = await stack.aggregator.get_optimized_prompt(TENANT_ID, "whatsapp")
    await stack.background.drain()
    assert second.from_cache is True
    assert second.source == "cache"
    assert (second.prompt, second.version) == (first.prompt, first.version)
    assert stack.llm.ops() == ["synthesize"]
    assert stack.store.rows[(TENANT_ID, "whatsapp")].usage_count == 1


@pytest.mark.asyncio
async def test_invalidate_triggers_exactly_one_regeneration():
    stack = Stack(llm=SlowLLM(synthesized=["v1", "v2"]))
    await stack.aggregator.get_optimized_prompt(TENANT_ID, "whatsapp")
    await stack.cache.invalidate(TENANT_ID, "whatsapp")

    results = await asyncio.gather(
        *[stack.aggregator.get_optimized_prompt(TENANT_ID, "whatsapp") for _ in range(4)]
    )
    assert stack.llm.ops() == ["synthesize", "synthesize"]
    assert {r.version for r in results} == {2}
    assert sum(1 for r in results if r.source == "generated") == 1
    assert all(r.prompt == "v2" for r in results)


@pytest.mark.asyncio
async def test_business_change_regenerates_with_new_hash():
    data = make_data_source()
    stack = Stack(data_source=data)
    await stack.aggregator.get_optimized_prompt(TENANT_ID, "whatsapp")
    data.snapshots[TENANT_ID] = replace(make_snapshot(), custom_instructions="Sé breve")
    assert await stack.aggregator.needs_regeneration(TENANT_ID, "whatsapp") is True
    resolution = await stack.aggregator.get_optimized_prompt(TENANT_ID, "whatsapp")
    assert resolution.source == "generated"
    assert resolution.version == 2


@pytest.mark.asyncio
async def test_generation_failure_serves_stale_prompt():
    stack = Stack(llm=FakeLLM(synthesized=["v1"]))
    await stack.aggregator.get_optimized_prompt(TENANT_ID, "whatsapp")
    await stack.cache.invalidate(TENANT_ID, "whatsapp")
    stack.llm._raise = RuntimeError("backend down")

    resolution = await stack.aggregator.get_optimized_prompt(TENANT_ID, "whatsapp")
    assert resolution.source == "stale_cache"
    assert resolution.prompt == "v1"
    assert [f.strategy for f in resolution.failures] == ["regenerate"]
    assert "fallback_strategy_used" in stack.telemetry.names()


@pytest.mark.asyncio
async def test_generation_failure_without_cache_uses_default_prompt():
    stack = Stack(llm=FakeLLM(raise_exc=RuntimeError("backend down")))
    resolution = await stack.aggregator.get_optimized_prompt(TENANT_ID, "voice")
    assert resolution.source == "default"
    assert resolution.version == 0
    assert resolution.prompt.startswith("Eres Sofía")


@pytest.mark.asyncio
async def test_full_context_degrades_optional_loads():
    data = make_data_source()

    async def broken_learning(tenant_id):
        raise RuntimeError("learning table missing")

    data.load_learning = broken_learning
    stack = Stack(data_source=data)
    context = await stack.aggregator.load_full_context(TENANT_ID, lead_id="lead-1", conversation_id="conv-1")
    assert context.learning is None
    assert context.degraded == ["learning"]
    assert context.loyalty.balance == 120
    assert context.conversation.lead_name == "Ana"


@pytest.mark.asyncio
async def test_full_context_times_out_optional_load():
    data = make_data_source()

    async def slow_loyalty(tenant_id, lead_id):
        await asyncio.sleep(1)

    data.load_loyalty = slow_loyalty
    stack = Stack(data_source=data)
    aggregator = ContextAggregator(
        data_source=data,
        cache=stack.cache,
        generator=stack.generator,
        timeouts=ContextTimeouts(loyalty_s=0.01),
    )
    context = await aggregator.load_full_context(TENANT_ID, lead_id="lead-1")
    assert context.loyalty is None
    assert "loyalty" in context.degraded


@pytest.mark.asyncio
async def test_full_context_raises_on_critical_failure():
    stack = Stack()
    with pytest.raises(ContextLoadFailed) as exc_info:
        await stack.aggregator.load_full_context("unknown-tenant")
    assert exc_info.value.critical is True


@pytest.mark.asyncio
async def test_preview_context_skips_conversation():
    data = make_data_source()
    stack = Stack(data_source=data)
    context = await stack.aggregator.load_full_context(TENANT_ID, include_conversation=False)
    assert context.conversation is None
    assert "conversation" not in data.calls


@pytest.mark.asyncio
async def test_critical_failure_cancels_pending_optional_loads():
    data = make_data_source()
    cancelled = []

    async def slow_learning(tenant_id):
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            cancelled.append("learning")
            raise

    async def missing_business(tenant_id):
        raise RuntimeError("snapshot rpc failed")

    data.load_learning = slow_learning
    data.load_business_context = missing_business
    stack = Stack(data_source=data)
    aggregator = ContextAggregator(
        data_source=data,
        cache=stack.cache,
        generator=stack.generator,
        timeouts=ContextTimeouts(learning_s=10.0),
    )

    with pytest.raises(ContextLoadFailed) as exc_info:
        await asyncio.wait_for(aggregator.load_full_context(TENANT_ID, lead_id="lead-1"), timeout=1.0)
    assert exc_info.value.source == "business"
    assert exc_info.value.critical is True
    assert cancelled == ["learning"]
