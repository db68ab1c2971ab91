import json
from dataclasses import replace

import pytest

from ai_responder.errors import GenerationFailed
from ai_responder.fakes.fake_llm import FakeLLM
from ai_responder.llm.retry import RetryPolicy
from ai_responder.registry.prompt_generator import PromptGenerator, build_default_prompt, build_meta_prompt
from ai_responder.registry.voice_template import VOICE_SECTIONS, validate_structure
from ai_responder.utils.hashing import compute_context_hash

from support import NO_RETRY

SLOTS = json.dumps({"faqs": "Tenemos estacionamiento gratuito.", "promotions": "Los martes hay descuento en limpieza."})


def test_meta_prompt_carries_business_data(snapshot):
    text = build_meta_prompt(snapshot, "whatsapp")
    assert "Clínica Sonrisa" in text
    assert "Limpieza dental" in text
    assert "PROMOCIÓN: 15% de descuento los martes" in text
    assert "NUNCA des diagnósticos dentales" in text
    assert "urgencia" in text


def test_default_prompt_needs_no_backend(snapshot):
    text = build_default_prompt(snapshot, "voice")
    assert text.startswith("Eres Sofía")
    assert "Limpieza dental" in text


@pytest.mark.asyncio
async def test_messaging_prompt_is_synthesized_and_cached(snapshot, prompt_cache):
    llm = FakeLLM(synthesized=["```\nEres Sofía, asistente de Clínica Sonrisa.\n```"])
    generator = PromptGenerator(llm=llm, cache=prompt_cache, retry_policy=NO_RETRY)
    row = await generator.generate(snapshot.tenant_id, "whatsapp", snapshot)
    assert row.version == 1
    assert row.generated_prompt == "Eres Sofía, asistente de Clínica Sonrisa."
    assert row.source_hash == compute_context_hash(snapshot)
    assert row.system_prompt == build_default_prompt(snapshot, "whatsapp")
    assert llm.ops() == ["synthesize"]


@pytest.mark.asyncio
async def test_voice_prompt_keeps_section_markers_in_order(snapshot, prompt_cache):
    llm = FakeLLM(synthesized=[SLOTS])
    generator = PromptGenerator(llm=llm, cache=prompt_cache, retry_policy=NO_RETRY)
    row = await generator.generate(snapshot.tenant_id, "voice", snapshot)
    assert validate_structure(row.generated_prompt) == []
    positions = [row.generated_prompt.index(f"## {m}") for m in VOICE_SECTIONS]
    assert positions == sorted(positions)
    assert "estacionamiento gratuito" in row.generated_prompt


@pytest.mark.asyncio
async def test_voice_prompt_without_slots_skips_backend(snapshot, prompt_cache):
    plain = replace(snapshot, faqs=(), services=tuple(replace(s, promotion=None) for s in snapshot.services))
    llm = FakeLLM()
    generator = PromptGenerator(llm=llm, cache=prompt_cache, retry_policy=NO_RETRY)
    row = await generator.generate(plain.tenant_id, "voice", plain)
    assert llm.calls == []
    assert validate_structure(row.generated_prompt) == []


@pytest.mark.asyncio
async def test_voice_slot_with_heading_is_rejected_then_retried(snapshot, prompt_cache):
    bad = json.dumps({"faqs": "## EXTRA\nnada", "promotions": ""})
    llm = FakeLLM(synthesized=[bad, SLOTS])
    generator = PromptGenerator(
        llm=llm, cache=prompt_cache, retry_policy=RetryPolicy(max_attempts=2, base_delay_s=0.0, max_delay_s=0.0)
    )
    row = await generator.generate(snapshot.tenant_id, "voice", snapshot)
    assert llm.ops() == ["synthesize", "synthesize"]
    assert "## EXTRA" not in row.generated_prompt


@pytest.mark.asyncio
async def test_failed_generation_leaves_cache_untouched(snapshot, prompt_cache):
    ok = PromptGenerator(llm=FakeLLM(synthesized=["v1"]), cache=prompt_cache, retry_policy=NO_RETRY)
    saved = await ok.generate(snapshot.tenant_id, "whatsapp", snapshot)

    broken = PromptGenerator(llm=FakeLLM(synthesized=["   "]), cache=prompt_cache, retry_policy=NO_RETRY)
    with pytest.raises(GenerationFailed):
        await broken.generate(snapshot.tenant_id, "whatsapp", snapshot, trigger="manual")

    row = await prompt_cache.get_any(snapshot.tenant_id, "whatsapp")
    assert row == saved
    history = await prompt_cache.history(snapshot.tenant_id, "whatsapp")
    assert history[0].success is False
    assert history[0].trigger == "manual"


@pytest.mark.asyncio
async def test_unparseable_slots_raise_generation_failed(snapshot, prompt_cache):
    generator = PromptGenerator(llm=FakeLLM(synthesized=["no es json"]), cache=prompt_cache, retry_policy=NO_RETRY)
    with pytest.raises(GenerationFailed):
        await generator.generate(snapshot.tenant_id, "voice", snapshot)
    assert await prompt_cache.get_any(snapshot.tenant_id, "voice") is None


@pytest.mark.asyncio
async def test_backend_error_is_wrapped(snapshot, prompt_cache):
    generator = PromptGenerator(
        llm=FakeLLM(raise_exc=RuntimeError("down")), cache=prompt_cache, retry_policy=NO_RETRY
    )
    with pytest.raises(GenerationFailed):
        await generator.generate(snapshot.tenant_id, "whatsapp", snapshot)
