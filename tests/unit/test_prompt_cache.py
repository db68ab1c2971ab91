import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from ai_responder.domain.models import PromptStatus
from ai_responder.registry.prompt_cache import PromptCache
from ai_responder.registry.stores import InMemoryPromptStore


class Clock:
    def __init__(self):
        self.now = datetime(2026, 10, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


async def _save(cache, prompt="P", source_hash="h1", channel="whatsapp"):
    return await cache.upsert(
        "t1", channel, prompt=prompt, system_prompt=None, source_hash=source_hash, tokens_estimated=3
    )


@pytest.mark.asyncio
async def test_upsert_increments_version_and_keeps_created_at():
    cache = PromptCache(InMemoryPromptStore(), now=Clock())
    first = await _save(cache, prompt="v1")
    second = await _save(cache, prompt="v2", source_hash="h2")
    assert (first.version, second.version) == (1, 2)
    assert second.created_at == first.created_at
    assert second.updated_at > first.updated_at
    assert (await cache.get("t1", "whatsapp", record_usage=False)).generated_prompt == "v2"


@pytest.mark.asyncio
async def test_needs_regeneration_follows_hash_and_status():
    cache = PromptCache(InMemoryPromptStore())
    assert await cache.needs_regeneration("t1", "whatsapp", "h1") is True
    await _save(cache)
    assert await cache.needs_regeneration("t1", "whatsapp", "h1") is False
    assert await cache.needs_regeneration("t1", "whatsapp", "other") is True
    await cache.invalidate("t1", "whatsapp")
    assert await cache.needs_regeneration("t1", "whatsapp", "h1") is True


@pytest.mark.asyncio
async def test_get_records_usage():
    store = InMemoryPromptStore()
    cache = PromptCache(store)
    await _save(cache)
    await cache.get("t1", "whatsapp")
    await cache.get("t1", "whatsapp")
    row = store.rows[("t1", "whatsapp")]
    assert row.usage_count == 2
    assert row.last_used_at is not None


@pytest.mark.asyncio
async def test_usage_update_failure_is_not_raised():
    store = InMemoryPromptStore()
    cache = PromptCache(store)
    await _save(cache)
    store.fail_usage_updates = True
    row = await cache.get("t1", "whatsapp")
    assert row is not None


@pytest.mark.asyncio
async def test_invalidate_all_channels_archives_rows():
    store = InMemoryPromptStore()
    cache = PromptCache(store)
    await _save(cache, channel="whatsapp")
    await _save(cache, channel="voice")
    assert await cache.invalidate("t1") == 2
    assert await cache.get("t1", "whatsapp") is None
    stale = await cache.get_any("t1", "voice")
    assert stale.status == PromptStatus.ARCHIVED
    assert stale.generated_prompt == "P"
    assert await cache.invalidate("t1") == 0


@pytest.mark.asyncio
async def test_record_failure_appends_history_only():
    store = InMemoryPromptStore()
    cache = PromptCache(store)
    saved = await _save(cache)
    await cache.record_failure("t1", "whatsapp", source_hash="h2", error="boom")
    assert store.rows[("t1", "whatsapp")] == saved
    history = await cache.history("t1", "whatsapp")
    assert [h.success for h in history] == [False, True]
    assert history[0].error == "boom"


@pytest.mark.asyncio
async def test_concurrent_writers_get_distinct_versions():
    cache = PromptCache(InMemoryPromptStore())
    rows = await asyncio.gather(*[_save(cache, prompt=f"p{i}") for i in range(5)])
    assert sorted(r.version for r in rows) == [1, 2, 3, 4, 5]
