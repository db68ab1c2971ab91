from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from ai_responder.domain.models import CachedPrompt, GenerationHistoryEntry, PromptStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PromptCache:
    """
    Content-addressed cache of generated system prompts, one row per (tenant, channel).

    Reads never wait on writers: a reader may see the previous version while a
    regeneration is in flight. Writers for the same key serialize on a per-key lock.
    """

    def __init__(self, store, *, now: Callable[[], datetime] = utc_now):
        self._store = store
        self._now = now
        self._write_locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    def _lock(self, tenant_id: str, channel: str) -> asyncio.Lock:
        key = (tenant_id, channel)
        lock = self._write_locks.get(key)
        if lock is None:
            lock = self._write_locks[key] = asyncio.Lock()
        return lock

    async def get(self, tenant_id: str, channel: str, *, record_usage: bool = True) -> Optional[CachedPrompt]:
        row = await self._store.fetch(tenant_id, channel)
        if row is None or row.status != PromptStatus.ACTIVE:
            return None
        if record_usage:
            await self.record_usage(tenant_id, channel)
        return row

    async def get_any(self, tenant_id: str, channel: str) -> Optional[CachedPrompt]:
        """Latest row regardless of status; used as the stale fallback."""
        return await self._store.fetch(tenant_id, channel)

    async def record_usage(self, tenant_id: str, channel: str) -> None:
        try:
            await self._store.touch_usage(tenant_id, channel, self._now())
        except Exception as exc:
            logging.warning(
                json.dumps(
                    {
                        "event": "prompt_usage_update_failed",
                        "tenant_id": tenant_id,
                        "channel": channel,
                        "error": str(exc),
                    },
                    ensure_ascii=False,
                )
            )

    async def needs_regeneration(self, tenant_id: str, channel: str, current_hash: str) -> bool:
        row = await self._store.fetch(tenant_id, channel)
        if row is None or row.status != PromptStatus.ACTIVE:
            return True
        return row.source_hash != current_hash

    async def upsert(
        self,
        tenant_id: str,
        channel: str,
        *,
        prompt: str,
        system_prompt: Optional[str],
        source_hash: str,
        tokens_estimated: int,
        trigger: str = "auto",
        latency_ms: int = 0,
    ) -> CachedPrompt:
        async with self._lock(tenant_id, channel):
            now = self._now()
            existing = await self._store.fetch(tenant_id, channel)
            version = (existing.version if existing else 0) + 1
            await self._store.append_history(
                GenerationHistoryEntry(
                    tenant_id=tenant_id,
                    channel=channel,
                    success=True,
                    source_hash=source_hash,
                    trigger=trigger,
                    version=version,
                    latency_ms=latency_ms,
                    tokens_estimated=tokens_estimated,
                    created_at=now,
                )
            )
            saved = await self._store.save(
                CachedPrompt(
                    tenant_id=tenant_id,
                    channel=channel,
                    generated_prompt=prompt,
                    system_prompt=system_prompt,
                    version=version,
                    source_hash=source_hash,
                    status=PromptStatus.ACTIVE,
                    usage_count=existing.usage_count if existing else 0,
                    last_used_at=existing.last_used_at if existing else None,
                    tokens_estimated=tokens_estimated,
                    created_at=existing.created_at if existing and existing.created_at else now,
                    updated_at=now,
                )
            )
        logging.info(
            json.dumps(
                {
                    "event": "prompt_cached",
                    "tenant_id": tenant_id,
                    "channel": channel,
                    "version": saved.version,
                    "source_hash": source_hash[:12],
                    "tokens_estimated": tokens_estimated,
                },
                ensure_ascii=False,
            )
        )
        return saved

    async def record_failure(
        self,
        tenant_id: str,
        channel: str,
        *,
        source_hash: str,
        error: str,
        trigger: str = "auto",
        latency_ms: int = 0,
    ) -> None:
        await self._store.append_history(
            GenerationHistoryEntry(
                tenant_id=tenant_id,
                channel=channel,
                success=False,
                source_hash=source_hash,
                trigger=trigger,
                latency_ms=latency_ms,
                error=error,
                created_at=self._now(),
            )
        )

    async def invalidate(self, tenant_id: str, channel: Optional[str] = None) -> int:
        if channel is None:
            archived = await self._store.archive(tenant_id, None, self._now())
        else:
            async with self._lock(tenant_id, channel):
                archived = await self._store.archive(tenant_id, channel, self._now())
        logging.info(
            json.dumps(
                {"event": "prompt_cache_invalidated", "tenant_id": tenant_id, "channel": channel, "archived": archived},
                ensure_ascii=False,
            )
        )
        return archived

    async def history(self, tenant_id: str, channel: str, *, limit: int = 20) -> List[GenerationHistoryEntry]:
        return await self._store.list_history(tenant_id, channel, limit)
