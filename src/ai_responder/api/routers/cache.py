from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ai_responder.api.deps import (
    get_aggregator,
    get_background,
    get_knowledge_indexer,
    get_prompt_cache,
)
from ai_responder.api.errors import TenantNotFoundError
from ai_responder.api.schemas import (
    CacheStatusResponse,
    ChannelName,
    InvalidateCacheRequest,
    InvalidateCacheResponse,
)
from ai_responder.errors import ContextLoadFailed
from ai_responder.orchestrator.context_aggregator import ContextAggregator
from ai_responder.orchestrator.data_sources import TenantNotFound
from ai_responder.registry.prompt_cache import PromptCache
from ai_responder.utils.background import BackgroundTasks

router = APIRouter()


@router.post(
    "/invalidate-cache",
    response_model=InvalidateCacheResponse,
    summary="Archive cached prompts after a configuration save",
)
async def invalidate_cache(
    payload: InvalidateCacheRequest,
    cache: PromptCache = Depends(get_prompt_cache),
    aggregator: ContextAggregator = Depends(get_aggregator),
    background: BackgroundTasks = Depends(get_background),
    reindex=Depends(get_knowledge_indexer),
) -> InvalidateCacheResponse:
    archived = await cache.invalidate(payload.tenant_id, payload.channel)

    async def _reindex_knowledge() -> int:
        snapshot = await aggregator.load_business_context(payload.tenant_id)
        return await reindex(snapshot)

    background.spawn(_reindex_knowledge(), name="knowledge_reindex")
    return InvalidateCacheResponse(invalidated=True, archived=archived)


@router.get("/cache-status", response_model=CacheStatusResponse, summary="Prompt cache status")
async def cache_status(
    tenant_id: str = Query(..., min_length=1),
    channel: ChannelName = Query(default="whatsapp"),
    cache: PromptCache = Depends(get_prompt_cache),
    aggregator: ContextAggregator = Depends(get_aggregator),
) -> CacheStatusResponse:
    row = await cache.get(tenant_id, channel, record_usage=False)
    try:
        stale = await aggregator.needs_regeneration(tenant_id, channel)
    except ContextLoadFailed as exc:
        if isinstance(exc.__cause__, TenantNotFound):
            raise TenantNotFoundError(tenant_id) from exc
        raise
    return CacheStatusResponse(
        has_cached_prompt=row is not None,
        version=row.version if row else None,
        last_generated=row.updated_at if row else None,
        needs_regeneration=stale,
    )
