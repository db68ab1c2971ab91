from __future__ import annotations

from functools import lru_cache
from typing import Any

from ai_responder.agent.executor import GraphExecutor
from ai_responder.api.config import get_settings
from ai_responder.llm.client import LLMClient
from ai_responder.llm.rate_limit import ConcurrencyLimiter
from ai_responder.orchestrator.context_aggregator import ContextAggregator, ContextTimeouts
from ai_responder.orchestrator.data_sources import InMemoryBusinessData, SupabaseActionLayer, SupabaseBusinessData
from ai_responder.orchestrator.service import UnifiedResponseService
from ai_responder.orchestrator.sinks import InMemoryResponseSink, SupabaseResponseSink
from ai_responder.rag.embedder import LocalEmbedder
from ai_responder.rag.knowledge_store import InMemoryKnowledgeStore, SupabaseKnowledgeStore, index_snapshot
from ai_responder.rag.retriever import KnowledgeRetriever
from ai_responder.registry.prompt_cache import PromptCache
from ai_responder.registry.prompt_generator import PromptGenerator
from ai_responder.registry.stores import InMemoryPromptStore, SupabasePromptStore
from ai_responder.registry.supabase_connector import SupabaseConfigError, create_supabase_client_from_env
from ai_responder.resilience.circuit_breaker import CircuitBreaker
from ai_responder.resilience.legacy import LegacyResponder
from ai_responder.resilience.responder import ResilientResponder
from ai_responder.telemetry.events import LoggingTelemetry
from ai_responder.tools.handlers import build_default_registry
from ai_responder.tools.registry import ToolRegistry
from ai_responder.utils.background import BackgroundTasks


@lru_cache
def get_supabase_client() -> Any | None:
    try:
        return create_supabase_client_from_env()
    except SupabaseConfigError:
        return None


@lru_cache
def get_telemetry() -> LoggingTelemetry:
    return LoggingTelemetry()


@lru_cache
def get_background() -> BackgroundTasks:
    return BackgroundTasks()


@lru_cache
def get_llm_client() -> LLMClient:
    settings = get_settings()
    return LLMClient(
        default_model=settings.llm_model,
        limiter=ConcurrencyLimiter(max_inflight=settings.llm_max_inflight),
    )


@lru_cache
def get_prompt_cache() -> PromptCache:
    sb = get_supabase_client()
    return PromptCache(SupabasePromptStore(sb) if sb is not None else InMemoryPromptStore())


@lru_cache
def get_business_data():
    sb = get_supabase_client()
    return SupabaseBusinessData(sb) if sb is not None else InMemoryBusinessData()


@lru_cache
def get_response_sink():
    sb = get_supabase_client()
    return SupabaseResponseSink(sb) if sb is not None else InMemoryResponseSink()


@lru_cache
def get_embedder() -> LocalEmbedder:
    return LocalEmbedder()


@lru_cache
def get_knowledge_store():
    sb = get_supabase_client()
    return SupabaseKnowledgeStore(sb) if sb is not None else InMemoryKnowledgeStore()


@lru_cache
def get_retriever() -> KnowledgeRetriever:
    settings = get_settings()
    return KnowledgeRetriever(
        embedder=get_embedder(),
        store=get_knowledge_store(),
        default_threshold=settings.rag_threshold,
        embed_timeout_s=settings.embed_timeout_s,
    )


@lru_cache
def get_action_layer():
    """None without Supabase: slot and booking tools then report `action_layer_unavailable`."""
    sb = get_supabase_client()
    return SupabaseActionLayer(sb) if sb is not None else None


@lru_cache
def get_tool_registry() -> ToolRegistry:
    settings = get_settings()
    return build_default_registry(
        max_concurrency_global=settings.max_tool_concurrency_global,
        timeout_s=settings.tool_timeout_s,
    )


@lru_cache
def get_prompt_generator() -> PromptGenerator:
    settings = get_settings()
    return PromptGenerator(
        llm=get_llm_client(),
        cache=get_prompt_cache(),
        model=settings.prompt_model,
        timeout_s=settings.prompt_timeout_s,
    )


@lru_cache
def get_aggregator() -> ContextAggregator:
    settings = get_settings()
    return ContextAggregator(
        data_source=get_business_data(),
        cache=get_prompt_cache(),
        generator=get_prompt_generator(),
        background=get_background(),
        timeouts=ContextTimeouts(
            tenant_s=settings.tenant_timeout_s,
            business_s=settings.business_timeout_s,
            loyalty_s=settings.loyalty_timeout_s,
            learning_s=settings.learning_timeout_s,
            conversation_s=settings.conversation_timeout_s,
        ),
        telemetry=get_telemetry(),
    )


@lru_cache
def get_executor() -> GraphExecutor:
    settings = get_settings()
    return GraphExecutor(
        llm=get_llm_client(),
        tool_registry=get_tool_registry(),
        retriever=get_retriever(),
        action_layer=get_action_layer(),
        model=settings.llm_model,
        policies={
            "max_tool_calls": settings.max_tool_calls,
            "max_tool_concurrency_per_request": settings.max_tool_concurrency,
            "rag_top_n": settings.rag_top_n,
            "llm_timeout_s": settings.llm_timeout_s,
        },
        timeout_s=settings.graph_timeout_s,
        telemetry=get_telemetry(),
    )


@lru_cache
def get_response_service() -> UnifiedResponseService:
    return UnifiedResponseService(
        aggregator=get_aggregator(),
        executor=get_executor(),
        sink=get_response_sink(),
        background=get_background(),
        telemetry=get_telemetry(),
    )


@lru_cache
def get_circuit_breaker() -> CircuitBreaker:
    settings = get_settings()
    return CircuitBreaker(
        failure_threshold=settings.breaker_failure_threshold,
        reset_timeout_s=settings.breaker_reset_timeout_s,
        telemetry=get_telemetry(),
    )


@lru_cache
def get_responder() -> ResilientResponder:
    settings = get_settings()
    legacy = LegacyResponder(
        llm=get_llm_client(),
        cache=get_prompt_cache(),
        data_source=get_business_data(),
        model=settings.llm_model,
        timeout_s=settings.legacy_timeout_s,
        telemetry=get_telemetry(),
    )
    return ResilientResponder(service=get_response_service(), legacy=legacy, breaker=get_circuit_breaker())


@lru_cache
def get_knowledge_indexer():
    embedder = get_embedder()
    store = get_knowledge_store()

    async def reindex(snapshot) -> int:
        return await index_snapshot(snapshot, embedder=embedder, store=store)

    return reindex
