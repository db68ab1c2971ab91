import argparse
import asyncio
import json
import logging
from pathlib import Path

from ai_responder.agent.executor import GraphExecutor
from ai_responder.domain.models import BusinessContextSnapshot, GenerateOptions, TenantInfo
from ai_responder.fakes.fake_actions import InMemoryActionLayer
from ai_responder.llm.client import LLMClient
from ai_responder.llm.rate_limit import ConcurrencyLimiter
from ai_responder.orchestrator.context_aggregator import ContextAggregator
from ai_responder.orchestrator.data_sources import InMemoryBusinessData
from ai_responder.orchestrator.service import UnifiedResponseService
from ai_responder.orchestrator.sinks import InMemoryResponseSink
from ai_responder.registry.prompt_cache import PromptCache
from ai_responder.registry.prompt_generator import PromptGenerator
from ai_responder.registry.stores import InMemoryPromptStore
from ai_responder.secrets import get_secret
from ai_responder.tools.handlers import build_default_registry
from ai_responder.tools.registry import Capability, ToolName
from ai_responder.utils.background import BackgroundTasks


def build_service(snapshot: BusinessContextSnapshot, *, model: str, retriever=None):
    llm = LLMClient(
        api_key=get_secret("OPENAI_API_KEY", required=True),
        default_model=model,
        limiter=ConcurrencyLimiter(max_inflight=2),
    )
    tenant = TenantInfo(
        tenant_id=snapshot.tenant_id,
        name=snapshot.business_name,
        enabled_capabilities=tuple(c.value for c in Capability),
        available_tools=tuple(t.value for t in ToolName),
    )
    data = InMemoryBusinessData(tenants={tenant.tenant_id: tenant}, snapshots={tenant.tenant_id: snapshot})
    cache = PromptCache(InMemoryPromptStore())
    background = BackgroundTasks()
    sink = InMemoryResponseSink()
    aggregator = ContextAggregator(
        data_source=data,
        cache=cache,
        generator=PromptGenerator(llm=llm, cache=cache),
        background=background,
    )
    executor = GraphExecutor(
        llm=llm,
        tool_registry=build_default_registry(),
        retriever=retriever,
        action_layer=InMemoryActionLayer(),
        model=model,
    )
    service = UnifiedResponseService(aggregator=aggregator, executor=executor, sink=sink, background=background)
    return service, background, sink


async def build_retriever(snapshot: BusinessContextSnapshot):
    from ai_responder.rag.embedder import LocalEmbedder
    from ai_responder.rag.knowledge_store import InMemoryKnowledgeStore, index_snapshot
    from ai_responder.rag.retriever import KnowledgeRetriever

    embedder = LocalEmbedder()
    store = InMemoryKnowledgeStore()
    indexed = await index_snapshot(snapshot, embedder=embedder, store=store)
    print(json.dumps({"event": "knowledge_indexed", "documents": indexed}, ensure_ascii=False))
    return KnowledgeRetriever(embedder=embedder, store=store)


async def main():
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    parser = argparse.ArgumentParser(description="Run one message through the response pipeline with a real LLM.")
    parser.add_argument("--snapshot", type=Path, default=Path("data/sample_business.json"))
    parser.add_argument("--model", type=str, default="gpt-4.1-mini")
    parser.add_argument("--channel", type=str, default="whatsapp")
    parser.add_argument("--text", type=str, default="Hola, ¿cuánto cuesta una limpieza y qué horario tienen?")
    parser.add_argument("--production", action="store_true", help="persist like a production request")
    parser.add_argument("--rag", action="store_true", help="index the snapshot and enable knowledge search")
    args = parser.parse_args()

    snapshot = BusinessContextSnapshot.from_dict(json.loads(args.snapshot.read_text(encoding="utf-8")))
    retriever = await build_retriever(snapshot) if args.rag else None
    service, background, sink = build_service(snapshot, model=args.model, retriever=retriever)

    result = await service.generate(
        snapshot.tenant_id,
        args.text,
        GenerateOptions(channel=args.channel, is_preview=not args.production),
    )
    await background.drain()
    print(
        json.dumps(
            {
                "success": result.success,
                "response": result.response,
                "intent": result.intent,
                "tools_invoked": list(result.tools_invoked),
                "agents_used": list(result.agents_used),
                "signals": list(result.signals),
                "tokens_used": result.tokens_used,
                "prompt_source": result.prompt_source,
                "escalated": result.escalated,
                "processing_time_ms": result.processing_time_ms,
                "writes": sink.writes,
            },
            ensure_ascii=False,
            indent=2,
        )
    )


if __name__ == "__main__":
    asyncio.run(main())
