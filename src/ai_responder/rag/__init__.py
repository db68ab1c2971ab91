from ai_responder.rag.embedder import LocalEmbedder
from ai_responder.rag.knowledge_store import (
    InMemoryKnowledgeStore,
    KnowledgeRecord,
    SupabaseKnowledgeStore,
    index_snapshot,
)
from ai_responder.rag.retriever import KnowledgeRetriever, RetrievedChunk

__all__ = [
    "LocalEmbedder",
    "InMemoryKnowledgeStore",
    "KnowledgeRecord",
    "SupabaseKnowledgeStore",
    "index_snapshot",
    "KnowledgeRetriever",
    "RetrievedChunk",
]
