from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Literal, Optional, Sequence

import numpy as np

from ai_responder.domain.models import BusinessContextSnapshot

SourceType = Literal["knowledge_article", "faq", "policy", "service"]
SOURCE_TYPES: tuple[str, ...] = ("knowledge_article", "faq", "policy", "service")


@dataclass(frozen=True)
class KnowledgeRecord:
    tenant_id: str
    source_type: str
    source_id: str
    content: str
    embedding: np.ndarray
    updated_at: str = ""


def snapshot_documents(snapshot: BusinessContextSnapshot) -> List[Dict[str, str]]:
    """Flattens the embeddable partitions of a snapshot into (type, id, text, updated_at) rows."""
    docs: List[Dict[str, str]] = []
    for a in snapshot.knowledge_articles:
        docs.append({"source_type": "knowledge_article", "source_id": a.id,
                     "content": f"{a.title}\n{a.content}", "updated_at": a.updated_at or ""})
    for f in snapshot.faqs:
        docs.append({"source_type": "faq", "source_id": f.id,
                     "content": f"{f.question}\n{f.answer}", "updated_at": f.updated_at or ""})
    for p in snapshot.policies:
        docs.append({"source_type": "policy", "source_id": p.id,
                     "content": f"{p.title}\n{p.content}", "updated_at": p.updated_at or ""})
    for s in snapshot.services:
        docs.append({"source_type": "service", "source_id": s.id,
                     "content": f"{s.name}\n{s.description}".strip(), "updated_at": ""})
    return docs


class InMemoryKnowledgeStore:
    def __init__(self):
        self._records: Dict[str, Dict[tuple[str, str], KnowledgeRecord]] = {}

    async def upsert(self, records: Iterable[KnowledgeRecord]) -> int:
        count = 0
        for r in records:
            self._records.setdefault(r.tenant_id, {})[(r.source_type, r.source_id)] = r
            count += 1
        return count

    async def list_for_tenant(
        self, tenant_id: str, *, source_types: Optional[Sequence[str]] = None
    ) -> List[KnowledgeRecord]:
        records = list(self._records.get(tenant_id, {}).values())
        if source_types:
            wanted = set(source_types)
            records = [r for r in records if r.source_type in wanted]
        return records


class SupabaseKnowledgeStore:
    """Embeddings live next to each knowledge source row in `ai_knowledge_embeddings`."""

    table = "ai_knowledge_embeddings"

    def __init__(self, supabase_client: Any):
        self.sb = supabase_client

    async def upsert(self, records: Iterable[KnowledgeRecord]) -> int:
        rows = [
            {
                "tenant_id": r.tenant_id,
                "source_type": r.source_type,
                "source_id": r.source_id,
                "content": r.content,
                "embedding": json.dumps([float(x) for x in r.embedding]),
                "updated_at": r.updated_at or None,
            }
            for r in records
        ]
        if not rows:
            return 0
        await asyncio.to_thread(
            lambda: self.sb.table(self.table)
            .upsert(rows, on_conflict="tenant_id,source_type,source_id")
            .execute()
        )
        return len(rows)

    async def list_for_tenant(
        self, tenant_id: str, *, source_types: Optional[Sequence[str]] = None
    ) -> List[KnowledgeRecord]:
        def _query():
            q = (
                self.sb.table(self.table)
                .select("source_type,source_id,content,embedding,updated_at")
                .eq("tenant_id", tenant_id)
            )
            if source_types:
                q = q.in_("source_type", list(source_types))
            return q.execute()

        resp = await asyncio.to_thread(_query)
        records: List[KnowledgeRecord] = []
        for row in resp.data or []:
            raw = row.get("embedding")
            if isinstance(raw, str):
                raw = json.loads(raw)
            if not raw:
                logging.warning(
                    "knowledge_record_without_embedding",
                    extra={"tenant_id": tenant_id, "source_id": row.get("source_id")},
                )
                continue
            records.append(
                KnowledgeRecord(
                    tenant_id=tenant_id,
                    source_type=row["source_type"],
                    source_id=str(row["source_id"]),
                    content=row.get("content") or "",
                    embedding=np.asarray(raw, dtype="float32"),
                    updated_at=row.get("updated_at") or "",
                )
            )
        return records


async def index_snapshot(snapshot: BusinessContextSnapshot, *, embedder, store) -> int:
    """(Re)embeds every knowledge source of a tenant; called on configuration save."""
    docs = snapshot_documents(snapshot)
    if not docs:
        return 0
    vectors = await asyncio.to_thread(embedder.embed_texts, [d["content"] for d in docs])
    records = [
        KnowledgeRecord(
            tenant_id=snapshot.tenant_id,
            source_type=d["source_type"],
            source_id=d["source_id"],
            content=d["content"],
            embedding=vectors[i],
            updated_at=d["updated_at"],
        )
        for i, d in enumerate(docs)
    ]
    count = await store.upsert(records)
    logging.info(
        json.dumps(
            {"event": "knowledge_indexed", "tenant_id": snapshot.tenant_id, "records": count},
            ensure_ascii=False,
        )
    )
    return count
