from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from ai_responder.rag.knowledge_store import KnowledgeRecord


@dataclass(frozen=True)
class RetrievedChunk:
    source_type: str
    source_id: str
    content: str
    score: float
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "source_type": self.source_type,
            "source_id": self.source_id,
            "content": self.content,
            "score": round(self.score, 4),
        }


class RetrievalTimeout(RuntimeError):
    code = "retrieval_timeout"


class KnowledgeRetriever:
    def __init__(
        self,
        *,
        embedder,
        store,
        default_threshold: float = 0.5,
        embed_timeout_s: float = 5.0,
    ):
        self._embedder = embedder
        self._store = store
        self._threshold = default_threshold
        self._embed_timeout_s = embed_timeout_s

    async def search(
        self,
        tenant_id: str,
        query_text: str,
        *,
        top_n: int = 5,
        threshold: Optional[float] = None,
        source_types: Optional[Sequence[str]] = None,
    ) -> List[RetrievedChunk]:
        threshold = self._threshold if threshold is None else threshold
        query_text = (query_text or "").strip()
        if not query_text or top_n <= 0:
            return []
        start = time.perf_counter()
        try:
            query_vec = await asyncio.wait_for(self._embedder.embed(query_text), timeout=self._embed_timeout_s)
        except asyncio.TimeoutError as exc:
            raise RetrievalTimeout(f"Embedding timed out after {self._embed_timeout_s}s") from exc
        records = await self._store.list_for_tenant(tenant_id, source_types=source_types)
        chunks = rank(np.asarray(query_vec, dtype="float32"), records, threshold=threshold)[:top_n]
        logging.info(
            json.dumps(
                {
                    "event": "rag_search",
                    "tenant_id": tenant_id,
                    "candidates": len(records),
                    "returned": len(chunks),
                    "threshold": threshold,
                    "latency_ms": int((time.perf_counter() - start) * 1000),
                },
                ensure_ascii=False,
            )
        )
        return chunks


def rank(query_vec: np.ndarray, records: Sequence[KnowledgeRecord], *, threshold: float) -> List[RetrievedChunk]:
    """Cosine similarity, drop below threshold, sort by score desc then most recently updated."""
    q_norm = float(np.linalg.norm(query_vec))
    if q_norm == 0.0:
        return []
    usable = [
        r for r in records
        if r.embedding.shape == query_vec.shape and float(np.linalg.norm(r.embedding)) > 0.0
    ]
    if not usable:
        return []
    matrix = np.stack([r.embedding for r in usable]).astype("float32")
    scores = (matrix @ query_vec) / (np.linalg.norm(matrix, axis=1) * q_norm)
    hits = [
        RetrievedChunk(
            source_type=r.source_type,
            source_id=r.source_id,
            content=r.content,
            score=float(score),
            updated_at=r.updated_at,
        )
        for r, score in zip(usable, scores)
        if float(score) >= threshold
    ]
    # two stable sorts: recency first, then score, so ties keep the newer source ahead
    hits.sort(key=lambda c: c.updated_at or "", reverse=True)
    hits.sort(key=lambda c: c.score, reverse=True)
    return hits
