from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np


@dataclass
class LocalEmbedder:
    model_path: str = os.getenv(
        "AI_RESPONDER_EMBEDDING_MODEL",
        "sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2",
    )
    device: Optional[str] = None
    batch_size: int = 32
    normalize: bool = True

    def __post_init__(self) -> None:
        from sentence_transformers import SentenceTransformer

        self._model = SentenceTransformer(self.model_path, device=self.device)

    def embed_texts(self, texts: Iterable[str]) -> np.ndarray:
        text_list = list(texts)
        if not text_list:
            return np.zeros((0, 0), dtype="float32")
        vectors = self._model.encode(
            text_list,
            batch_size=self.batch_size,
            convert_to_numpy=True,
            normalize_embeddings=self.normalize,
        )
        if not isinstance(vectors, np.ndarray):
            vectors = np.array(vectors)
        return vectors.astype("float32")

    async def embed(self, text: str) -> np.ndarray:
        # encode() is CPU-bound; keep it off the event loop
        vectors = await asyncio.to_thread(self.embed_texts, [text])
        return vectors[0]
