from __future__ import annotations

from typing import Dict, Iterable, List, Sequence

import numpy as np


class KeywordEmbedder:
    """Bag-of-keywords vectors: one dimension per vocabulary word, so cosine similarity is predictable."""

    def __init__(self, vocabulary: Sequence[str], *, fixed: Dict[str, Sequence[float]] | None = None):
        self.vocabulary = [w.lower() for w in vocabulary]
        self._fixed = {k: np.asarray(v, dtype="float32") for k, v in (fixed or {}).items()}
        self.calls: List[str] = []

    def _vector(self, text: str) -> np.ndarray:
        if text in self._fixed:
            return self._fixed[text]
        lowered = text.lower()
        return np.asarray([lowered.count(w) for w in self.vocabulary], dtype="float32")

    def embed_texts(self, texts: Iterable[str]) -> np.ndarray:
        text_list = list(texts)
        if not text_list:
            return np.zeros((0, len(self.vocabulary)), dtype="float32")
        return np.stack([self._vector(t) for t in text_list])

    async def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        return self._vector(text)
