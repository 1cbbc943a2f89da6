"""
Vector-based semantic search engine.

Embeds a query and scans every cached document vector, scoring each by
cosine similarity. The scan is exhaustive: corpora are expected to hold
thousands of documents, not millions.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from ..embeddings import EmbeddingProvider
from ..errors import EmbeddingFailure
from ..index_config import MAX_RESULTS, RELEVANCE_THRESHOLD
from ..indexing.cache import VectorCache
from .ranker import SearchResult, rank_results


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """True cosine similarity for vectors of arbitrary length."""
    denominator = float(np.linalg.norm(a)) * float(np.linalg.norm(b))
    if denominator == 0.0:
        return 0.0
    return float(np.dot(a, b)) / denominator


class SemanticSearchEngine:
    """Embed a query and rank cached document vectors against it."""

    def __init__(
        self,
        cache: VectorCache,
        embedding_provider: EmbeddingProvider,
        *,
        threshold: float = RELEVANCE_THRESHOLD,
        limit: int = MAX_RESULTS,
        assume_normalized: bool = True,
    ) -> None:
        self.cache = cache
        self.embedding_provider = embedding_provider
        self.threshold = threshold
        self.limit = limit
        # Dot product equals cosine only while the provider emits unit vectors.
        self.assume_normalized = assume_normalized

    def search(self, query: str) -> list[SearchResult]:
        """Return ranked hits for a free-text query."""
        try:
            query_vector = self.embedding_provider.embed_query(query)
        except EmbeddingFailure:
            raise
        except Exception as exc:
            raise EmbeddingFailure(f"Could not embed query: {exc}") from exc
        return self.search_vector(query_vector)

    def search_vector(self, query_vector: Any) -> list[SearchResult]:
        """Return ranked hits for a precomputed query vector."""
        query = np.asarray(query_vector, dtype=np.float32).reshape(-1)
        scored: list[SearchResult] = []
        for doc_id, vector in self.cache.entries():
            scored.append(SearchResult(doc_id=doc_id, score=self._score(query, vector)))
        return rank_results(scored, threshold=self.threshold, limit=self.limit)

    def _score(self, query: np.ndarray, candidate: np.ndarray) -> float:
        if self.assume_normalized:
            return float(np.dot(query, candidate))
        return cosine_similarity(query, candidate)
