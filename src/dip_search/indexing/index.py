"""
Vector index facade tying the store, cache, ingestion, and search together.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
from loguru import logger

from ..embeddings import EmbeddingProvider
from ..errors import EmbeddingFailure, NotReady, StorageFailure
from ..index_config import resolve_db_path
from ..search.ranker import SearchResult
from ..search.semantic import SemanticSearchEngine
from ..storage import DuckDBIndexStore, IndexStore, decode_vector
from .cache import VectorCache
from .pipeline import IndexDocument, IngestionPipeline, ProgressCallback, ReindexResult


@dataclass(frozen=True)
class IndexState:
    """Snapshot of index readiness and size."""

    initialized: bool
    indexed_documents: int
    backing_mode: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "initialized": self.initialized,
            "indexed_documents": self.indexed_documents,
            "backing_mode": self.backing_mode,
        }


class VectorIndex:
    """Own the persistent store and the hydrated cache for one index."""

    def __init__(
        self,
        store: IndexStore,
        embedding_provider: EmbeddingProvider,
        *,
        cache: VectorCache | None = None,
    ) -> None:
        self.store = store
        self.embedding_provider = embedding_provider
        self.cache = cache if cache is not None else VectorCache()
        self.pipeline = IngestionPipeline(store, self.cache, embedding_provider)
        self.query_engine = SemanticSearchEngine(self.cache, embedding_provider)
        self._ready = False

    @classmethod
    def from_config(
        cls,
        *,
        db_path: str | None = None,
        embedding_model: str | None = None,
        embedding_dim: int | None = None,
        api_key: str | None = None,
        client: Any | None = None,
    ) -> "VectorIndex":
        """Build an index over a DuckDB file and a GenAI embedding provider."""
        provider = EmbeddingProvider(
            api_key=api_key,
            model=embedding_model,
            dim=embedding_dim,
            client=client,
        )
        store = DuckDBIndexStore(resolve_db_path(db_path), initialize=False)
        return cls(store, provider)

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def backing_mode(self) -> str:
        return self.store.backing_mode

    def initialize(self) -> IndexState:
        """Create tables and rebuild the cache from every stored vector."""
        if self._ready:
            return self.state()
        self.store.initialize()
        self._hydrate()
        self._ready = True
        logger.info(
            f"Vector index ready: {len(self.cache)} vectors, backing={self.backing_mode}"
        )
        return self.state()

    def ingest(self, doc_id: int, text: str) -> None:
        self._require_ready()
        self.pipeline.ingest(doc_id, text)

    def reindex_all(
        self,
        documents: Sequence[IndexDocument | tuple[int, str | None]],
        *,
        on_progress: ProgressCallback | None = None,
    ) -> ReindexResult:
        self._require_ready()
        return self.pipeline.reindex_all(documents, on_progress=on_progress)

    def search(self, query: str) -> list[SearchResult]:
        self._require_ready()
        return self.query_engine.search(query)

    def search_vector(self, vector: Any) -> list[SearchResult]:
        self._require_ready()
        return self.query_engine.search_vector(vector)

    def embed(self, text: str) -> np.ndarray:
        self._require_ready()
        try:
            return self.embedding_provider.embed_document(text)
        except EmbeddingFailure:
            raise
        except Exception as exc:
            raise EmbeddingFailure(f"Could not embed text: {exc}") from exc

    def clear(self) -> None:
        self._require_ready()
        self.store.clear_all()
        self.cache.clear()
        logger.info("Vector index cleared")

    def state(self) -> IndexState:
        return IndexState(
            initialized=self._ready,
            indexed_documents=len(self.cache),
            backing_mode=self.backing_mode,
        )

    def close(self) -> None:
        self.store.close()
        self._ready = False

    def _hydrate(self) -> None:
        records = self.store.load_all_vectors()
        expected_dim = self.embedding_provider.dim
        pairs: list[tuple[int, np.ndarray]] = []
        for record in records:
            vector = decode_vector(record.embedding)
            if vector.shape[0] != expected_dim:
                raise StorageFailure(
                    f"Stored vector for document {record.doc_id} has {vector.shape[0]} "
                    f"dimensions, embedding provider produces {expected_dim}. "
                    "Reindex with the current model."
                )
            pairs.append((record.doc_id, vector))
        self.cache.load(pairs)

    def _require_ready(self) -> None:
        if not self._ready:
            raise NotReady("Vector index is not initialized.")
