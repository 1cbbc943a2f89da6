"""
Embedding provider for vector-based semantic search.

Wraps the Google GenAI embedding API for batch and single-query embedding
with configurable model, dimensions, and batch size. Every vector leaving
the provider is L2-normalized, so a plain dot product between two of them
is their cosine similarity.
"""

from __future__ import annotations

import os
from typing import Any

import numpy as np
from google.genai import Client as GenAIClient
from loguru import logger

from .errors import EmbeddingFailure


_DEFAULT_MODEL = "gemini-embedding-001"
_DEFAULT_DIM = 768
_DEFAULT_BATCH_SIZE = 50


def normalize_vector(values: Any) -> np.ndarray:
    """Return *values* as a unit-length float32 vector (zero vectors unchanged)."""
    vector = np.asarray(values, dtype=np.float32).reshape(-1)
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return vector
    return (vector / norm).astype(np.float32)


class EmbeddingProvider:
    """Generate normalized text embeddings via Google GenAI."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        dim: int | None = None,
        batch_size: int | None = None,
        client: Any | None = None,
    ) -> None:
        self.model = model or os.getenv("DIP_SEARCH_EMBEDDING_MODEL", _DEFAULT_MODEL)
        self.dim = dim or int(os.getenv("DIP_SEARCH_EMBEDDING_DIM", str(_DEFAULT_DIM)))
        self.batch_size = batch_size or int(
            os.getenv("DIP_SEARCH_EMBEDDING_BATCH_SIZE", str(_DEFAULT_BATCH_SIZE))
        )

        if client is not None:
            self._client = client
        else:
            resolved_key = api_key or os.getenv("GOOGLE_API_KEY")
            if resolved_key is None:
                raise EmbeddingFailure(
                    "GOOGLE_API_KEY not found. "
                    "Provide api_key or set the environment variable."
                )
            self._client = GenAIClient(api_key=resolved_key)

    def embed_texts(
        self,
        texts: list[str],
        *,
        task_type: str = "RETRIEVAL_DOCUMENT",
    ) -> list[np.ndarray]:
        """Embed a list of texts in batches.

        Returns a list of normalized vectors in the same order as *texts*.
        """
        all_embeddings: list[np.ndarray] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start : start + self.batch_size]
            all_embeddings.extend(self._embed_batch(batch, task_type=task_type))
        return all_embeddings

    def embed_document(self, text: str) -> np.ndarray:
        """Embed a single document text for storage."""
        return self._embed_batch([text], task_type="RETRIEVAL_DOCUMENT")[0]

    def embed_query(self, query: str) -> np.ndarray:
        """Embed a single query text for retrieval."""
        return self._embed_batch([query], task_type="RETRIEVAL_QUERY")[0]

    def _embed_batch(self, batch: list[str], *, task_type: str) -> list[np.ndarray]:
        try:
            result = self._client.models.embed_content(
                model=self.model,
                contents=batch,
                config={
                    "task_type": task_type,
                    "output_dimensionality": self.dim,
                },
            )
        except Exception as exc:
            logger.error(f"Embedding request failed for {len(batch)} text(s): {exc}")
            raise EmbeddingFailure(f"Embedding request failed: {exc}") from exc

        embeddings = list(result.embeddings or [])
        if len(embeddings) != len(batch):
            raise EmbeddingFailure(
                f"Embedding provider returned {len(embeddings)} vectors for {len(batch)} texts."
            )

        vectors: list[np.ndarray] = []
        for emb in embeddings:
            vector = normalize_vector(emb.values)
            if vector.shape[0] != self.dim:
                raise EmbeddingFailure(
                    f"Expected {self.dim}-dimensional embedding, got {vector.shape[0]}."
                )
            vectors.append(vector)
        return vectors
