"""
Ingestion pipeline: embed, persist, and cache document vectors.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from loguru import logger

from ..embeddings import EmbeddingProvider
from ..errors import EmbeddingFailure
from ..index_config import PROGRESS_EVERY
from ..storage import IndexStore, encode_vector
from .cache import VectorCache


ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class IndexDocument:
    """An (id, text) pair handed to the index by the host."""

    id: int
    text: str | None = None

    @property
    def effective_text(self) -> str:
        return self.text or f"Document {self.id}"


@dataclass(frozen=True)
class ReindexResult:
    """Summary output for a reindex run."""

    indexed: int
    total: int


def _as_documents(
    documents: Iterable[IndexDocument | tuple[int, str | None]],
) -> list[IndexDocument]:
    normalized: list[IndexDocument] = []
    for doc in documents:
        if isinstance(doc, IndexDocument):
            normalized.append(doc)
        else:
            doc_id, text = doc
            normalized.append(IndexDocument(id=int(doc_id), text=text))
    return normalized


class IngestionPipeline:
    """Turn (id, text) pairs into persisted and cached embeddings."""

    def __init__(
        self,
        store: IndexStore,
        cache: VectorCache,
        embedding_provider: EmbeddingProvider,
    ) -> None:
        self.store = store
        self.cache = cache
        self.embedding_provider = embedding_provider

    def ingest(self, doc_id: int, text: str) -> None:
        """Embed *text* and replace everything stored for *doc_id*.

        The durable write happens first; the cache is only touched once the
        store confirmed it, so a failed write never leaves the two diverged.
        """
        try:
            vector = self.embedding_provider.embed_document(text)
        except EmbeddingFailure:
            raise
        except Exception as exc:
            raise EmbeddingFailure(f"Could not embed document {doc_id}: {exc}") from exc

        self.store.upsert(doc_id, text, encode_vector(vector))
        self.cache.set(doc_id, vector)
        logger.debug(f"Indexed document {doc_id} (vector size: {vector.shape[0]})")

    def reindex_all(
        self,
        documents: Sequence[IndexDocument | tuple[int, str | None]],
        *,
        on_progress: ProgressCallback | None = None,
    ) -> ReindexResult:
        """Clear the index and ingest *documents* in order.

        A failure aborts the remaining batch; documents ingested before it
        stay indexed.
        """
        batch = _as_documents(documents)
        total = len(batch)
        logger.info(f"Reindexing {total} documents")

        self.store.clear_all()
        self.cache.clear()

        indexed = 0
        for doc in batch:
            self.ingest(doc.id, doc.effective_text)
            indexed += 1
            if indexed % PROGRESS_EVERY == 0:
                logger.info(f"Reindex progress: {indexed}/{total}")
                if on_progress is not None:
                    on_progress(indexed, total)

        logger.info(f"Reindexing complete: {indexed} documents")
        return ReindexResult(indexed=indexed, total=total)
