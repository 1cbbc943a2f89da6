"""
In-memory vector cache used as the authority for similarity scans.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

import numpy as np


class VectorCache:
    """Mapping of document id to embedding held for the process lifetime.

    Iteration goes over the live mapping, so callers must not mutate the
    cache while an ``entries()`` generator is being consumed.
    """

    def __init__(self) -> None:
        self._vectors: dict[int, np.ndarray] = {}
        self._dim: int | None = None

    @property
    def dim(self) -> int | None:
        return self._dim

    def set(self, doc_id: int, vector: np.ndarray) -> None:
        vector = np.asarray(vector, dtype=np.float32).reshape(-1)
        if self._dim is None:
            self._dim = int(vector.shape[0])
        elif vector.shape[0] != self._dim:
            raise ValueError(
                f"Vector for document {doc_id} has {vector.shape[0]} dimensions, "
                f"cache holds {self._dim}."
            )
        self._vectors[doc_id] = vector

    def get(self, doc_id: int) -> np.ndarray | None:
        return self._vectors.get(doc_id)

    def clear(self) -> None:
        self._vectors.clear()
        self._dim = None

    def load(self, pairs: Iterable[tuple[int, np.ndarray]]) -> None:
        """Replace the whole cache content with *pairs*."""
        self.clear()
        for doc_id, vector in pairs:
            self.set(doc_id, vector)

    def entries(self) -> Iterator[tuple[int, np.ndarray]]:
        return iter(self._vectors.items())

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._vectors
