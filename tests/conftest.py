from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

from dip_search.embeddings import EmbeddingProvider
from dip_search.indexing import VectorIndex
from dip_search.storage import DuckDBIndexStore

TEST_DIM = 32


@dataclass
class FakeEmbedding:
    values: list[float]


@dataclass
class FakeEmbedResult:
    embeddings: list[FakeEmbedding]


class BagOfWordsModels:
    """Deterministic bag-of-words embeddings: one dimension per distinct word."""

    def __init__(self) -> None:
        self.vocabulary: dict[str, int] = {}
        self.calls: list[dict[str, Any]] = []

    def embed_content(self, *, model: str, contents: list[str], config: dict) -> FakeEmbedResult:
        self.calls.append({"model": model, "contents": list(contents), "config": config})
        dim = config["output_dimensionality"]
        return FakeEmbedResult(embeddings=[FakeEmbedding(self._vector(text, dim)) for text in contents])

    def _vector(self, text: str, dim: int) -> list[float]:
        values = [0.0] * dim
        for word in re.findall(r"\w+", text.lower()):
            slot = self.vocabulary.setdefault(word, len(self.vocabulary))
            values[slot % dim] += 1.0
        return values


class BagOfWordsClient:
    def __init__(self) -> None:
        self.models = BagOfWordsModels()


class FailingModels:
    def embed_content(self, **kwargs: Any) -> FakeEmbedResult:
        raise RuntimeError("model assets missing")


class FailingClient:
    def __init__(self) -> None:
        self.models = FailingModels()


@pytest.fixture()
def embedding_client() -> BagOfWordsClient:
    return BagOfWordsClient()


@pytest.fixture()
def provider(embedding_client: BagOfWordsClient) -> EmbeddingProvider:
    return EmbeddingProvider(client=embedding_client, dim=TEST_DIM)


@pytest.fixture()
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "index" / "vectors.duckdb")


@pytest.fixture()
def make_index(db_path: str, embedding_client: BagOfWordsClient):
    """Build (not initialize) indexes over the same file and vocabulary."""
    created: list[VectorIndex] = []

    def _make(path: str | None = None, client: Any | None = None) -> VectorIndex:
        store = DuckDBIndexStore(path or db_path, initialize=False)
        index = VectorIndex(
            store,
            EmbeddingProvider(client=client or embedding_client, dim=TEST_DIM),
        )
        created.append(index)
        return index

    yield _make
    for index in created:
        index.close()


@pytest.fixture()
def ready_index(make_index) -> VectorIndex:
    index = make_index()
    index.initialize()
    return index


@pytest.fixture()
def index_factory(make_index):
    """Engine index factory that ignores the command and uses the test store."""
    return lambda command: make_index()
