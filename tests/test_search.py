"""Tests for metadata filters, ranking, and hybrid retrieval."""

from __future__ import annotations

import asyncio
import time

import numpy as np
import pytest

from dip_search.errors import DipSearchError, EmbeddingFailure, NotReady, StorageFailure
from dip_search.indexing.metadata import flatten_metadata
from dip_search.search import (
    Filter,
    FilterParseError,
    HybridRetriever,
    MetadataCatalog,
    SearchResult,
    cosine_similarity,
    filter_metadata_list,
    matches_filters,
    merge_candidates,
    parse_filters,
    rank_results,
)
from dip_search.search.filters import coerce_filters


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


def test_filter_is_case_insensitive_substring() -> None:
    filters = [Filter(key="Tipo", value="fattura")]

    assert matches_filters({"Tipo": ["Fattura elettronica"]}, filters) is True
    assert matches_filters({"Tipo": ["Contratto"]}, filters) is False


def test_missing_key_fails_filter() -> None:
    assert matches_filters({"Anno": [2024]}, [Filter(key="Tipo", value="x")]) is False


def test_filters_combine_with_and() -> None:
    flat = flatten_metadata({"Document": {"Tipo": "Fattura", "Anno": 2024}})

    assert matches_filters(flat, [Filter("Tipo", "fatt"), Filter("Document.Anno", "2024")])
    assert not matches_filters(flat, [Filter("Tipo", "fatt"), Filter("Anno", "2023")])


def test_empty_filters_never_restrict() -> None:
    filters = [Filter(key="", value="x"), Filter(key="Tipo", value="")]

    assert matches_filters({}, filters) is True
    assert matches_filters({}, []) is True


def test_filter_metadata_list_is_identity_without_active_filters() -> None:
    documents = [{"Tipo": "Fattura"}, {"Tipo": "Contratto"}]

    assert filter_metadata_list(documents, []) is documents
    assert filter_metadata_list(documents, [Filter(key="", value="")]) is documents
    assert filter_metadata_list(documents, [Filter("Tipo", "contr")]) == [{"Tipo": "Contratto"}]


def test_leaf_values_are_rendered_as_text() -> None:
    flat = {"isPrimary": [True], "Numero": [12.0], "Note": [None]}

    assert matches_filters(flat, [Filter("isPrimary", "true")])
    assert matches_filters(flat, [Filter("Numero", "12")])
    assert not matches_filters(flat, [Filter("Numero", "12.0")])
    assert matches_filters(flat, [Filter("Note", "null")])


def test_coerce_filters_from_payloads() -> None:
    filters = coerce_filters([{"key": "Anno", "value": 2024}, {"key": "Tipo", "value": None}])

    assert filters == [Filter("Anno", "2024"), Filter("Tipo", "")]
    with pytest.raises(FilterParseError):
        coerce_filters(["Tipo=fattura"])


def test_parse_filters_supports_separators_and_quotes() -> None:
    parsed = parse_filters('Tipo=fattura and Document.Anno:2024, Oggetto~"lavori, stradali"')

    assert parsed == [
        Filter("Tipo", "fattura"),
        Filter("Document.Anno", "2024"),
        Filter("Oggetto", "lavori, stradali"),
    ]
    assert parse_filters(None) == []
    assert parse_filters("   ") == []


def test_parse_filters_rejects_bad_syntax() -> None:
    with pytest.raises(FilterParseError):
        parse_filters("just words")
    with pytest.raises(FilterParseError):
        parse_filters("Tipo=''")


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------


def test_rank_results_applies_threshold_order_and_limit() -> None:
    results = [
        SearchResult(1, 0.25),
        SearchResult(2, 0.9),
        SearchResult(3, 0.5),
        SearchResult(4, 0.9),
        SearchResult(5, 0.26),
    ]

    ranked = rank_results(results, threshold=0.25, limit=3)

    assert [result.doc_id for result in ranked] == [2, 4, 3]


def test_cosine_similarity_ignores_magnitude() -> None:
    a = np.array([3.0, 0.0], dtype=np.float32)
    b = np.array([1.0, 1.0], dtype=np.float32)

    assert cosine_similarity(a, b) == pytest.approx(1 / np.sqrt(2))
    assert cosine_similarity(a, np.zeros(2, dtype=np.float32)) == 0.0


def test_search_result_to_dict() -> None:
    assert SearchResult(7, 0.5).to_dict() == {"id": 7, "score": 0.5}


# ---------------------------------------------------------------------------
# Hybrid retrieval
# ---------------------------------------------------------------------------


class _StaticSemantic:
    def __init__(self, ids: list[int]) -> None:
        self.ids = ids
        self.queries: list[str] = []

    def search(self, query: str) -> list[SearchResult]:
        self.queries.append(query)
        return [SearchResult(doc_id, 1.0 - 0.01 * rank) for rank, doc_id in enumerate(self.ids)]


class _AsyncSemantic:
    def __init__(self, error: Exception | None = None, ids: list[int] | None = None) -> None:
        self.error = error
        self.ids = ids or []

    async def search(self, query: str) -> list[SearchResult]:
        if self.error is not None:
            raise self.error
        return [SearchResult(doc_id, 0.9) for doc_id in self.ids]


class _StaticMetadata:
    def __init__(self, ids: list[int]) -> None:
        self.ids = ids

    def search_by_filters(self, filters) -> list[int]:
        return list(self.ids)


class _SlowSemantic:
    def search(self, query: str) -> list[SearchResult]:
        time.sleep(0.3)
        return [SearchResult(1, 0.9)]


class _SlowMetadata:
    def search_by_filters(self, filters) -> list[int]:
        time.sleep(0.3)
        return [1]


def test_merge_candidates() -> None:
    assert merge_candidates([3, 5, 7], [5, 7, 9], has_filters=True) == [5, 7]
    assert merge_candidates([3, 5, 7], [], has_filters=False) == [3, 5, 7]
    assert merge_candidates(None, [5, 7, 9], has_filters=True) == [5, 7, 9]
    assert merge_candidates([], [5, 7, 9], has_filters=True) == []


def test_hybrid_intersects_semantic_and_filter_ids() -> None:
    retriever = HybridRetriever(_StaticSemantic([3, 5, 7]), _StaticMetadata([5, 7, 9]))

    ids = asyncio.run(retriever.retrieve([Filter("Tipo", "fattura")], "lavori stradali"))

    assert ids == [5, 7]


def test_hybrid_keeps_semantic_rank_order() -> None:
    retriever = HybridRetriever(_StaticSemantic([9, 7, 5]), _StaticMetadata([5, 7, 9]))

    ids = asyncio.run(retriever.retrieve([Filter("Tipo", "fattura")], "lavori stradali"))

    assert ids == [9, 7, 5]


def test_hybrid_without_filters_uses_semantic_ids() -> None:
    retriever = HybridRetriever(_StaticSemantic([3, 5]), _StaticMetadata([1, 2, 3, 4, 5]))

    assert asyncio.run(retriever.retrieve([], "lavori stradali")) == [3, 5]


def test_hybrid_short_query_skips_semantic() -> None:
    semantic = _StaticSemantic([3])
    retriever = HybridRetriever(semantic, _StaticMetadata([5, 7]))

    ids = asyncio.run(retriever.retrieve([Filter("Tipo", "fattura")], " ab "))

    assert ids == [5, 7]
    assert semantic.queries == []


def test_hybrid_not_ready_contributes_no_semantic_candidates() -> None:
    retriever = HybridRetriever(
        _AsyncSemantic(error=NotReady("not initialized")), _StaticMetadata([5, 7])
    )

    assert asyncio.run(retriever.retrieve([], "lavori stradali")) == []
    assert asyncio.run(retriever.retrieve([Filter("Tipo", "x")], "lavori stradali")) == []


def test_hybrid_embedding_failure_degrades_to_empty() -> None:
    retriever = HybridRetriever(
        _AsyncSemantic(error=EmbeddingFailure("model missing")), _StaticMetadata([1])
    )

    assert asyncio.run(retriever.retrieve([], "lavori stradali")) == []


def test_hybrid_accepts_async_searchers() -> None:
    retriever = HybridRetriever(_AsyncSemantic(ids=[4, 2]), _StaticMetadata([2]))

    assert asyncio.run(retriever.retrieve([Filter("Tipo", "x")], "lavori stradali")) == [2]


def test_hybrid_runs_semantic_and_metadata_in_parallel() -> None:
    retriever = HybridRetriever(_SlowSemantic(), _SlowMetadata())

    start = time.perf_counter()
    ids = asyncio.run(retriever.retrieve([Filter("Tipo", "x")], "lavori stradali"))
    elapsed = time.perf_counter() - start

    assert elapsed < 0.58
    assert ids == [1]


def test_metadata_catalog_filters_and_keys() -> None:
    catalog = MetadataCatalog(
        {
            3: {"Document": {"Tipo": "Fattura elettronica"}},
            5: {"Document": {"Tipo": "Contratto"}},
            7: {"Document": {"Tipo": "Fattura"}},
        }
    )

    assert catalog.search_by_filters([Filter("Tipo", "fattura")]) == [3, 7]
    assert catalog.search_by_filters([]) == [3, 5, 7]
    assert catalog.available_keys() == ["Document.Tipo", "Tipo"]
    assert [group.group_label for group in catalog.grouped_keys()] == ["Document", "Other"]
    assert len(catalog) == 3


def test_hybrid_any_semantic_failure_contributes_no_candidates() -> None:
    catalog = MetadataCatalog({1: {"Tipo": "Fattura"}, 2: {"Tipo": "Contratto"}})
    broken = HybridRetriever(_AsyncSemantic(error=DipSearchError("internal failure")), catalog)
    storage = HybridRetriever(_AsyncSemantic(error=StorageFailure("disk gone")), catalog)

    assert asyncio.run(broken.retrieve([Filter("Tipo", "fattura")], "acme invoice")) == []
    assert asyncio.run(storage.retrieve([], "acme invoice")) == []
    assert asyncio.run(broken.retrieve([Filter("Tipo", "fattura")], "")) == [1]
