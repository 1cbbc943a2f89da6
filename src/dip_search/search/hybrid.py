"""
Hybrid retrieval: semantic ranking combined with structured metadata filters.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from loguru import logger

from ..errors import DipSearchError
from ..index_config import MIN_QUERY_LENGTH
from ..indexing.metadata import (
    FilterOptionGroup,
    extract_available_keys,
    flatten_metadata,
    group_keys_for_select,
)
from .filters import Filter, has_active_filters, matches_filters
from .ranker import SearchResult


class SemanticSearcher(Protocol):
    """Anything that ranks document ids for a free-text query (sync or async)."""

    def search(self, query: str) -> Any:
        ...


class MetadataSource(Protocol):
    """Structured-query collaborator returning ids that satisfy filters."""

    def search_by_filters(self, filters: Sequence[Filter]) -> list[int]:
        ...


class MetadataCatalog:
    """In-process metadata source over ``{doc_id: metadata_tree}``."""

    def __init__(self, documents: Mapping[int, Any]) -> None:
        self._metadata = dict(documents)
        self._flat = {doc_id: flatten_metadata(tree) for doc_id, tree in self._metadata.items()}

    def __len__(self) -> int:
        return len(self._metadata)

    def get(self, doc_id: int) -> Any | None:
        return self._metadata.get(doc_id)

    def search_by_filters(self, filters: Sequence[Filter]) -> list[int]:
        return [doc_id for doc_id, flat in self._flat.items() if matches_filters(flat, filters)]

    def available_keys(self) -> list[str]:
        return extract_available_keys(self._metadata.values())

    def grouped_keys(self) -> list[FilterOptionGroup]:
        return group_keys_for_select(self.available_keys())


def merge_candidates(
    semantic_ids: list[int] | None,
    filter_ids: list[int],
    *,
    has_filters: bool,
) -> list[int]:
    """Combine semantic and filter candidates.

    ``semantic_ids`` is None when no semantic query ran. When both sides are
    active the result is their intersection in semantic rank order.
    """
    if semantic_ids is None:
        return list(filter_ids)
    if not has_filters:
        return list(semantic_ids)
    allowed = set(filter_ids)
    return [doc_id for doc_id in semantic_ids if doc_id in allowed]


def wants_semantic(free_text: str | None) -> bool:
    return free_text is not None and len(free_text.strip()) > MIN_QUERY_LENGTH


class HybridRetriever:
    """Run semantic and metadata retrieval concurrently and merge the ids."""

    def __init__(self, semantic: SemanticSearcher | None, metadata_source: MetadataSource) -> None:
        self.semantic = semantic
        self.metadata_source = metadata_source

    async def retrieve(
        self,
        filters: Sequence[Filter],
        free_text: str | None = None,
    ) -> list[int]:
        run_semantic = wants_semantic(free_text)

        metadata_task = asyncio.to_thread(self.metadata_source.search_by_filters, list(filters))
        if run_semantic:
            semantic_ids, filter_ids = await asyncio.gather(
                self._semantic_ids(str(free_text).strip()),
                metadata_task,
            )
        else:
            semantic_ids = None
            filter_ids = await metadata_task

        return merge_candidates(
            semantic_ids,
            filter_ids,
            has_filters=has_active_filters(filters),
        )

    async def _semantic_ids(self, query: str) -> list[int]:
        if self.semantic is None:
            logger.warning("Semantic search unavailable, skipping semantic candidates")
            return []
        try:
            if inspect.iscoroutinefunction(self.semantic.search):
                results = await self.semantic.search(query)
            else:
                results = await asyncio.to_thread(self.semantic.search, query)
        except DipSearchError as exc:
            logger.warning(f"Semantic search skipped ({exc.kind}): {exc}")
            return []
        return [_result_id(result) for result in results]


def _result_id(result: SearchResult | Mapping[str, Any]) -> int:
    if isinstance(result, SearchResult):
        return result.doc_id
    return int(result["id"])
