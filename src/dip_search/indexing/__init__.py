"""Indexing components for the vector index and archive metadata."""

from .cache import VectorCache
from .metadata import (
    FilterOption,
    FilterOptionGroup,
    build_filter_consolidation_map,
    extract_available_keys,
    flatten_metadata,
    group_keys_for_select,
    metadata_text_for_embedding,
)
from .pipeline import IndexDocument, IngestionPipeline, ReindexResult
from .index import IndexState, VectorIndex

__all__ = [
    "VectorCache",
    "FilterOption",
    "FilterOptionGroup",
    "build_filter_consolidation_map",
    "extract_available_keys",
    "flatten_metadata",
    "group_keys_for_select",
    "metadata_text_for_embedding",
    "IndexDocument",
    "IngestionPipeline",
    "ReindexResult",
    "IndexState",
    "VectorIndex",
]
