"""
DipSearch - semantic and metadata retrieval for archived documents.

This package keeps a vector index of document texts in DuckDB with a hydrated
in-memory cache, ranks documents against free-text queries with Gemini
embeddings, and intersects those rankings with structured metadata filters.

Example usage:
    >>> from dip_search import SearchEngine
    >>> async with SearchEngine() as engine:
    ...     await engine.initialize()
    ...     await engine.ingest(1, "Invoice from Acme Corp")
    ...     hits = await engine.search("Acme invoice")
"""

from .embeddings import EmbeddingProvider
from .engine import SearchEngine
from .errors import (
    DipSearchError,
    EmbeddingFailure,
    NotReady,
    ProtocolError,
    StorageFailure,
)
from .indexing import (
    IndexState,
    VectorIndex,
    extract_available_keys,
    flatten_metadata,
    group_keys_for_select,
)
from .search import (
    Filter,
    HybridRetriever,
    MetadataCatalog,
    SearchResult,
    filter_metadata_list,
    matches_filters,
)

__all__ = [
    # Engine
    "SearchEngine",
    "VectorIndex",
    "IndexState",
    "EmbeddingProvider",
    # Retrieval
    "HybridRetriever",
    "MetadataCatalog",
    "SearchResult",
    "Filter",
    "matches_filters",
    "filter_metadata_list",
    # Metadata
    "flatten_metadata",
    "extract_available_keys",
    "group_keys_for_select",
    # Errors
    "DipSearchError",
    "NotReady",
    "EmbeddingFailure",
    "StorageFailure",
    "ProtocolError",
]
