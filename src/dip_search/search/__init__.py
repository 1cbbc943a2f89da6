"""Search helpers: semantic ranking, metadata filters, hybrid retrieval."""

from .filters import (
    Filter,
    FilterParseError,
    filter_metadata_list,
    matches_filters,
    parse_filters,
    supported_filter_syntax,
)
from .hybrid import HybridRetriever, MetadataCatalog, MetadataSource, merge_candidates
from .ranker import SearchResult, rank_results
from .semantic import SemanticSearchEngine, cosine_similarity

__all__ = [
    "Filter",
    "FilterParseError",
    "filter_metadata_list",
    "matches_filters",
    "parse_filters",
    "supported_filter_syntax",
    "HybridRetriever",
    "MetadataCatalog",
    "MetadataSource",
    "merge_candidates",
    "SearchResult",
    "rank_results",
    "SemanticSearchEngine",
    "cosine_similarity",
]
