"""Storage backends for the vector index."""

from .base import IndexStore, TextRecord, VectorRecord
from .duckdb import DuckDBIndexStore, decode_vector, encode_vector

__all__ = [
    "IndexStore",
    "TextRecord",
    "VectorRecord",
    "DuckDBIndexStore",
    "decode_vector",
    "encode_vector",
]
