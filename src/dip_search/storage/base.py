"""
Storage interfaces and data models for index persistence.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol


BackingMode = Literal["durable", "ephemeral"]


@dataclass(frozen=True)
class TextRecord:
    """Full-text content stored for a document."""

    doc_id: int
    content: str


@dataclass(frozen=True)
class VectorRecord:
    """A serialized embedding stored for a document."""

    doc_id: int
    embedding: bytes


class IndexStore(Protocol):
    """Protocol for persistence operations used by ingestion and hydration."""

    @property
    def backing_mode(self) -> BackingMode:
        """Whether the store is backed by a durable file or by memory."""

    def initialize(self) -> None:
        """Create required tables if absent."""

    def upsert(self, doc_id: int, text: str, vector_bytes: bytes) -> None:
        """Replace the text and vector rows of a document as one atomic unit."""

    def load_all_vectors(self) -> list[VectorRecord]:
        """Return every stored vector record."""

    def clear_all(self) -> None:
        """Remove every text and vector row."""

    def count_vectors(self) -> int:
        """Count stored vector records."""

    def get_text(self, doc_id: int) -> TextRecord | None:
        """Fetch stored text for a document if present."""

    def close(self) -> None:
        """Release the underlying connection."""
