"""
Error taxonomy shared by the index, the engine actor, and the boundary layers.
"""

from __future__ import annotations


class DipSearchError(Exception):
    """Base class for errors raised by the search engine."""

    kind: str = "internal"


class NotReady(DipSearchError):
    """Raised when an index operation runs before a successful initialize."""

    kind = "not_ready"


class EmbeddingFailure(DipSearchError):
    """Raised when the embedding provider cannot produce a vector."""

    kind = "embedding"


class StorageFailure(DipSearchError):
    """Raised when the persistent index store cannot be opened or written."""

    kind = "storage"


class ProtocolError(DipSearchError):
    """Raised for malformed command payloads."""

    kind = "protocol"


ERRORS_BY_KIND: dict[str, type[DipSearchError]] = {
    cls.kind: cls for cls in (NotReady, EmbeddingFailure, StorageFailure, ProtocolError)
}


def error_for_kind(kind: str, message: str) -> DipSearchError:
    """Rebuild a typed error from an ``error`` event."""
    return ERRORS_BY_KIND.get(kind, DipSearchError)(message)
