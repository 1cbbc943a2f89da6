"""
Ranking helpers for semantic search results.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SearchResult:
    """A document id scored by cosine similarity against a query."""

    doc_id: int
    score: float

    def to_dict(self) -> dict[str, int | float]:
        return {"id": self.doc_id, "score": self.score}


def rank_results(
    results: list[SearchResult], *, threshold: float, limit: int
) -> list[SearchResult]:
    """Drop results at or below *threshold*, sort by score, and apply limit.

    ``sorted`` is stable, so equal scores keep their scan order.
    """
    relevant = [result for result in results if result.score > threshold]
    ordered = sorted(relevant, key=lambda result: -result.score)
    return ordered[: max(limit, 0)]
