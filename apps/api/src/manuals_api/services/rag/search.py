from __future__ import annotations

from collections.abc import Sequence
import math
from typing import Protocol

from manuals_api.services.rag.errors import DimensionMismatchError
from manuals_api.services.rag.types import SearchResult
from manuals_api.services.rag.vector_store import JsonVectorStore

RELEVANCE_THRESHOLD = 0.4
DEFAULT_TOP_K = 4


class SimilaritySearch(Protocol):
    def search(self, query_vector: Sequence[float], k: int = DEFAULT_TOP_K) -> list[SearchResult]: ...


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise DimensionMismatchError(expected=len(a), actual=len(b))

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class BruteForceSearchEngine:
    """Exact cosine scan over every chunk of every stored document."""

    def __init__(self, store: JsonVectorStore, *, threshold: float = RELEVANCE_THRESHOLD) -> None:
        self._store = store
        self._threshold = threshold

    def search(self, query_vector: Sequence[float], k: int = DEFAULT_TOP_K) -> list[SearchResult]:
        if k <= 0:
            return []

        documents = self._store.documents()
        scored = [
            SearchResult(
                text=chunk.text,
                score=cosine_similarity(query_vector, chunk.vector),
                document_id=document.id,
                document_metadata=document.metadata,
                chunk_id=chunk.id,
            )
            for document in documents.values()
            for chunk in document.chunks
        ]
        if not scored:
            return []

        candidates = [result for result in scored if result.score > self._threshold]
        if not candidates:
            candidates = scored

        # sorted() is stable, ties keep scan order
        candidates = sorted(candidates, key=lambda result: result.score, reverse=True)
        return candidates[:k]


def most_relevant_document(results: Sequence[SearchResult]) -> str | None:
    counts: dict[str, int] = {}
    for result in results:
        counts[result.document_id] = counts.get(result.document_id, 0) + 1

    if not counts:
        return None
    # max() keeps the first maximal key, dicts keep first-seen order
    return max(counts, key=lambda document_id: counts[document_id])
