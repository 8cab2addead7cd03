from manuals_api.services.rag.errors import (
    DimensionMismatchError,
    EmbeddingProviderError,
    EmptyStoreCondition,
    ExtractionError,
    PersistenceError,
    RetrievalError,
    SourceFetchError,
)
from manuals_api.services.rag.search import BruteForceSearchEngine, most_relevant_document
from manuals_api.services.rag.service import RetrievalService
from manuals_api.services.rag.types import DocumentIngestResult, SearchResult
from manuals_api.services.rag.vector_store import JsonVectorStore

__all__ = [
    "BruteForceSearchEngine",
    "DimensionMismatchError",
    "DocumentIngestResult",
    "EmbeddingProviderError",
    "EmptyStoreCondition",
    "ExtractionError",
    "JsonVectorStore",
    "PersistenceError",
    "RetrievalError",
    "RetrievalService",
    "SearchResult",
    "SourceFetchError",
    "most_relevant_document",
]
