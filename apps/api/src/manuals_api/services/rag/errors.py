from __future__ import annotations


class RetrievalError(RuntimeError):
    pass


class ExtractionError(RetrievalError):
    pass


class SourceFetchError(RetrievalError):
    pass


class EmbeddingProviderError(RetrievalError):
    pass


class PersistenceError(RetrievalError):
    pass


class DimensionMismatchError(RetrievalError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"vector dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class EmptyStoreCondition(RetrievalError):
    """Raised when a caller needs context but no document has been ingested yet."""
