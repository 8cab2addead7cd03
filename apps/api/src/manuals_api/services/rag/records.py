from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
import hashlib
import logging
import math

from manuals_api.services.rag.embedding_client import EmbeddingClient
from manuals_api.services.rag.errors import EmbeddingProviderError
from manuals_api.services.rag.types import Chunk, Document, DocumentMetadata

logger = logging.getLogger(__name__)


def document_id_for(source_label: str, ingested_at: datetime) -> str:
    seed = f"{source_label}{ingested_at.isoformat()}"
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:32]


def _validate_vector(vector: object, *, expected_dimensions: int | None, index: int) -> list[float]:
    if not isinstance(vector, (list, tuple)) or not vector:
        raise EmbeddingProviderError(f"chunk-{index}: provider returned an empty vector")

    values = [float(value) for value in vector]
    if not all(math.isfinite(value) for value in values):
        raise EmbeddingProviderError(f"chunk-{index}: provider returned non-finite values")
    if expected_dimensions is not None and len(values) != expected_dimensions:
        raise EmbeddingProviderError(
            f"chunk-{index}: expected {expected_dimensions} dimensions, got {len(values)}"
        )
    return values


def embed_chunks(
    texts: Sequence[str],
    client: EmbeddingClient,
    *,
    expected_dimensions: int | None = None,
) -> list[tuple[str, list[float]]]:
    """Embed chunk texts one provider call at a time, preserving order.

    Without ``expected_dimensions`` the first vector fixes the dimensionality
    every later chunk of the document must match.
    """
    pairs: list[tuple[str, list[float]]] = []
    dimensions = expected_dimensions

    for index, text in enumerate(texts):
        try:
            vectors = client.embed_texts([text])
        except EmbeddingProviderError:
            raise
        except Exception as exc:
            raise EmbeddingProviderError(f"chunk-{index}: {exc}") from exc

        if len(vectors) != 1:
            raise EmbeddingProviderError(
                f"chunk-{index}: expected 1 vector, got {len(vectors)}"
            )

        try:
            values = _validate_vector(vectors[0], expected_dimensions=dimensions, index=index)
        except (TypeError, ValueError) as exc:
            raise EmbeddingProviderError(f"chunk-{index}: malformed vector: {exc}") from exc

        dimensions = len(values)
        pairs.append((text, values))

    logger.debug("embedded %d chunks dimensions=%s", len(pairs), dimensions)
    return pairs


def build_document(
    source_label: str,
    metadata: DocumentMetadata,
    pairs: Sequence[tuple[str, Sequence[float]]],
    *,
    ingested_at: datetime,
) -> Document:
    chunks = tuple(
        Chunk(id=f"chunk-{index}", text=text, vector=tuple(float(value) for value in vector))
        for index, (text, vector) in enumerate(pairs)
    )
    return Document(
        id=document_id_for(source_label, ingested_at),
        metadata=metadata,
        chunks=chunks,
    )
