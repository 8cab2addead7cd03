from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from pathlib import Path

from manuals_api.config import RemoteManual
from manuals_api.services.rag.chunker import chunk_text
from manuals_api.services.rag.embedding_client import EmbeddingClient
from manuals_api.services.rag.errors import (
    EmbeddingProviderError,
    EmptyStoreCondition,
    RetrievalError,
)
from manuals_api.services.rag.extractor import TextExtractor
from manuals_api.services.rag.records import build_document, embed_chunks
from manuals_api.services.rag.search import (
    DEFAULT_TOP_K,
    BruteForceSearchEngine,
    SimilaritySearch,
    most_relevant_document,
)
from manuals_api.services.rag.source import (
    DEFAULT_MAX_BYTES,
    fetch_remote,
    filename_from_url,
    read_local,
)
from manuals_api.services.rag.types import (
    CatalogEntry,
    DocumentIngestResult,
    DocumentMetadata,
    RetrievedContext,
    SearchResult,
    StoreStats,
)
from manuals_api.services.rag.vector_store import JsonVectorStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceStatus:
    populated: bool
    documents: int
    stats: StoreStats


class RetrievalService:
    def __init__(
        self,
        *,
        store: JsonVectorStore,
        embedding_client: EmbeddingClient,
        extractor: TextExtractor,
        search_engine: SimilaritySearch | None = None,
        chunk_size: int = 500,
        chunk_overlap: int = 50,
        embedding_dimensions: int | None = None,
    ) -> None:
        if chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")

        self._store = store
        self._embedding_client = embedding_client
        self._extractor = extractor
        self._search_engine = search_engine or BruteForceSearchEngine(store)
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap
        self._embedding_dimensions = embedding_dimensions

    @property
    def store(self) -> JsonVectorStore:
        return self._store

    def ingest_document(
        self,
        data: bytes,
        source_label: str,
        *,
        source_locator: str | None = None,
        is_remote: bool = False,
        title: str | None = None,
    ) -> DocumentIngestResult:
        try:
            return self._ingest(
                data,
                source_label,
                source_locator=source_locator or source_label,
                is_remote=is_remote,
                title=title,
            )
        except RetrievalError as exc:
            logger.error(
                "ingest failed source=%s error_type=%s error=%s",
                source_label,
                type(exc).__name__,
                exc,
            )
            raise

    def _ingest(
        self,
        data: bytes,
        source_label: str,
        *,
        source_locator: str,
        is_remote: bool,
        title: str | None,
    ) -> DocumentIngestResult:
        ingested_at = datetime.now(timezone.utc)
        extracted = self._extractor.extract(data)

        pieces = chunk_text(
            extracted.text,
            chunk_size=self._chunk_size,
            chunk_overlap=self._chunk_overlap,
            outline=extracted.outline,
            page_count=extracted.page_count,
        )
        if not pieces:
            logger.warning("no text extracted source=%s", source_label)

        pairs = embed_chunks(
            pieces,
            self._embedding_client,
            expected_dimensions=self._embedding_dimensions or self._store.dimensions(),
        )

        metadata = DocumentMetadata(
            filename=Path(source_label).name,
            title=title or extracted.title or Path(source_label).stem,
            author=extracted.author,
            page_count=extracted.page_count,
            created_at=ingested_at,
            source_locator=source_locator,
            is_remote=is_remote,
            outline=extracted.outline,
        )
        document = build_document(source_label, metadata, pairs, ingested_at=ingested_at)
        self._store.upsert(document)

        logger.info(
            "ingested document_id=%s source=%s chunks=%d pages=%d",
            document.id,
            source_label,
            len(document.chunks),
            extracted.page_count,
        )
        return DocumentIngestResult(
            id=document.id,
            chunk_count=len(document.chunks),
            metadata=metadata,
        )

    def ingest_path(self, path: Path, *, title: str | None = None) -> DocumentIngestResult:
        return self.ingest_document(
            read_local(path),
            path.name,
            source_locator=str(path),
            is_remote=False,
            title=title,
        )

    def ingest_url(
        self,
        url: str,
        *,
        title: str | None = None,
        max_bytes: int = DEFAULT_MAX_BYTES,
        timeout_seconds: float = 30.0,
    ) -> DocumentIngestResult:
        data = fetch_remote(url, max_bytes=max_bytes, timeout_seconds=timeout_seconds)
        return self.ingest_document(
            data,
            filename_from_url(url),
            source_locator=url,
            is_remote=True,
            title=title,
        )

    def embed_query(self, text: str) -> list[float]:
        normalized = text.strip()
        if not normalized:
            raise ValueError("query text must not be empty")

        try:
            vectors = self._embedding_client.embed_texts([normalized])
        except EmbeddingProviderError:
            raise
        except Exception as exc:
            raise EmbeddingProviderError(str(exc)) from exc

        if len(vectors) != 1 or not vectors[0]:
            raise EmbeddingProviderError("provider returned no vector for the query")
        return vectors[0]

    def query_vector(self, vector: Sequence[float], k: int = DEFAULT_TOP_K) -> list[SearchResult]:
        return self._search_engine.search(vector, k)

    def query(self, text: str, k: int = DEFAULT_TOP_K) -> list[SearchResult]:
        if not self.is_populated():
            return []
        return self.query_vector(self.embed_query(text), k)

    def retrieve_context(self, text: str, k: int = DEFAULT_TOP_K) -> RetrievedContext:
        if not self.is_populated():
            raise EmptyStoreCondition("no documents have been ingested yet")

        results = self.query(text, k)
        return RetrievedContext(results=results, top_document_id=most_relevant_document(results))

    def list_documents(self) -> list[CatalogEntry]:
        return self._store.catalog()

    def is_populated(self) -> bool:
        return bool(self._store.all_chunks_flat())

    def status(self) -> ServiceStatus:
        return ServiceStatus(
            populated=self.is_populated(),
            documents=len(self._store.catalog()),
            stats=self._store.stats(),
        )

    def clear(self) -> None:
        self._store.clear()

    def preload(
        self,
        *,
        manuals_dir: Path | None,
        remote_manuals: Sequence[RemoteManual] = (),
        max_bytes: int = DEFAULT_MAX_BYTES,
        timeout_seconds: float = 30.0,
    ) -> list[DocumentIngestResult]:
        catalog = self._store.catalog()
        if catalog:
            logger.info("preload skipped, store already holds %d documents", len(catalog))
            return []

        results: list[DocumentIngestResult] = []

        if manuals_dir is not None and manuals_dir.is_dir():
            paths = sorted(
                path
                for path in manuals_dir.iterdir()
                if path.is_file() and path.suffix.lower() == ".pdf"
            )
            logger.info("preloading %d local manuals from %s", len(paths), manuals_dir)
            for path in paths:
                try:
                    results.append(self.ingest_path(path))
                except RetrievalError as exc:
                    logger.error("local manual skipped path=%s error=%s", path, exc)
        else:
            logger.info("local manuals directory not found: %s", manuals_dir)

        for manual in remote_manuals:
            try:
                results.append(
                    self.ingest_url(
                        manual.url,
                        title=manual.title,
                        max_bytes=max_bytes,
                        timeout_seconds=timeout_seconds,
                    )
                )
            except RetrievalError as exc:
                logger.error("remote manual skipped url=%s error=%s", manual.url, exc)

        logger.info(
            "preload finished documents=%d chunks=%d",
            len(results),
            sum(result.chunk_count for result in results),
        )
        return results
