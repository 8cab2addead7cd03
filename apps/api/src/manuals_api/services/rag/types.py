from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class OutlineEntry:
    title: str
    page_number: int


@dataclass(frozen=True)
class Chunk:
    id: str
    text: str
    vector: tuple[float, ...]


@dataclass(frozen=True)
class DocumentMetadata:
    filename: str
    title: str
    author: str | None
    page_count: int
    created_at: datetime
    source_locator: str
    is_remote: bool
    outline: tuple[OutlineEntry, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Document:
    id: str
    metadata: DocumentMetadata
    chunks: tuple[Chunk, ...]


@dataclass(frozen=True)
class CatalogEntry:
    id: str
    metadata: DocumentMetadata
    chunk_count: int


@dataclass(frozen=True)
class SearchResult:
    text: str
    score: float
    document_id: str
    document_metadata: DocumentMetadata
    chunk_id: str


@dataclass(frozen=True)
class DocumentIngestResult:
    id: str
    chunk_count: int
    metadata: DocumentMetadata


@dataclass(frozen=True)
class RetrievedContext:
    results: list[SearchResult]
    top_document_id: str | None


@dataclass(frozen=True)
class StoreStats:
    total_chunks: int
    average_chunk_length: int
    total_tokens_estimated: int
    first_chunk_preview: str
    last_updated: datetime | None
