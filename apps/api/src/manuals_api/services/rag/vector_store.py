from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path
from threading import Lock
from types import MappingProxyType
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field, RootModel, ValidationError

from manuals_api.services.rag.errors import PersistenceError
from manuals_api.services.rag.types import (
    CatalogEntry,
    Chunk,
    Document,
    DocumentMetadata,
    OutlineEntry,
    StoreStats,
)

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 100


class _OutlineEntryModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str
    page_number: int


class _ChunkModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    text: str
    vector: list[float]


class _InfoModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    filename: str
    title: str
    author: str | None = None
    page_count: int = 0
    created_at: datetime
    source_locator: str
    is_remote: bool = False
    outline: list[_OutlineEntryModel] = Field(default_factory=list)


class _DocumentModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    chunks: list[_ChunkModel]
    info: _InfoModel


class _StoreFile(RootModel[dict[str, _DocumentModel]]):
    pass


def _metadata_from_model(info: _InfoModel) -> DocumentMetadata:
    return DocumentMetadata(
        filename=info.filename,
        title=info.title,
        author=info.author,
        page_count=info.page_count,
        created_at=info.created_at,
        source_locator=info.source_locator,
        is_remote=info.is_remote,
        outline=tuple(
            OutlineEntry(title=entry.title, page_number=entry.page_number)
            for entry in info.outline
        ),
    )


def _document_from_model(document_id: str, model: _DocumentModel) -> Document:
    return Document(
        id=document_id,
        metadata=_metadata_from_model(model.info),
        chunks=tuple(
            Chunk(id=chunk.id, text=chunk.text, vector=tuple(chunk.vector))
            for chunk in model.chunks
        ),
    )


def _metadata_payload(metadata: DocumentMetadata) -> dict[str, object]:
    return {
        "filename": metadata.filename,
        "title": metadata.title,
        "author": metadata.author,
        "page_count": metadata.page_count,
        "created_at": metadata.created_at.isoformat(),
        "source_locator": metadata.source_locator,
        "is_remote": metadata.is_remote,
        "outline": [
            {"title": entry.title, "page_number": entry.page_number}
            for entry in metadata.outline
        ],
    }


def _document_payload(document: Document) -> dict[str, object]:
    return {
        "chunks": [
            {"id": chunk.id, "text": chunk.text, "vector": list(chunk.vector)}
            for chunk in document.chunks
        ],
        "info": _metadata_payload(document.metadata),
    }


class JsonVectorStore:
    """All documents and their chunk vectors, checkpointed to one JSON file.

    The in-memory mapping is replaced wholesale on every commit, so readers
    holding a snapshot never see a half-applied upsert. Writers are
    serialized by ``_write_lock``.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._documents: Mapping[str, Document] | None = None
        self._load_lock = Lock()
        self._write_lock = Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Mapping[str, Document]:
        snapshot = self._documents
        if snapshot is not None:
            return snapshot

        with self._load_lock:
            if self._documents is None:
                self._documents = MappingProxyType(self._read_file())
            return self._documents

    def _read_file(self) -> dict[str, Document]:
        if not self._path.exists():
            logger.info("vector store file not found, starting empty path=%s", self._path)
            return {}

        try:
            raw = self._path.read_text(encoding="utf-8")
            parsed = _StoreFile.model_validate(json.loads(raw))
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning(
                "vector store file unreadable, starting empty path=%s error=%s", self._path, exc
            )
            return {}

        documents = {
            document_id: _document_from_model(document_id, model)
            for document_id, model in parsed.root.items()
        }
        logger.info(
            "vector store loaded path=%s documents=%d chunks=%d",
            self._path,
            len(documents),
            sum(len(document.chunks) for document in documents.values()),
        )
        return documents

    def _persist(self, documents: Mapping[str, Document]) -> None:
        payload = {
            document_id: _document_payload(document) for document_id, document in documents.items()
        }
        tmp_path = self._path.with_suffix(f"{self._path.suffix}.tmp")

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as exc:
            raise PersistenceError(f"failed to write vector store {self._path}: {exc}") from exc
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    def _commit(self, documents: dict[str, Document]) -> None:
        self._persist(documents)
        self._documents = MappingProxyType(documents)

    def upsert(self, document: Document) -> None:
        with self._write_lock:
            documents = dict(self.load())
            replaced = document.id in documents
            documents[document.id] = document
            try:
                self._commit(documents)
            except PersistenceError:
                logger.error(
                    "upsert not committed document_id=%s source=%s",
                    document.id,
                    document.metadata.source_locator,
                )
                raise

        logger.info(
            "document %s document_id=%s chunks=%d",
            "replaced" if replaced else "stored",
            document.id,
            len(document.chunks),
        )

    def clear(self) -> None:
        with self._write_lock:
            self._commit({})
        logger.info("vector store cleared path=%s", self._path)

    def documents(self) -> Mapping[str, Document]:
        return self.load()

    def catalog(self) -> list[CatalogEntry]:
        return [
            CatalogEntry(id=document.id, metadata=document.metadata, chunk_count=len(document.chunks))
            for document in self.load().values()
        ]

    def all_chunks_flat(self) -> list[Chunk]:
        return [chunk for document in self.load().values() for chunk in document.chunks]

    def dimensions(self) -> int | None:
        for chunk in self.all_chunks_flat():
            return len(chunk.vector)
        return None

    def stats(self) -> StoreStats:
        chunks = self.all_chunks_flat()
        total_length = sum(len(chunk.text) for chunk in chunks)

        preview = ""
        if chunks:
            preview = chunks[0].text[:_PREVIEW_CHARS] + "..."

        last_updated: datetime | None = None
        try:
            last_updated = datetime.fromtimestamp(self._path.stat().st_mtime, tz=timezone.utc)
        except OSError:
            last_updated = None

        return StoreStats(
            total_chunks=len(chunks),
            average_chunk_length=round(total_length / len(chunks)) if chunks else 0,
            total_tokens_estimated=round(total_length / 4),
            first_chunk_preview=preview,
            last_updated=last_updated,
        )
