from __future__ import annotations

from functools import lru_cache
import logging
from pathlib import Path
from typing import Annotated, Any, Literal

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from manuals_api.config import get_settings
from manuals_api.llm import ChatTurn, LLMClient, LLMClientError, OllamaChatClient
from manuals_api.logging_config import setup_logging
from manuals_api.services.rag import (
    EmbeddingProviderError,
    EmptyStoreCondition,
    ExtractionError,
    JsonVectorStore,
    PersistenceError,
    RetrievalError,
    RetrievalService,
    SourceFetchError,
)
from manuals_api.services.rag.embedding_client import EmbeddingClient, OllamaEmbeddingClient
from manuals_api.services.rag.extractor import PdfTextExtractor
from manuals_api.services.rag.types import DocumentMetadata, SearchResult

logger = logging.getLogger(__name__)

VERSION = "1.2.0"
NOT_FOUND_ANSWER = (
    "Sorry, I could not find relevant information in our manuals. "
    "Could you rephrase the question or try a different topic?"
)
MANUAL_LINK_MARKER = "View manual:"

app = FastAPI(title="Manuals RAG API", version=VERSION)


class ChatTurnModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message: str
    history: list[ChatTurnModel] = Field(default_factory=list)
    k: int | None = Field(default=None, ge=1, le=20)


@lru_cache
def get_vector_store() -> JsonVectorStore:
    return JsonVectorStore(Path(get_settings().rag_store_path))


def get_llm_client() -> LLMClient:
    settings = get_settings()
    return OllamaChatClient(
        base_url=settings.ollama_base_url,
        default_model=settings.ollama_model,
        fallback_model=settings.ollama_fallback_model,
        timeout_seconds=settings.ollama_timeout_seconds,
    )


def get_embedding_client() -> EmbeddingClient:
    settings = get_settings()
    return OllamaEmbeddingClient(
        base_url=settings.ollama_embed_base_url,
        model=settings.ollama_embed_model,
        timeout_seconds=settings.ollama_timeout_seconds,
    )


def build_retrieval_service(
    store: JsonVectorStore,
    embedding_client: EmbeddingClient,
) -> RetrievalService:
    settings = get_settings()
    return RetrievalService(
        store=store,
        embedding_client=embedding_client,
        extractor=PdfTextExtractor(),
        chunk_size=settings.rag_chunk_size,
        chunk_overlap=settings.rag_chunk_overlap,
        embedding_dimensions=settings.rag_embedding_dim or None,
    )


def get_retrieval_service(
    store: Annotated[JsonVectorStore, Depends(get_vector_store)],
    embedding_client: Annotated[EmbeddingClient, Depends(get_embedding_client)],
) -> RetrievalService:
    return build_retrieval_service(store, embedding_client)


@app.on_event("startup")
def startup() -> None:
    settings = get_settings()
    setup_logging(settings.log_level)

    if not settings.rag_preload_on_startup:
        return

    service = build_retrieval_service(get_vector_store(), get_embedding_client())
    service.preload(
        manuals_dir=Path(settings.rag_manuals_dir),
        remote_manuals=settings.remote_manuals,
        max_bytes=settings.remote_max_bytes,
        timeout_seconds=settings.ollama_timeout_seconds,
    )


def _metadata_json(metadata: DocumentMetadata) -> dict[str, Any]:
    return {
        "filename": metadata.filename,
        "title": metadata.title,
        "author": metadata.author,
        "page_count": metadata.page_count,
        "created_at": metadata.created_at.isoformat(),
        "path": metadata.source_locator,
        "is_remote": metadata.is_remote,
        "outline": [
            {"title": entry.title, "page_number": entry.page_number}
            for entry in metadata.outline
        ],
    }


def _result_json(result: SearchResult) -> dict[str, Any]:
    return {
        "chunk_id": result.chunk_id,
        "document_id": result.document_id,
        "title": result.document_metadata.title,
        "score": round(result.score, 6),
        "text": result.text,
    }


def _manual_link(metadata: DocumentMetadata) -> str:
    if metadata.is_remote:
        return metadata.source_locator
    return f"/manuals/files/{Path(metadata.source_locator).name}"


def _reserve_upload_path(manuals_dir: Path, filename: str) -> Path:
    """Create an empty file under a name no other manual uses yet.

    ``guide.pdf`` becomes ``guide-1.pdf``, ``guide-2.pdf`` and so on when
    taken, so a later upload never replaces or removes an indexed copy.
    """
    stem, suffix = Path(filename).stem, Path(filename).suffix
    candidate = manuals_dir / filename
    attempt = 0
    while True:
        try:
            candidate.open("xb").close()
        except FileExistsError:
            attempt += 1
            candidate = manuals_dir / f"{stem}-{attempt}{suffix}"
            continue
        return candidate


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/upload")
def upload(
    file: Annotated[UploadFile, File()],
    service: Annotated[RetrievalService, Depends(get_retrieval_service)],
) -> dict[str, Any]:
    filename = Path(file.filename or "").name
    if not filename.lower().endswith(".pdf"):
        raise HTTPException(status_code=400, detail="only PDF uploads are supported")

    data = file.file.read()
    manuals_dir = Path(get_settings().rag_manuals_dir)

    try:
        manuals_dir.mkdir(parents=True, exist_ok=True)
        target = _reserve_upload_path(manuals_dir, filename)
    except OSError as exc:
        logger.error("upload could not be saved filename=%s error=%s", filename, exc)
        raise HTTPException(status_code=500, detail="could not store the uploaded file") from exc

    try:
        target.write_bytes(data)
        result = service.ingest_document(data, filename, source_locator=str(target))
    except OSError as exc:
        target.unlink(missing_ok=True)
        logger.error("upload could not be saved filename=%s error=%s", filename, exc)
        raise HTTPException(status_code=500, detail="could not store the uploaded file") from exc
    except RetrievalError as exc:
        target.unlink(missing_ok=True)
        raise _ingest_http_error(exc) from exc

    return {
        "ok": True,
        "manual": {
            "id": result.id,
            "chunks": result.chunk_count,
            "info": _metadata_json(result.metadata),
        },
        "message": f"Document indexed. {result.chunk_count} fragments were generated.",
    }


def _ingest_http_error(exc: RetrievalError) -> HTTPException:
    if isinstance(exc, (ExtractionError, SourceFetchError)):
        return HTTPException(status_code=422, detail=f"could not read document: {exc}")
    if isinstance(exc, EmbeddingProviderError):
        return HTTPException(status_code=502, detail="embedding provider failed, try again")
    return HTTPException(status_code=500, detail="document could not be saved, try again")


@app.post("/chat")
def chat(
    request: ChatRequest,
    service: Annotated[RetrievalService, Depends(get_retrieval_service)],
    llm_client: Annotated[LLMClient, Depends(get_llm_client)],
) -> JSONResponse:
    message = request.message.strip()
    if not message:
        raise HTTPException(status_code=400, detail="message must not be empty")

    settings = get_settings()
    top_k = request.k or settings.rag_top_k

    try:
        retrieved = service.retrieve_context(message, top_k)
    except EmptyStoreCondition:
        return JSONResponse(
            status_code=400,
            content={
                "error": "manuals_not_loaded",
                "detail": "No manuals are loaded yet. Upload or preload a manual first.",
                "manuals_loaded": False,
            },
        )
    except EmbeddingProviderError as exc:
        logger.error("query embedding failed error=%s", exc)
        raise HTTPException(status_code=502, detail="embedding provider failed, try again") from exc
    except RetrievalError as exc:
        logger.error(
            "chat retrieval failed message=%r error_type=%s error=%s",
            message,
            type(exc).__name__,
            exc,
        )
        raise HTTPException(status_code=500, detail="retrieval failed, try again") from exc

    results = retrieved.results
    logger.info(
        "chat retrieval results=%d best_score=%s",
        len(results),
        f"{results[0].score:.4f}" if results else "n/a",
    )
    if not results:
        return JSONResponse(content={"answer": NOT_FOUND_ANSWER, "manuals_loaded": True})

    context = "\n---\n".join(result.text for result in results)
    history = [ChatTurn(role=turn.role, content=turn.content) for turn in request.history]

    try:
        chat_result = llm_client.generate_answer(question=message, context=context, history=history)
    except LLMClientError as exc:
        logger.error("answer generation failed error=%s", exc)
        raise HTTPException(status_code=502, detail=f"LLM request failed: {exc}") from exc

    answer = chat_result.answer
    manual_info: dict[str, Any] | None = None
    top = next(
        (result for result in results if result.document_id == retrieved.top_document_id),
        None,
    )
    if top is not None:
        link = _manual_link(top.document_metadata)
        manual_info = {
            "id": top.document_id,
            "info": _metadata_json(top.document_metadata),
            "link": link,
            "chunk_ids": [r.chunk_id for r in results if r.document_id == top.document_id],
        }
        if MANUAL_LINK_MARKER not in answer:
            answer += f"\n\n---\n[{MANUAL_LINK_MARKER} {top.document_metadata.title}]({link})"

    if settings.support_contact_url and settings.support_contact_url not in answer:
        answer += f"\n\nNeed to talk to a person? [Contact an advisor]({settings.support_contact_url})"

    return JSONResponse(
        content={
            "answer": answer,
            "manual_info": manual_info,
            "context_used": len(results),
            "sources": [_result_json(result) for result in results],
            "manuals_loaded": True,
            "meta": {
                "model": chat_result.model,
                "used_fallback": chat_result.used_fallback,
                "retrieval_k": top_k,
            },
        }
    )


@app.get("/status")
def status(
    store: Annotated[JsonVectorStore, Depends(get_vector_store)],
) -> dict[str, Any]:
    catalog = store.catalog()
    stats = store.stats()
    return {
        "ok": True,
        "manuals_loaded": stats.total_chunks > 0,
        "last_loaded_at": stats.last_updated.isoformat() if stats.last_updated else None,
        "manuals": len(catalog),
        "chunks": stats.total_chunks,
        "average_chunk_length": stats.average_chunk_length,
        "total_tokens_estimated": stats.total_tokens_estimated,
        "first_chunk_preview": stats.first_chunk_preview,
        "version": VERSION,
    }


@app.get("/manuals")
def list_manuals(
    store: Annotated[JsonVectorStore, Depends(get_vector_store)],
) -> dict[str, Any]:
    return {
        "ok": True,
        "manuals": [
            {
                "id": entry.id,
                "chunks": entry.chunk_count,
                "info": _metadata_json(entry.metadata),
                "link": _manual_link(entry.metadata),
            }
            for entry in store.catalog()
        ],
    }


@app.get("/manuals/files/{filename}")
def manual_file(filename: str) -> FileResponse:
    path = Path(get_settings().rag_manuals_dir) / filename
    if Path(filename).name != filename or path.suffix.lower() != ".pdf" or not path.is_file():
        raise HTTPException(status_code=404, detail="manual not found")
    return FileResponse(path, media_type="application/pdf")


@app.get("/rag/search")
def rag_search(
    q: str,
    service: Annotated[RetrievalService, Depends(get_retrieval_service)],
    k: int = 4,
) -> list[dict[str, Any]]:
    if not q.strip():
        raise HTTPException(status_code=400, detail="q must not be empty")

    top_k = max(1, min(k, 20))
    try:
        results = service.query(q, top_k)
    except EmbeddingProviderError as exc:
        raise HTTPException(status_code=502, detail="embedding provider failed, try again") from exc

    return [_result_json(result) for result in results]


@app.delete("/rag/store")
def clear_store(
    store: Annotated[JsonVectorStore, Depends(get_vector_store)],
) -> dict[str, bool]:
    try:
        store.clear()
    except PersistenceError as exc:
        logger.error("store clear failed error=%s", exc)
        raise HTTPException(status_code=500, detail="store could not be cleared") from exc
    return {"ok": True}


def run() -> None:
    import uvicorn

    uvicorn.run("manuals_api.main:app", host="0.0.0.0", port=4000, reload=False)


if __name__ == "__main__":
    run()
