from dataclasses import dataclass
from functools import lru_cache
import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def _to_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(value: str | None, *, default: int, minimum: int) -> int:
    if value is None:
        return default
    parsed = int(value)
    return max(minimum, parsed)


def _to_float(value: str | None, *, default: float, minimum: float) -> float:
    if value is None:
        return default
    parsed = float(value)
    return max(minimum, parsed)


@dataclass(frozen=True)
class RemoteManual:
    url: str
    title: str | None = None


def _parse_remote_manuals(value: str | None) -> tuple[RemoteManual, ...]:
    if value is None or not value.strip():
        return ()

    # hosting panels sometimes keep a leading "=" or quote in front of the JSON list
    start = value.find("[")
    if start < 0:
        logger.error("REMOTE_MANUALS is not a JSON list, ignoring it")
        return ()

    try:
        parsed = json.loads(value[start:])
    except json.JSONDecodeError as exc:
        logger.error("REMOTE_MANUALS could not be parsed, ignoring it: %s", exc)
        return ()

    if not isinstance(parsed, list):
        logger.error("REMOTE_MANUALS must be a JSON list, ignoring it")
        return ()

    manuals: list[RemoteManual] = []
    for item in parsed:
        if isinstance(item, str) and item.strip():
            manuals.append(RemoteManual(url=item.strip()))
        elif isinstance(item, dict) and isinstance(item.get("url"), str):
            title = item.get("title")
            manuals.append(
                RemoteManual(url=item["url"], title=title if isinstance(title, str) else None)
            )
    return tuple(manuals)


@dataclass(frozen=True)
class Settings:
    rag_store_path: str
    rag_manuals_dir: str
    rag_chunk_size: int
    rag_chunk_overlap: int
    rag_top_k: int
    rag_embedding_dim: int
    rag_preload_on_startup: bool
    remote_manuals: tuple[RemoteManual, ...]
    remote_max_bytes: int
    ollama_base_url: str
    ollama_model: str
    ollama_fallback_model: str
    ollama_embed_base_url: str
    ollama_embed_model: str
    ollama_timeout_seconds: float
    support_contact_url: str
    log_level: str


@lru_cache
def get_settings() -> Settings:
    data_dir = os.getenv("RAG_DATA_DIR", "data")
    ollama_base_url = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434/v1")
    return Settings(
        rag_store_path=os.getenv("RAG_STORE_PATH", str(Path(data_dir) / "manuals.json")),
        rag_manuals_dir=os.getenv("RAG_MANUALS_DIR", "manuals"),
        rag_chunk_size=_to_int(os.getenv("RAG_CHUNK_SIZE"), default=500, minimum=10),
        rag_chunk_overlap=_to_int(os.getenv("RAG_CHUNK_OVERLAP"), default=50, minimum=0),
        rag_top_k=_to_int(os.getenv("RAG_TOP_K"), default=4, minimum=1),
        rag_embedding_dim=_to_int(os.getenv("RAG_EMBEDDING_DIM"), default=0, minimum=0),
        rag_preload_on_startup=_to_bool(os.getenv("RAG_PRELOAD_ON_STARTUP"), default=True),
        remote_manuals=_parse_remote_manuals(os.getenv("REMOTE_MANUALS")),
        remote_max_bytes=_to_int(
            os.getenv("REMOTE_MAX_BYTES"), default=50 * 1024 * 1024, minimum=1024
        ),
        ollama_base_url=ollama_base_url,
        ollama_model=os.getenv("OLLAMA_MODEL", "qwen2.5:7b-instruct-q4_K_M"),
        ollama_fallback_model=os.getenv("OLLAMA_FALLBACK_MODEL", "qwen2.5:3b-instruct-q4_K_M"),
        ollama_embed_base_url=os.getenv("OLLAMA_EMBED_BASE_URL", ollama_base_url),
        ollama_embed_model=os.getenv("OLLAMA_EMBED_MODEL", "nomic-embed-text"),
        ollama_timeout_seconds=_to_float(
            os.getenv("OLLAMA_TIMEOUT_SECONDS"), default=30.0, minimum=1.0
        ),
        support_contact_url=os.getenv("SUPPORT_CONTACT_URL", ""),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
