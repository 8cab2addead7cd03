from collections.abc import Iterator
from pathlib import Path

import fitz  # PyMuPDF
import pytest
from fastapi.testclient import TestClient

from manuals_api.config import get_settings
from manuals_api.main import app, get_embedding_client, get_vector_store


class KeywordEmbeddingClient:
    """Scores text on two topics plus a constant axis so no vector is all zeros."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        vectors: list[list[float]] = []
        for text in texts:
            normalized = text.lower()
            vectors.append(
                [
                    float(normalized.count("warranty") + normalized.count("guarantee")),
                    float(normalized.count("credit") + normalized.count("financing")),
                    1.0,
                ]
            )
        return vectors


def make_pdf(
    pages: list[str],
    *,
    title: str | None = None,
    author: str | None = None,
    toc: list[list[object]] | None = None,
) -> bytes:
    doc = fitz.open()
    for page_text in pages:
        page = doc.new_page()
        if page_text:
            words = page_text.split()
            lines = [" ".join(words[index : index + 8]) for index in range(0, len(words), 8)]
            page.insert_text((72, 72), "\n".join(lines), fontsize=9)
    metadata = {}
    if title is not None:
        metadata["title"] = title
    if author is not None:
        metadata["author"] = author
    if metadata:
        doc.set_metadata(metadata)
    if toc:
        doc.set_toc(toc)
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture(autouse=True)
def reset_api_caches() -> Iterator[None]:
    get_settings.cache_clear()
    get_vector_store.cache_clear()
    yield
    get_settings.cache_clear()
    get_vector_store.cache_clear()


@pytest.fixture
def embedding_client() -> KeywordEmbeddingClient:
    return KeywordEmbeddingClient()


@pytest.fixture
def client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    embedding_client: KeywordEmbeddingClient,
) -> Iterator[TestClient]:
    monkeypatch.setenv("RAG_STORE_PATH", str(tmp_path / "data" / "manuals.json"))
    monkeypatch.setenv("RAG_MANUALS_DIR", str(tmp_path / "manuals"))
    monkeypatch.setenv("RAG_PRELOAD_ON_STARTUP", "false")
    monkeypatch.delenv("SUPPORT_CONTACT_URL", raising=False)

    app.dependency_overrides[get_embedding_client] = lambda: embedding_client
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def pdf_factory():
    return make_pdf
