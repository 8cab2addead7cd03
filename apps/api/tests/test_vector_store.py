from datetime import datetime, timezone
import json
from pathlib import Path
from threading import Thread

import pytest

from manuals_api.services.rag.errors import PersistenceError
from manuals_api.services.rag.types import Chunk, Document, DocumentMetadata, OutlineEntry
from manuals_api.services.rag.vector_store import JsonVectorStore


def _metadata(name: str, *, is_remote: bool = False) -> DocumentMetadata:
    return DocumentMetadata(
        filename=f"{name}.pdf",
        title=name.title(),
        author="Ops Team",
        page_count=3,
        created_at=datetime(2026, 3, 1, 12, 30, 15, 123456, tzinfo=timezone.utc),
        source_locator=f"https://example.com/{name}.pdf" if is_remote else f"manuals/{name}.pdf",
        is_remote=is_remote,
        outline=(OutlineEntry(title="Intro", page_number=1),),
    )


def _document(document_id: str, vectors: list[tuple[float, ...]]) -> Document:
    return Document(
        id=document_id,
        metadata=_metadata(document_id),
        chunks=tuple(
            Chunk(id=f"chunk-{index}", text=f"{document_id} text {index}", vector=vector)
            for index, vector in enumerate(vectors)
        ),
    )


def test_missing_file_loads_empty_store(tmp_path: Path) -> None:
    store = JsonVectorStore(tmp_path / "absent" / "manuals.json")

    assert dict(store.load()) == {}
    assert store.catalog() == []
    assert store.all_chunks_flat() == []
    assert store.dimensions() is None


def test_corrupt_file_loads_empty_store(tmp_path: Path) -> None:
    path = tmp_path / "manuals.json"
    path.write_text("{not json", encoding="utf-8")

    store = JsonVectorStore(path)

    assert dict(store.load()) == {}


def test_schema_violation_loads_empty_store(tmp_path: Path) -> None:
    path = tmp_path / "manuals.json"
    path.write_text(json.dumps({"doc": {"chunks": "nope"}}), encoding="utf-8")

    assert dict(JsonVectorStore(path).load()) == {}


def test_upsert_round_trips_metadata_and_vectors_exactly(tmp_path: Path) -> None:
    path = tmp_path / "data" / "manuals.json"
    vectors = [(0.1, 1 / 3, -2.5e10), (1e-300, 0.0, 7.0), (-0.7071067811865476, 2.0, 3.14159)]
    document = _document("doc-a", vectors)

    JsonVectorStore(path).upsert(document)
    reloaded = JsonVectorStore(path).load()

    assert reloaded["doc-a"] == document
    assert [chunk.vector for chunk in reloaded["doc-a"].chunks] == vectors


def test_persisted_layout_maps_id_to_chunks_and_info(tmp_path: Path) -> None:
    path = tmp_path / "manuals.json"
    JsonVectorStore(path).upsert(_document("doc-a", [(1.0, 2.0)]))

    payload = json.loads(path.read_text(encoding="utf-8"))

    assert set(payload) == {"doc-a"}
    assert payload["doc-a"]["chunks"] == [{"id": "chunk-0", "text": "doc-a text 0", "vector": [1.0, 2.0]}]
    assert payload["doc-a"]["info"]["filename"] == "doc-a.pdf"
    assert payload["doc-a"]["info"]["outline"] == [{"title": "Intro", "page_number": 1}]
    assert not path.with_suffix(".json.tmp").exists()


def test_upsert_of_second_document_keeps_the_first(tmp_path: Path) -> None:
    store = JsonVectorStore(tmp_path / "manuals.json")
    first = _document("doc-a", [(1.0, 0.0), (0.5, 0.5)])
    store.upsert(first)

    store.upsert(_document("doc-b", [(0.0, 1.0)]))

    assert store.documents()["doc-a"] == first
    assert {entry.id: entry.chunk_count for entry in store.catalog()} == {"doc-a": 2, "doc-b": 1}
    # chunk ids repeat across documents
    assert [chunk.id for chunk in store.all_chunks_flat()] == ["chunk-0", "chunk-1", "chunk-0"]


def test_upsert_with_same_id_replaces_wholesale(tmp_path: Path) -> None:
    store = JsonVectorStore(tmp_path / "manuals.json")
    store.upsert(_document("doc-a", [(1.0, 0.0), (0.5, 0.5), (0.2, 0.8)]))

    store.upsert(_document("doc-a", [(0.0, 1.0)]))

    assert len(store.documents()["doc-a"].chunks) == 1
    assert len(JsonVectorStore(store.path).documents()["doc-a"].chunks) == 1


def test_load_is_cached_for_the_instance_lifetime(tmp_path: Path) -> None:
    path = tmp_path / "manuals.json"
    store = JsonVectorStore(path)
    store.upsert(_document("doc-a", [(1.0, 0.0)]))

    path.write_text("{}", encoding="utf-8")

    assert store.load() is store.load()
    assert "doc-a" in store.documents()


def test_failed_write_leaves_memory_and_file_untouched(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    path = tmp_path / "manuals.json"
    store = JsonVectorStore(path)
    store.upsert(_document("doc-a", [(1.0, 0.0)]))
    before = path.read_text(encoding="utf-8")

    def fail_replace(src: object, dst: object) -> None:
        raise OSError(28, "No space left on device")

    monkeypatch.setattr("manuals_api.services.rag.vector_store.os.replace", fail_replace)

    with pytest.raises(PersistenceError, match="No space left"):
        store.upsert(_document("doc-b", [(0.0, 1.0)]))

    assert set(store.documents()) == {"doc-a"}
    assert path.read_text(encoding="utf-8") == before
    assert not path.with_suffix(".json.tmp").exists()


def test_clear_empties_memory_and_file(tmp_path: Path) -> None:
    path = tmp_path / "manuals.json"
    store = JsonVectorStore(path)
    store.upsert(_document("doc-a", [(1.0, 0.0)]))

    store.clear()

    assert store.catalog() == []
    assert json.loads(path.read_text(encoding="utf-8")) == {}


def test_stats_summarise_chunks(tmp_path: Path) -> None:
    store = JsonVectorStore(tmp_path / "manuals.json")
    assert store.stats().total_chunks == 0
    assert store.stats().last_updated is None

    store.upsert(_document("doc-a", [(1.0, 0.0), (0.0, 1.0)]))
    stats = store.stats()

    assert stats.total_chunks == 2
    assert stats.average_chunk_length == len("doc-a text 0")
    assert stats.total_tokens_estimated == round(2 * len("doc-a text 0") / 4)
    assert stats.first_chunk_preview == "doc-a text 0..."
    assert stats.last_updated is not None


def test_concurrent_upserts_do_not_lose_documents(tmp_path: Path) -> None:
    path = tmp_path / "manuals.json"
    store = JsonVectorStore(path)
    threads = [
        Thread(target=store.upsert, args=(_document(f"doc-{index}", [(float(index), 1.0)]),))
        for index in range(8)
    ]

    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert set(store.documents()) == {f"doc-{index}" for index in range(8)}
    assert set(JsonVectorStore(path).documents()) == {f"doc-{index}" for index in range(8)}
