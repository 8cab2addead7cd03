from collections.abc import Iterator
import logging
from pathlib import Path
import sys

import pytest

from manuals_api import ingest
from manuals_api.logging_config import LOGGER_NAME, setup_logging
from manuals_api.services.rag import JsonVectorStore


@pytest.fixture
def cli_env(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    embedding_client,
) -> Iterator[Path]:
    monkeypatch.setenv("RAG_STORE_PATH", str(tmp_path / "store.json"))
    monkeypatch.setenv("RAG_MANUALS_DIR", str(tmp_path / "manuals"))
    monkeypatch.setattr(ingest, "get_embedding_client", lambda: embedding_client)
    yield tmp_path
    logging.getLogger(LOGGER_NAME).handlers.clear()


def _run(monkeypatch: pytest.MonkeyPatch, *args: str) -> None:
    monkeypatch.setattr(sys, "argv", ["manuals-ingest", *args])
    ingest.main()


def test_ingest_cli_indexes_manuals_directory(
    cli_env: Path,
    pdf_factory,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    manuals_dir = cli_env / "manuals"
    manuals_dir.mkdir()
    (manuals_dir / "a.pdf").write_bytes(pdf_factory(["warranty terms " * 30], title="A"))
    (manuals_dir / "b.pdf").write_bytes(pdf_factory(["credit terms " * 30], title="B"))
    (manuals_dir / "notes.txt").write_text("ignored", encoding="utf-8")

    _run(monkeypatch)

    out = capsys.readouterr().out
    assert "[manuals-ingest] completed documents=2" in out

    catalog = JsonVectorStore(cli_env / "store.json").catalog()
    assert sorted(entry.metadata.title for entry in catalog) == ["A", "B"]


def test_ingest_cli_title_and_clear(
    cli_env: Path,
    pdf_factory,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    first = cli_env / "first.pdf"
    second = cli_env / "second.pdf"
    first.write_bytes(pdf_factory(["warranty " * 20]))
    second.write_bytes(pdf_factory(["financing " * 20]))

    _run(monkeypatch, str(first))
    _run(monkeypatch, "--clear", "--title", "Financing Guide", str(second))

    catalog = JsonVectorStore(cli_env / "store.json").catalog()
    assert [entry.metadata.title for entry in catalog] == ["Financing Guide"]
    assert catalog[0].metadata.source_locator == str(second)


def test_ingest_cli_exits_nonzero_on_unreadable_pdf(
    cli_env: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    broken = cli_env / "broken.pdf"
    broken.write_bytes(b"not a pdf at all")

    with pytest.raises(SystemExit) as exc_info:
        _run(monkeypatch, str(broken))

    assert exc_info.value.code == 1
    assert "[manuals-ingest] failed:" in capsys.readouterr().err
    assert not (cli_env / "store.json").exists()


def test_ingest_cli_rejects_title_with_many_sources(
    cli_env: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    with pytest.raises(SystemExit) as exc_info:
        _run(monkeypatch, "--title", "X", "a.pdf", "b.pdf")

    assert exc_info.value.code == 2


def test_setup_logging_replaces_handlers() -> None:
    setup_logging("DEBUG")
    logger = setup_logging("WARNING")

    assert logger is logging.getLogger(LOGGER_NAME)
    assert logger.level == logging.WARNING
    assert len(logger.handlers) == 1
