import math

import pytest

from manuals_api.services.rag.chunker import chunk_text
from manuals_api.services.rag.types import OutlineEntry


def _words(count: int) -> str:
    return " ".join(f"w{index}" for index in range(count))


def test_empty_text_yields_no_chunks() -> None:
    assert chunk_text("") == []
    assert chunk_text("   \n\t  ") == []


def test_short_text_yields_single_chunk() -> None:
    chunks = chunk_text("alpha   beta\n\ngamma")

    assert chunks == ["alpha beta gamma"]


@pytest.mark.parametrize(
    ("token_count", "expected"),
    [(1, 1), (50, 1), (450, 1), (500, 1), (501, 2), (950, 2), (951, 3), (1000, 3), (2000, 5)],
)
def test_default_window_chunk_count(token_count: int, expected: int) -> None:
    chunks = chunk_text(_words(token_count))

    assert len(chunks) == expected
    assert len(chunks) == math.ceil(max(1, token_count - 50) / 450)


@pytest.mark.parametrize("token_count", [1, 9, 10, 11, 24, 25, 26, 73])
def test_windows_cover_every_token_and_overlap(token_count: int) -> None:
    chunk_size, chunk_overlap = 10, 3
    chunks = chunk_text(_words(token_count), chunk_size=chunk_size, chunk_overlap=chunk_overlap)
    windows = [chunk.split() for chunk in chunks]

    covered = {token for window in windows for token in window}
    assert covered == {f"w{index}" for index in range(token_count)}
    assert all(len(window) <= chunk_size for window in windows)
    for current, following in zip(windows, windows[1:]):
        assert current[-chunk_overlap:] == following[:chunk_overlap]
    assert len(chunks) == math.ceil(
        max(1, token_count - chunk_overlap) / (chunk_size - chunk_overlap)
    )


def test_last_window_may_be_shorter() -> None:
    chunks = chunk_text(_words(12), chunk_size=10, chunk_overlap=3)

    assert [len(chunk.split()) for chunk in chunks] == [10, 5]


@pytest.mark.parametrize(
    ("chunk_size", "chunk_overlap"),
    [(0, 0), (10, -1), (10, 10), (10, 12)],
)
def test_invalid_window_parameters_raise(chunk_size: int, chunk_overlap: int) -> None:
    with pytest.raises(ValueError):
        chunk_text("a b c", chunk_size=chunk_size, chunk_overlap=chunk_overlap)


def test_outline_prefixes_nearest_preceding_section() -> None:
    outline = [OutlineEntry(title="Pricing", page_number=3), OutlineEntry(title="Intro", page_number=1)]

    chunks = chunk_text(
        _words(100),
        chunk_size=20,
        chunk_overlap=5,
        outline=outline,
        page_count=4,
    )

    # Intro maps to token 25, Pricing to token 75; windows start every 15 tokens
    assert len(chunks) == 7
    assert chunks[0].startswith("w0 ")
    assert chunks[1].startswith("w15 ")
    assert chunks[2].startswith("[Intro] w30 ")
    assert chunks[4].startswith("[Intro] w60 ")
    assert chunks[5].startswith("[Pricing] w75 ")
    assert chunks[6].startswith("[Pricing] w90 ")


def test_outline_is_ignored_without_page_count() -> None:
    chunks = chunk_text(
        _words(30),
        chunk_size=20,
        chunk_overlap=5,
        outline=[OutlineEntry(title="Intro", page_number=1)],
        page_count=0,
    )

    assert not any(chunk.startswith("[") for chunk in chunks)
