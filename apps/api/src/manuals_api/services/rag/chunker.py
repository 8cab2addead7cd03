from __future__ import annotations

from collections.abc import Sequence

from manuals_api.services.rag.types import OutlineEntry


def _window_starts(token_count: int, *, chunk_size: int, chunk_overlap: int) -> list[int]:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    if chunk_overlap < 0:
        raise ValueError("chunk_overlap must be >= 0")
    if chunk_overlap >= chunk_size:
        raise ValueError("chunk_overlap must be smaller than chunk_size")

    starts: list[int] = []
    cursor = 0

    while cursor < token_count:
        starts.append(cursor)
        end = min(token_count, cursor + chunk_size)
        if end >= token_count:
            break
        cursor = end - chunk_overlap

    return starts


def _section_offsets(
    outline: Sequence[OutlineEntry],
    *,
    page_count: int,
    token_count: int,
) -> list[tuple[int, str]]:
    if page_count <= 0:
        return []

    offsets = [
        (int(entry.page_number / page_count * token_count), entry.title.strip())
        for entry in outline
        if entry.title.strip()
    ]
    # outlines are not guaranteed to be in page order
    offsets.sort(key=lambda item: item[0])
    return offsets


def _section_for(offsets: list[tuple[int, str]], start: int) -> str | None:
    section: str | None = None
    for offset, title in offsets:
        if offset > start:
            break
        section = title
    return section


def chunk_text(
    text: str,
    *,
    chunk_size: int = 500,
    chunk_overlap: int = 50,
    outline: Sequence[OutlineEntry] | None = None,
    page_count: int = 0,
) -> list[str]:
    tokens = text.split()
    starts = _window_starts(len(tokens), chunk_size=chunk_size, chunk_overlap=chunk_overlap)
    offsets = _section_offsets(outline or (), page_count=page_count, token_count=len(tokens))

    chunks: list[str] = []
    for start in starts:
        window = " ".join(tokens[start : start + chunk_size])
        section = _section_for(offsets, start)
        if section is not None:
            window = f"[{section}] {window}"
        chunks.append(window)

    return chunks
