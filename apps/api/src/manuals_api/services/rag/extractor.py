from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Protocol

import fitz  # PyMuPDF

from manuals_api.services.rag.errors import ExtractionError
from manuals_api.services.rag.types import OutlineEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractedText:
    text: str
    page_count: int
    title: str | None = None
    author: str | None = None
    outline: tuple[OutlineEntry, ...] = field(default_factory=tuple)


class TextExtractor(Protocol):
    def extract(self, data: bytes) -> ExtractedText: ...


def _clean(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


class PdfTextExtractor:
    def extract(self, data: bytes) -> ExtractedText:
        if not data:
            raise ExtractionError("empty document")

        try:
            with fitz.open(stream=data, filetype="pdf") as doc:
                pages = [page.get_text("text") for page in doc]
                metadata = doc.metadata or {}
                toc = doc.get_toc(simple=True)
        except (RuntimeError, ValueError) as exc:
            # PyMuPDF raises FileDataError (a RuntimeError) on corrupt input
            raise ExtractionError(f"unreadable PDF: {exc}") from exc

        outline = tuple(
            OutlineEntry(title=str(title).strip(), page_number=int(page))
            for _level, title, page, *_rest in toc
            if str(title).strip()
        )
        logger.debug("extracted pdf pages=%d outline_entries=%d", len(pages), len(outline))

        return ExtractedText(
            text="\n".join(pages),
            page_count=len(pages),
            title=_clean(metadata.get("title")),
            author=_clean(metadata.get("author")),
            outline=outline,
        )
