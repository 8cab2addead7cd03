from __future__ import annotations

import argparse
from pathlib import Path
import sys

from manuals_api.config import get_settings
from manuals_api.logging_config import setup_logging
from manuals_api.main import build_retrieval_service, get_embedding_client
from manuals_api.services.rag import JsonVectorStore, RetrievalError
from manuals_api.services.rag.types import DocumentIngestResult


def _build_parser() -> argparse.ArgumentParser:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="manuals-ingest",
        description="Ingest PDF manuals into the local vector store",
    )
    parser.add_argument(
        "sources",
        nargs="*",
        help="PDF file paths or http(s) URLs; defaults to every PDF in --manuals-dir",
    )
    parser.add_argument(
        "--manuals-dir",
        default=settings.rag_manuals_dir,
        help="Directory scanned for PDFs when no sources are given",
    )
    parser.add_argument(
        "--store-path",
        default=settings.rag_store_path,
        help="JSON vector store file",
    )
    parser.add_argument(
        "--title",
        default=None,
        help="Display title (only valid with a single source)",
    )
    parser.add_argument(
        "--clear",
        action="store_true",
        help="Clear the store before ingesting",
    )
    return parser


def _is_url(source: str) -> bool:
    return source.startswith(("http://", "https://"))


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    settings = get_settings()
    setup_logging(settings.log_level)

    if args.title is not None and len(args.sources) != 1:
        parser.error("--title requires exactly one source")

    sources: list[str] = list(args.sources)
    if not sources:
        manuals_dir = Path(args.manuals_dir)
        if not manuals_dir.is_dir():
            parser.error(f"manuals directory not found: {manuals_dir}")
        sources = [str(path) for path in sorted(manuals_dir.glob("*.pdf"))]

    service = build_retrieval_service(
        JsonVectorStore(Path(args.store_path)),
        get_embedding_client(),
    )
    results: list[DocumentIngestResult] = []

    try:
        if args.clear:
            service.clear()
        for source in sources:
            if _is_url(source):
                result = service.ingest_url(
                    source,
                    title=args.title,
                    max_bytes=settings.remote_max_bytes,
                    timeout_seconds=settings.ollama_timeout_seconds,
                )
            else:
                result = service.ingest_path(Path(source), title=args.title)
            results.append(result)
    except RetrievalError as exc:
        print(f"[manuals-ingest] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc

    print(
        "[manuals-ingest] completed "
        f"documents={len(results)} "
        f"chunks={sum(result.chunk_count for result in results)} "
        f"store_path={args.store_path}",
        flush=True,
    )


if __name__ == "__main__":
    main()
