from __future__ import annotations

from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx

from manuals_api.services.rag.errors import SourceFetchError

DEFAULT_MAX_BYTES = 50 * 1024 * 1024


def read_local(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise SourceFetchError(f"cannot read {path}: {exc}") from exc


def filename_from_url(url: str) -> str:
    name = Path(unquote(urlparse(url).path)).name
    return name or "document.pdf"


def _read_capped(response: httpx.Response, *, url: str, max_bytes: int) -> bytes:
    response.raise_for_status()
    declared = response.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > max_bytes:
        raise SourceFetchError(f"{url} is {declared} bytes, limit is {max_bytes}")

    blocks: list[bytes] = []
    received = 0
    for block in response.iter_bytes():
        received += len(block)
        if received > max_bytes:
            raise SourceFetchError(f"{url} exceeds the {max_bytes} byte limit")
        blocks.append(block)
    return b"".join(blocks)


def fetch_remote(
    url: str,
    *,
    max_bytes: int = DEFAULT_MAX_BYTES,
    timeout_seconds: float = 30.0,
    client: httpx.Client | None = None,
) -> bytes:
    try:
        if client is not None:
            with client.stream("GET", url, timeout=timeout_seconds) as response:
                return _read_capped(response, url=url, max_bytes=max_bytes)

        with httpx.stream("GET", url, timeout=timeout_seconds, follow_redirects=True) as response:
            return _read_capped(response, url=url, max_bytes=max_bytes)
    except httpx.HTTPError as exc:
        raise SourceFetchError(f"download failed for {url}: {exc}") from exc
