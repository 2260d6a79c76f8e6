"""Favicon discovery and fetch with a generated fallback."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Iterator
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from site_shell.exceptions import FaviconFetchError
from site_shell.favicon.fallback import generate_mono_icon
from site_shell.whitelist.models import SiteEntry

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Safari/605.1.15"
)

_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\x00\x00\x01\x00", "image/x-icon"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"\xff\xd8\xff", "image/jpeg"),
)


@dataclass(frozen=True)
class FaviconResult:
    """Icon bytes for a site, real or generated."""

    data: bytes
    generated: bool
    content_type: str
    source: str | None = None


def sniff_image_type(data: bytes, content_type: str = "") -> str | None:
    """Image MIME type of `data`, or None if it does not look like an image."""
    if not data:
        return None
    for signature, mime in _SIGNATURES:
        if data.startswith(signature):
            return mime
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    head = data[:512].lstrip().lower()
    if head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in head):
        return "image/svg+xml"
    declared = content_type.split(";")[0].strip().lower()
    if declared.startswith("image/") and not head.startswith((b"<!doctype", b"<html")):
        return declared
    return None


def parse_icon_links(html: str, base_url: str) -> list[str]:
    """Absolute icon URLs declared by ``<link rel=...icon...>``, in document order."""
    soup = BeautifulSoup(html, "html.parser")
    results: list[str] = []
    for link in soup.find_all("link", href=True):
        rel = link.get("rel") or []
        rel_text = " ".join(rel).lower() if isinstance(rel, list) else str(rel).lower()
        if "icon" not in rel_text:
            continue
        href = link["href"].strip()
        if not href or href.startswith("data:"):
            continue
        resolved = urljoin(base_url, href)
        if urlparse(resolved).scheme in ("http", "https") and resolved not in results:
            results.append(resolved)
    return results


def fallback_candidates(entry: SiteEntry) -> list[str]:
    host = entry.pattern
    return [f"https://{host}/favicon.ico", f"https://www.{host}/favicon.ico"]


def generated_result(entry: SiteEntry) -> FaviconResult:
    return FaviconResult(
        data=generate_mono_icon(entry.pattern),
        generated=True,
        content_type="image/svg+xml",
    )


class FaviconResolver:
    """Fetches a site's favicon; never fails outward.

    Page-declared icons are tried first, then the conventional
    ``/favicon.ico`` locations. Any failure (network error, non-image
    response, timeout) yields a generated monochrome icon.

    Args:
        client: Shared AsyncClient (tests inject one with a mock transport).
        sync_client: Shared Client for ``resolve_sync``.
        timeout: Per-request timeout in seconds.
        max_bytes: Largest icon accepted.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        sync_client: httpx.Client | None = None,
        timeout: float = 10.0,
        max_bytes: int = 512_000,
    ):
        self._client = client
        self._sync_client = sync_client
        self.timeout = timeout
        self.max_bytes = max_bytes

    async def resolve(self, entry: SiteEntry) -> FaviconResult:
        """Async favicon resolution for a site."""
        try:
            return await self._fetch(entry)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.info("Using generated icon for %s: %s", entry.pattern, e)
            return generated_result(entry)

    def resolve_sync(self, entry: SiteEntry) -> FaviconResult:
        """Synchronous favicon resolution for a site."""
        try:
            return self._fetch_sync(entry)
        except Exception as e:
            logger.info("Using generated icon for %s: %s", entry.pattern, e)
            return generated_result(entry)

    # ---- Async I/O ----

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            yield client

    async def _fetch(self, entry: SiteEntry) -> FaviconResult:
        async with self._session() as client:
            candidates: list[str] = []
            try:
                page = await client.get(
                    entry.url,
                    headers={"User-Agent": USER_AGENT, "Accept": "text/html,application/xhtml+xml"},
                )
                if page.status_code < 400 and "html" in page.headers.get("content-type", "html"):
                    candidates = parse_icon_links(page.text, str(page.url))
            except httpx.HTTPError as e:
                logger.debug("Icon discovery failed for %s: %s", entry.url, e)

            for url in candidates + [u for u in fallback_candidates(entry) if u not in candidates]:
                try:
                    response = await client.get(
                        url, headers={"User-Agent": USER_AGENT, "Accept": "image/*,*/*;q=0.8"}
                    )
                except httpx.HTTPError as e:
                    logger.debug("Icon fetch failed for %s: %s", url, e)
                    continue
                result = self._accept(response, url)
                if result is not None:
                    return result
        raise FaviconFetchError(f"No usable favicon for {entry.pattern}")

    # ---- Sync I/O ----

    @contextmanager
    def _sync_session(self) -> Iterator[httpx.Client]:
        if self._sync_client is not None:
            yield self._sync_client
            return
        with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
            yield client

    def _fetch_sync(self, entry: SiteEntry) -> FaviconResult:
        with self._sync_session() as client:
            candidates: list[str] = []
            try:
                page = client.get(
                    entry.url,
                    headers={"User-Agent": USER_AGENT, "Accept": "text/html,application/xhtml+xml"},
                )
                if page.status_code < 400 and "html" in page.headers.get("content-type", "html"):
                    candidates = parse_icon_links(page.text, str(page.url))
            except httpx.HTTPError as e:
                logger.debug("Icon discovery failed for %s: %s", entry.url, e)

            for url in candidates + [u for u in fallback_candidates(entry) if u not in candidates]:
                try:
                    response = client.get(
                        url, headers={"User-Agent": USER_AGENT, "Accept": "image/*,*/*;q=0.8"}
                    )
                except httpx.HTTPError as e:
                    logger.debug("Icon fetch failed for %s: %s", url, e)
                    continue
                result = self._accept(response, url)
                if result is not None:
                    return result
        raise FaviconFetchError(f"No usable favicon for {entry.pattern}")

    def _accept(self, response: httpx.Response, url: str) -> FaviconResult | None:
        if not response.is_success:
            return None
        data = response.content
        if len(data) > self.max_bytes:
            logger.debug("Icon at %s too large (%d bytes)", url, len(data))
            return None
        mime = sniff_image_type(data, response.headers.get("content-type", ""))
        if mime is None:
            return None
        return FaviconResult(data=data, generated=False, content_type=mime, source=url)
