"""Title/description/preview image behind a URL.

Video platforms rarely serve useful HTML to a plain GET, so for them the
``yt-dlp`` info extractor supplies the title and description.  Everything
else is fetched with ``httpx`` and read from OpenGraph / ``<meta>`` tags.
Failures return an empty :class:`PageMetadata`; the metadata track is
optional signal, never a reason to fail a request.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
import yt_dlp
from bs4 import BeautifulSoup
from yt_dlp.utils import DownloadError

from eventide.ingestion.ingestor import PLATFORMS, match_host
from eventide.ingestion.models import PageMetadata

logger = logging.getLogger(__name__)

MAX_PAGE_BYTES = 2 * 1024 * 1024
USER_AGENT = "Mozilla/5.0 (compatible; EventideBot/0.1; +https://example.invalid/bot)"


def _meta(soup: BeautifulSoup, key: str) -> str | None:
    """Return a meta value by og:/twitter:/name precedence, or None if missing."""
    tag = (
        soup.find("meta", attrs={"property": f"og:{key}"})
        or soup.find("meta", attrs={"name": f"twitter:{key}"})
        or soup.find("meta", attrs={"property": f"twitter:{key}"})
        or soup.find("meta", attrs={"name": key})
    )
    if tag and tag.has_attr("content"):
        value = str(tag.get("content", "")).strip()
        return value or None
    return None


def parse_page(html: bytes | str) -> PageMetadata:
    """Read OpenGraph/meta tags out of an HTML document."""
    soup = BeautifulSoup(html, "lxml")
    title = _meta(soup, "title")
    if not title and soup.title and soup.title.string:
        title = soup.title.string.strip() or None
    return PageMetadata(
        title=title,
        description=_meta(soup, "description"),
        image_url=_meta(soup, "image"),
    )


class MetadataFetcher:
    """Resolve :class:`PageMetadata` for a URL within a fixed timeout."""

    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout

    async def fetch(self, url: str) -> PageMetadata:
        try:
            if match_host(url, PLATFORMS):
                return await asyncio.wait_for(asyncio.to_thread(self._from_ytdlp, url), timeout=self.timeout)
            return await self._from_html(url)
        except asyncio.TimeoutError:
            logger.warning("Metadata fetch timed out for %s", url)
        except (httpx.HTTPError, DownloadError) as exc:
            logger.warning("Metadata fetch failed for %s: %s", url, exc)
        return PageMetadata()

    def _from_ytdlp(self, url: str) -> PageMetadata:
        opts: dict[str, Any] = {"quiet": True, "no_warnings": True, "skip_download": True, "noplaylist": True}
        with yt_dlp.YoutubeDL(opts) as ydl:
            info = ydl.extract_info(url, download=False) or {}
        return PageMetadata(
            title=(info.get("title") or None),
            description=(info.get("description") or None),
            image_url=(info.get("thumbnail") or None),
        )

    async def _from_html(self, url: str) -> PageMetadata:
        headers = {"User-Agent": USER_AGENT}
        async with httpx.AsyncClient(follow_redirects=True, timeout=self.timeout, headers=headers) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                ctype = (response.headers.get("Content-Type") or "").lower()
                if "html" not in ctype:
                    logger.info("No page metadata: %s is %s", url, ctype or "untyped")
                    return PageMetadata()
                body = bytearray()
                async for block in response.aiter_bytes():
                    body.extend(block)
                    if len(body) >= MAX_PAGE_BYTES:
                        break
        return parse_page(bytes(body))
