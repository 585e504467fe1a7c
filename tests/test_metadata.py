"""Tests for page metadata parsing and fetching."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import MagicMock, patch

import httpx
from yt_dlp.utils import DownloadError

from eventide.ingestion.metadata import MetadataFetcher, parse_page
from eventide.ingestion.models import PageMetadata

PAGE = b"""<html><head>
<title>Fallback title</title>
<meta property="og:title" content="Jazz Night at the Blue Room">
<meta name="twitter:description" content="Friday Dec 5, 8pm. Live quartet.">
<meta property="og:image" content="https://example.com/flyer.jpg">
</head><body></body></html>"""


def _patched_client(handler: Any) -> Any:
    real_client = httpx.AsyncClient

    def factory(**kwargs: Any) -> httpx.AsyncClient:
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    return patch("httpx.AsyncClient", side_effect=factory)


class TestParsePage:
    def test_meta_precedence(self) -> None:
        page = parse_page(PAGE)
        assert page.title == "Jazz Night at the Blue Room"
        assert page.description == "Friday Dec 5, 8pm. Live quartet."
        assert page.image_url == "https://example.com/flyer.jpg"

    def test_title_tag_fallback(self) -> None:
        page = parse_page("<html><head><title> Spring Fair </title></head></html>")
        assert page == PageMetadata(title="Spring Fair")

    def test_empty_content_ignored(self) -> None:
        page = parse_page('<html><head><meta name="description" content="  "></head></html>')
        assert page.description is None

    def test_text(self) -> None:
        assert PageMetadata(title="A", description="B").text() == "A B"
        assert PageMetadata().text() == ""


class TestMetadataFetcher:
    def test_html_page(self) -> None:
        handler = lambda request: httpx.Response(200, content=PAGE, headers={"Content-Type": "text/html"})  # noqa: E731
        with _patched_client(handler):
            page = asyncio.run(MetadataFetcher().fetch("https://example.com/events/jazz"))
        assert page.title == "Jazz Night at the Blue Room"

    def test_non_html_is_empty(self) -> None:
        handler = lambda request: httpx.Response(200, content=b"\x00", headers={"Content-Type": "video/mp4"})  # noqa: E731
        with _patched_client(handler):
            page = asyncio.run(MetadataFetcher().fetch("https://example.com/a.mp4"))
        assert page == PageMetadata()

    def test_http_error_is_empty(self) -> None:
        with _patched_client(lambda request: httpx.Response(500)):
            page = asyncio.run(MetadataFetcher().fetch("https://example.com/down"))
        assert page == PageMetadata()

    def test_platform_uses_ytdlp(self) -> None:
        ydl = MagicMock()
        ydl.__enter__.return_value.extract_info.return_value = {
            "title": "Jazz Night",
            "description": "Friday at 8",
            "thumbnail": "https://i.ytimg.com/x.jpg",
        }
        with patch("yt_dlp.YoutubeDL", return_value=ydl):
            page = asyncio.run(MetadataFetcher().fetch("https://www.youtube.com/watch?v=abc"))
        assert page == PageMetadata("Jazz Night", "Friday at 8", "https://i.ytimg.com/x.jpg")

    def test_platform_failure_is_empty(self) -> None:
        ydl = MagicMock()
        ydl.__enter__.return_value.extract_info.side_effect = DownloadError("private video")
        with patch("yt_dlp.YoutubeDL", return_value=ydl):
            page = asyncio.run(MetadataFetcher().fetch("https://www.instagram.com/reel/abc/"))
        assert page == PageMetadata()
