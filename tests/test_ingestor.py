"""Tests for MediaIngestor strategy selection and frame/audio extraction.

ffmpeg and the network are patched out; every test runs against a temporary
scratch directory so leaked files are visible.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any
from unittest.mock import patch

import httpx
import pytest

from eventide.errors import IngestError, MediaToolError
from eventide.ingestion.ingestor import MediaIngestor, choose_strategy, is_video_url, platform_name
from eventide.ingestion.scratch import ScratchSpace
from eventide.pipeline_config import IngestStrategy, PipelineConfig


@pytest.fixture()
def scratch(tmp_path: Path) -> ScratchSpace:
    return ScratchSpace(tmp_path / "scratch")


class FakeMedia:
    """Stands in for the ffmpeg wrappers."""

    def __init__(
        self,
        duration: float = 30.0,
        slow: frozenset[int] = frozenset(),
        broken: frozenset[int] = frozenset(),
        audio_fails: bool = False,
    ) -> None:
        self.duration = duration
        self.slow = slow
        self.broken = broken
        self.audio_fails = audio_fails
        self.frame_sources: list[str] = []
        self.audio_calls: list[dict[str, Any]] = []

    async def probe_duration(self, source: Any, timeout: float = 30.0) -> float:
        return self.duration

    async def grab_frame(self, source: str, timestamp: float, timeout: float = 10.0) -> bytes:
        self.frame_sources.append(source)
        if timestamp in self.slow:
            await asyncio.sleep(5)
        if timestamp in self.broken:
            raise MediaToolError(f"no frame at {timestamp}")
        return b"\xff\xd8" + str(timestamp).encode()

    async def extract_audio(self, source: str, output: Path, timeout: float, max_seconds: Any = None, start: Any = None) -> Path:
        self.audio_calls.append({"source": source, "max_seconds": max_seconds})
        if self.audio_fails:
            raise MediaToolError("no audio stream")
        Path(output).write_bytes(b"RIFF")
        return Path(output)

    def patches(self) -> list[Any]:
        return [
            patch("eventide.ingestion.ffmpeg.probe_duration", self.probe_duration),
            patch("eventide.ingestion.ffmpeg.grab_frame", self.grab_frame),
            patch("eventide.ingestion.ffmpeg.extract_audio", self.extract_audio),
        ]


def _run_ingest(ingestor: MediaIngestor, media: FakeMedia, url: str, **kwargs: Any) -> Any:
    patches = media.patches()
    for p in patches:
        p.start()
    try:
        return asyncio.run(ingestor.ingest(url, **kwargs))
    finally:
        for p in patches:
            p.stop()


async def _fake_download(self: MediaIngestor, url: str) -> Path:
    path = self.scratch.allocate("video", ".mp4")
    path.write_bytes(b"\x00" * 64)
    return path


# ---------------------------------------------------------------------------
# URL classification
# ---------------------------------------------------------------------------


class TestClassification:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://www.youtube.com/watch?v=abc", IngestStrategy.STREAM),
            ("https://youtu.be/abc", IngestStrategy.STREAM),
            ("https://www.instagram.com/reel/xyz/", IngestStrategy.STREAM),
            ("https://www.tiktok.com/@club/video/123", IngestStrategy.DOWNLOAD),
            ("https://vm.tiktok.com/ZM123/", IngestStrategy.DOWNLOAD),
            ("https://cdn.example.com/promo.mp4", IngestStrategy.DIRECT),
        ],
    )
    def test_choose_strategy(self, url: str, expected: IngestStrategy) -> None:
        assert choose_strategy(url) is expected

    def test_lookalike_host_is_not_platform(self) -> None:
        assert choose_strategy("https://notyoutube.com/watch") is IngestStrategy.DIRECT

    def test_platform_name(self) -> None:
        assert platform_name("https://x.com/club/status/1") == "Twitter/X"
        assert platform_name("https://example.com/a.mp4") == "Video Platform"

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://example.com/clip.MOV", True),
            ("https://vimeo.com/12345", True),
            ("https://www.tiktok.com/@a/video/1", True),
            ("https://example.com/events/jazz-night", False),
            ("https://www.instagram.com/p/abc/", False),
        ],
    )
    def test_is_video_url(self, url: str, expected: bool) -> None:
        assert is_video_url(url) is expected


# ---------------------------------------------------------------------------
# Local (download) path
# ---------------------------------------------------------------------------


class TestDirectIngest:
    def test_success_releases_download(self, scratch: ScratchSpace) -> None:
        media = FakeMedia(duration=30.0)
        ingestor = MediaIngestor(scratch)
        with patch.object(MediaIngestor, "_download_direct", _fake_download):
            result = _run_ingest(ingestor, media, "https://cdn.example.com/promo.mp4")

        assert result.strategy is IngestStrategy.DIRECT
        assert [f.timestamp for f in result.frames] == [0.0, 5.0, 11.0, 16.0, 21.0]
        assert result.duration == 30.0
        assert result.audio is not None
        assert media.audio_calls[0]["max_seconds"] == 120
        # Only the audio file survives until the caller releases it
        assert scratch.files() == [result.audio.path]
        result.release()
        assert scratch.files() == []

    def test_frame_count_respected(self, scratch: ScratchSpace) -> None:
        media = FakeMedia(duration=300.0)
        with patch.object(MediaIngestor, "_download_direct", _fake_download):
            result = _run_ingest(MediaIngestor(scratch), media, "https://cdn.example.com/a.mp4", frame_count=3)
        assert len(result.frames) == 3
        result.release()

    def test_too_long(self, scratch: ScratchSpace) -> None:
        media = FakeMedia(duration=900.0)
        with patch.object(MediaIngestor, "_download_direct", _fake_download):
            with pytest.raises(IngestError, match="too long"):
                _run_ingest(MediaIngestor(scratch), media, "https://cdn.example.com/a.mp4")
        assert scratch.files() == []

    def test_zero_frames_releases_audio(self, scratch: ScratchSpace) -> None:
        media = FakeMedia(duration=30.0, broken=frozenset({0, 5, 11, 16, 21}))
        with patch.object(MediaIngestor, "_download_direct", _fake_download):
            with pytest.raises(IngestError, match="No frames"):
                _run_ingest(MediaIngestor(scratch), media, "https://cdn.example.com/a.mp4")
        assert scratch.files() == []

    def test_broken_frames_dropped(self, scratch: ScratchSpace) -> None:
        media = FakeMedia(duration=30.0, broken=frozenset({5, 16}))
        with patch.object(MediaIngestor, "_download_direct", _fake_download):
            result = _run_ingest(MediaIngestor(scratch), media, "https://cdn.example.com/a.mp4")
        assert [f.timestamp for f in result.frames] == [0.0, 11.0, 21.0]
        result.release()

    def test_audio_failure_absorbed(self, scratch: ScratchSpace) -> None:
        media = FakeMedia(duration=30.0, audio_fails=True)
        with patch.object(MediaIngestor, "_download_direct", _fake_download):
            result = _run_ingest(MediaIngestor(scratch), media, "https://cdn.example.com/a.mp4")
        assert result.audio is None
        assert len(result.frames) == 5
        assert scratch.files() == []

    def test_batch_timeout_keeps_finished_frames(self, scratch: ScratchSpace) -> None:
        config = PipelineConfig(frame_batch_timeout=0.2, frame_timeout=10.0)
        media = FakeMedia(duration=30.0, slow=frozenset({16, 21}))
        with patch.object(MediaIngestor, "_download_direct", _fake_download):
            result = _run_ingest(MediaIngestor(scratch, config), media, "https://cdn.example.com/a.mp4")
        assert [f.timestamp for f in result.frames] == [0.0, 5.0, 11.0]
        result.release()

    def test_per_frame_timeout(self, scratch: ScratchSpace) -> None:
        config = PipelineConfig(frame_timeout=0.1)
        media = FakeMedia(duration=30.0, slow=frozenset({11}))
        with patch.object(MediaIngestor, "_download_direct", _fake_download):
            result = _run_ingest(MediaIngestor(scratch, config), media, "https://cdn.example.com/a.mp4")
        assert [f.timestamp for f in result.frames] == [0.0, 5.0, 16.0, 21.0]
        result.release()

    def test_error_names_platform(self, scratch: ScratchSpace) -> None:
        async def failing(self: MediaIngestor, url: str) -> Path:
            raise IngestError("yt-dlp exploded")

        with patch.object(MediaIngestor, "_download_with_ytdlp", failing):
            with pytest.raises(IngestError, match="Failed to extract from TikTok"):
                _run_ingest(MediaIngestor(scratch), FakeMedia(), "https://www.tiktok.com/@a/video/1")

    def test_download_strategy_for_tiktok(self, scratch: ScratchSpace) -> None:
        with patch.object(MediaIngestor, "_download_with_ytdlp", _fake_download):
            result = _run_ingest(MediaIngestor(scratch), FakeMedia(), "https://www.tiktok.com/@a/video/1")
        assert result.strategy is IngestStrategy.DOWNLOAD
        result.release()
        assert scratch.files() == []


class TestDirectDownload:
    def _client_factory(self, handler: Any) -> Any:
        real_client = httpx.AsyncClient

        def factory(**kwargs: Any) -> httpx.AsyncClient:
            return real_client(transport=httpx.MockTransport(handler), **kwargs)

        return factory

    def test_byte_cap(self, scratch: ScratchSpace) -> None:
        config = PipelineConfig(max_download_bytes=10)
        factory = self._client_factory(lambda request: httpx.Response(200, content=b"x" * 100))
        with patch("httpx.AsyncClient", side_effect=factory):
            with pytest.raises(IngestError, match="larger than"):
                asyncio.run(MediaIngestor(scratch, config)._download_direct("https://cdn.example.com/a.mp4"))
        assert scratch.files() == []

    def test_http_error(self, scratch: ScratchSpace) -> None:
        factory = self._client_factory(lambda request: httpx.Response(404))
        with patch("httpx.AsyncClient", side_effect=factory):
            with pytest.raises(IngestError, match="Failed to download"):
                asyncio.run(MediaIngestor(scratch)._download_direct("https://cdn.example.com/a.mp4"))
        assert scratch.files() == []

    def test_writes_file(self, scratch: ScratchSpace) -> None:
        factory = self._client_factory(lambda request: httpx.Response(200, content=b"video-bytes"))
        with patch("httpx.AsyncClient", side_effect=factory):
            path = asyncio.run(MediaIngestor(scratch)._download_direct("https://cdn.example.com/a.mp4"))
        assert path.read_bytes() == b"video-bytes"


# ---------------------------------------------------------------------------
# Stream path
# ---------------------------------------------------------------------------


class TestStreamIngest:
    def test_frames_seeked_from_stream(self, scratch: ScratchSpace) -> None:
        formats: list[str] = []

        async def fake_resolve(self: MediaIngestor, url: str, format_selector: str) -> dict[str, Any]:
            formats.append(format_selector)
            if format_selector.startswith("bestaudio"):
                return {"url": "https://cdn.example.com/audio.m4a", "duration": 30}
            return {"url": "https://cdn.example.com/video.mp4", "duration": 30}

        media = FakeMedia()
        with patch.object(MediaIngestor, "_resolve", fake_resolve):
            result = _run_ingest(MediaIngestor(scratch), media, "https://www.youtube.com/watch?v=abc")

        assert result.strategy is IngestStrategy.STREAM
        assert set(media.frame_sources) == {"https://cdn.example.com/video.mp4"}
        assert media.audio_calls[0]["source"] == "https://cdn.example.com/audio.m4a"
        assert formats == ["best[height<=720]/best", "bestaudio/best"]
        assert len(result.frames) == 5
        result.release()
        assert scratch.files() == []

    def test_missing_stream_url(self, scratch: ScratchSpace) -> None:
        async def fake_resolve(self: MediaIngestor, url: str, format_selector: str) -> dict[str, Any]:
            return {"duration": 30}

        with patch.object(MediaIngestor, "_resolve", fake_resolve):
            with pytest.raises(IngestError, match="YouTube"):
                _run_ingest(MediaIngestor(scratch), FakeMedia(), "https://youtu.be/abc")

    def test_audio_resolution_failure_absorbed(self, scratch: ScratchSpace) -> None:
        async def fake_resolve(self: MediaIngestor, url: str, format_selector: str) -> dict[str, Any]:
            if format_selector.startswith("bestaudio"):
                raise IngestError("no audio formats")
            return {"url": "https://cdn.example.com/video.mp4", "duration": 12}

        with patch.object(MediaIngestor, "_resolve", fake_resolve):
            result = _run_ingest(MediaIngestor(scratch), FakeMedia(), "https://youtu.be/abc")
        assert result.audio is None
        assert result.frames

    def test_missing_duration_is_measured(self, scratch: ScratchSpace) -> None:
        async def fake_resolve(self: MediaIngestor, url: str, format_selector: str) -> dict[str, Any]:
            return {"url": "https://cdn.example.com/video.mp4", "duration": None}

        media = FakeMedia(duration=20.0)
        with patch.object(MediaIngestor, "_resolve", fake_resolve):
            result = _run_ingest(MediaIngestor(scratch), media, "https://youtu.be/abc", want_audio=False)
        assert result.duration == 20.0
        assert all(0 <= f.timestamp < 20.0 for f in result.frames)

    def test_unknown_duration_rejected(self, scratch: ScratchSpace) -> None:
        async def fake_resolve(self: MediaIngestor, url: str, format_selector: str) -> dict[str, Any]:
            return {"url": "https://cdn.example.com/live.m3u8"}

        with patch.object(MediaIngestor, "_resolve", fake_resolve):
            with pytest.raises(IngestError, match="no duration"):
                _run_ingest(MediaIngestor(scratch), FakeMedia(duration=0.0), "https://youtu.be/live")


# ---------------------------------------------------------------------------
# yt-dlp download
# ---------------------------------------------------------------------------


class FakeYoutubeDL:
    """Writes the output template's file after ``delay`` seconds."""

    delay = 0.0
    info: dict[str, Any] | None = {"ext": "mp4"}

    def __init__(self, opts: dict[str, Any]) -> None:
        self.outtmpl = opts["outtmpl"]

    def __enter__(self) -> FakeYoutubeDL:
        return self

    def __exit__(self, *exc: Any) -> None:
        return None

    def _target(self) -> Path:
        return Path(self.outtmpl.replace("%(ext)s", "mp4"))

    def extract_info(self, url: str, download: bool = False) -> dict[str, Any] | None:
        time.sleep(self.delay)
        self._target().write_bytes(b"\x00" * 32)
        return self.info

    def prepare_filename(self, info: dict[str, Any]) -> str:
        return str(self._target())


class TestYtdlpDownload:
    def test_download_returns_file(self, scratch: ScratchSpace) -> None:
        with patch("yt_dlp.YoutubeDL", FakeYoutubeDL):
            path = asyncio.run(MediaIngestor(scratch)._download_with_ytdlp("https://www.tiktok.com/@a/video/1"))
        assert path.exists()
        assert path.suffix == ".mp4"
        assert scratch.files() == [path]

    def test_timed_out_download_leaves_no_file(self, scratch: ScratchSpace) -> None:
        """A worker that finishes after the deadline removes what it wrote."""
        config = PipelineConfig(download_timeout=0.2)

        class LateYoutubeDL(FakeYoutubeDL):
            delay = 0.5

        with patch("yt_dlp.YoutubeDL", LateYoutubeDL):
            with pytest.raises(IngestError, match="Failed to download"):
                asyncio.run(MediaIngestor(scratch, config)._download_with_ytdlp("https://www.tiktok.com/@a/video/1"))
        # asyncio.run waits for the worker thread before returning
        assert scratch.files() == []

    def test_no_info_leaves_no_file(self, scratch: ScratchSpace) -> None:
        class EmptyYoutubeDL(FakeYoutubeDL):
            info = None

        with patch("yt_dlp.YoutubeDL", EmptyYoutubeDL):
            with pytest.raises(IngestError):
                asyncio.run(MediaIngestor(scratch)._download_with_ytdlp("https://www.tiktok.com/@a/video/1"))
        assert scratch.files() == []
