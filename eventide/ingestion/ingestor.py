"""Obtain decodable frames and audio from a video URL.

Three strategies, picked by hostname:

- STREAM: platforms whose resolved stream URLs stay valid for the length of
  a request.  One ``yt-dlp`` resolution, then every sampled frame is seeked
  directly from that URL in parallel.  Nothing is downloaded.
- DOWNLOAD: platforms whose stream URLs expire within seconds (TikTok
  answers 403 on the second range request).  Fetch the whole file with
  ``yt-dlp`` first and sample locally.
- DIRECT: anything else: plain HTTP download, then local sampling.

Audio is always the first ``audio_window_seconds`` as mono 16 kHz PCM.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx
import yt_dlp

from eventide.errors import IngestError, MediaToolError
from eventide.extraction.deadline import run_with_deadline
from eventide.ingestion import ffmpeg
from eventide.ingestion.models import AudioHandle, IngestResult, MediaFrame
from eventide.ingestion.sampler import sample_timestamps
from eventide.ingestion.scratch import ScratchSpace
from eventide.pipeline_config import IngestStrategy, PipelineConfig

logger = logging.getLogger(__name__)

# Hostname suffix -> display name
PLATFORMS: dict[str, str] = {
    "youtube.com": "YouTube",
    "youtu.be": "YouTube",
    "tiktok.com": "TikTok",
    "instagram.com": "Instagram",
    "twitter.com": "Twitter/X",
    "x.com": "Twitter/X",
    "facebook.com": "Facebook",
    "vimeo.com": "Vimeo",
    "dailymotion.com": "Dailymotion",
}

# Stream URLs handed out by these hosts expire before a parallel seek finishes
EXPIRING_STREAM_HOSTS = frozenset({"tiktok.com"})

VIDEO_EXTENSIONS = (".mp4", ".webm", ".mov", ".avi", ".mkv", ".m4v")
VIDEO_HOSTS = frozenset({"youtube.com", "youtu.be", "vimeo.com", "dailymotion.com", "tiktok.com"})

_YDL_BASE_OPTS: dict[str, Any] = {
    "quiet": True,
    "no_warnings": True,
    "noprogress": True,
    "noplaylist": True,
}


def match_host(url: str, candidates: frozenset[str] | dict[str, str]) -> str | None:
    """Return the registered domain in *candidates* that *url*'s host belongs to."""
    host = (urlparse(url).hostname or "").lower()
    for domain in candidates:
        if host == domain or host.endswith("." + domain):
            return domain
    return None


def platform_name(url: str) -> str:
    key = match_host(url, PLATFORMS)
    return PLATFORMS[key] if key else "Video Platform"


def choose_strategy(url: str) -> IngestStrategy:
    """Map a URL to the ingest strategy its platform requires."""
    if match_host(url, EXPIRING_STREAM_HOSTS):
        return IngestStrategy.DOWNLOAD
    if match_host(url, PLATFORMS):
        return IngestStrategy.STREAM
    return IngestStrategy.DIRECT


def is_video_url(url: str) -> bool:
    """True for known video file extensions or video hosting domains."""
    path = urlparse(url).path.lower()
    if any(path.endswith(ext) for ext in VIDEO_EXTENSIONS):
        return True
    return match_host(url, VIDEO_HOSTS) is not None


class MediaIngestor:
    """Turns a source URL into an :class:`IngestResult`."""

    def __init__(self, scratch: ScratchSpace, config: PipelineConfig | None = None) -> None:
        self.scratch = scratch
        self.config = config or PipelineConfig()

    async def ingest(self, url: str, frame_count: int | None = None, want_audio: bool = True) -> IngestResult:
        """Extract sampled frames (and optionally audio) from *url*.

        Raises:
            IngestError: unreachable/unsupported source, media longer than the
                duration cap on a download path, or zero frames decoded.
        """
        count = frame_count or self.config.frame_count
        strategy = choose_strategy(url)
        platform = platform_name(url)
        logger.info("Ingesting %s via %s strategy", platform, strategy.value)

        try:
            if strategy is IngestStrategy.STREAM:
                return await self._ingest_stream(url, count, want_audio)
            if strategy is IngestStrategy.DOWNLOAD:
                path = await self._download_with_ytdlp(url)
            else:
                path = await self._download_direct(url)
            try:
                return await self._ingest_local(path, count, want_audio, strategy)
            finally:
                self.scratch.release(path)
        except IngestError as exc:
            raise IngestError(f"Failed to extract from {platform}: {exc}") from exc

    # ------------------------------------------------------------------ #
    # Stream strategy
    # ------------------------------------------------------------------ #
    async def _ingest_stream(self, url: str, count: int, want_audio: bool) -> IngestResult:
        info = await self._resolve(url, "best[height<=720]/best")
        stream_url = info.get("url")
        if not stream_url:
            raise IngestError("No stream URL returned from yt-dlp")
        duration = float(info.get("duration") or 0.0)
        if duration <= 0:
            duration = await self._measure_stream(stream_url)

        timestamps = sample_timestamps(duration, count, self.config.max_frames)
        logger.info("Video duration %.1fs; sampling frames at %s", duration, timestamps)

        frames = await self._grab_frames(stream_url, timestamps)

        audio: AudioHandle | None = None
        if want_audio:
            audio = await self._audio_from_stream(url)

        if not frames:
            if audio is not None:
                audio.release()
            raise IngestError("No frames could be extracted from video")

        logger.info("Extracted %d frames%s", len(frames), " and audio" if audio else "")
        return IngestResult(frames=frames, duration=duration, audio=audio, strategy=IngestStrategy.STREAM)

    async def _resolve(self, url: str, format_selector: str) -> dict[str, Any]:
        """Run ``yt-dlp`` metadata extraction (no download) for one format."""

        def _extract() -> dict[str, Any]:
            opts = {**_YDL_BASE_OPTS, "format": format_selector}
            with yt_dlp.YoutubeDL(opts) as ydl:
                info = ydl.extract_info(url, download=False)
            if not info:
                raise IngestError(f"yt-dlp returned no info for {url}")
            return dict(info)

        outcome = await run_with_deadline(
            asyncio.to_thread(_extract), self.config.resolve_timeout, label="resolve stream"
        )
        if not outcome.ok or outcome.value is None:
            raise IngestError(f"Failed to get stream URL: {outcome.error}")
        return outcome.value

    async def _measure_stream(self, stream_url: str) -> float:
        """Ask ffprobe for a duration yt-dlp did not report; frames must fall inside it."""
        try:
            duration = await ffmpeg.probe_duration(stream_url, timeout=self.config.resolve_timeout)
        except MediaToolError as exc:
            raise IngestError(f"Could not determine stream duration: {exc}") from exc
        if duration <= 0:
            raise IngestError("Stream reports no duration (live or unsupported)")
        return duration

    async def _audio_from_stream(self, url: str) -> AudioHandle | None:
        try:
            info = await self._resolve(url, "bestaudio/best")
            audio_url = info.get("url")
            if not audio_url:
                raise IngestError("No audio stream URL returned from yt-dlp")
            return await self._extract_audio(audio_url)
        except IngestError as exc:
            logger.warning("Failed to extract audio: %s", exc)
            return None

    # ------------------------------------------------------------------ #
    # Download strategies
    # ------------------------------------------------------------------ #
    async def _download_with_ytdlp(self, url: str) -> Path:
        stem = self.scratch.allocate("video").name
        # Set once the caller stops waiting; the worker then owns cleanup
        abandoned = threading.Event()

        def _download() -> Path:
            opts = {
                **_YDL_BASE_OPTS,
                "format": "best[ext=mp4]/best",
                "outtmpl": str(self.scratch.root / f"{stem}.%(ext)s"),
            }
            try:
                with yt_dlp.YoutubeDL(opts) as ydl:
                    info = ydl.extract_info(url, download=True)
                    if not info:
                        raise IngestError(f"yt-dlp returned no info for {url}")
                    return Path(ydl.prepare_filename(info))
            finally:
                if abandoned.is_set():
                    removed = self.scratch.release_matching(stem)
                    logger.info("Removed %d late yt-dlp file(s) for %s", removed, stem)

        try:
            outcome = await run_with_deadline(
                asyncio.to_thread(_download), self.config.download_timeout, label="yt-dlp download"
            )
        except asyncio.CancelledError:
            abandoned.set()
            self.scratch.release_matching(stem)
            raise
        if outcome.ok and outcome.value is not None and outcome.value.exists():
            return outcome.value

        # yt-dlp may have picked a different extension
        matches = sorted(self.scratch.root.glob(f"{stem}.*"))
        if outcome.ok and matches:
            return matches[0]
        abandoned.set()
        self.scratch.release_matching(stem)
        raise IngestError(f"Failed to download video: {outcome.error or 'file not found'}")

    async def _download_direct(self, url: str) -> Path:
        path = self.scratch.allocate("video", ".mp4")
        limit = self.config.max_download_bytes
        try:
            async with httpx.AsyncClient(follow_redirects=True, timeout=self.config.download_timeout) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    written = 0
                    with path.open("wb") as fh:
                        async for block in response.aiter_bytes():
                            written += len(block)
                            if written > limit:
                                raise IngestError(f"Video larger than {limit // (1024 * 1024)} MB")
                            fh.write(block)
        except httpx.HTTPError as exc:
            self.scratch.release(path)
            raise IngestError(f"Failed to download video: {exc}") from exc
        except BaseException:
            self.scratch.release(path)
            raise
        return path

    async def _ingest_local(self, path: Path, count: int, want_audio: bool, strategy: IngestStrategy) -> IngestResult:
        try:
            duration = await ffmpeg.probe_duration(path)
        except MediaToolError as exc:
            raise IngestError(f"Unsupported or unreadable media: {exc}") from exc
        logger.info("Video duration: %.1fs", duration)
        if duration <= 0:
            raise IngestError("Media reports no duration")

        if duration > self.config.max_duration_seconds:
            raise IngestError(
                f"Video too long. Maximum {self.config.max_duration_seconds / 60:.0f} minutes supported."
            )

        timestamps = sample_timestamps(duration, count, self.config.max_frames)
        logger.info("Extracting frames at: %s", timestamps)
        frames = await self._grab_frames(str(path), timestamps)

        audio: AudioHandle | None = None
        if want_audio:
            try:
                audio = await self._extract_audio(str(path))
            except IngestError as exc:
                logger.warning("Failed to extract audio: %s", exc)

        if not frames:
            if audio is not None:
                audio.release()
            raise IngestError("No frames could be extracted from video")

        logger.info("Extracted %d frames%s", len(frames), " and audio" if audio else "")
        return IngestResult(frames=frames, duration=duration, audio=audio, strategy=strategy)

    # ------------------------------------------------------------------ #
    # Shared helpers
    # ------------------------------------------------------------------ #
    async def _grab_frames(self, source: str, timestamps: list[int]) -> list[MediaFrame]:
        """Decode every timestamp concurrently; drop failures and stragglers."""

        async def _one(ts: int) -> MediaFrame | None:
            outcome = await run_with_deadline(
                ffmpeg.grab_frame(source, ts, timeout=self.config.frame_timeout),
                self.config.frame_timeout,
                label=f"frame@{ts}s",
            )
            if outcome.ok and outcome.value:
                return MediaFrame(timestamp=float(ts), image_bytes=outcome.value)
            return None

        tasks = [asyncio.create_task(_one(ts)) for ts in timestamps]
        if not tasks:
            return []
        done, pending = await asyncio.wait(tasks, timeout=self.config.frame_batch_timeout)
        if pending:
            logger.warning(
                "Frame extraction overall timeout: keeping %d of %d frames", len(done), len(tasks)
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        frames = [task.result() for task in done if not task.cancelled() and task.result() is not None]
        return sorted(frames, key=lambda f: f.timestamp)

    async def _extract_audio(self, source: str) -> AudioHandle:
        path = self.scratch.allocate("audio", ".wav")
        try:
            await ffmpeg.extract_audio(
                source,
                path,
                timeout=self.config.download_timeout,
                max_seconds=self.config.audio_window_seconds,
            )
        except BaseException:
            self.scratch.release(path)
            raise
        logger.info("Extracted audio (first %ds) to %s", self.config.audio_window_seconds, path.name)
        return AudioHandle(path, self.scratch)
