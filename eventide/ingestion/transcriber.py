"""Speech-to-text for extracted audio, single-shot or chunked.

Short files go to the speech backend in one call.  Larger files (or a failed
single-shot call) are split into fixed-length chunks with ffmpeg; chunks are
transcribed concurrently and stitched back together in index order.
Transcription is best-effort: ``SpeechTranscriber.transcribe`` never raises.
"""

from __future__ import annotations

import asyncio
import logging
import math
from pathlib import Path
from typing import Protocol

from eventide.config import Settings, settings
from eventide.errors import MediaToolError, TranscriptionError
from eventide.extraction.deadline import run_with_deadline
from eventide.ingestion import ffmpeg
from eventide.ingestion.models import AudioHandle
from eventide.ingestion.scratch import ScratchSpace
from eventide.pipeline_config import PipelineConfig, TranscriptionProvider

logger = logging.getLogger(__name__)


class SpeechBackend(Protocol):
    """Blocking speech-to-text call; run from a worker thread."""

    def transcribe_file(self, path: Path) -> str: ...


class AssemblyAIBackend:
    """AssemblyAI SDK transcription of a local audio file."""

    def __init__(self, api_key: str) -> None:
        self.api_key = api_key

    def transcribe_file(self, path: Path) -> str:
        import assemblyai as aai  # type: ignore[import-untyped]  # no stubs; import inside function

        aai.settings.api_key = self.api_key
        transcriber = aai.Transcriber()
        # speech_models (plural) is required by the current AssemblyAI API
        config = aai.TranscriptionConfig(speech_models=["universal-3-pro"])

        transcript = transcriber.transcribe(str(path), config=config)
        if transcript.status == aai.TranscriptStatus.error:
            raise TranscriptionError(f"AssemblyAI transcription failed: {transcript.error}")
        return (transcript.text or "").strip()


class OpenAIBackend:
    """OpenAI Whisper transcription of a local audio file."""

    def __init__(self, api_key: str, model: str = "whisper-1") -> None:
        self.api_key = api_key
        self.model = model

    def transcribe_file(self, path: Path) -> str:
        from openai import OpenAI

        client = OpenAI(api_key=self.api_key)
        try:
            with open(path, "rb") as fh:
                response = client.audio.transcriptions.create(model=self.model, file=fh)
        except Exception as exc:
            raise TranscriptionError(f"Whisper transcription failed: {exc}") from exc
        return (response.text or "").strip()


def build_backend(cfg: Settings | None = None) -> SpeechBackend | None:
    """Pick the configured speech backend; None when its API key is missing."""
    cfg = cfg or settings
    provider = TranscriptionProvider(cfg.transcription_provider)
    if provider is TranscriptionProvider.OPENAI:
        if not cfg.openai_api_key:
            logger.warning("OPENAI_API_KEY not configured; transcription disabled")
            return None
        return OpenAIBackend(cfg.openai_api_key, cfg.whisper_model)
    if not cfg.assemblyai_api_key:
        logger.warning("ASSEMBLYAI_API_KEY not configured; transcription disabled")
        return None
    return AssemblyAIBackend(cfg.assemblyai_api_key)


class SpeechTranscriber:
    """Turns an :class:`AudioHandle` into text."""

    def __init__(
        self,
        backend: SpeechBackend | None,
        scratch: ScratchSpace,
        config: PipelineConfig | None = None,
    ) -> None:
        self.backend = backend
        self.scratch = scratch
        self.config = config or PipelineConfig()

    async def transcribe(self, audio: AudioHandle) -> str:
        """Return the transcript of *audio*, or ``""`` when nothing could be heard.

        The handle itself is not released here; its owner does that.
        """
        backend = self.backend
        if backend is None:
            logger.warning("No speech backend configured; skipping transcription")
            return ""
        try:
            size = audio.size_bytes()
        except OSError as exc:
            logger.warning("Audio file unavailable for transcription: %s", exc)
            return ""

        size_mb = size / (1024 * 1024)
        if size <= self.config.single_shot_max_bytes:
            logger.info("Audio %.2f MB: single-shot transcription", size_mb)
            outcome = await run_with_deadline(
                asyncio.to_thread(backend.transcribe_file, audio.path),
                self.config.single_shot_timeout,
                label="single-shot transcription",
            )
            if outcome.ok:
                text = outcome.value or ""
                logger.info("Transcribed %d characters (single-shot)", len(text))
                return text
            logger.warning("Single-shot transcription failed; trying chunked approach")
        else:
            logger.info("Audio %.2f MB: chunked transcription", size_mb)

        try:
            return await self._transcribe_chunked(backend, audio.path)
        except Exception:
            logger.exception("Chunked transcription failed")
            return ""

    async def _transcribe_chunked(self, backend: SpeechBackend, source: Path) -> str:
        try:
            duration = await ffmpeg.probe_duration(source)
        except MediaToolError as exc:
            logger.warning("Cannot read audio duration: %s", exc)
            return ""

        chunk_seconds = self.config.chunk_seconds
        count = math.ceil(duration / chunk_seconds) if duration > 0 else 0
        if count == 0:
            return ""
        logger.info("Splitting %.0fs audio into %d chunks", duration, count)

        texts = await asyncio.gather(*(self._transcribe_chunk(backend, source, i) for i in range(count)))
        transcript = " ".join(t for t in texts if t)
        logger.info("Transcribed %d characters from %d chunks", len(transcript), count)
        return transcript

    async def _transcribe_chunk(self, backend: SpeechBackend, source: Path, index: int) -> str:
        """Split out chunk *index*, transcribe it, and always release its file."""
        chunk_path = self.scratch.allocate(f"chunk-{index}", ".wav")
        try:
            await ffmpeg.extract_audio(
                source,
                chunk_path,
                timeout=self.config.chunk_timeout,
                max_seconds=self.config.chunk_seconds,
                start=index * self.config.chunk_seconds,
            )
            outcome = await run_with_deadline(
                asyncio.to_thread(backend.transcribe_file, chunk_path),
                self.config.chunk_timeout,
                label=f"chunk {index}",
            )
            return outcome.value_or("")
        except MediaToolError as exc:
            logger.warning("Failed to split chunk %d: %s", index, exc)
            return ""
        finally:
            self.scratch.release(chunk_path)
