"""Run every extraction track for one input and fuse the results.

Flow per input kind:

- image: QR decode and image interpretation run side by side.
- text: one interpretation pass over the text.
- url: page metadata is fetched while the video (if any) is ingested; then
  frame reading, transcription, metadata interpretation and QR scanning run
  concurrently, each under its own deadline.  A track that fails or runs out
  of time contributes an empty analysis instead of failing the request.

The merge itself is delegated to the pure functions in ``fusion``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any

from eventide.config import Settings, settings
from eventide.errors import FusionError, IngestError, InterpretationError
from eventide.extraction import fusion
from eventide.extraction.deadline import StageOutcome, run_with_deadline
from eventide.extraction.interpreter import build_interpreter
from eventide.extraction.models import DraftEvent, ExtractionResult, SourceAnalysis
from eventide.extraction.ports import CodeDecoder, ContentInterpreter, Ingestor, MetadataSource, Transcriber
from eventide.ingestion import codes
from eventide.ingestion.ingestor import MediaIngestor, is_video_url
from eventide.ingestion.metadata import MetadataFetcher
from eventide.ingestion.models import IngestResult, MediaFrame, PageMetadata
from eventide.ingestion.scratch import ScratchSpace
from eventide.ingestion.transcriber import SpeechTranscriber, build_backend
from eventide.pipeline_config import InputKind, PipelineConfig, SourceTag

logger = logging.getLogger(__name__)


async def _skipped(label: str) -> StageOutcome[Any]:
    return StageOutcome.skipped(label)


def _raise_unavailable(outcome: StageOutcome[Any]) -> None:
    """Re-raise an interpreter failure when it was the only source of signal."""
    if isinstance(outcome.error, InterpretationError):
        raise outcome.error
    raise InterpretationError(f"{outcome.label} {outcome.status.value}") from outcome.error


def _resolve(
    analyses: list[SourceAnalysis], evidence: str = "", qr_url: str | None = None
) -> tuple[DraftEvent, SourceTag | None]:
    """Fuse *analyses*; a decoded code link alone still yields an (empty) draft."""
    try:
        return fusion.resolve(analyses, evidence=evidence)
    except FusionError:
        if not qr_url:
            raise
        logger.info("No event fields found; returning code link only")
        return DraftEvent(), None


class FusionOrchestrator:
    """Coordinates ingest, decoding, transcription and interpretation."""

    def __init__(
        self,
        ingestor: Ingestor,
        decoder: CodeDecoder,
        transcriber: Transcriber,
        interpreter: ContentInterpreter,
        metadata: MetadataSource,
        config: PipelineConfig | None = None,
    ) -> None:
        self.ingestor = ingestor
        self.decoder = decoder
        self.transcriber = transcriber
        self.interpreter = interpreter
        self.metadata = metadata
        self.config = config or PipelineConfig()

    async def extract(self, kind: InputKind | str, data: str | bytes, frame_count: int | None = None) -> ExtractionResult:
        """Extract one event from *data*.

        ``data`` is raw image bytes for ``image`` and a string otherwise.

        Raises:
            FusionError: no track produced any usable signal.
            IngestError: a video URL could not be ingested and its page had
                no title or description to fall back on.
            InterpretationError: the interpreter was the only source of
                signal and it failed.
        """
        kind = InputKind(kind)
        logger.info("Extracting event from %s input", kind.value)
        if kind is InputKind.IMAGE:
            if isinstance(data, str):
                raise TypeError("image input must be bytes")
            return await self._extract_image(data)
        text = data.decode() if isinstance(data, bytes) else data
        if kind is InputKind.TEXT:
            return await self._extract_text(text)
        return await self._extract_url(text.strip(), frame_count)

    # ------------------------------------------------------------------ #
    # image
    # ------------------------------------------------------------------ #
    async def _extract_image(self, image_bytes: bytes) -> ExtractionResult:
        budget = self.config.image_timeout
        qr, read = await asyncio.gather(
            run_with_deadline(asyncio.to_thread(self.decoder, image_bytes), budget, label="qr"),
            run_with_deadline(self.interpreter.interpret_image(image_bytes), budget, label="image"),
        )
        qr_url = qr.value_or(None)
        if not read.ok and not qr_url:
            _raise_unavailable(read)

        analyses = [SourceAnalysis(SourceTag.FRAME, read.value_or(DraftEvent()))]
        draft, winner = _resolve(analyses, qr_url=qr_url)
        source_metadata: dict[str, Any] = {
            "image_bytes": len(image_bytes),
            "tracks": {"qr": qr.summary(), "image": read.summary()},
        }
        return self._result(draft, winner, qr_url, source_metadata, analyses)

    # ------------------------------------------------------------------ #
    # text
    # ------------------------------------------------------------------ #
    async def _extract_text(self, text: str) -> ExtractionResult:
        read = await run_with_deadline(self.interpreter.interpret_text(text), self.config.text_timeout, label="text")
        if not read.ok and not text.strip():
            _raise_unavailable(read)

        analyses = [SourceAnalysis(SourceTag.COMBINED, read.value_or(DraftEvent()), text=text)]
        draft, winner = fusion.resolve(analyses, evidence=text)
        source_metadata = {
            "extracted_text": text[: self.config.transcript_excerpt_chars],
            "tracks": {"text": read.summary()},
        }
        return self._result(draft, winner, None, source_metadata, analyses)

    # ------------------------------------------------------------------ #
    # url
    # ------------------------------------------------------------------ #
    async def _extract_url(self, url: str, frame_count: int | None) -> ExtractionResult:
        metadata_task = asyncio.create_task(
            run_with_deadline(self.metadata.fetch(url), self.config.metadata_track_timeout, label="metadata fetch")
        )
        try:
            if not is_video_url(url):
                page = (await metadata_task).value_or(PageMetadata())
                return await self._extract_from_page(url, page, {"original_url": url, "image_url": page.image_url})

            logger.info("Detected video URL; ingesting alongside metadata fetch")
            try:
                ingest = await self.ingestor.ingest(url, frame_count or self.config.frame_count, want_audio=True)
            except IngestError as exc:
                page = (await metadata_task).value_or(PageMetadata())
                if not page.text():
                    raise
                logger.warning("Video extraction failed, falling back to page metadata: %s", exc)
                return await self._extract_from_page(
                    url, page, {"original_url": url, "image_url": page.image_url, "ingest_error": str(exc)}
                )

            try:
                page = (await metadata_task).value_or(PageMetadata())
                return await self._fuse_video(url, ingest, page)
            finally:
                ingest.release()
        finally:
            if not metadata_task.done():
                metadata_task.cancel()
                await asyncio.gather(metadata_task, return_exceptions=True)

    async def _extract_from_page(self, url: str, page: PageMetadata, source_metadata: dict[str, Any]) -> ExtractionResult:
        """Interpret page title/description plus the URL itself."""
        text = " ".join(p for p in (page.text(), url) if p)
        read = await run_with_deadline(self.interpreter.interpret_text(text), self.config.text_timeout, label="metadata")
        if not read.ok and not page.text():
            _raise_unavailable(read)

        analyses = [SourceAnalysis(SourceTag.METADATA, read.value_or(DraftEvent()), text=page.text())]
        draft, winner = fusion.resolve(analyses, evidence=page.text())
        source_metadata["tracks"] = {"metadata": read.summary()}
        return self._result(draft, winner, None, source_metadata, analyses)

    async def _fuse_video(self, url: str, ingest: IngestResult, page: PageMetadata) -> ExtractionResult:
        frames = ingest.frames
        cfg = self.config
        page_text = page.text()

        frame_track: Awaitable[StageOutcome[Any]] = (
            run_with_deadline(self.interpreter.interpret_frames(frames), cfg.frame_track_timeout, label="frames")
            if frames
            else _skipped("frames")
        )
        transcript_track: Awaitable[StageOutcome[Any]] = (
            run_with_deadline(self.transcriber.transcribe(ingest.audio), cfg.transcript_track_timeout, label="transcript")
            if ingest.audio is not None
            else _skipped("transcript")
        )
        metadata_track: Awaitable[StageOutcome[Any]] = (
            run_with_deadline(self.interpreter.interpret_text(page_text), cfg.metadata_track_timeout, label="metadata")
            if page_text
            else _skipped("metadata")
        )
        qr_track = run_with_deadline(
            asyncio.to_thread(self._first_code, frames[: cfg.qr_frame_limit]),
            cfg.frame_track_timeout,
            label="qr",
        )

        frame_out, transcript_out, metadata_out, qr_out = await asyncio.gather(
            frame_track, transcript_track, metadata_track, qr_track
        )
        transcript = transcript_out.value_or("")
        frame_draft = frame_out.value_or(DraftEvent())
        metadata_draft = metadata_out.value_or(DraftEvent())
        logger.info(
            "Tracks complete: frames %s, transcript %d chars, metadata %s",
            "complete" if frame_draft.is_complete else "partial",
            len(transcript),
            "complete" if metadata_draft.is_complete else "partial",
        )

        analyses = [
            SourceAnalysis(SourceTag.FRAME, frame_draft),
            SourceAnalysis(SourceTag.TRANSCRIPT, DraftEvent(), text=transcript),
            SourceAnalysis(SourceTag.METADATA, metadata_draft, text=page_text),
        ]
        tracks = {
            "frames": frame_out.summary(),
            "transcript": transcript_out.summary(),
            "metadata": metadata_out.summary(),
            "qr": qr_out.summary(),
        }

        if fusion.select_authoritative(analyses) is None:
            combined_text = fusion.combined_evidence(analyses, url)
            logger.info("No complete source; running combined pass over %d chars", len(combined_text))
            combined_out = await run_with_deadline(
                self.interpreter.interpret_text(combined_text), cfg.text_timeout, label="combined"
            )
            tracks["combined"] = combined_out.summary()
            analyses.append(SourceAnalysis(SourceTag.COMBINED, combined_out.value_or(DraftEvent()), text=combined_text))

        qr_url = qr_out.value_or(None)
        draft, winner = _resolve(analyses, evidence=fusion.combined_evidence(analyses), qr_url=qr_url)

        source_metadata: dict[str, Any] = {
            "original_url": url,
            "image_url": page.image_url,
            "ingest_strategy": ingest.strategy.value,
            "video_frames_extracted": len(frames),
            "has_audio": ingest.audio is not None,
            "transcription": transcript[: cfg.transcript_excerpt_chars] or None,
            "frame_analysis": {k: getattr(frame_draft, k) for k in ("title", "date", "time", "location")},
            "description_analysis": {k: getattr(metadata_draft, k) for k in ("title", "date", "time", "location")},
            "tracks": tracks,
        }
        return self._result(draft, winner, qr_url, source_metadata, analyses)

    def _first_code(self, frames: list[MediaFrame]) -> str | None:
        for index, frame in enumerate(frames, start=1):
            found = self.decoder(frame.image_bytes)
            if found:
                logger.info("Found QR code in video frame %d: %s", index, found)
                return found
        return None

    def _result(
        self,
        draft: DraftEvent,
        winner: SourceTag | None,
        qr_url: str | None,
        source_metadata: dict[str, Any],
        analyses: list[SourceAnalysis],
    ) -> ExtractionResult:
        source_metadata["winner"] = winner.value if winner else None
        if qr_url:
            source_metadata["qr_code_url"] = qr_url
        logger.info("Extraction winner: %s (title=%r, date=%s)", source_metadata["winner"], draft.title, draft.date)
        return ExtractionResult(
            draft=draft,
            winner=winner,
            qr_code_url=qr_url,
            source_metadata=source_metadata,
            analyses=analyses,
        )


def build_orchestrator(cfg: Settings | None = None, config: PipelineConfig | None = None) -> FusionOrchestrator:
    """Wire the production components from settings."""
    cfg = cfg or settings
    config = config or PipelineConfig()
    scratch = ScratchSpace(cfg.scratch_dir or None)
    return FusionOrchestrator(
        ingestor=MediaIngestor(scratch, config),
        decoder=codes.decode,
        transcriber=SpeechTranscriber(build_backend(cfg), scratch, config),
        interpreter=build_interpreter(cfg),
        metadata=MetadataFetcher(timeout=config.metadata_track_timeout),
        config=config,
    )
