"""Interfaces the orchestrator depends on.

Production wiring lives in ``orchestrator.build_orchestrator``; tests pass
small fakes that satisfy these protocols.
"""

from __future__ import annotations

from typing import Protocol

from eventide.extraction.models import DraftEvent
from eventide.ingestion.models import AudioHandle, IngestResult, MediaFrame, PageMetadata


class Ingestor(Protocol):
    async def ingest(self, url: str, frame_count: int | None = None, want_audio: bool = True) -> IngestResult: ...


class CodeDecoder(Protocol):
    def __call__(self, image_bytes: bytes) -> str | None: ...


class Transcriber(Protocol):
    async def transcribe(self, audio: AudioHandle) -> str: ...


class ContentInterpreter(Protocol):
    async def interpret_image(self, image_bytes: bytes) -> DraftEvent: ...

    async def interpret_frames(self, frames: list[MediaFrame]) -> DraftEvent: ...

    async def interpret_text(self, text: str) -> DraftEvent: ...


class MetadataSource(Protocol):
    async def fetch(self, url: str) -> PageMetadata: ...
