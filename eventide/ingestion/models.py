"""Data models for media ingestion."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from eventide.pipeline_config import IngestStrategy

if TYPE_CHECKING:
    from eventide.ingestion.scratch import ScratchSpace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MediaFrame:
    """A single decoded still (JPEG bytes) and where it was captured."""

    timestamp: float
    image_bytes: bytes


class AudioHandle:
    """Owned reference to an extracted audio file in the scratch namespace.

    ``release()`` may be reached from several cleanup paths (track timeout,
    orchestrator ``finally``); only the first call deletes the file.
    """

    def __init__(self, path: Path, scratch: ScratchSpace) -> None:
        self.path = Path(path)
        self._scratch = scratch
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def size_bytes(self) -> int:
        return self.path.stat().st_size

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._scratch.release(self.path)
        logger.debug("Released audio %s", self.path.name)

    def __repr__(self) -> str:
        state = "released" if self._released else "live"
        return f"AudioHandle({self.path.name}, {state})"


@dataclass
class IngestResult:
    """Frames and audio obtained from one source URL."""

    frames: list[MediaFrame]
    duration: float
    audio: AudioHandle | None = None
    strategy: IngestStrategy = IngestStrategy.DIRECT

    def release(self) -> None:
        if self.audio is not None:
            self.audio.release()


@dataclass
class PageMetadata:
    """Title/description/preview image found behind a URL."""

    title: str | None = None
    description: str | None = None
    image_url: str | None = None

    def text(self) -> str:
        """Title and description joined, empty when the page said nothing."""
        return " ".join(p for p in (self.title, self.description) if p).strip()
