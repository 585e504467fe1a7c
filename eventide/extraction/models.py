"""Data models for event extraction results."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any

from eventide.pipeline_config import SourceTag


@dataclass(frozen=True)
class DraftEvent:
    """A partially-filled event as read from one or more sources.

    ``date`` is ``YYYY-MM-DD``; ``time``/``end_time`` are ``HH:MM:SS``.
    A draft with no ``time`` is an all-day event.
    """

    title: str | None = None
    date: str | None = None
    time: str | None = None
    end_time: str | None = None
    location: str | None = None
    description: str | None = None
    event_type: str | None = None  # "in-person", "online", "hybrid"
    venue_type: str | None = None  # "public", "private"

    @property
    def is_complete(self) -> bool:
        return bool(self.title and self.date)

    @property
    def is_empty(self) -> bool:
        return not any(getattr(self, f.name) for f in fields(self))

    @property
    def is_all_day(self) -> bool:
        return not self.time

    def populated(self) -> int:
        """Number of non-empty fields."""
        return sum(1 for f in fields(self) if getattr(self, f.name))

    def with_changes(self, **changes: Any) -> DraftEvent:
        return replace(self, **changes)

    def to_dict(self) -> dict[str, str | None]:
        return asdict(self)


@dataclass(frozen=True)
class SourceAnalysis:
    """What one extraction track produced.

    ``text`` holds the raw evidence the track worked from (a transcript, or
    the page title and description) so later passes can reuse it.
    """

    source: SourceTag
    draft: DraftEvent = field(default_factory=DraftEvent)
    text: str = ""

    @classmethod
    def empty(cls, source: SourceTag) -> SourceAnalysis:
        return cls(source=source)


@dataclass
class ExtractionResult:
    """Final output of one orchestrator run."""

    draft: DraftEvent
    winner: SourceTag | None = None
    qr_code_url: str | None = None
    source_metadata: dict[str, Any] = field(default_factory=dict)
    analyses: list[SourceAnalysis] = field(default_factory=list)
