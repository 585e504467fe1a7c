"""Pure merge policy over per-track analyses.

Nothing here performs I/O.  The orchestrator gathers one
:class:`SourceAnalysis` per track, asks ``select_authoritative`` for a winner,
runs the combined pass when there is none, and hands everything to
``resolve`` for the final draft.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from eventide.errors import FusionError
from eventide.extraction.interpreter import limit_description
from eventide.extraction.models import DraftEvent, SourceAnalysis
from eventide.pipeline_config import SourceTag

# Gap-filling only ever touches these fields
BACKFILL_FIELDS = ("description", "event_type", "venue_type")

# Tie-break order when candidates are equally rich
_PREFERENCE = {
    SourceTag.FRAME: 0,
    SourceTag.METADATA: 1,
    SourceTag.COMBINED: 2,
    SourceTag.TRANSCRIPT: 3,
}


def _by_source(analyses: Iterable[SourceAnalysis], source: SourceTag) -> SourceAnalysis | None:
    for analysis in analyses:
        if analysis.source is source:
            return analysis
    return None


def select_authoritative(analyses: Sequence[SourceAnalysis]) -> SourceAnalysis | None:
    """Priority: complete frame, then complete metadata, then a non-empty combined pass."""
    frame = _by_source(analyses, SourceTag.FRAME)
    if frame is not None and frame.draft.is_complete:
        return frame
    metadata = _by_source(analyses, SourceTag.METADATA)
    if metadata is not None and metadata.draft.is_complete:
        return metadata
    combined = _by_source(analyses, SourceTag.COMBINED)
    if combined is not None and not combined.draft.is_empty:
        return combined
    return None


def combined_evidence(analyses: Sequence[SourceAnalysis], raw_input: str = "") -> str:
    """All textual signal, in the order the combined pass reads it.

    Metadata text first, then the transcript, then whatever the frame and
    metadata interpretations found, then the caller's raw input.
    """
    parts: list[str] = []
    metadata = _by_source(analyses, SourceTag.METADATA)
    transcript = _by_source(analyses, SourceTag.TRANSCRIPT)
    frame = _by_source(analyses, SourceTag.FRAME)

    if metadata is not None:
        parts.append(metadata.text)
    if transcript is not None:
        parts.append(transcript.text)
    for analysis in (frame, metadata):
        if analysis is None:
            continue
        draft = analysis.draft
        parts.extend(p or "" for p in (draft.title, draft.date, draft.time, draft.location, draft.description))
    parts.append(raw_input)
    return " ".join(p.strip() for p in parts if p and p.strip())


def fallback_candidate(analyses: Sequence[SourceAnalysis]) -> SourceAnalysis | None:
    """The richest non-empty draft; frame beats metadata on a tie."""
    candidates = [a for a in analyses if not a.draft.is_empty]
    if not candidates:
        return None
    return min(candidates, key=lambda a: (-a.draft.populated(), _PREFERENCE[a.source]))


def normalize_all_day(draft: DraftEvent) -> DraftEvent:
    """An event without a start time cannot keep an end time."""
    if draft.is_all_day and draft.end_time:
        return draft.with_changes(end_time=None)
    return draft


def finalize(draft: DraftEvent, others: Iterable[DraftEvent] = ()) -> DraftEvent:
    """Backfill optional fields from *others* without overwriting, then normalise."""
    changes: dict[str, str] = {}
    for other in others:
        for name in BACKFILL_FIELDS:
            if not getattr(draft, name) and name not in changes and getattr(other, name):
                changes[name] = getattr(other, name)
    if changes:
        draft = draft.with_changes(**changes)
    return normalize_all_day(draft)


def resolve(analyses: Sequence[SourceAnalysis], evidence: str = "") -> tuple[DraftEvent, SourceTag | None]:
    """Pick the final draft and the track it came from.

    Falls back to the richest partial draft, then to a description built from
    raw *evidence*.

    Raises:
        FusionError: no draft and no textual evidence at all.
    """
    chosen = select_authoritative(analyses) or fallback_candidate(analyses)
    if chosen is not None:
        others = [a.draft for a in sorted(analyses, key=lambda a: _PREFERENCE[a.source]) if a is not chosen]
        return finalize(chosen.draft, others), chosen.source

    if evidence.strip():
        return DraftEvent(description=limit_description(evidence)), None
    raise FusionError("No extraction source produced any usable signal")
