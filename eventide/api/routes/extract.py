"""Extraction endpoint: turn an image, URL or text into a calendar-ready event."""

from __future__ import annotations

import base64
import binascii
import logging
from datetime import date, timedelta
from functools import lru_cache
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from eventide.api.models import CanonicalEvent, EventLocation, ExtractRequest, ExtractResponse
from eventide.config import settings
from eventide.errors import FusionError, IngestError, InterpretationError
from eventide.extraction.models import ExtractionResult
from eventide.extraction.orchestrator import FusionOrchestrator, build_orchestrator
from eventide.ingestion.codes import strip_data_uri
from eventide.pipeline_config import InputKind

logger = logging.getLogger(__name__)

router = APIRouter()


SOURCE_LABELS = {InputKind.IMAGE: "flyer", InputKind.URL: "url", InputKind.TEXT: "text"}


@lru_cache(maxsize=1)
def get_orchestrator() -> FusionOrchestrator:
    """Process-wide orchestrator built from settings (overridden in tests)."""
    return build_orchestrator(settings)


def decode_image_data(data: str) -> bytes:
    """Decode base64 image data, with or without a data-URI prefix.

    Raises:
        HTTPException(400): the payload is not valid base64.
    """
    payload = strip_data_uri(data)
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=400, detail="Image data is not valid base64") from exc
    if not raw:
        raise HTTPException(status_code=400, detail="Image data is empty")
    return raw


def next_day(iso_date: str) -> str:
    return (date.fromisoformat(iso_date) + timedelta(days=1)).isoformat()


def build_event(result: ExtractionResult, kind: InputKind, today: date | None = None) -> CanonicalEvent:
    """Apply caller defaults to a fused draft.

    A missing date falls back to today so the user can correct it.  Timed
    events start at ``{date}T{time}``; all-day events end on the next date.
    A QR link is appended to the description.
    """
    draft = result.draft
    event_date = draft.date or (today or date.today()).isoformat()

    if draft.is_all_day:
        start_time = event_date
        end_time = next_day(event_date)
    else:
        start_time = f"{event_date}T{draft.time}"
        end_time = f"{event_date}T{draft.end_time}" if draft.end_time else None

    description = draft.description or ""
    if result.qr_code_url:
        link = f'<a href="{result.qr_code_url}">{result.qr_code_url}</a>'
        description = f"{description}\n\n🔗 QR Code: {link}" if description else f"🔗 QR Code: {link}"

    return CanonicalEvent(
        title=draft.title,
        description=description,
        start_time=start_time,
        end_time=end_time,
        location=EventLocation(name=draft.location) if draft.location else None,
        timezone=settings.default_timezone,
        source=SOURCE_LABELS[kind],
        event_type=draft.event_type,
        venue_type=draft.venue_type,
    )


def estimate_confidence(result: ExtractionResult) -> float:
    """Coarse confidence: complete winner, partial winner, or evidence only."""
    if result.winner is None:
        return 0.3
    return 0.8 if result.draft.is_complete else 0.5


@router.post("/api/extract", response_model=ExtractResponse)
async def extract_event(
    request: ExtractRequest,
    orchestrator: Annotated[FusionOrchestrator, Depends(get_orchestrator)],
) -> ExtractResponse:
    """Extract a single event from a flyer image, a (video) URL, or free text.

    ``data`` is base64 for images (a ``data:image/...;base64,`` prefix is
    accepted), a URL for ``url``, and the raw text for ``text``.
    """
    payload: str | bytes = request.data
    if request.type is InputKind.IMAGE:
        payload = decode_image_data(request.data)

    try:
        result = await orchestrator.extract(request.type, payload, frame_count=request.frame_count)
    except (FusionError, IngestError) as exc:
        raise HTTPException(status_code=422, detail=f"Could not extract an event: {exc}") from exc
    except InterpretationError as exc:
        # Interpreter outage is not the client's fault
        logger.exception("Interpreter unavailable")
        raise HTTPException(status_code=503, detail=f"Interpreter unavailable: {exc}") from exc

    return ExtractResponse(
        event=build_event(result, request.type),
        confidence=estimate_confidence(result),
        source_metadata=result.source_metadata,
    )
