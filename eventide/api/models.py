"""Pydantic request/response schemas for the Eventide API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from eventide.pipeline_config import InputKind


class ExtractRequest(BaseModel):
    """Request body for the /api/extract endpoint."""

    type: InputKind
    data: str = Field(min_length=1)
    frame_count: int | None = Field(default=None, ge=1, le=15)


class EventLocation(BaseModel):
    """Raw location name as read from the source."""

    name: str


class CanonicalEvent(BaseModel):
    """Calendar-ready event built from the fused draft."""

    title: str | None = None
    description: str = ""
    start_time: str
    end_time: str | None = None
    location: EventLocation | None = None
    timezone: str
    source: str  # "flyer", "url", "text"
    event_type: str | None = None
    venue_type: str | None = None


class ExtractResponse(BaseModel):
    """Response body for the /api/extract endpoint."""

    event: CanonicalEvent
    confidence: float
    source_metadata: dict[str, Any] = {}
