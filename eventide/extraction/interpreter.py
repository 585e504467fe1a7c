"""LLM-backed reading of event details from images, video frames and text.

Two backends share one set of prompts and one normaliser:

- ``ClaudeInterpreter`` forces a ``record_event`` tool call so the model's
  answer arrives as structured input.
- ``GeminiInterpreter`` asks for a bare JSON object and pulls it out of the
  response text.

Whatever the model returns is passed through ``draft_from_payload``, which
accepts camelCase or snake_case keys, validates dates (an unreadable date
becomes ``None``; it is never replaced by today's date), normalises times to
``HH:MM:SS`` and caps descriptions at 25 words.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import re
from collections.abc import Callable
from datetime import date, datetime
from typing import Any

from anthropic import Anthropic, APIError

from eventide.config import Settings, settings
from eventide.errors import InterpretationError
from eventide.extraction.models import DraftEvent
from eventide.ingestion.models import MediaFrame
from eventide.pipeline_config import InterpreterProvider

logger = logging.getLogger(__name__)

DESCRIPTION_WORD_LIMIT = 25

DRAFT_FIELDS = ("title", "date", "time", "end_time", "location", "description", "event_type", "venue_type")

_KEY_ALIASES = {
    "endTime": "end_time",
    "eventType": "event_type",
    "venueType": "venue_type",
    "hasEventInfo": "has_event_info",
    "rawText": "raw_text",
}

_NULL_STRINGS = {"", "null", "none", "n/a", "undefined", "unknown"}

# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

SYSTEM_PROMPT = (
    "You are an event extraction assistant. You read flyers, video frames, "
    "transcripts and social-media captions and pull out the single event they "
    "advertise. Only report details that are supported by the input."
)

_FIELD_GUIDE = """Fields:
- title: the event title or name
- description: a summary of the key event details in 25 words or less
- date: the event date as YYYY-MM-DD
- time: the start time as HH:MM:SS (24-hour). Leave null unless a specific start time is given; a missing time means an all-day event
- endTime: the end time as HH:MM:SS. Look for "until", "ends at", "from 8pm to 10pm" or ranges like "8pm-10pm". Never put a date here
- location: venue name, address or city
- eventType: "in-person", "online" or "hybrid" when it can be told
- venueType: "public" or "private" when it can be told"""


def _date_rules(today: date) -> str:
    spoken = f"{today:%A, %B} {today.day}, {today.year}"
    return f"""Date resolution:
- Today's date is {today.isoformat()} ({spoken}).
- For a month and day without a year (e.g. "Nov 18", "Tuesday Nov 18"), use this year if that day is still ahead, otherwise next year.
- Resolve relative dates such as "tomorrow" or "next Friday" against today.
- "Opening on Nov 18" or "starts Nov 18" means the event is on November 18th. Never shift a date by a day.
- If no date is shown and none can be inferred, set date to null. Do not default to today."""


def text_prompt(text: str, today: date) -> str:
    return (
        "Extract event information from this text and return a JSON object.\n\n"
        f"{_FIELD_GUIDE}\n\n{_date_rules(today)}\n\n"
        "Return only valid JSON, no markdown fences, no explanation.\n\n"
        f"Text to extract from:\n{text}"
    )


def image_prompt(today: date) -> str:
    return (
        "Extract event information from this image and return a JSON object.\n\n"
        f"{_FIELD_GUIDE}\n\n{_date_rules(today)}\n\n"
        "Return only valid JSON, no markdown fences, no explanation."
    )


def frame_prompt(index: int, total: int, today: date) -> str:
    return (
        f"This is frame {index} of {total} from a video. Read every piece of text, "
        "graphic and caption in it and extract any event information you can see.\n\n"
        f"{_FIELD_GUIDE}\n"
        "- text: all text visible in the frame\n"
        "- hasEventInfo: true if the frame shows anything event-related, otherwise false\n\n"
        "Report the title whenever any event-related text is visible, even if partial. "
        "Only set time when a specific clock time is visible.\n\n"
        f"{_date_rules(today)}\n\n"
        "Return only valid JSON, no markdown fences, no explanation."
    )


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_US_DATE = re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$")
_YMD_SLASH = re.compile(r"^\d{4}/\d{1,2}/\d{1,2}$")
_ORDINAL = re.compile(r"(\d{1,2})(st|nd|rd|th)\b", re.IGNORECASE)
_WORDED_FORMATS = (
    "%B %d, %Y",
    "%B %d %Y",
    "%b %d, %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%A, %B %d, %Y",
    "%a, %b %d, %Y",
    "%Y-%m-%dT%H:%M:%S",
)

_LOOKS_LIKE_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}|^\d{2}/\d{2}/\d{4}")
_HMS = re.compile(r"^(\d{2}):(\d{2}):(\d{2})$")
_HM = re.compile(r"^(\d{2}):(\d{2})$")
_AM_PM = re.compile(r"(\d{1,2}):?(\d{2})?\s*([ap])\.?m\.?", re.IGNORECASE)


def normalize_date(value: str | None) -> str | None:
    """Return *value* as ``YYYY-MM-DD``, or None when it is not a real date."""
    if not value:
        return None
    text = value.strip()
    if _ISO_DATE.match(text):
        fmt = "%Y-%m-%d"
    elif _US_DATE.match(text):
        fmt = "%m/%d/%Y"
    elif _YMD_SLASH.match(text):
        fmt = "%Y/%m/%d"
    else:
        cleaned = _ORDINAL.sub(r"\1", text)
        for fmt in _WORDED_FORMATS:
            try:
                return datetime.strptime(cleaned, fmt).date().isoformat()
            except ValueError:
                continue
        logger.info("Unparseable date %r dropped", value)
        return None
    try:
        return datetime.strptime(text, fmt).date().isoformat()
    except ValueError:
        logger.info("Invalid date %r dropped", value)
        return None


def normalize_time(value: str | None) -> str | None:
    """Return *value* as 24-hour ``HH:MM:SS``, or None when it is not a time.

    Strings that look like dates are rejected so a date never lands in a
    time field.
    """
    if not value:
        return None
    text = value.strip()
    if _LOOKS_LIKE_DATE.match(text):
        logger.info("Time %r looks like a date; dropped", value)
        return None

    hours: int | None = None
    minutes = seconds = 0
    if m := _HMS.match(text):
        hours, minutes, seconds = int(m[1]), int(m[2]), int(m[3])
    elif m := _HM.match(text):
        hours, minutes = int(m[1]), int(m[2])
    elif m := _AM_PM.search(text):
        hours = int(m[1])
        minutes = int(m[2]) if m[2] else 0
        is_pm = m[3].lower() == "p"
        if hours > 12:
            hours = None
        elif is_pm and hours != 12:
            hours += 12
        elif not is_pm and hours == 12:
            hours = 0
    elif ":" in text:
        head, _, rest = text.partition(":")
        if head.strip().isdigit() and rest[:2].isdigit():
            hours, minutes = int(head), int(rest[:2])

    if hours is None or not (0 <= hours <= 23 and 0 <= minutes <= 59 and 0 <= seconds <= 59):
        logger.info("Invalid time %r dropped", value)
        return None
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def limit_description(text: str | None, max_words: int = DESCRIPTION_WORD_LIMIT) -> str | None:
    if not text or not text.strip():
        return None
    words = text.split()
    if len(words) <= max_words:
        return text.strip()
    return " ".join(words[:max_words]) + "..."


def _clean_value(value: Any) -> str | None:
    if value is None or isinstance(value, (bool, dict, list)):
        return None
    text = str(value).strip()
    return None if text.lower() in _NULL_STRINGS else text


def canonical_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Map model output onto snake_case keys with normalised draft values."""
    out: dict[str, Any] = {_KEY_ALIASES.get(k, k): v for k, v in payload.items()}
    for name in DRAFT_FIELDS:
        out[name] = _clean_value(out.get(name))
    out["date"] = normalize_date(out["date"])
    out["time"] = normalize_time(out["time"])
    out["end_time"] = normalize_time(out["end_time"])
    out["description"] = limit_description(out["description"])
    return out


def draft_from_payload(payload: dict[str, Any]) -> DraftEvent:
    canonical = canonical_payload(payload)
    return DraftEvent(**{name: canonical[name] for name in DRAFT_FIELDS})


_TITLE_PATTERNS = [
    re.compile(r"(?:title|event|name)[:\s]+([^\n,.]+)", re.IGNORECASE),
    re.compile(r'"([^"]{10,60})"'),
    re.compile(r"([A-Z][a-z]+(?:\s+[A-Z][a-z]+){1,5})"),
    re.compile(r"([A-Z]{2,}(?:\s+[A-Z]{2,}){0,3})"),
]


def guess_title(text: str) -> str | None:
    """Best-effort title from free text: labelled, quoted, Title Case or ALL CAPS runs."""
    for pattern in _TITLE_PATTERNS:
        match = pattern.search(text)
        if match and 5 < len(match[1]) < 100:
            return match[1].strip()
    return None


def _reading_text(reading: dict[str, Any]) -> str:
    return str(reading.get("raw_text") or reading.get("text") or "")


def _has_event_info(reading: dict[str, Any]) -> bool:
    """Trust the flag when present; otherwise a title or date counts as event info."""
    flag = reading.get("has_event_info")
    if flag is None:
        return bool(reading.get("title") or reading.get("date"))
    return flag is True


def combine_frame_readings(readings: list[dict[str, Any]]) -> dict[str, Any]:
    """Merge per-frame payloads: the earliest frame reporting a field wins.

    Raises:
        InterpretationError: no frame reported event info and no text was seen.
    """
    canonical = [canonical_payload(r) for r in readings]
    valid = [r for r in canonical if _has_event_info(r)]

    if not valid:
        all_text = " ".join(_reading_text(r) for r in canonical).strip()
        if all_text:
            return {"description": limit_description(all_text)}
        raise InterpretationError("No event information found in video frames")

    combined: dict[str, Any] = {name: None for name in DRAFT_FIELDS}
    for reading in valid:
        for name in DRAFT_FIELDS:
            if reading.get(name) and not combined[name]:
                combined[name] = reading[name]

    valid_text = " ".join(_reading_text(r) for r in valid).strip()
    if valid_text and not (combined["title"] and combined["date"]):
        if not combined["title"]:
            combined["title"] = guess_title(valid_text)
        if not combined["description"]:
            combined["description"] = limit_description(valid_text)
    return combined


_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_EVENT_HINTS = ("event", "date", "time")


def parse_json_payload(raw: str) -> dict[str, Any]:
    """Pull the first JSON object out of a model response.

    A response with no parseable object is kept as plain frame text.
    """
    match = _JSON_OBJECT.search(raw or "")
    if match:
        try:
            data = json.loads(match.group(0))
            if isinstance(data, dict):
                data.setdefault("raw_text", raw)
                return data
        except json.JSONDecodeError:
            pass
    lowered = (raw or "").lower()
    return {
        "text": raw or "",
        "has_event_info": any(hint in lowered for hint in _EVENT_HINTS),
        "raw_text": raw or "",
    }


def sniff_media_type(image_bytes: bytes) -> str:
    if image_bytes.startswith(b"\x89PNG"):
        return "image/png"
    if image_bytes.startswith(b"GIF8"):
        return "image/gif"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


# ---------------------------------------------------------------------------
# Interpreters
# ---------------------------------------------------------------------------


class _PromptedInterpreter:
    """Shared async flow; subclasses implement the blocking ``_read`` call."""

    def __init__(self, today: Callable[[], date] | None = None) -> None:
        self._today = today or date.today

    def _read(self, prompt: str, image_bytes: bytes | None = None) -> dict[str, Any]:
        raise NotImplementedError

    async def interpret_text(self, text: str) -> DraftEvent:
        payload = await asyncio.to_thread(self._read, text_prompt(text, self._today()))
        draft = draft_from_payload(payload)
        logger.info("Text read: title=%r date=%s time=%s", draft.title, draft.date, draft.time or "all-day")
        return draft

    async def interpret_image(self, image_bytes: bytes) -> DraftEvent:
        payload = await asyncio.to_thread(self._read, image_prompt(self._today()), image_bytes)
        draft = draft_from_payload(payload)
        logger.info("Image read: title=%r date=%s time=%s", draft.title, draft.date, draft.time or "all-day")
        return draft

    async def interpret_frames(self, frames: list[MediaFrame]) -> DraftEvent:
        """Read every frame concurrently and combine the readings."""
        if not frames:
            raise InterpretationError("No frames to interpret")
        today = self._today()
        total = len(frames)
        logger.info("Analysing %d video frames", total)

        async def _one(index: int, frame: MediaFrame) -> dict[str, Any] | None:
            try:
                return await asyncio.to_thread(self._read, frame_prompt(index, total, today), frame.image_bytes)
            except InterpretationError as exc:
                logger.warning("Frame %d/%d read failed: %s", index, total, exc)
                return None

        results = await asyncio.gather(*(_one(i, f) for i, f in enumerate(frames, start=1)))
        readings = [r for r in results if r is not None]
        if not readings:
            raise InterpretationError("Every frame read failed")
        return draft_from_payload(combine_frame_readings(readings))


# Tool definition for Claude structured output
RECORD_EVENT_TOOL: dict[str, Any] = {
    "name": "record_event",
    "description": (
        "Record the event found in the input. Call this exactly once; use null for any field that is not shown."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "title": {"type": ["string", "null"], "description": "Event title or name."},
            "date": {"type": ["string", "null"], "description": "Event date as YYYY-MM-DD."},
            "time": {"type": ["string", "null"], "description": "Start time as HH:MM:SS, null for all-day."},
            "endTime": {"type": ["string", "null"], "description": "End time as HH:MM:SS. Never a date."},
            "location": {"type": ["string", "null"], "description": "Venue, address or city."},
            "description": {"type": ["string", "null"], "description": "Summary in 25 words or less."},
            "eventType": {
                "type": ["string", "null"],
                "enum": ["in-person", "online", "hybrid", None],
                "description": "How attendees take part.",
            },
            "venueType": {
                "type": ["string", "null"],
                "enum": ["public", "private", None],
                "description": "Whether the venue is open to the public.",
            },
            "text": {"type": ["string", "null"], "description": "All text visible in a video frame."},
            "hasEventInfo": {"type": "boolean", "description": "Whether any event information was found."},
        },
        "required": ["title", "date", "hasEventInfo"],
    },
}


class ClaudeInterpreter(_PromptedInterpreter):
    """Anthropic Messages API with a forced ``record_event`` tool call."""

    def __init__(self, api_key: str, model: str, today: Callable[[], date] | None = None) -> None:
        super().__init__(today)
        self.api_key = api_key
        self.model = model

    def _read(self, prompt: str, image_bytes: bytes | None = None) -> dict[str, Any]:
        if not self.api_key:
            raise InterpretationError("ANTHROPIC_API_KEY not configured")
        client = Anthropic(api_key=self.api_key)

        content: list[dict[str, Any]] = []
        if image_bytes is not None:
            content.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": sniff_media_type(image_bytes),
                        "data": base64.standard_b64encode(image_bytes).decode("ascii"),
                    },
                }
            )
        content.append({"type": "text", "text": prompt})

        try:
            response = client.messages.create(
                model=self.model,
                max_tokens=1024,
                system=SYSTEM_PROMPT,
                tools=[RECORD_EVENT_TOOL],
                tool_choice={"type": "tool", "name": "record_event"},
                messages=[{"role": "user", "content": content}],
            )
        except APIError as exc:
            raise InterpretationError(f"LLM unavailable: {exc}") from exc

        return _parse_tool_response(response)


def _parse_tool_response(response: Any) -> dict[str, Any]:
    """Return the ``record_event`` tool input from a Claude response."""
    for block in response.content:
        if block.type != "tool_use":
            continue
        if block.name != "record_event":
            continue

        data = block.input
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as exc:
                raise InterpretationError(f"Malformed tool input: {exc}") from exc
        if isinstance(data, dict):
            return data
    raise InterpretationError("Claude response carried no record_event call")


class GeminiInterpreter(_PromptedInterpreter):
    """Google Gemini with JSON returned in the response text."""

    def __init__(self, api_key: str, model: str = "gemini-2.0-flash", today: Callable[[], date] | None = None) -> None:
        super().__init__(today)
        self.api_key = api_key
        self.model = model

    def _read(self, prompt: str, image_bytes: bytes | None = None) -> dict[str, Any]:
        if not self.api_key:
            raise InterpretationError("GEMINI_API_KEY not configured")

        import google.generativeai as genai

        genai.configure(api_key=self.api_key)  # type: ignore[attr-defined]
        model = genai.GenerativeModel(self.model)  # type: ignore[attr-defined]

        parts: list[Any] = [prompt]
        if image_bytes is not None:
            parts.append({"mime_type": sniff_media_type(image_bytes), "data": image_bytes})
        try:
            response = model.generate_content(parts)
            text = response.text
        except Exception as exc:
            raise InterpretationError(f"Gemini request failed: {exc}") from exc
        return parse_json_payload(text)


def build_interpreter(cfg: Settings | None = None) -> ClaudeInterpreter | GeminiInterpreter:
    """Construct the interpreter selected by ``interpreter_provider``."""
    cfg = cfg or settings
    provider = InterpreterProvider(cfg.interpreter_provider)
    if provider is InterpreterProvider.GEMINI:
        return GeminiInterpreter(cfg.gemini_api_key, cfg.gemini_model)
    return ClaudeInterpreter(cfg.anthropic_api_key, cfg.llm_model)
