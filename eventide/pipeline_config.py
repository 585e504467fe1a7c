"""Pipeline configuration: strategy enums and the PipelineConfig dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class InputKind(str, Enum):
    """Kinds of raw input accepted by the extraction pipeline."""

    IMAGE = "image"
    URL = "url"
    TEXT = "text"


class SourceTag(str, Enum):
    """Which extraction track produced a candidate."""

    FRAME = "frame"
    TRANSCRIPT = "transcript"
    METADATA = "metadata"
    COMBINED = "combined"


class IngestStrategy(str, Enum):
    """How decodable media is obtained for a URL."""

    STREAM = "stream"
    DOWNLOAD = "download"
    DIRECT = "direct"


class InterpreterProvider(str, Enum):
    """Available content interpreter backends."""

    CLAUDE = "claude"
    GEMINI = "gemini"


class TranscriptionProvider(str, Enum):
    """Available speech-to-text backends."""

    ASSEMBLYAI = "assemblyai"
    OPENAI = "openai"


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable budgets for one extraction run.

    Every timeout is in seconds.  Defaults mirror the production tuning:
    front-loaded frame sampling, a two-minute audio window, and per-track
    deadlines sized so a video request finishes inside roughly a minute.
    """

    # Frame sampling
    frame_count: int = 5
    max_frames: int = 15

    # Ingest
    frame_timeout: float = 10.0
    frame_batch_timeout: float = 30.0
    resolve_timeout: float = 20.0
    download_timeout: float = 60.0
    audio_window_seconds: int = 120
    max_duration_seconds: float = 600.0
    max_download_bytes: int = 100 * 1024 * 1024

    # Transcription
    single_shot_max_bytes: int = 10 * 1024 * 1024
    single_shot_timeout: float = 8.0
    chunk_seconds: int = 30
    chunk_timeout: float = 15.0

    # Fusion tracks
    frame_track_timeout: float = 15.0
    transcript_track_timeout: float = 20.0
    metadata_track_timeout: float = 10.0
    text_timeout: float = 15.0
    image_timeout: float = 30.0

    # Misc
    qr_frame_limit: int = 3
    transcript_excerpt_chars: int = 500
