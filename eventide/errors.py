"""Exception hierarchy for the extraction pipeline."""


class EventideError(Exception):
    """Base exception for all pipeline errors."""

    pass


class IngestError(EventideError):
    """Raised when media cannot be obtained from a source URL.

    Covers unreachable sources, unsupported formats, over-long media and
    runs where not a single frame could be decoded.
    """

    pass


class MediaToolError(IngestError):
    """Raised when an ffmpeg/ffprobe invocation fails or times out."""

    pass


class DecodeError(EventideError):
    """Raised inside the code decoder; never escapes ``decode()``."""

    pass


class TranscriptionError(EventideError):
    """Raised by speech backends; the transcriber degrades it to an empty string."""

    pass


class InterpretationError(EventideError):
    """Raised when the content interpreter cannot produce a draft."""

    pass


class FusionError(EventideError):
    """Raised when no track produced any usable textual or visual signal."""

    pass
