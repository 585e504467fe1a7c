"""Async wrappers around the ffmpeg/ffprobe executables.

Every call runs as a subprocess under a hard timeout; a process that loses its
deadline (or whose awaiting task is cancelled) is killed so no orphaned
decoders accumulate.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
from pathlib import Path

from eventide.config import settings
from eventide.errors import MediaToolError

logger = logging.getLogger(__name__)

JPEG_MAGIC = b"\xff\xd8"


def ffmpeg_binary() -> str:
    """Resolve the ffmpeg executable (settings override, then PATH)."""
    return settings.ffmpeg_path or shutil.which("ffmpeg") or "ffmpeg"


def ffprobe_binary() -> str:
    """Resolve the ffprobe executable (settings override, then PATH)."""
    return settings.ffprobe_path or shutil.which("ffprobe") or "ffprobe"


async def run_tool(args: list[str], timeout: float) -> bytes:
    """Run *args* and return stdout.

    Raises:
        MediaToolError: non-zero exit, missing executable, or timeout.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise MediaToolError(f"{args[0]} not found. Install ffmpeg and make sure it is on PATH.") from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        _kill(proc)
        raise MediaToolError(f"{Path(args[0]).name} timed out after {timeout:.0f}s") from exc
    except asyncio.CancelledError:
        _kill(proc)
        raise

    if proc.returncode != 0:
        detail = stderr.decode(errors="ignore").strip()[:200]
        raise MediaToolError(f"{Path(args[0]).name} failed ({proc.returncode}): {detail}")
    return stdout


def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass


async def probe_duration(source: str | Path, timeout: float = 30.0) -> float:
    """Return the container duration in seconds (0.0 when ffprobe reports none)."""
    out = await run_tool(
        [
            ffprobe_binary(),
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-print_format",
            "json",
            str(source),
        ],
        timeout=timeout,
    )
    try:
        data = json.loads(out)
        return float(data.get("format", {}).get("duration") or 0.0)
    except (json.JSONDecodeError, ValueError) as exc:
        raise MediaToolError(f"Error parsing ffprobe output: {exc}") from exc


async def grab_frame(source: str | Path, timestamp: float, timeout: float) -> bytes:
    """Decode the single frame at *timestamp* and return it as JPEG bytes.

    Output goes through ``image2pipe`` so no per-frame file touches disk.
    """
    out = await run_tool(
        [
            ffmpeg_binary(),
            "-hide_banner",
            "-loglevel",
            "error",
            "-ss",
            f"{timestamp:.3f}",
            "-i",
            str(source),
            "-frames:v",
            "1",
            "-f",
            "image2pipe",
            "-vcodec",
            "mjpeg",
            "pipe:1",
        ],
        timeout=timeout,
    )
    if not out.startswith(JPEG_MAGIC):
        raise MediaToolError(f"No frame decoded at {timestamp}s")
    return out


async def extract_audio(
    source: str | Path,
    output: Path,
    timeout: float,
    max_seconds: float | None = None,
    start: float | None = None,
) -> Path:
    """Write mono 16 kHz PCM WAV from *source* to *output*.

    ``start``/``max_seconds`` select a window; used both for the bounded
    first-N-seconds track and for transcription chunks.
    """
    args = [ffmpeg_binary(), "-y", "-hide_banner", "-loglevel", "error"]
    if start is not None:
        args += ["-ss", f"{start:.3f}"]
    args += ["-i", str(source)]
    if max_seconds is not None:
        args += ["-t", f"{max_seconds:.3f}"]
    args += ["-vn", "-ac", "1", "-ar", "16000", "-acodec", "pcm_s16le", str(output)]

    await run_tool(args, timeout=timeout)
    if not output.exists() or output.stat().st_size == 0:
        raise MediaToolError("Audio file was not created")
    return output
