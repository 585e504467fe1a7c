"""Scratch-file namespace shared by every extraction track.

Names embed the artefact kind plus a millisecond timestamp and a random
suffix, so concurrent tracks never collide.  Whoever allocates a path is the
only party that releases it.
"""

from __future__ import annotations

import logging
import tempfile
import time
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)


class ScratchSpace:
    """A directory of short-lived media artefacts."""

    def __init__(self, root: str | Path | None = None) -> None:
        if root:
            self.root = Path(root)
        else:
            self.root = Path(tempfile.gettempdir()) / "eventide"
        self.root.mkdir(parents=True, exist_ok=True)

    def allocate(self, kind: str, suffix: str = "") -> Path:
        """Return a fresh, unused path such as ``audio-1712345678901-3fa2c1d0.wav``."""
        stamp = int(time.time() * 1000)
        return self.root / f"{kind}-{stamp}-{uuid.uuid4().hex[:8]}{suffix}"

    def release(self, path: str | Path) -> bool:
        """Delete *path* if it exists.  Returns True when a file was removed."""
        target = Path(path)
        try:
            target.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("Could not delete scratch file %s: %s", target, exc)
            return False

    def release_matching(self, stem: str) -> int:
        """Delete every file whose name starts with *stem* (yt-dlp may pick the extension)."""
        removed = 0
        for candidate in self.root.glob(f"{stem}*"):
            if candidate.is_file() and self.release(candidate):
                removed += 1
        return removed

    def files(self) -> list[Path]:
        """List artefacts currently present in the namespace."""
        return sorted(p for p in self.root.iterdir() if p.is_file())
