"""Race an awaitable against a deadline and report a tagged outcome.

Every bounded call in the pipeline goes through ``run_with_deadline``: frame
grabs, the frame batch, transcription chunks and each fusion track.  Losing
the race cancels the wait; work pushed to a thread keeps running in the
background but its result is discarded.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StageStatus(str, Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StageOutcome(Generic[T]):
    """Result of one deadline-bounded stage."""

    label: str
    status: StageStatus
    value: T | None = None
    error: BaseException | None = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is StageStatus.COMPLETED

    def value_or(self, default: T) -> T:
        if self.status is StageStatus.COMPLETED and self.value is not None:
            return self.value
        return default

    def summary(self) -> dict[str, Any]:
        """JSON-safe shape for diagnostics."""
        out: dict[str, Any] = {"status": self.status.value, "elapsed": round(self.elapsed, 3)}
        if self.error is not None:
            out["error"] = str(self.error) or type(self.error).__name__
        return out

    @classmethod
    def skipped(cls, label: str) -> StageOutcome[Any]:
        return cls(label=label, status=StageStatus.SKIPPED)


async def run_with_deadline(awaitable: Awaitable[T], timeout: float, label: str = "stage") -> StageOutcome[T]:
    """Await *awaitable* for at most *timeout* seconds.

    Never raises for ordinary failures: exceptions become ``FAILED`` and
    deadline expiry becomes ``TIMED_OUT``.  Cancellation of the caller is
    still propagated.
    """
    started = time.monotonic()
    try:
        value = await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        elapsed = time.monotonic() - started
        logger.warning("%s timed out after %.1fs", label, elapsed)
        return StageOutcome(label=label, status=StageStatus.TIMED_OUT, error=exc, elapsed=elapsed)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        elapsed = time.monotonic() - started
        logger.warning("%s failed: %s", label, exc)
        return StageOutcome(label=label, status=StageStatus.FAILED, error=exc, elapsed=elapsed)
    return StageOutcome(
        label=label,
        status=StageStatus.COMPLETED,
        value=value,
        elapsed=time.monotonic() - started,
    )
