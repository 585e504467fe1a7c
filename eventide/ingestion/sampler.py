"""Front-loaded frame timestamp selection."""

from __future__ import annotations

import math

MAX_FRAMES = 15
EARLY_WINDOW_CAP = 60.0
EARLY_STEP = 10


def sample_timestamps(duration: float, desired_count: int, max_frames: int = MAX_FRAMES) -> list[int]:
    """Pick whole-second timestamps to decode from a clip of *duration* seconds.

    Title cards and date graphics cluster near the start of event videos, so
    the first ``min(60s, 20%)`` is sampled every ten seconds.  Whatever budget
    remains is spread evenly between ``max(early window, 10%)`` and 90% of the
    duration; the trailing 10% (credits, black frames) is never sampled.

    Always returns at least ``[0]``; every value is ``< duration`` when the
    duration is positive.
    """
    if not duration or duration <= 0 or math.isnan(duration):
        return [0]

    timestamps: list[int] = [0]

    early_window = min(EARLY_WINDOW_CAP, duration * 0.2)
    t = 5
    while t < early_window:
        timestamps.append(t)
        t += EARLY_STEP

    remaining = desired_count - len(timestamps)
    if remaining > 0:
        start = max(early_window, duration * 0.1)
        end = duration * 0.9
        interval = (end - start) / (remaining + 1)
        for i in range(1, remaining + 1):
            timestamps.append(math.floor(start + interval * i))

    unique = sorted({ts for ts in timestamps if 0 <= ts < duration})
    return unique[:max_frames]
