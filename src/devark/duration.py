"""Active-time accounting for a sequence of timestamped items.

Consecutive gaps of up to 15 minutes count as active time; longer gaps are
idle and excluded. Non-positive gaps (duplicates, clock skew) are ignored.
"""

from collections.abc import Iterable
from datetime import datetime

from .core import DurationResult

ACTIVE_GAP_SECONDS = 15 * 60
MAX_DURATION_SECONDS = 8 * 60 * 60


def calculate_duration(timestamps: Iterable[datetime | None]) -> DurationResult:
    """Return active duration and gap counts for ordered timestamps.

    ``None`` entries are dropped before gaps are computed.
    """
    points = [ts for ts in timestamps if ts is not None]
    if len(points) < 2:
        return DurationResult()

    total = 0.0
    active = 0
    idle = 0
    for prev, cur in zip(points, points[1:]):
        gap = (cur - prev).total_seconds()
        if gap <= 0:
            continue
        if gap <= ACTIVE_GAP_SECONDS:
            total += gap
            active += 1
        else:
            idle += 1

    return DurationResult(
        duration_seconds=int(min(total, MAX_DURATION_SECONDS)),
        active_gaps=active,
        idle_gaps=idle,
    )


def calculate_duration_minutes(timestamps: Iterable[datetime | None]) -> int:
    return calculate_duration(timestamps).duration_seconds // 60
