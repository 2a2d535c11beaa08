"""Resolve which time interval contains a playback position."""

from __future__ import annotations

import math
from collections.abc import Sequence


def locate(intervals: Sequence[tuple[float, float]], t: float) -> int | None:
    """
    Return the index of the first interval with ``start <= t <= end``.

    Intervals are expected sorted ascending by start; they are not re-sorted.
    Both bounds are inclusive, so where one interval ends exactly where the
    next begins the earlier interval wins.
    """
    for index, (start, end) in enumerate(intervals):
        if start <= t <= end:
            return index
    return None


def format_timestamp(seconds: float) -> str:
    """Render seconds as ``m:ss`` (e.g. 75.9 -> "1:15")."""
    total = max(0, math.floor(seconds))
    minutes, secs = divmod(total, 60)
    return f"{minutes}:{secs:02d}"
