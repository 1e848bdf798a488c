"""
Active-caption lookup for a playback timestamp.

Tie-break policy: when captions overlap, the one stored first wins. Intervals
are inclusive on both ends, so on a boundary shared by two adjacent captions
the earlier one is returned.
"""

from bisect import bisect_left, bisect_right
from collections.abc import Sequence
from itertools import accumulate

from .models import Caption


def find_active(timestamp: float, captions: Sequence[Caption]) -> Caption | None:
    """Return the first caption in stored order with ``start <= timestamp <= end``."""
    for cap in captions:
        if cap.contains(timestamp):
            return cap
    return None


class CaptionIndex:
    """Logarithmic lookup over a start-sorted caption sequence.

    ``starts`` bounds the candidates to the prefix with ``start <= t``; the
    running maximum of ``end`` is non-decreasing, so the first index where it
    reaches ``t`` is the first caption in stored order that still covers
    ``t``. Results are identical to :func:`find_active`.
    """

    def __init__(self, captions: Sequence[Caption]) -> None:
        self._captions = tuple(captions)
        self._starts = [c.start for c in self._captions]
        self._sorted = all(a <= b for a, b in zip(self._starts, self._starts[1:]))
        self._max_ends = list(accumulate((c.end for c in self._captions), max))

    def __len__(self) -> int:
        return len(self._captions)

    @property
    def captions(self) -> tuple[Caption, ...]:
        return self._captions

    def find(self, timestamp: float) -> Caption | None:
        if not self._sorted:
            return find_active(timestamp, self._captions)
        hi = bisect_right(self._starts, timestamp)
        if hi == 0:
            return None
        idx = bisect_left(self._max_ends, timestamp, 0, hi)
        if idx >= hi:
            return None
        return self._captions[idx]
