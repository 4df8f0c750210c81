"""Immutable representation of the buffered time ranges reported by a host."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field


@dataclass(frozen=True)
class TimeRanges:
    """
    Ordered set of non-overlapping [start, end) time ranges (seconds).

    Mirrors the ``start(i)`` / ``end(i)`` accessors of a host's buffered attribute.
    """

    ranges: tuple[tuple[float, float], ...] = field(default_factory=tuple)

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[float, float]]) -> TimeRanges:
        """Create TimeRanges from (start, end) pairs."""
        return cls(tuple((float(start), float(end)) for start, end in pairs))

    def __len__(self) -> int:
        """Return the number of ranges."""
        return len(self.ranges)

    def __iter__(self) -> Iterator[tuple[float, float]]:
        """Iterate over the (start, end) pairs."""
        return iter(self.ranges)

    def start(self, index: int) -> float:
        """Return the start of the range at index."""
        return self.ranges[index][0]

    def end(self, index: int) -> float:
        """Return the end of the range at index."""
        return self.ranges[index][1]

    def end_containing(self, time: float, gap: float = 0.0) -> float | None:
        """
        Return the end of the range that contains time (if any).

        With a gap, a range starting at most gap seconds after time also counts.
        """
        for start, end in self.ranges:
            if start - gap <= time <= end:
                return end
        return None

    def __repr__(self) -> str:
        """Return a compact representation."""
        pairs = ", ".join(f"[{start:.3f}, {end:.3f})" for start, end in self.ranges)
        return f"TimeRanges({pairs})"
