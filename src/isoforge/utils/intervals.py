"""Genomic interval operations.

This module provides the interval index used to query CAGE peaks and
polyA sites during validation:

- Distance from a position to the nearest interval
- Per-scaffold sorted arrays for proximity queries
- Strand-aware matching ('.' intervals match either strand)

Example:
    >>> from isoforge.utils.intervals import IntervalIndex
    >>> index = IntervalIndex.from_records(records)
    >>> index.is_near("chr1", 1000, cutoff=50, strand="+")
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING, Iterable, NamedTuple

import numpy as np

if TYPE_CHECKING:
    from isoforge.io.bed import BedRecord

# =============================================================================
# Data Structures
# =============================================================================


STRAND_CODES = {"+": 1, "-": -1}


class _ScaffoldArrays(NamedTuple):
    starts: np.ndarray
    ends: np.ndarray
    strands: np.ndarray
    max_length: int


# =============================================================================
# Interval Index
# =============================================================================


class IntervalIndex:
    """Read-only proximity index over genomic intervals.

    Intervals are stored per scaffold as numpy arrays sorted by start.
    A query only scans intervals whose start lies within the cutoff plus
    the longest interval length of the query position.

    Example:
        >>> index = IntervalIndex([("chr1", 100, 110, "+")])
        >>> index.is_near("chr1", 150, cutoff=50)
        True
        >>> index.is_near("chr1", 150, cutoff=20)
        False
    """

    def __init__(self, intervals: Iterable[tuple[str, int, int, str]] = ()) -> None:
        """Build the index.

        Args:
            intervals: (seqid, start, end, strand) tuples.
        """
        grouped: dict[str, list[tuple[int, int, int]]] = defaultdict(list)
        for seqid, start, end, strand in intervals:
            grouped[seqid].append((start, end, STRAND_CODES.get(strand, 0)))

        self._scaffolds: dict[str, _ScaffoldArrays] = {}
        for seqid, rows in grouped.items():
            arr = np.array(sorted(rows), dtype=np.int64)
            starts = arr[:, 0]
            ends = arr[:, 1]
            self._scaffolds[seqid] = _ScaffoldArrays(
                starts=starts,
                ends=ends,
                strands=arr[:, 2],
                max_length=int(np.max(ends - starts)),
            )
            for a in (starts, ends):
                a.setflags(write=False)

    @classmethod
    def from_records(cls, records: Iterable["BedRecord"]) -> IntervalIndex:
        """Build from BED records."""
        return cls((r.seqid, r.start, r.end, r.strand) for r in records)

    def __len__(self) -> int:
        return sum(len(s.starts) for s in self._scaffolds.values())

    @property
    def seqids(self) -> list[str]:
        """Scaffolds with at least one interval."""
        return sorted(self._scaffolds)

    def nearest_distance(
        self,
        seqid: str,
        position: int,
        strand: str | None = None,
        max_distance: int | None = None,
    ) -> int | None:
        """Distance from a position to the nearest compatible interval.

        Args:
            seqid: Scaffold name.
            position: 0-based position.
            strand: Query strand; intervals on the other strand are ignored
                unless their strand is unknown.
            max_distance: Only consider intervals within this distance.

        Returns:
            Smallest distance in bases, or None if no interval qualifies.
        """
        arrays = self._scaffolds.get(seqid)
        if arrays is None:
            return None

        if max_distance is None:
            lo, hi = 0, len(arrays.starts)
        else:
            lo = int(np.searchsorted(arrays.starts, position - max_distance - arrays.max_length, side="left"))
            hi = int(np.searchsorted(arrays.starts, position + max_distance, side="right"))
        if lo >= hi:
            return None

        starts = arrays.starts[lo:hi]
        ends = arrays.ends[lo:hi]
        distances = np.where(
            position < starts,
            starts - position,
            np.where(position >= ends, position - ends + 1, 0),
        )

        code = STRAND_CODES.get(strand or ".", 0)
        if code != 0:
            strand_ok = (arrays.strands[lo:hi] == code) | (arrays.strands[lo:hi] == 0)
            distances = distances[strand_ok]

        if max_distance is not None:
            distances = distances[distances <= max_distance]

        if distances.size == 0:
            return None
        return int(distances.min())

    def is_near(
        self,
        seqid: str,
        position: int,
        cutoff: int,
        strand: str | None = None,
    ) -> bool:
        """Whether any compatible interval lies within ``cutoff`` bases."""
        return self.nearest_distance(seqid, position, strand=strand, max_distance=cutoff) is not None
