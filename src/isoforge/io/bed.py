"""BED file handling for CAGE peaks and polyA sites.

Example:
    >>> from isoforge.io.bed import read_bed
    >>> records = read_bed("cage_peaks.bed")
    >>> records[0].seqid, records[0].start, records[0].end
"""

from __future__ import annotations

import gzip
import logging
from pathlib import Path
from typing import Iterator, NamedTuple

logger = logging.getLogger(__name__)


class BedRecord(NamedTuple):
    """A BED6 interval.

    Attributes:
        seqid: Chromosome/contig identifier.
        start: Start (0-based, inclusive).
        end: End (0-based, exclusive).
        name: Feature name.
        score: Feature score.
        strand: Strand (+, - or .).
    """

    seqid: str
    start: int
    end: int
    name: str = "."
    score: float = 0.0
    strand: str = "."


def parse_bed_line(line: str) -> BedRecord:
    """Parse a BED3-BED6 line.

    Raises:
        ValueError: If coordinates are missing, not integers, or start >= end.
    """
    parts = line.rstrip("\n").split("\t")
    if len(parts) < 3:
        raise ValueError(f"Expected at least 3 columns, got {len(parts)}")

    start = int(parts[1])
    end = int(parts[2])
    if start < 0 or start >= end:
        raise ValueError(f"Invalid interval {start}-{end}")

    name = parts[3] if len(parts) > 3 else "."
    score = float(parts[4]) if len(parts) > 4 and parts[4] not in ("", ".") else 0.0
    strand = parts[5] if len(parts) > 5 and parts[5] in ("+", "-") else "."

    return BedRecord(parts[0], start, end, name, score, strand)


def iter_bed(path: Path | str) -> Iterator[BedRecord]:
    """Iterate over BED records, skipping malformed lines.

    Args:
        path: BED file (optionally gzipped).

    Yields:
        BedRecord objects.

    Raises:
        FileNotFoundError: If the file doesn't exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"BED file not found: {path}")

    opener = gzip.open if path.suffix == ".gz" else open
    n_malformed = 0
    with opener(path, "rt") as f:
        for line_no, line in enumerate(f, 1):
            if not line.strip() or line.startswith(("#", "track", "browser")):
                continue
            try:
                yield parse_bed_line(line)
            except ValueError as e:
                n_malformed += 1
                logger.warning(f"Skipping malformed BED line {line_no} in {path.name}: {e}")

    if n_malformed:
        logger.info(f"{path.name}: skipped {n_malformed} malformed lines")


def read_bed(path: Path | str) -> list[BedRecord]:
    """Read all records of a BED file."""
    return list(iter_bed(path))
