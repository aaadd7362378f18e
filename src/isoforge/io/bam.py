"""BAM file handling for long-read and short-read alignments.

This module turns pysam alignment records into the narrow record types
used by the collapsing engine:

- Tagged long reads (cell barcode, UMI, gene, isoform, read count) with
  their exon block structure derived from the CIGAR string
- Short-read splice junction counts used for junction validation

Features:
    - Single forward pass over the file, no index required
    - Exon blocks split on CIGAR 'N' only (deletions stay inside a block)
    - Junction counts from BAM or from a junction BED file

Example:
    >>> from isoforge.io.bam import iter_tagged_reads, TagNames
    >>> for read in iter_tagged_reads("molecules.bam", TagNames()):
    ...     print(read.cell, read.umi, read.gene, read.blocks)
"""

from __future__ import annotations

import logging
from collections import defaultdict
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterator, Mapping, NamedTuple

import pysam

from isoforge.isoforms.structure import Blocks

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

# CIGAR operations
CIGAR_M = 0  # Match or mismatch
CIGAR_I = 1  # Insertion
CIGAR_D = 2  # Deletion
CIGAR_N = 3  # Skipped region (intron)
CIGAR_S = 4  # Soft clip
CIGAR_H = 5  # Hard clip
CIGAR_P = 6  # Padding
CIGAR_EQ = 7  # Sequence match
CIGAR_X = 8  # Sequence mismatch

REFERENCE_CONSUMING = {CIGAR_M, CIGAR_D, CIGAR_EQ, CIGAR_X}


# =============================================================================
# Data Structures
# =============================================================================


class TagNames(NamedTuple):
    """BAM tag names carrying the per-read annotations."""

    cell: str = "BC"
    umi: str = "U8"
    gene: str = "IG"
    isoform: str = "IT"
    read_count: str = "RN"


class ReadRecord(NamedTuple):
    """A tagged long-read alignment.

    Attributes:
        name: Read name.
        seqid: Chromosome/contig identifier.
        strand: Alignment strand (+ or -).
        blocks: Exon blocks (0-based, half-open).
        cell: Cell barcode tag, None if absent.
        umi: UMI tag, None if absent.
        gene: Gene name tag, None if absent.
        isoform: Provisional isoform tag, None if absent.
        read_count: Reads represented by this record (RN tag, default 1).
        sequence: Read sequence in reference orientation, if requested.
    """

    name: str
    seqid: str
    strand: str
    blocks: Blocks
    cell: str | None
    umi: str | None
    gene: str | None
    isoform: str | None = None
    read_count: int = 1
    sequence: str | None = None


# =============================================================================
# CIGAR Handling
# =============================================================================


def blocks_from_cigar(
    reference_start: int,
    cigartuples: list[tuple[int, int]] | None,
) -> Blocks:
    """Derive exon blocks from a CIGAR.

    Match, mismatch and deletion operations extend the current block;
    an 'N' operation closes it and opens the next one after the intron.

    Args:
        reference_start: 0-based alignment start.
        cigartuples: pysam CIGAR tuples (operation, length).

    Returns:
        Tuple of (start, end) exon blocks.
    """
    blocks = []
    ref_pos = reference_start
    block_start = reference_start

    for op, length in cigartuples or []:
        if op in REFERENCE_CONSUMING:
            ref_pos += length
        elif op == CIGAR_N:
            if ref_pos > block_start:
                blocks.append((block_start, ref_pos))
            ref_pos += length
            block_start = ref_pos

    if ref_pos > block_start:
        blocks.append((block_start, ref_pos))

    return tuple(blocks)


def junctions_from_cigar(
    reference_start: int,
    cigartuples: list[tuple[int, int]] | None,
) -> list[tuple[int, int]]:
    """Get (intron_start, intron_end) pairs from a CIGAR."""
    junctions = []
    ref_pos = reference_start

    for op, length in cigartuples or []:
        if op == CIGAR_N:
            junctions.append((ref_pos, ref_pos + length))
            ref_pos += length
        elif op in REFERENCE_CONSUMING:
            ref_pos += length

    return junctions


def _get_tag(read: pysam.AlignedSegment, tag: str) -> Any:
    return read.get_tag(tag) if read.has_tag(tag) else None


def read_from_segment(
    read: pysam.AlignedSegment,
    tags: TagNames,
    with_sequence: bool = False,
) -> ReadRecord:
    """Convert a pysam alignment into a ReadRecord.

    Args:
        read: Aligned segment.
        tags: Tag names to extract.
        with_sequence: Also keep the query sequence.

    Returns:
        ReadRecord; missing tags are None, a missing read count is 1.
    """
    read_count = _get_tag(read, tags.read_count)
    try:
        read_count = int(read_count) if read_count is not None else 1
    except (TypeError, ValueError):
        read_count = 1

    def as_str(value: Any) -> str | None:
        return None if value is None else str(value)

    return ReadRecord(
        name=read.query_name,
        seqid=read.reference_name,
        strand="-" if read.is_reverse else "+",
        blocks=blocks_from_cigar(read.reference_start, read.cigartuples),
        cell=as_str(_get_tag(read, tags.cell)),
        umi=as_str(_get_tag(read, tags.umi)),
        gene=as_str(_get_tag(read, tags.gene)),
        isoform=as_str(_get_tag(read, tags.isoform)),
        read_count=max(1, read_count),
        sequence=read.query_sequence if with_sequence else None,
    )


def _is_primary(read: pysam.AlignedSegment) -> bool:
    return not (read.is_unmapped or read.is_secondary or read.is_supplementary)


def iter_tagged_reads(
    bam_path: Path | str,
    tags: TagNames | None = None,
    with_sequence: bool = False,
) -> Iterator[ReadRecord]:
    """Stream tagged reads from a BAM file.

    The file is read once, front to back. Unmapped, secondary and
    supplementary alignments are skipped.

    Args:
        bam_path: Path to BAM/SAM file.
        tags: Tag names (defaults: BC, U8, IG, IT, RN).
        with_sequence: Keep query sequences (needed for consensus).

    Yields:
        ReadRecord objects.

    Raises:
        FileNotFoundError: If the BAM file doesn't exist.
    """
    path = Path(bam_path)
    if not path.exists():
        raise FileNotFoundError(f"BAM file not found: {path}")

    tags = tags or TagNames()
    with pysam.AlignmentFile(str(path), "rb", check_sq=False) as bam:
        logger.info(f"Opened BAM file: {path.name}")
        for read in bam.fetch(until_eof=True):
            if not _is_primary(read):
                continue
            yield read_from_segment(read, tags, with_sequence=with_sequence)


# =============================================================================
# Junction Extractor
# =============================================================================


class JunctionIndex:
    """Read-only short-read junction counts.

    Example:
        >>> index = JunctionIndex({("chr1", 200, 300): 4})
        >>> index.count("chr1", 200, 300)
        4
    """

    def __init__(self, counts: Mapping[tuple[str, int, int], int]) -> None:
        self._counts = MappingProxyType(dict(counts))

    def count(self, seqid: str, start: int, end: int) -> int:
        """Reads crossing exactly this intron."""
        return self._counts.get((seqid, start, end), 0)

    def __len__(self) -> int:
        return len(self._counts)

    @property
    def total_reads(self) -> int:
        """Sum of all junction read counts."""
        return sum(self._counts.values())


class JunctionExtractor:
    """Count splice junctions in a short-read BAM file.

    Identifies junctions from reads with CIGAR 'N' operations and counts
    the supporting reads per exact intron.

    Attributes:
        path: Path to the BAM file.
        min_mapq: Minimum mapping quality.

    Example:
        >>> with JunctionExtractor("short.bam") as extractor:
        ...     index = extractor.count_junctions()
    """

    def __init__(self, bam_path: Path | str, min_mapq: int = 0) -> None:
        """Initialize the junction extractor.

        Args:
            bam_path: Path to BAM file.
            min_mapq: Minimum mapping quality.

        Raises:
            FileNotFoundError: If BAM file doesn't exist.
        """
        self.path = Path(bam_path)
        self.min_mapq = min_mapq

        if not self.path.exists():
            raise FileNotFoundError(f"BAM file not found: {self.path}")

        self._bam: pysam.AlignmentFile | None = None
        self._open()

    def _open(self) -> None:
        """Open the BAM file."""
        self._bam = pysam.AlignmentFile(str(self.path), "rb", check_sq=False)
        logger.info(f"Opened BAM file: {self.path.name}")

    def __enter__(self) -> JunctionExtractor:
        """Context manager entry."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.close()

    def close(self) -> None:
        """Close the BAM file."""
        if self._bam is not None:
            self._bam.close()
            self._bam = None

    def count_junctions(self) -> JunctionIndex:
        """Count reads per exact junction over the whole file.

        Returns:
            JunctionIndex keyed by (seqid, intron_start, intron_end).
        """
        if self._bam is None:
            raise RuntimeError("BAM file not open")

        counts: dict[tuple[str, int, int], int] = defaultdict(int)
        n_reads = 0

        for read in self._bam.fetch(until_eof=True):
            if not _is_primary(read):
                continue
            if read.mapping_quality < self.min_mapq:
                continue

            n_reads += 1
            for start, end in junctions_from_cigar(read.reference_start, read.cigartuples):
                counts[(read.reference_name, start, end)] += 1

        logger.info(f"Counted {len(counts)} junctions from {n_reads} short reads")
        return JunctionIndex(counts)

    @staticmethod
    def from_bed(bed_path: Path | str) -> JunctionIndex:
        """Load junction counts from a BED file.

        Column 7 holds the read count; without it the BED score is used.

        Args:
            bed_path: Path to BED file.

        Returns:
            JunctionIndex with the summed counts.
        """
        counts: dict[tuple[str, int, int], int] = defaultdict(int)
        with open(bed_path) as f:
            for line in f:
                if line.startswith(("#", "track", "browser")) or not line.strip():
                    continue

                parts = line.strip().split("\t")
                if len(parts) < 3:
                    continue

                try:
                    start = int(parts[1])
                    end = int(parts[2])
                    if len(parts) > 6:
                        read_count = int(parts[6])
                    elif len(parts) > 4:
                        read_count = int(float(parts[4]))
                    else:
                        read_count = 1
                except ValueError:
                    logger.warning(f"Skipping malformed junction line: {line.strip()[:50]}")
                    continue

                counts[(parts[0], start, end)] += read_count

        return JunctionIndex(counts)
