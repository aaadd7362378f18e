"""Exon block structures and tolerance-based comparison.

A block structure is a tuple of ``(start, end)`` exon blocks in 0-based,
half-open coordinates, sorted by start and non-overlapping. Structures are
compared boundary by boundary within a tolerance, never by hashing, so
that small alignment jitter at splice sites does not split an isoform.

Two comparisons are provided:

- ``structures_match``: strict, symmetric. Same exon count and every
  boundary within ``delta``. Used to cluster molecules with each other.
- ``reference_match``: internal boundaries within ``tolerance``, terminal
  boundaries relaxed so that reads truncated inside the first or last exon
  still match the annotated transcript.

Example:
    >>> a = ((100, 200), (300, 400))
    >>> b = ((102, 198), (301, 402))
    >>> structures_match(a, b, delta=2)
    True
    >>> introns(a)
    [(200, 300)]
"""

from __future__ import annotations

from typing import Sequence

Block = tuple[int, int]
Blocks = tuple[Block, ...]


# =============================================================================
# Basic Operations
# =============================================================================


def as_blocks(blocks: Sequence[Sequence[int]]) -> Blocks:
    """Normalize any sequence of pairs into a hashable block tuple."""
    return tuple((int(start), int(end)) for start, end in blocks)


def is_valid_structure(blocks: Sequence[Sequence[int]]) -> bool:
    """Check that a structure is non-empty, sorted and non-overlapping.

    Args:
        blocks: Exon blocks to check.

    Returns:
        True if every block has start < end and blocks are ordered
        without overlap.
    """
    if not blocks:
        return False

    previous_end = None
    for start, end in blocks:
        if start < 0 or start >= end:
            return False
        if previous_end is not None and start < previous_end:
            return False
        previous_end = end

    return True


def boundaries(blocks: Blocks) -> list[int]:
    """Flatten a structure into its ordered boundary coordinates."""
    return [coord for block in blocks for coord in block]


def internal_boundaries(blocks: Blocks) -> list[int]:
    """Boundaries excluding the transcript start and end (splice sites)."""
    return boundaries(blocks)[1:-1]


def introns(blocks: Blocks) -> list[Block]:
    """Get intron coordinates between consecutive blocks.

    Args:
        blocks: Exon structure.

    Returns:
        List of (intron_start, intron_end) tuples.
    """
    return [
        (blocks[i][1], blocks[i + 1][0])
        for i in range(len(blocks) - 1)
    ]


def span(blocks: Blocks) -> Block:
    """Genomic span (first start, last end) of a structure."""
    return blocks[0][0], blocks[-1][1]


def format_blocks(blocks: Blocks) -> str:
    """Format a structure as ``start-end,start-end``."""
    return ",".join(f"{start}-{end}" for start, end in blocks)


def parse_blocks(text: str) -> Blocks:
    """Parse the output of ``format_blocks`` back into blocks."""
    blocks = []
    for item in text.split(","):
        start, end = item.split("-")
        blocks.append((int(start), int(end)))
    return tuple(blocks)


# =============================================================================
# Comparison
# =============================================================================


def structures_match(a: Blocks, b: Blocks, delta: int) -> bool:
    """Strict structural equality within a tolerance.

    Args:
        a: First structure.
        b: Second structure.
        delta: Maximum allowed difference on every boundary.

    Returns:
        True if both have the same exon count and each corresponding
        boundary differs by at most ``delta`` bases.
    """
    if len(a) != len(b):
        return False

    for (a_start, a_end), (b_start, b_end) in zip(a, b):
        if abs(a_start - b_start) > delta or abs(a_end - b_end) > delta:
            return False

    return True


def _start_in_terminal_window(query: Blocks, reference: Blocks, tolerance: int) -> bool:
    ref_start, ref_first_end = reference[0]
    return ref_start - tolerance <= query[0][0] < ref_first_end


def _end_in_terminal_window(query: Blocks, reference: Blocks, tolerance: int) -> bool:
    ref_last_start, ref_end = reference[-1]
    return ref_last_start < query[-1][1] <= ref_end + tolerance


def reference_match(query: Blocks, reference: Blocks, tolerance: int) -> bool:
    """Compare a structure against an annotated transcript.

    Internal boundaries must agree within ``tolerance``. The transcript
    start may sit anywhere inside the first reference exon (down to
    ``tolerance`` bases upstream of it), and likewise for the end in the
    last exon, so truncated reads are not called novel.

    Args:
        query: Structure observed from reads.
        reference: Annotated transcript structure.
        tolerance: Maximum boundary difference in bases.

    Returns:
        True if the query is compatible with the reference transcript.
    """
    if len(query) != len(reference):
        return False

    for q, r in zip(internal_boundaries(query), internal_boundaries(reference)):
        if abs(q - r) > tolerance:
            return False

    return (
        _start_in_terminal_window(query, reference, tolerance)
        and _end_in_terminal_window(query, reference, tolerance)
    )


def terminus_altered(query: Blocks, reference: Blocks, tolerance: int) -> bool:
    """Whether either transcript end falls outside the relaxed window."""
    return not (
        _start_in_terminal_window(query, reference, tolerance)
        and _end_in_terminal_window(query, reference, tolerance)
    )


def novel_splice_sites(query: Blocks, reference: Blocks, tolerance: int) -> list[int]:
    """Find splice sites of ``query`` absent from ``reference``.

    Each internal boundary of the query is looked up among all internal
    boundaries of the reference, irrespective of exon index, so exon
    skipping alone does not produce new splice sites.

    Args:
        query: Observed structure.
        reference: Reference structure.
        tolerance: Maximum distance to count a site as known.

    Returns:
        Sorted list of unmatched splice site coordinates.
    """
    known = internal_boundaries(reference)
    return sorted(
        site
        for site in internal_boundaries(query)
        if not any(abs(site - k) <= tolerance for k in known)
    )


def structure_distance(query: Blocks, reference: Blocks) -> tuple[int, int]:
    """Sort key ranking how close a reference is to a query.

    Returns:
        (exon count difference, summed boundary difference over the
        shared boundaries).
    """
    count_diff = abs(len(query) - len(reference))
    if count_diff == 0:
        shift = sum(abs(q - r) for q, r in zip(boundaries(query), boundaries(reference)))
    else:
        q_start, q_end = span(query)
        r_start, r_end = span(reference)
        shift = abs(q_start - r_start) + abs(q_end - r_end)
    return count_diff, shift
