"""Evidence sources for isoform validation.

Three sources are combined to validate an isoform:

- CAGE peaks supporting the transcription start site
- PolyA sites supporting the transcription end site
- Short-read splice junctions supporting each intron

All sources are loaded once into read-only indices and shared by every
validation call.

Example:
    >>> from isoforge.isoforms.evidence import load_evidence
    >>> evidence = load_evidence("cage.bed", "polya.bed", "short_reads.bam")
    >>> len(evidence.cage), len(evidence.junctions)
"""

from __future__ import annotations

import logging
from pathlib import Path

import attrs

from isoforge.io.bam import JunctionExtractor, JunctionIndex
from isoforge.io.bed import read_bed
from isoforge.utils.intervals import IntervalIndex

logger = logging.getLogger(__name__)

SHORT_READ_ALIGNMENT_SUFFIXES = (".bam", ".cram", ".sam")


@attrs.frozen(slots=True)
class EvidenceSources:
    """Read-only evidence used by the validator.

    Attributes:
        cage: CAGE peak intervals.
        polya: PolyA site intervals.
        junctions: Short-read junction counts.
    """

    cage: IntervalIndex
    polya: IntervalIndex
    junctions: JunctionIndex


def load_interval_index(path: Path | str) -> IntervalIndex:
    """Load a BED file into an interval index."""
    path = Path(path)
    index = IntervalIndex.from_records(read_bed(path))
    logger.info(f"Loaded {len(index)} intervals from {path.name}")
    return index


def load_junctions(path: Path | str) -> JunctionIndex:
    """Load short-read junction counts.

    Args:
        path: Short-read alignments (BAM/CRAM/SAM) or a junction BED file.

    Returns:
        Junction index keyed by (seqid, intron_start, intron_end).

    Raises:
        FileNotFoundError: If the file doesn't exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Short-read evidence not found: {path}")

    if path.suffix.lower() in SHORT_READ_ALIGNMENT_SUFFIXES:
        with JunctionExtractor(path) as extractor:
            junctions = extractor.count_junctions()
    else:
        junctions = JunctionExtractor.from_bed(path)

    logger.info(f"Loaded {len(junctions)} junctions ({junctions.total_reads} reads) from {path.name}")
    return junctions


def load_evidence(
    cage: Path | str,
    polya: Path | str,
    short: Path | str,
) -> EvidenceSources:
    """Load all three validation sources.

    Args:
        cage: CAGE peak BED file.
        polya: PolyA site BED file.
        short: Short-read alignments or junction BED file.

    Returns:
        EvidenceSources bundle.
    """
    return EvidenceSources(
        cage=load_interval_index(cage),
        polya=load_interval_index(polya),
        junctions=load_junctions(short),
    )
