"""refFlat gene model handling.

This module loads the reference transcript catalog from UCSC refFlat
files and writes isoform catalogs back in the same format.

refFlat columns (tab-separated, 0-based half-open exons):
    geneName, name, chrom, strand, txStart, txEnd, cdsStart, cdsEnd,
    exonCount, exonStarts, exonEnds

Features:
    - Per-row validation with MalformedModelError
    - Skip-and-count loading of malformed rows (or strict mode)
    - Approximate structure lookup narrowed by a sorted boundary index
    - refFlat export of isoform clusters

Example:
    >>> from isoforge.io.refflat import ReferenceGeneModel
    >>> model = ReferenceGeneModel.load("refFlat.txt")
    >>> model.lookup_transcript("Actb", ((100, 200), (300, 400)), tolerance=2)
"""

from __future__ import annotations

import bisect
import gzip
import logging
from collections import defaultdict
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Iterator

import attrs

from isoforge.isoforms.structure import (
    Blocks,
    is_valid_structure,
    reference_match,
    structure_distance,
)

if TYPE_CHECKING:
    from isoforge.isoforms.cluster import IsoformCluster

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

REFFLAT_COLUMNS = 11

COL_GENE = 0
COL_NAME = 1
COL_CHROM = 2
COL_STRAND = 3
COL_TX_START = 4
COL_TX_END = 5
COL_CDS_START = 6
COL_CDS_END = 7
COL_EXON_COUNT = 8
COL_EXON_STARTS = 9
COL_EXON_ENDS = 10


class MalformedModelError(ValueError):
    """Raised when a gene model row is structurally invalid."""


# =============================================================================
# Data Models
# =============================================================================


@attrs.frozen(slots=True)
class Transcript:
    """A reference transcript.

    Attributes:
        transcript_id: Transcript identifier (refFlat ``name``).
        gene: Gene symbol (refFlat ``geneName``).
        seqid: Chromosome/contig identifier.
        strand: Strand (+ or -).
        exons: Ordered exon blocks (0-based, half-open).
        cds_start: CDS start (txStart when non-coding).
        cds_end: CDS end (txEnd when non-coding).
    """

    transcript_id: str
    gene: str
    seqid: str
    strand: str
    exons: Blocks
    cds_start: int | None = None
    cds_end: int | None = None

    @property
    def start(self) -> int:
        """Transcript start."""
        return self.exons[0][0]

    @property
    def end(self) -> int:
        """Transcript end (exclusive)."""
        return self.exons[-1][1]

    @property
    def n_exons(self) -> int:
        """Number of exons."""
        return len(self.exons)

    @property
    def index_key(self) -> int:
        """First internal boundary, or the start for single-exon transcripts."""
        return self.exons[0][1] if len(self.exons) > 1 else self.exons[0][0]


# =============================================================================
# Parsing
# =============================================================================


def _parse_coordinate_list(field: str, label: str) -> list[int]:
    try:
        return [int(value) for value in field.strip().rstrip(",").split(",") if value]
    except ValueError as e:
        raise MalformedModelError(f"Non-integer {label}: {field!r}") from e


def parse_refflat_line(line: str) -> Transcript:
    """Parse one refFlat row into a Transcript.

    Args:
        line: Raw tab-separated refFlat line.

    Returns:
        Parsed Transcript.

    Raises:
        MalformedModelError: If fields are missing, coordinates are not
            integers, the exon count disagrees with the coordinate lists,
            or exons are not monotonic.
    """
    parts = line.rstrip("\n").split("\t")
    if len(parts) < REFFLAT_COLUMNS:
        raise MalformedModelError(
            f"Expected {REFFLAT_COLUMNS} columns, got {len(parts)}"
        )

    gene = parts[COL_GENE].strip()
    name = parts[COL_NAME].strip()
    if not gene or not name:
        raise MalformedModelError("Missing gene or transcript name")

    strand = parts[COL_STRAND]
    if strand not in ("+", "-"):
        raise MalformedModelError(f"Invalid strand {strand!r} for {name}")

    try:
        tx_start = int(parts[COL_TX_START])
        tx_end = int(parts[COL_TX_END])
        cds_start = int(parts[COL_CDS_START])
        cds_end = int(parts[COL_CDS_END])
        exon_count = int(parts[COL_EXON_COUNT])
    except ValueError as e:
        raise MalformedModelError(f"Non-integer coordinate in {name}: {e}") from e

    starts = _parse_coordinate_list(parts[COL_EXON_STARTS], "exonStarts")
    ends = _parse_coordinate_list(parts[COL_EXON_ENDS], "exonEnds")

    if not (len(starts) == len(ends) == exon_count) or exon_count == 0:
        raise MalformedModelError(
            f"Exon count mismatch in {name}: exonCount={exon_count}, "
            f"{len(starts)} starts, {len(ends)} ends"
        )

    exons = tuple(zip(starts, ends))
    if not is_valid_structure(exons):
        raise MalformedModelError(f"Non-monotonic or empty exons in {name}")

    if exons[0][0] != tx_start or exons[-1][1] != tx_end:
        logger.debug(f"{name}: txStart/txEnd disagree with exons, using exons")

    return Transcript(
        transcript_id=name,
        gene=gene,
        seqid=parts[COL_CHROM],
        strand=strand,
        exons=exons,
        cds_start=cds_start,
        cds_end=cds_end,
    )


def _open_text(path: Path):
    if path.suffix == ".gz":
        return gzip.open(path, "rt")
    return open(path)


# =============================================================================
# Reference Gene Model
# =============================================================================


class ReferenceGeneModel:
    """Read-only index of reference transcripts by gene.

    Lookups compare structures boundary by boundary within a tolerance.
    Candidates are narrowed with a per-(gene, exon count) list sorted by
    the first internal boundary before the full comparison.

    Attributes:
        path: Source file, if loaded from disk.
        n_malformed: Number of rows skipped as malformed.

    Example:
        >>> model = ReferenceGeneModel.load("refFlat.txt")
        >>> for tx in model.transcripts_for_gene("Actb"):
        ...     print(tx.transcript_id, tx.n_exons)
    """

    def __init__(
        self,
        transcripts: Iterable[Transcript] = (),
        path: Path | None = None,
        n_malformed: int = 0,
    ) -> None:
        """Build the index.

        Args:
            transcripts: Reference transcripts.
            path: Source file path (informational).
            n_malformed: Rows skipped while loading.
        """
        self.path = path
        self.n_malformed = n_malformed

        by_gene: dict[str, list[Transcript]] = defaultdict(list)
        seen: set[tuple[str, str]] = set()
        for tx in transcripts:
            if (tx.gene, tx.transcript_id) in seen:
                logger.debug(f"Duplicate transcript {tx.transcript_id} in {tx.gene}, keeping first")
                continue
            seen.add((tx.gene, tx.transcript_id))
            by_gene[tx.gene].append(tx)

        self._by_gene: dict[str, tuple[Transcript, ...]] = {
            gene: tuple(txs) for gene, txs in by_gene.items()
        }

        # (gene, exon count) -> (sorted keys, transcripts in key order)
        self._index: dict[tuple[str, int], tuple[list[int], list[Transcript]]] = {}
        grouped: dict[tuple[str, int], list[Transcript]] = defaultdict(list)
        for gene, txs in self._by_gene.items():
            for tx in txs:
                grouped[(gene, tx.n_exons)].append(tx)
        for key, txs in grouped.items():
            ordered = sorted(txs, key=lambda t: (t.index_key, t.exons, t.transcript_id))
            self._index[key] = ([t.index_key for t in ordered], ordered)

    @classmethod
    def load(cls, path: Path | str, strict: bool = False) -> ReferenceGeneModel:
        """Load a refFlat file.

        Args:
            path: refFlat path (optionally gzipped).
            strict: Raise on the first malformed row instead of skipping it.

        Returns:
            Loaded gene model.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            MalformedModelError: In strict mode, on an invalid row.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"refFlat file not found: {path}")

        transcripts = []
        n_malformed = 0

        with _open_text(path) as f:
            for line_no, line in enumerate(f, 1):
                if not line.strip() or line.startswith("#"):
                    continue
                try:
                    transcripts.append(parse_refflat_line(line))
                except MalformedModelError as e:
                    if strict:
                        raise MalformedModelError(f"{path.name}:{line_no}: {e}") from e
                    n_malformed += 1
                    logger.warning(f"Skipping malformed refFlat row {line_no}: {e}")

        model = cls(transcripts, path=path, n_malformed=n_malformed)
        logger.info(
            f"Loaded {model.n_transcripts} transcripts for {model.n_genes} genes "
            f"from {path.name} ({n_malformed} malformed rows skipped)"
        )
        return model

    @property
    def genes(self) -> list[str]:
        """Sorted gene names."""
        return sorted(self._by_gene)

    @property
    def n_genes(self) -> int:
        """Number of genes."""
        return len(self._by_gene)

    @property
    def n_transcripts(self) -> int:
        """Number of transcripts."""
        return sum(len(txs) for txs in self._by_gene.values())

    def __contains__(self, gene: str) -> bool:
        return gene in self._by_gene

    def transcripts_for_gene(self, gene: str) -> tuple[Transcript, ...]:
        """Get the reference transcripts of a gene (empty if unknown)."""
        return self._by_gene.get(gene, ())

    def _candidates(self, gene: str, blocks: Blocks, tolerance: int) -> list[Transcript]:
        entry = self._index.get((gene, len(blocks)))
        if entry is None:
            return []

        keys, ordered = entry
        if len(blocks) > 1:
            lo = bisect.bisect_left(keys, blocks[0][1] - tolerance)
            hi = bisect.bisect_right(keys, blocks[0][1] + tolerance)
            return ordered[lo:hi]

        # Single exon: the start is relaxed, so only an upper bound applies
        hi = bisect.bisect_right(keys, blocks[0][0] + tolerance)
        return ordered[:hi]

    def lookup_transcript(
        self,
        gene: str,
        blocks: Blocks,
        tolerance: int,
    ) -> Transcript | None:
        """Find a reference transcript matching a structure.

        Args:
            gene: Gene name.
            blocks: Query structure.
            tolerance: Maximum per-boundary difference.

        Returns:
            First matching transcript in index order, or None.
        """
        for tx in self._candidates(gene, blocks, tolerance):
            if reference_match(blocks, tx.exons, tolerance):
                return tx
        return None

    def closest_transcript(self, gene: str, blocks: Blocks) -> Transcript | None:
        """Get the reference transcript structurally closest to ``blocks``.

        Ties are broken by transcript id.
        """
        txs = self.transcripts_for_gene(gene)
        if not txs:
            return None
        return min(
            txs,
            key=lambda t: (structure_distance(blocks, t.exons), t.transcript_id),
        )

    def iter_transcripts(self) -> Iterator[Transcript]:
        """Iterate over all transcripts, genes in sorted order."""
        for gene in self.genes:
            yield from self._by_gene[gene]


# =============================================================================
# Writing
# =============================================================================


def format_refflat_line(
    gene: str,
    name: str,
    seqid: str,
    strand: str,
    exons: Blocks,
    cds_start: int | None = None,
    cds_end: int | None = None,
) -> str:
    """Format one refFlat row (without trailing newline)."""
    tx_start = exons[0][0]
    tx_end = exons[-1][1]
    starts = "".join(f"{start}," for start, _ in exons)
    ends = "".join(f"{end}," for _, end in exons)
    return "\t".join(
        [
            gene,
            name,
            seqid,
            strand,
            str(tx_start),
            str(tx_end),
            str(tx_start if cds_start is None else cds_start),
            str(tx_end if cds_end is None else cds_end),
            str(len(exons)),
            starts,
            ends,
        ]
    )


def write_refflat(clusters: Iterable["IsoformCluster"], path: Path | str) -> int:
    """Write isoform clusters in refFlat format.

    Args:
        clusters: Clusters to write.
        path: Output file path.

    Returns:
        Number of rows written.
    """
    n = 0
    with open(path, "w") as f:
        for cluster in clusters:
            f.write(
                format_refflat_line(
                    cluster.gene,
                    cluster.isoform_id,
                    cluster.seqid,
                    cluster.strand,
                    cluster.blocks,
                )
                + "\n"
            )
            n += 1

    logger.info(f"Wrote {n} isoforms to {path}")
    return n
