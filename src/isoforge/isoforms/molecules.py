"""Molecule building from tagged long reads.

Reads sharing a (cell barcode, UMI, gene) key come from the same cDNA
molecule. The builder aggregates them online, in a single forward pass
over the read stream, so memory grows with the number of distinct keys
rather than the number of reads.

Merging rule:
    Each key keeps a read count per distinct exon structure. The
    molecule's structure is the most frequent one; ties go to the
    structure seen first. Molecules supported by fewer than ``rn_min``
    reads are dropped.

Example:
    >>> from isoforge.isoforms.molecules import MoleculeBuilder
    >>> builder = MoleculeBuilder(cells={"C1"}, rn_min=3)
    >>> molecules = builder.build_from(reads)
    >>> builder.stats.molecules_built
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, NamedTuple

import attrs

from isoforge.isoforms.structure import Blocks, as_blocks, is_valid_structure

if TYPE_CHECKING:
    from isoforge.io.bam import ReadRecord
    from isoforge.utils.logging import ProgressLogger

logger = logging.getLogger(__name__)

DEFAULT_RN_MIN = 3


# =============================================================================
# Data Structures
# =============================================================================


class MoleculeKey(NamedTuple):
    """Identity of a molecule."""

    cell: str
    umi: str
    gene: str


@attrs.frozen(slots=True)
class Molecule:
    """Aggregated read evidence for one (cell, UMI, gene) key.

    Attributes:
        key: Molecule identity.
        seqid: Chromosome/contig identifier.
        strand: Strand of the supporting alignments.
        blocks: Majority exon structure.
        read_count: Total supporting reads.
        n_structures: Number of distinct structures observed.
        sequence: Longest read sequence with the majority structure.
    """

    key: MoleculeKey
    seqid: str
    strand: str
    blocks: Blocks
    read_count: int
    n_structures: int = 1
    sequence: str | None = None

    @property
    def gene(self) -> str:
        """Gene of the molecule."""
        return self.key.gene

    @property
    def cell(self) -> str:
        """Cell barcode of the molecule."""
        return self.key.cell

    @property
    def start(self) -> int:
        """Start of the merged structure."""
        return self.blocks[0][0]

    @property
    def end(self) -> int:
        """End of the merged structure (exclusive)."""
        return self.blocks[-1][1]


@attrs.define(slots=True)
class MoleculeStats:
    """Counters collected while building molecules."""

    reads_seen: int = 0
    reads_accepted: int = 0
    reads_rejected_cell: int = 0
    reads_malformed: int = 0
    molecules_built: int = 0
    molecules_dropped: int = 0

    def to_dict(self) -> dict[str, int]:
        """Convert to dictionary."""
        return attrs.asdict(self)


@attrs.define(slots=True)
class _StructureTally:
    count: int
    order: int
    seqid: str
    strand: str
    sequence: str | None = None


@attrs.define(slots=True)
class _Accumulator:
    total: int = 0
    tallies: dict[Blocks, _StructureTally] = attrs.Factory(dict)


# =============================================================================
# Builder
# =============================================================================


class MoleculeBuilder:
    """Online aggregation of reads into molecules.

    Attributes:
        cells: Accepted cell barcodes.
        rn_min: Minimum supporting reads for a molecule.
        keep_sequences: Keep one read sequence per structure.
        stats: Counters for reporting.

    Example:
        >>> builder = MoleculeBuilder(cells, rn_min=3)
        >>> for read in reads:
        ...     builder.add(read)
        >>> molecules = builder.build()
    """

    def __init__(
        self,
        cells: Iterable[str],
        rn_min: int = DEFAULT_RN_MIN,
        keep_sequences: bool = False,
        progress: "ProgressLogger | None" = None,
    ) -> None:
        """Initialize the builder.

        Args:
            cells: Accepted cell barcodes.
            rn_min: Minimum supporting reads for a molecule.
            keep_sequences: Keep read sequences for consensus calling.
            progress: Optional progress logger updated per read.
        """
        self.cells = frozenset(cells)
        self.rn_min = rn_min
        self.keep_sequences = keep_sequences
        self.progress = progress
        self.stats = MoleculeStats()
        self._accumulators: dict[MoleculeKey, _Accumulator] = {}
        self._order = 0

    def __len__(self) -> int:
        return len(self._accumulators)

    def add(self, read: "ReadRecord") -> bool:
        """Accumulate one read.

        Args:
            read: Tagged read record.

        Returns:
            True if the read was accepted.
        """
        self.stats.reads_seen += 1
        if self.progress is not None:
            self.progress.update()

        if read.cell is None or read.umi is None or read.gene is None:
            self.stats.reads_malformed += 1
            return False

        if read.cell not in self.cells:
            self.stats.reads_rejected_cell += 1
            return False

        if not is_valid_structure(read.blocks):
            self.stats.reads_malformed += 1
            logger.debug(f"Skipping read {read.name} with invalid blocks {read.blocks}")
            return False

        blocks = as_blocks(read.blocks)
        weight = max(1, read.read_count)
        key = MoleculeKey(read.cell, read.umi, read.gene)

        acc = self._accumulators.get(key)
        if acc is None:
            acc = self._accumulators[key] = _Accumulator()
        acc.total += weight

        tally = acc.tallies.get(blocks)
        if tally is None:
            tally = acc.tallies[blocks] = _StructureTally(
                count=0,
                order=self._order,
                seqid=read.seqid,
                strand=read.strand,
            )
            self._order += 1
        tally.count += weight

        if self.keep_sequences and read.sequence:
            if tally.sequence is None or len(read.sequence) > len(tally.sequence):
                tally.sequence = read.sequence

        self.stats.reads_accepted += 1
        return True

    def build(self) -> list[Molecule]:
        """Emit molecules passing the read-count gate.

        Returns:
            Molecules sorted by (gene, blocks, cell, umi).
        """
        molecules = []
        dropped = 0
        for key, acc in self._accumulators.items():
            if acc.total < self.rn_min:
                dropped += 1
                continue

            blocks, tally = min(
                acc.tallies.items(),
                key=lambda item: (-item[1].count, item[1].order),
            )
            molecules.append(
                Molecule(
                    key=key,
                    seqid=tally.seqid,
                    strand=tally.strand,
                    blocks=blocks,
                    read_count=acc.total,
                    n_structures=len(acc.tallies),
                    sequence=tally.sequence,
                )
            )

        molecules.sort(key=lambda m: (m.gene, m.blocks, m.key.cell, m.key.umi))
        self.stats.molecules_built = len(molecules)
        self.stats.molecules_dropped = dropped
        logger.info(
            f"Built {len(molecules)} molecules from {self.stats.reads_accepted} reads "
            f"({self.stats.molecules_dropped} dropped below {self.rn_min} reads, "
            f"{self.stats.reads_rejected_cell} reads outside cell list)"
        )
        return molecules

    def build_from(self, reads: Iterable["ReadRecord"]) -> list[Molecule]:
        """Consume a read stream once and build molecules."""
        for read in reads:
            self.add(read)
        return self.build()
