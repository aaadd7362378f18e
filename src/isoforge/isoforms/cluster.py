"""Greedy clustering of molecules into isoform structures.

Molecules of the same gene are grouped when their exon structures agree
within ``delta`` bases on every boundary. Each gene's clusters are seeded
with its reference transcripts, so molecules compatible with an annotated
transcript collect under that transcript's id.

Algorithm (per gene, genes in sorted order):
    1. Create one empty seed cluster per reference transcript.
    2. Visit molecules sorted by (blocks, cell, umi).
    3. Attach to the first seed the molecule matches (relaxed terminal
       comparison), else to the first novel cluster whose representative
       matches strictly, else found a new novel cluster.
    4. Drop seeds that attracted no molecule.

Representatives are fixed at creation and never re-estimated, so the
result does not drift with input order.

Example:
    >>> from isoforge.isoforms.cluster import IsoformClusterer
    >>> clusterer = IsoformClusterer(reference, delta=2)
    >>> clusters = clusterer.cluster(molecules)
    >>> for gene, gene_clusters in clusters.items():
    ...     print(gene, [c.n_molecules for c in gene_clusters])
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Iterable, Iterator

import attrs

from isoforge.isoforms.structure import (
    Blocks,
    introns,
    reference_match,
    structures_match,
)

if TYPE_CHECKING:
    from isoforge.io.refflat import ReferenceGeneModel
    from isoforge.isoforms.classify import Classification
    from isoforge.isoforms.molecules import Molecule, MoleculeKey
    from isoforge.isoforms.validate import ValidationResult

logger = logging.getLogger(__name__)

DEFAULT_DELTA = 2


# =============================================================================
# Data Structures
# =============================================================================


@attrs.define(slots=True)
class IsoformCluster:
    """A set of molecules sharing one exon structure.

    Attributes:
        isoform_id: Reference transcript id for seeded clusters,
            ``{gene}.novel{n}`` otherwise.
        gene: Gene name.
        seqid: Chromosome/contig identifier.
        strand: Strand (+ or -).
        blocks: Representative exon structure.
        reference_id: Seed transcript id, None for novel clusters.
        members: Keys of the attached molecules, in attachment order.
        n_reads: Reads summed over the attached molecules.
        cells: Distinct cell barcodes among members.
        classification: Set by the classifier.
        validation: Set by the validator.
        consensus: Consensus sequence, if called.
    """

    isoform_id: str
    gene: str
    seqid: str
    strand: str
    blocks: Blocks
    reference_id: str | None = None
    members: list["MoleculeKey"] = attrs.Factory(list)
    n_reads: int = 0
    cells: set[str] = attrs.Factory(set)
    classification: "Classification | None" = None
    validation: "ValidationResult | None" = None
    consensus: str | None = None

    @property
    def n_molecules(self) -> int:
        """Supporting molecules."""
        return len(self.members)

    @property
    def n_cells(self) -> int:
        """Distinct cells contributing molecules."""
        return len(self.cells)

    @property
    def n_exons(self) -> int:
        """Number of exons in the representative."""
        return len(self.blocks)

    @property
    def start(self) -> int:
        """Representative start."""
        return self.blocks[0][0]

    @property
    def end(self) -> int:
        """Representative end (exclusive)."""
        return self.blocks[-1][1]

    @property
    def introns(self) -> list[tuple[int, int]]:
        """Introns of the representative."""
        return introns(self.blocks)

    @property
    def is_fully_validated(self) -> bool:
        """Whether validation ran and every check passed."""
        return self.validation is not None and self.validation.fully_validated

    def attach(self, molecule: "Molecule") -> None:
        """Add a molecule without touching the representative."""
        self.members.append(molecule.key)
        self.n_reads += molecule.read_count
        self.cells.add(molecule.cell)


@attrs.define(slots=True)
class ClusterStats:
    """Counters collected while clustering."""

    genes: int = 0
    clusters_formed: int = 0
    seeded_clusters: int = 0
    novel_clusters: int = 0

    def to_dict(self) -> dict[str, int]:
        """Convert to dictionary."""
        return attrs.asdict(self)


# =============================================================================
# Clusterer
# =============================================================================


class IsoformClusterer:
    """Cluster molecules into isoforms gene by gene.

    Attributes:
        reference: Reference gene model providing the seed clusters.
        delta: Boundary tolerance in bases.
        stats: Counters for reporting.
    """

    def __init__(
        self,
        reference: "ReferenceGeneModel",
        delta: int = DEFAULT_DELTA,
    ) -> None:
        """Initialize the clusterer.

        Args:
            reference: Reference gene model.
            delta: Boundary tolerance in bases.
        """
        self.reference = reference
        self.delta = delta
        self.stats = ClusterStats()

    def cluster_gene(
        self,
        gene: str,
        molecules: Iterable["Molecule"],
    ) -> list[IsoformCluster]:
        """Cluster the molecules of one gene.

        Args:
            gene: Gene name.
            molecules: Molecules of that gene.

        Returns:
            Non-empty clusters: seeded ones in reference order, then novel
            ones in creation order.
        """
        seeds = [
            IsoformCluster(
                isoform_id=tx.transcript_id,
                gene=gene,
                seqid=tx.seqid,
                strand=tx.strand,
                blocks=tx.exons,
                reference_id=tx.transcript_id,
            )
            for tx in self.reference.transcripts_for_gene(gene)
        ]
        novel: list[IsoformCluster] = []
        # First reference transcript strand per seqid
        gene_strand: dict[str, str] = {}
        for seed in reversed(seeds):
            gene_strand[seed.seqid] = seed.strand

        ordered = sorted(molecules, key=lambda m: (m.blocks, m.key.cell, m.key.umi))
        for molecule in ordered:
            target = self._find_cluster(molecule, seeds, novel)
            if target is None:
                target = IsoformCluster(
                    isoform_id=f"{gene}.novel{len(novel) + 1}",
                    gene=gene,
                    seqid=molecule.seqid,
                    strand=gene_strand.get(molecule.seqid, molecule.strand),
                    blocks=molecule.blocks,
                )
                novel.append(target)
            target.attach(molecule)

        seeded = [c for c in seeds if c.members]
        self.stats.seeded_clusters += len(seeded)
        self.stats.novel_clusters += len(novel)
        return seeded + novel

    def _find_cluster(
        self,
        molecule: "Molecule",
        seeds: list[IsoformCluster],
        novel: list[IsoformCluster],
    ) -> IsoformCluster | None:
        for seed in seeds:
            if seed.seqid == molecule.seqid and reference_match(molecule.blocks, seed.blocks, self.delta):
                return seed
        for cluster in novel:
            if cluster.seqid == molecule.seqid and structures_match(molecule.blocks, cluster.blocks, self.delta):
                return cluster
        return None

    def cluster(
        self,
        molecules: Iterable["Molecule"],
    ) -> dict[str, list[IsoformCluster]]:
        """Cluster all molecules.

        Args:
            molecules: Molecules of any genes.

        Returns:
            Dictionary mapping gene name to its clusters, genes sorted.
        """
        by_gene: dict[str, list["Molecule"]] = defaultdict(list)
        for molecule in molecules:
            by_gene[molecule.gene].append(molecule)

        result: dict[str, list[IsoformCluster]] = {}
        for gene in sorted(by_gene):
            clusters = self.cluster_gene(gene, by_gene[gene])
            if clusters:
                result[gene] = clusters

        self.stats.genes = len(result)
        self.stats.clusters_formed = sum(len(c) for c in result.values())
        logger.info(
            f"Formed {self.stats.clusters_formed} isoform clusters in {self.stats.genes} genes "
            f"({self.stats.seeded_clusters} reference, {self.stats.novel_clusters} novel)"
        )
        return result


def iter_clusters(clusters: dict[str, list[IsoformCluster]]) -> Iterator[IsoformCluster]:
    """Flatten gene-grouped clusters, genes in sorted order."""
    for gene in sorted(clusters):
        yield from clusters[gene]
