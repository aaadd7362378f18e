"""Evidence filtering of isoform clusters.

Clusters matching an annotated transcript are always kept. Clusters with
no reference counterpart must be supported by at least ``min_evidence``
molecules.

Example:
    >>> from isoforge.isoforms.filter import EvidenceFilter
    >>> evidence_filter = EvidenceFilter(reference, min_evidence=2, delta=2)
    >>> kept = evidence_filter.apply(clusters)
    >>> evidence_filter.stats.dropped
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import attrs

if TYPE_CHECKING:
    from isoforge.io.refflat import ReferenceGeneModel
    from isoforge.isoforms.cluster import IsoformCluster

logger = logging.getLogger(__name__)

DEFAULT_MIN_EVIDENCE = 2


@attrs.define(slots=True)
class FilterStats:
    """Counts of kept and dropped clusters.

    Attributes:
        total: Clusters examined.
        kept_reference: Kept because they match a reference transcript.
        kept_supported: Novel clusters with enough molecules.
        dropped: Novel clusters below the evidence threshold.
        dropped_molecules: Molecules carried by the dropped clusters.
    """

    total: int = 0
    kept_reference: int = 0
    kept_supported: int = 0
    dropped: int = 0
    dropped_molecules: int = 0

    @property
    def kept(self) -> int:
        """Clusters passing the filter."""
        return self.kept_reference + self.kept_supported

    def to_dict(self) -> dict[str, int]:
        """Convert to dictionary."""
        d = attrs.asdict(self)
        d["kept"] = self.kept
        return d


class EvidenceFilter:
    """Drop weakly supported clusters without a reference match.

    Attributes:
        reference: Reference gene model.
        min_evidence: Minimum molecules for a novel cluster.
        delta: Boundary tolerance for the reference lookup.
        stats: Counters for the last ``apply`` call.
        dropped: Clusters removed by the last ``apply`` call.
    """

    def __init__(
        self,
        reference: "ReferenceGeneModel",
        min_evidence: int = DEFAULT_MIN_EVIDENCE,
        delta: int = 2,
    ) -> None:
        self.reference = reference
        self.min_evidence = min_evidence
        self.delta = delta
        self.stats = FilterStats()
        self.dropped: list["IsoformCluster"] = []

    def passes(self, cluster: "IsoformCluster") -> bool:
        """Check a single cluster.

        Args:
            cluster: Cluster to check.

        Returns:
            True if the cluster matches a reference transcript or has at
            least ``min_evidence`` molecules.
        """
        if self._matches_reference(cluster):
            return True
        return cluster.n_molecules >= self.min_evidence

    def _matches_reference(self, cluster: "IsoformCluster") -> bool:
        tx = self.reference.lookup_transcript(cluster.gene, cluster.blocks, self.delta)
        return tx is not None and tx.seqid == cluster.seqid

    def apply(
        self,
        clusters: dict[str, list["IsoformCluster"]],
    ) -> dict[str, list["IsoformCluster"]]:
        """Filter gene-grouped clusters.

        Args:
            clusters: Dictionary mapping gene name to clusters.

        Returns:
            The same mapping restricted to kept clusters. Genes left
            without clusters are omitted.
        """
        self.stats = FilterStats()
        self.dropped = []
        kept: dict[str, list["IsoformCluster"]] = {}

        for gene in sorted(clusters):
            gene_kept = []
            for cluster in clusters[gene]:
                self.stats.total += 1
                if self._matches_reference(cluster):
                    self.stats.kept_reference += 1
                    gene_kept.append(cluster)
                elif cluster.n_molecules >= self.min_evidence:
                    self.stats.kept_supported += 1
                    gene_kept.append(cluster)
                else:
                    self.stats.dropped += 1
                    self.stats.dropped_molecules += cluster.n_molecules
                    self.dropped.append(cluster)
            if gene_kept:
                kept[gene] = gene_kept

        logger.info(
            f"Evidence filter kept {self.stats.kept}/{self.stats.total} clusters "
            f"(dropped {self.stats.dropped} novel clusters with < {self.min_evidence} molecules)"
        )
        return kept
