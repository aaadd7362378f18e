"""Classification of isoform clusters against the reference.

A cluster is KNOWN when its representative structure matches an annotated
transcript of its gene. Every other cluster is NOVEL, and is described
relative to the structurally closest reference transcript by two flags:

- ``has_new_splice_site``: some splice site is absent from that transcript.
- ``has_altered_terminus``: the transcript start or end lies outside the
  terminal exons of that transcript.

Example:
    >>> from isoforge.isoforms.classify import Classifier
    >>> classifier = Classifier(reference, delta=2)
    >>> result = classifier.classify(cluster)
    >>> result.category, result.transcript_id
"""

from __future__ import annotations

import logging
from collections import Counter
from enum import Enum
from typing import TYPE_CHECKING, Iterable

import attrs

from isoforge.isoforms.structure import novel_splice_sites, terminus_altered

if TYPE_CHECKING:
    from isoforge.io.refflat import ReferenceGeneModel
    from isoforge.isoforms.cluster import IsoformCluster

logger = logging.getLogger(__name__)


# =============================================================================
# Data Structures
# =============================================================================


class IsoformCategory(Enum):
    """Isoform categories."""

    KNOWN = "known"
    NOVEL = "novel"


@attrs.frozen(slots=True)
class Classification:
    """Classification of one cluster.

    Attributes:
        category: KNOWN or NOVEL.
        transcript_id: Matching transcript for KNOWN, closest transcript
            for NOVEL (None when the gene has no reference transcripts).
        has_new_splice_site: NOVEL only; splice site absent from the
            closest transcript.
        has_altered_terminus: NOVEL only; start or end outside the
            terminal exons of the closest transcript.
        new_splice_sites: The unmatched splice site coordinates.
    """

    category: IsoformCategory
    transcript_id: str | None = None
    has_new_splice_site: bool = False
    has_altered_terminus: bool = False
    new_splice_sites: tuple[int, ...] = ()

    @classmethod
    def known(cls, transcript_id: str) -> Classification:
        """Classification for a reference-matching cluster."""
        return cls(IsoformCategory.KNOWN, transcript_id)

    @classmethod
    def novel(
        cls,
        transcript_id: str | None,
        has_new_splice_site: bool,
        has_altered_terminus: bool,
        new_splice_sites: Iterable[int] = (),
    ) -> Classification:
        """Classification for a cluster without reference match."""
        return cls(
            IsoformCategory.NOVEL,
            transcript_id,
            has_new_splice_site,
            has_altered_terminus,
            tuple(new_splice_sites),
        )

    @property
    def is_known(self) -> bool:
        """Whether the cluster matches a reference transcript."""
        return self.category is IsoformCategory.KNOWN

    @property
    def label(self) -> str:
        """Short label for reports, e.g. ``novel:splice,terminus``."""
        if self.is_known:
            return IsoformCategory.KNOWN.value
        details = []
        if self.has_new_splice_site:
            details.append("splice")
        if self.has_altered_terminus:
            details.append("terminus")
        if not details:
            return IsoformCategory.NOVEL.value
        return f"{IsoformCategory.NOVEL.value}:{','.join(details)}"


# =============================================================================
# Classifier
# =============================================================================


class Classifier:
    """Assign KNOWN/NOVEL categories to clusters.

    Attributes:
        reference: Reference gene model.
        delta: Boundary tolerance in bases.
    """

    def __init__(self, reference: "ReferenceGeneModel", delta: int = 2) -> None:
        self.reference = reference
        self.delta = delta

    def classify(self, cluster: "IsoformCluster") -> Classification:
        """Classify one cluster.

        Args:
            cluster: Cluster to classify.

        Returns:
            Classification of the cluster's representative structure.
        """
        tx = self.reference.lookup_transcript(cluster.gene, cluster.blocks, self.delta)
        if tx is not None and tx.seqid == cluster.seqid:
            return Classification.known(tx.transcript_id)

        closest = self.reference.closest_transcript(cluster.gene, cluster.blocks)
        if closest is None:
            # Every splice site is new without an annotation to compare to
            return Classification.novel(
                None,
                has_new_splice_site=len(cluster.blocks) > 1,
                has_altered_terminus=True,
            )

        sites = novel_splice_sites(cluster.blocks, closest.exons, self.delta)
        return Classification.novel(
            closest.transcript_id,
            has_new_splice_site=bool(sites),
            has_altered_terminus=terminus_altered(cluster.blocks, closest.exons, self.delta),
            new_splice_sites=sites,
        )

    def classify_all(self, clusters: Iterable["IsoformCluster"]) -> Counter[str]:
        """Classify clusters in place.

        Args:
            clusters: Clusters whose ``classification`` is set.

        Returns:
            Counter of classification labels.
        """
        counts: Counter[str] = Counter()
        for cluster in clusters:
            cluster.classification = self.classify(cluster)
            counts[cluster.classification.label] += 1

        known = counts.get(IsoformCategory.KNOWN.value, 0)
        logger.info(f"Classified {sum(counts.values())} isoforms: {known} known, {sum(counts.values()) - known} novel")
        return counts
