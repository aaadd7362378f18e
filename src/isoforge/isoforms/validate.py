"""Orthogonal validation of isoform clusters.

An isoform is fully validated when all three of its features are
supported by independent evidence:

- TSS: within ``cage_cutoff`` bases of a CAGE peak.
- TES: within ``polya_cutoff`` bases of a polyA site.
- Every intron: observed in at least ``junction_cutoff`` short reads.

The TSS is the first base of the transcript in transcription direction,
so on the minus strand it is the last base of the last exon.

Validation needs all three sources. Without them clusters are marked
NOT_VALIDATED, which is distinct from failing validation.

Example:
    >>> from isoforge.isoforms.validate import Validator
    >>> validator = Validator(evidence, cage_cutoff=50, polya_cutoff=50)
    >>> result = validator.validate(cluster)
    >>> result.fully_validated
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Iterable

import attrs

if TYPE_CHECKING:
    from isoforge.isoforms.cluster import IsoformCluster
    from isoforge.isoforms.evidence import EvidenceSources
    from isoforge.isoforms.structure import Blocks

logger = logging.getLogger(__name__)

DEFAULT_CAGE_CUTOFF = 50
DEFAULT_POLYA_CUTOFF = 50
DEFAULT_JUNCTION_CUTOFF = 1


# =============================================================================
# Data Structures
# =============================================================================


class ValidationState(Enum):
    """Whether validation was performed."""

    NOT_VALIDATED = "not_validated"
    VALIDATED = "validated"


@attrs.frozen(slots=True)
class ValidationResult:
    """Validation outcome for one cluster.

    Attributes:
        state: VALIDATED if the checks ran.
        tss_valid: TSS near a CAGE peak.
        tes_valid: TES near a polyA site.
        junctions_valid: Per-intron short-read support, in genomic order.
        tss_distance: Distance to the nearest CAGE peak within the cutoff.
        tes_distance: Distance to the nearest polyA site within the cutoff.
        junction_counts: Short reads per intron, in genomic order.
    """

    state: ValidationState
    tss_valid: bool = False
    tes_valid: bool = False
    junctions_valid: tuple[bool, ...] = ()
    tss_distance: int | None = None
    tes_distance: int | None = None
    junction_counts: tuple[int, ...] = ()

    @classmethod
    def not_validated(cls) -> ValidationResult:
        """Result for clusters that could not be validated."""
        return cls(ValidationState.NOT_VALIDATED)

    @property
    def is_validated(self) -> bool:
        """Whether the checks ran."""
        return self.state is ValidationState.VALIDATED

    @property
    def all_junctions_valid(self) -> bool:
        """Every intron supported (vacuously true for single-exon)."""
        return all(self.junctions_valid)

    @property
    def fully_validated(self) -> bool:
        """TSS, TES and every intron supported."""
        return self.is_validated and self.tss_valid and self.tes_valid and self.all_junctions_valid


@attrs.define(slots=True)
class ValidationSummary:
    """Counts over a set of validation results."""

    validated: int = 0
    not_validated: int = 0
    tss_valid: int = 0
    tes_valid: int = 0
    junctions_valid: int = 0
    fully_validated: int = 0

    def add(self, result: ValidationResult) -> None:
        """Count one result."""
        if not result.is_validated:
            self.not_validated += 1
            return
        self.validated += 1
        self.tss_valid += result.tss_valid
        self.tes_valid += result.tes_valid
        self.junctions_valid += result.all_junctions_valid
        self.fully_validated += result.fully_validated

    def to_dict(self) -> dict[str, int]:
        """Convert to dictionary."""
        return attrs.asdict(self)


# =============================================================================
# Positions
# =============================================================================


def tss_position(blocks: "Blocks", strand: str) -> int:
    """Transcription start site (0-based) of a structure."""
    if strand == "-":
        return blocks[-1][1] - 1
    return blocks[0][0]


def tes_position(blocks: "Blocks", strand: str) -> int:
    """Transcription end site (0-based) of a structure."""
    if strand == "-":
        return blocks[0][0]
    return blocks[-1][1] - 1


# =============================================================================
# Validator
# =============================================================================


class Validator:
    """Validate clusters against CAGE, polyA and short-read evidence.

    Attributes:
        evidence: Loaded evidence sources.
        cage_cutoff: Maximum TSS distance to a CAGE peak.
        polya_cutoff: Maximum TES distance to a polyA site.
        junction_cutoff: Minimum short reads per intron.
    """

    def __init__(
        self,
        evidence: "EvidenceSources",
        cage_cutoff: int = DEFAULT_CAGE_CUTOFF,
        polya_cutoff: int = DEFAULT_POLYA_CUTOFF,
        junction_cutoff: int = DEFAULT_JUNCTION_CUTOFF,
    ) -> None:
        self.evidence = evidence
        self.cage_cutoff = cage_cutoff
        self.polya_cutoff = polya_cutoff
        self.junction_cutoff = junction_cutoff

    def validate(self, cluster: "IsoformCluster") -> ValidationResult:
        """Validate one cluster.

        Args:
            cluster: Cluster whose representative is checked.

        Returns:
            VALIDATED result with per-feature outcomes.
        """
        seqid = cluster.seqid
        strand = cluster.strand

        tss_distance = self.evidence.cage.nearest_distance(
            seqid,
            tss_position(cluster.blocks, strand),
            strand=strand,
            max_distance=self.cage_cutoff,
        )
        tes_distance = self.evidence.polya.nearest_distance(
            seqid,
            tes_position(cluster.blocks, strand),
            strand=strand,
            max_distance=self.polya_cutoff,
        )

        counts = tuple(
            self.evidence.junctions.count(seqid, start, end)
            for start, end in cluster.introns
        )

        return ValidationResult(
            state=ValidationState.VALIDATED,
            tss_valid=tss_distance is not None,
            tes_valid=tes_distance is not None,
            junctions_valid=tuple(c >= self.junction_cutoff for c in counts),
            tss_distance=tss_distance,
            tes_distance=tes_distance,
            junction_counts=counts,
        )

    def validate_all(self, clusters: Iterable["IsoformCluster"]) -> ValidationSummary:
        """Validate clusters in place.

        Args:
            clusters: Clusters whose ``validation`` is set.

        Returns:
            Summary counts.
        """
        summary = ValidationSummary()
        for cluster in clusters:
            cluster.validation = self.validate(cluster)
            summary.add(cluster.validation)

        logger.info(
            f"Validated {summary.validated} isoforms: {summary.fully_validated} fully validated "
            f"(TSS {summary.tss_valid}, TES {summary.tes_valid}, junctions {summary.junctions_valid})"
        )
        return summary


def mark_not_validated(clusters: Iterable["IsoformCluster"]) -> ValidationSummary:
    """Mark clusters as not validated when evidence is unavailable."""
    summary = ValidationSummary()
    for cluster in clusters:
        cluster.validation = ValidationResult.not_validated()
        summary.add(cluster.validation)
    return summary
