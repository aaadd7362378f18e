"""Isoform collapsing pipeline.

This module runs the isoform stages in order and writes the reports.

Key components:
- OutputPaths: Output file naming
- CollapseStatistics: Counts collected by every stage
- CollapseResult: Clusters and statistics of one run
- CollapsePipeline: Main orchestration class
- CollapseReportWriter: Report generation utilities

Pipeline stages:
    1. Build molecules from the read stream (single pass)
    2. Cluster molecules into isoforms, seeded by the reference
    3. Drop novel isoforms with too few molecules
    4. Classify isoforms as known or novel
    5. Validate against CAGE, polyA and short reads (if available)
    6. Call consensus sequences (if the tools are available)

Example:
    >>> from isoforge.core.collapse import CollapsePipeline, CollapseReportWriter
    >>> pipeline = CollapsePipeline(reference, cells, config, capabilities)
    >>> result = pipeline.run(iter_tagged_reads("molecules.bam"))
    >>> paths = OutputPaths.build("out", "CollapseModel", 2, 3, 2)
    >>> CollapseReportWriter.write_all(result, paths)
"""

from __future__ import annotations

import csv
import json
import logging
from collections import Counter
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable

import attrs

from isoforge.config import Capabilities, Config
from isoforge.io.fasta import write_fasta
from isoforge.io.gff import write_gff
from isoforge.io.refflat import write_refflat
from isoforge.isoforms.classify import Classifier
from isoforge.isoforms.cluster import ClusterStats, IsoformCluster, IsoformClusterer, iter_clusters
from isoforge.isoforms.consensus import ConsensusCaller, ConsensusReport, consensus_records
from isoforge.isoforms.filter import EvidenceFilter, FilterStats
from isoforge.isoforms.molecules import MoleculeBuilder, MoleculeStats
from isoforge.isoforms.structure import format_blocks
from isoforge.isoforms.validate import ValidationSummary, Validator, mark_not_validated
from isoforge.utils.logging import ProgressLogger, Timer

if TYPE_CHECKING:
    from isoforge.io.bam import ReadRecord
    from isoforge.io.refflat import ReferenceGeneModel
    from isoforge.isoforms.evidence import EvidenceSources

logger = logging.getLogger(__name__)

DEFAULT_PROGRESS_INTERVAL = 1_000_000


# =============================================================================
# Output Naming
# =============================================================================


@attrs.frozen
class OutputPaths:
    """Output files of one run.

    All files share the stem ``{prefix}.d{delta}.rn{rn_min}.e{min_evidence}``.
    """

    table: Path
    refflat: Path
    final_refflat: Path
    gff: Path
    final_gff: Path
    summary: Path
    summary_json: Path
    fasta: Path

    @classmethod
    def build(
        cls,
        outdir: Path | str,
        prefix: str,
        delta: int,
        rn_min: int,
        min_evidence: int,
    ) -> OutputPaths:
        """Build the output paths for a parameter set."""
        stem = Path(outdir) / f"{prefix}.d{delta}.rn{rn_min}.e{min_evidence}"
        return cls(
            table=Path(f"{stem}.txt"),
            refflat=Path(f"{stem}.refflat.txt"),
            final_refflat=Path(f"{stem}.final.refflat.txt"),
            gff=Path(f"{stem}.gff"),
            final_gff=Path(f"{stem}.final.gff"),
            summary=Path(f"{stem}.summary.txt"),
            summary_json=Path(f"{stem}.summary.json"),
            fasta=Path(f"{stem}.fas"),
        )

    @classmethod
    def from_config(cls, outdir: Path | str, prefix: str, config: Config) -> OutputPaths:
        """Build the output paths from a configuration."""
        c = config.collapse
        return cls.build(outdir, prefix, c.delta, c.rn_min, c.min_evidence)


# =============================================================================
# Results
# =============================================================================


@attrs.define(slots=True)
class CollapseStatistics:
    """Counts collected by every stage of a run."""

    cells: int = 0
    reference_genes: int = 0
    reference_transcripts: int = 0
    reference_malformed: int = 0
    molecules: MoleculeStats = attrs.Factory(MoleculeStats)
    clustering: ClusterStats = attrs.Factory(ClusterStats)
    filtering: FilterStats = attrs.Factory(FilterStats)
    classification: Counter = attrs.Factory(Counter)
    validation: ValidationSummary = attrs.Factory(ValidationSummary)
    validation_performed: bool = False
    consensus_performed: bool = False
    consensus_called: int = 0
    consensus_failed: int = 0
    consensus_skipped: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to a nested dictionary."""
        return {
            "cells": self.cells,
            "reference": {
                "genes": self.reference_genes,
                "transcripts": self.reference_transcripts,
                "malformed_rows": self.reference_malformed,
            },
            "molecules": self.molecules.to_dict(),
            "clustering": self.clustering.to_dict(),
            "filtering": self.filtering.to_dict(),
            "classification": dict(sorted(self.classification.items())),
            "validation": {
                "performed": self.validation_performed,
                **self.validation.to_dict(),
            },
            "consensus": {
                "performed": self.consensus_performed,
                "called": self.consensus_called,
                "failed": self.consensus_failed,
                "skipped": self.consensus_skipped,
            },
        }


@attrs.define(slots=True)
class CollapseResult:
    """Outcome of one pipeline run.

    Attributes:
        clusters: Kept clusters per gene, genes sorted.
        dropped: Clusters removed by the evidence filter.
        statistics: Counts from every stage.
        consensus: Consensus report, if consensus calling ran.
    """

    clusters: dict[str, list[IsoformCluster]]
    dropped: list[IsoformCluster] = attrs.Factory(list)
    statistics: CollapseStatistics = attrs.Factory(CollapseStatistics)
    consensus: ConsensusReport | None = None

    def iter_clusters(self) -> Iterable[IsoformCluster]:
        """Kept clusters in output order."""
        return iter_clusters(self.clusters)

    @property
    def n_isoforms(self) -> int:
        """Number of kept clusters."""
        return sum(len(c) for c in self.clusters.values())

    def final_clusters(self) -> list[IsoformCluster]:
        """Fully validated isoforms, known or novel.

        Empty when validation did not run.
        """
        return [c for c in self.iter_clusters() if c.is_fully_validated]


# =============================================================================
# Pipeline
# =============================================================================


class CollapsePipeline:
    """Main collapsing pipeline.

    Orchestrates:
    1. Molecule building (MoleculeBuilder)
    2. Isoform clustering (IsoformClusterer)
    3. Evidence filtering (EvidenceFilter)
    4. Classification (Classifier)
    5. Validation (Validator), when evidence is available
    6. Consensus calling (ConsensusCaller), when the tools are available

    Attributes:
        reference: Reference gene model.
        cells: Accepted cell barcodes.
        config: Run configuration.
        capabilities: Optional stages available for this run.
        evidence: Validation evidence (required when validation is
            enabled in ``capabilities``).

    Example:
        >>> pipeline = CollapsePipeline(reference, cells)
        >>> result = pipeline.run(reads)
        >>> result.statistics.filtering.dropped
    """

    def __init__(
        self,
        reference: "ReferenceGeneModel",
        cells: Iterable[str],
        config: Config | None = None,
        capabilities: Capabilities | None = None,
        evidence: "EvidenceSources | None" = None,
        progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
    ) -> None:
        """Initialize pipeline.

        Raises:
            ValueError: If validation is enabled without evidence.
        """
        self.reference = reference
        self.cells = frozenset(cells)
        self.config = config or Config()
        self.capabilities = capabilities or Capabilities()
        self.evidence = evidence
        self.progress_interval = progress_interval

        if self.capabilities.validation and self.evidence is None:
            raise ValueError("Validation enabled but no evidence sources were provided")

    @property
    def needs_sequences(self) -> bool:
        """Whether read sequences must be kept for consensus calling."""
        return self.capabilities.consensus

    def run(self, reads: Iterable["ReadRecord"]) -> CollapseResult:
        """Run all stages over a read stream.

        Args:
            reads: Tagged read records, consumed once.

        Returns:
            CollapseResult with the kept clusters and statistics.
        """
        collapse = self.config.collapse
        stats = CollapseStatistics(
            cells=len(self.cells),
            reference_genes=self.reference.n_genes,
            reference_transcripts=self.reference.n_transcripts,
            reference_malformed=self.reference.n_malformed,
        )

        # 1. Molecules
        progress = ProgressLogger(logger, interval=self.progress_interval, description="Reads processed")
        builder = MoleculeBuilder(
            self.cells,
            rn_min=collapse.rn_min,
            keep_sequences=self.needs_sequences,
            progress=progress,
        )
        with Timer("Molecule building", logger):
            molecules = builder.build_from(reads)
        progress.finish()
        stats.molecules = builder.stats

        # 2. Clustering
        clusterer = IsoformClusterer(self.reference, delta=collapse.delta)
        with Timer("Clustering", logger):
            clusters = clusterer.cluster(molecules)
        stats.clustering = clusterer.stats

        # 3. Evidence filter
        evidence_filter = EvidenceFilter(
            self.reference,
            min_evidence=collapse.min_evidence,
            delta=collapse.delta,
        )
        clusters = evidence_filter.apply(clusters)
        stats.filtering = evidence_filter.stats

        result = CollapseResult(clusters=clusters, dropped=evidence_filter.dropped, statistics=stats)
        kept = list(result.iter_clusters())

        # 4. Classification
        stats.classification = Classifier(self.reference, delta=collapse.delta).classify_all(kept)

        # 5. Validation
        if self.capabilities.validation:
            v = self.config.validation
            validator = Validator(
                self.evidence,
                cage_cutoff=v.cage_cutoff,
                polya_cutoff=v.polya_cutoff,
                junction_cutoff=v.junction_cutoff,
            )
            with Timer("Validation", logger):
                stats.validation = validator.validate_all(kept)
            stats.validation_performed = True
        else:
            logger.info("Skipping validation, all isoforms marked as not validated")
            stats.validation = mark_not_validated(kept)

        # 6. Consensus
        if self.capabilities.consensus:
            result.consensus = self._call_consensus(kept, molecules)
            stats.consensus_performed = True
            stats.consensus_called = result.consensus.n_called
            stats.consensus_failed = len(result.consensus.failures)
            stats.consensus_skipped = result.consensus.skipped
        else:
            logger.info("Skipping consensus calling (poa, racon and minimap2 are required)")

        return result

    def _call_consensus(self, clusters: list[IsoformCluster], molecules: list) -> ConsensusReport:
        c = self.config.consensus
        caller = ConsensusCaller(
            self.capabilities.consensus_tools,
            threads=c.threads,
            tmp_dir=c.tmp_dir,
            min_support=c.min_support,
            max_sequences=c.max_sequences,
        )
        sequences = {m.key: m.sequence for m in molecules if m.sequence}
        with Timer("Consensus calling", logger):
            report = caller.call(clusters, sequences)

        for cluster in clusters:
            cluster.consensus = report.sequences.get(cluster.isoform_id)
        return report


# =============================================================================
# Reports
# =============================================================================


def _flag(value: bool | None) -> str:
    if value is None:
        return "NA"
    return "1" if value else "0"


def cluster_row(cluster: IsoformCluster) -> dict[str, Any]:
    """Isoform table row for a cluster."""
    classification = cluster.classification
    validation = cluster.validation
    validated = validation is not None and validation.is_validated

    return {
        "gene": cluster.gene,
        "isoform_id": cluster.isoform_id,
        "seqid": cluster.seqid,
        "strand": cluster.strand,
        "start": cluster.start,
        "end": cluster.end,
        "n_exons": cluster.n_exons,
        "exons": format_blocks(cluster.blocks),
        "n_molecules": cluster.n_molecules,
        "n_reads": cluster.n_reads,
        "n_cells": cluster.n_cells,
        "category": classification.category.value if classification else "NA",
        "reference_id": (classification.transcript_id or "NA") if classification else "NA",
        "new_splice_site": _flag(None if classification is None or classification.is_known else classification.has_new_splice_site),
        "altered_terminus": _flag(None if classification is None or classification.is_known else classification.has_altered_terminus),
        "validation": validation.state.value if validation else "NA",
        "tss_valid": _flag(validation.tss_valid if validated else None),
        "tes_valid": _flag(validation.tes_valid if validated else None),
        "junctions_valid": (
            f"{sum(validation.junctions_valid)}/{len(validation.junctions_valid)}" if validated else "NA"
        ),
        "fully_validated": _flag(validation.fully_validated if validated else None),
        "consensus_length": len(cluster.consensus) if cluster.consensus else 0,
    }


TABLE_HEADERS = [
    "gene",
    "isoform_id",
    "seqid",
    "strand",
    "start",
    "end",
    "n_exons",
    "exons",
    "n_molecules",
    "n_reads",
    "n_cells",
    "category",
    "reference_id",
    "new_splice_site",
    "altered_terminus",
    "validation",
    "tss_valid",
    "tes_valid",
    "junctions_valid",
    "fully_validated",
    "consensus_length",
]


class CollapseReportWriter:
    """Write collapsing reports."""

    @staticmethod
    def write_table(clusters: Iterable[IsoformCluster], output_path: Path) -> int:
        """Write the isoform table TSV.

        Args:
            clusters: Clusters to write.
            output_path: Output file path.

        Returns:
            Number of rows written.
        """
        n = 0
        with open(output_path, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=TABLE_HEADERS, delimiter="\t")
            writer.writeheader()
            for cluster in clusters:
                writer.writerow(cluster_row(cluster))
                n += 1

        logger.info(f"Wrote isoform table with {n} isoforms to {output_path}")
        return n

    @staticmethod
    def format_summary(statistics: CollapseStatistics) -> str:
        """Format run statistics as text.

        Args:
            statistics: Statistics of the run.

        Returns:
            Formatted text string.
        """
        m = statistics.molecules
        c = statistics.clustering
        f = statistics.filtering
        v = statistics.validation
        known = statistics.classification.get("known", 0)
        novel = sum(statistics.classification.values()) - known

        lines = [
            "=" * 50,
            "COLLAPSE SUMMARY",
            "=" * 50,
            f"Cells in whitelist:      {statistics.cells:,}",
            f"Reference genes:         {statistics.reference_genes:,}",
            f"Reference transcripts:   {statistics.reference_transcripts:,}",
            f"Malformed model rows:    {statistics.reference_malformed:,}",
            "-" * 50,
            f"Reads seen:              {m.reads_seen:,}",
            f"Reads accepted:          {m.reads_accepted:,}",
            f"Reads outside cell list: {m.reads_rejected_cell:,}",
            f"Malformed reads:         {m.reads_malformed:,}",
            f"Molecules built:         {m.molecules_built:,}",
            f"Molecules < RNMIN:       {m.molecules_dropped:,}",
            "-" * 50,
            f"Isoform clusters:        {c.clusters_formed:,} in {c.genes:,} genes",
            f"Reference-seeded:        {c.seeded_clusters:,}",
            f"Novel clusters:          {c.novel_clusters:,}",
            f"Dropped (< MINEVIDENCE): {f.dropped:,} ({f.dropped_molecules:,} molecules)",
            f"Kept isoforms:           {f.kept:,}",
            f"Known isoforms:          {known:,}",
            f"Novel isoforms:          {novel:,}",
        ]

        for label, count in sorted(statistics.classification.items()):
            if label.startswith("novel:"):
                lines.append(f"  {label + ':':<23}{count:,}")

        lines.append("-" * 50)
        if statistics.validation_performed:
            lines.extend([
                f"Validated isoforms:      {v.validated:,}",
                f"TSS supported (CAGE):    {v.tss_valid:,}",
                f"TES supported (polyA):   {v.tes_valid:,}",
                f"Junctions supported:     {v.junctions_valid:,}",
                f"Fully validated:         {v.fully_validated:,}",
            ])
        else:
            lines.append(f"Validation:              not performed ({v.not_validated:,} isoforms)")

        if statistics.consensus_performed:
            lines.append(
                f"Consensus sequences:     {statistics.consensus_called:,} "
                f"({statistics.consensus_failed:,} failed, {statistics.consensus_skipped:,} skipped)"
            )
        else:
            lines.append("Consensus:               not performed")

        lines.append("=" * 50)
        return "\n".join(lines)

    @staticmethod
    def write_summary(statistics: CollapseStatistics, output_path: Path) -> None:
        """Write the text summary report."""
        with open(output_path, "w") as f:
            f.write(CollapseReportWriter.format_summary(statistics) + "\n")
        logger.info(f"Wrote summary to {output_path}")

    @staticmethod
    def write_summary_json(statistics: CollapseStatistics, output_path: Path) -> None:
        """Write the run statistics as JSON."""
        with open(output_path, "w") as f:
            json.dump(statistics.to_dict(), f, indent=2)
        logger.info(f"Wrote statistics to {output_path}")

    @staticmethod
    def write_all(result: CollapseResult, paths: OutputPaths) -> dict[str, Path]:
        """Write every output file of a run.

        Args:
            result: Pipeline result.
            paths: Output file paths.

        Returns:
            Dictionary of written files keyed by output kind.
        """
        paths.table.parent.mkdir(parents=True, exist_ok=True)
        clusters = list(result.iter_clusters())
        final = result.final_clusters()

        CollapseReportWriter.write_table(clusters, paths.table)
        write_refflat(clusters, paths.refflat)
        write_refflat(final, paths.final_refflat)
        write_gff(clusters, paths.gff)
        write_gff(final, paths.final_gff)
        CollapseReportWriter.write_summary(result.statistics, paths.summary)
        CollapseReportWriter.write_summary_json(result.statistics, paths.summary_json)

        written = {
            "table": paths.table,
            "refflat": paths.refflat,
            "final_refflat": paths.final_refflat,
            "gff": paths.gff,
            "final_gff": paths.final_gff,
            "summary": paths.summary,
            "summary_json": paths.summary_json,
        }

        if result.consensus is not None:
            n = write_fasta(consensus_records(clusters, result.consensus), paths.fasta)
            logger.info(f"Wrote {n} consensus sequences to {paths.fasta}")
            written["fasta"] = paths.fasta

        return written
