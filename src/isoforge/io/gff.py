"""GFF3 output of isoform clusters.

Each gene becomes a ``gene`` feature spanning its isoforms, each isoform
an ``mRNA`` feature with support, classification and validation
attributes, followed by its ``exon`` features.

Example:
    >>> from isoforge.io.gff import write_gff
    >>> write_gff(clusters, "isoforms.gff")
"""

from __future__ import annotations

import logging
from collections import defaultdict
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable

from isoforge import __version__

if TYPE_CHECKING:
    from isoforge.isoforms.cluster import IsoformCluster

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

FEATURE_GENE = "gene"
FEATURE_MRNA = "mRNA"
FEATURE_EXON = "exon"

DEFAULT_SOURCE = "isoforge"


def format_attributes(attributes: dict[str, Any]) -> str:
    """Format attribute dictionary as GFF3 string.

    Args:
        attributes: Dictionary of attributes.

    Returns:
        Semicolon-separated key=value string.
    """
    if not attributes:
        return "."

    parts = []
    for key, value in attributes.items():
        # URL encode special characters
        value = str(value).replace(";", "%3B").replace("=", "%3D")
        value = value.replace("&", "%26").replace(",", "%2C")
        parts.append(f"{key}={value}")

    return ";".join(parts)


def cluster_attributes(cluster: "IsoformCluster") -> dict[str, Any]:
    """mRNA attributes describing a cluster."""
    attributes: dict[str, Any] = {
        "ID": cluster.isoform_id,
        "Parent": cluster.gene,
        "molecules": cluster.n_molecules,
        "reads": cluster.n_reads,
        "cells": cluster.n_cells,
    }

    classification = cluster.classification
    if classification is not None:
        attributes["category"] = classification.category.value
        if classification.transcript_id is not None:
            key = "reference" if classification.is_known else "closest_reference"
            attributes[key] = classification.transcript_id
        if not classification.is_known:
            attributes["new_splice_site"] = str(classification.has_new_splice_site).lower()
            attributes["altered_terminus"] = str(classification.has_altered_terminus).lower()

    validation = cluster.validation
    if validation is not None:
        attributes["validation"] = validation.state.value
        if validation.is_validated:
            attributes["tss_valid"] = str(validation.tss_valid).lower()
            attributes["tes_valid"] = str(validation.tes_valid).lower()
            attributes["junctions_valid"] = f"{sum(validation.junctions_valid)}/{len(validation.junctions_valid)}"
            attributes["fully_validated"] = str(validation.fully_validated).lower()

    return attributes


# =============================================================================
# GFF3 Writer
# =============================================================================


class GFF3Writer:
    """Write isoform clusters to GFF3 format.

    Example:
        >>> with GFF3Writer("output.gff") as writer:
        ...     writer.write_header()
        ...     writer.write_clusters(clusters)
    """

    def __init__(
        self,
        output_path: Path | str,
        source: str = DEFAULT_SOURCE,
    ) -> None:
        """Initialize the writer.

        Args:
            output_path: Output file path.
            source: Source field value for GFF3.
        """
        self.path = Path(output_path)
        self.source = source
        self._file = open(self.path, "w")
        self._header_written = False
        self.n_genes = 0
        self.n_isoforms = 0

    def __enter__(self) -> GFF3Writer:
        """Context manager entry."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.close()

    def close(self) -> None:
        """Close the output file."""
        if self._file:
            self._file.close()
            self._file = None

    def write_header(self) -> None:
        """Write GFF3 header with provenance."""
        self._file.write("##gff-version 3\n")
        self._file.write(f"#!processor isoforge v{__version__}\n")
        self._header_written = True

    def _format_line(
        self,
        seqid: str,
        feature_type: str,
        start: int,
        end: int,
        strand: str,
        attributes: dict[str, Any],
    ) -> str:
        """Format a GFF3 line from 0-based half-open coordinates."""
        # Convert to 1-based coordinates for GFF3
        gff_start = start + 1
        gff_end = end
        attr_str = format_attributes(attributes)
        return f"{seqid}\t{self.source}\t{feature_type}\t{gff_start}\t{gff_end}\t.\t{strand}\t.\t{attr_str}\n"

    def write_gene(self, gene: str, clusters: list["IsoformCluster"]) -> None:
        """Write a gene and its isoforms.

        Args:
            gene: Gene name.
            clusters: Isoforms of the gene (all on one scaffold).
        """
        if not clusters:
            return
        if not self._header_written:
            self.write_header()

        first = clusters[0]
        self._file.write(
            self._format_line(
                first.seqid,
                FEATURE_GENE,
                min(c.start for c in clusters),
                max(c.end for c in clusters),
                first.strand,
                {"ID": gene, "Name": gene, "isoforms": len(clusters)},
            )
        )
        self.n_genes += 1

        for cluster in clusters:
            self._write_isoform(cluster)

    def _write_isoform(self, cluster: "IsoformCluster") -> None:
        """Write an mRNA line and its exons."""
        self._file.write(
            self._format_line(
                cluster.seqid,
                FEATURE_MRNA,
                cluster.start,
                cluster.end,
                cluster.strand,
                cluster_attributes(cluster),
            )
        )
        self.n_isoforms += 1

        for i, (start, end) in enumerate(cluster.blocks, 1):
            exon_attrs = {
                "ID": f"{cluster.isoform_id}.exon{i}",
                "Parent": cluster.isoform_id,
            }
            self._file.write(
                self._format_line(
                    cluster.seqid,
                    FEATURE_EXON,
                    start,
                    end,
                    cluster.strand,
                    exon_attrs,
                )
            )

    def write_clusters(self, clusters: Iterable["IsoformCluster"]) -> None:
        """Write clusters grouped by gene, genes in sorted order."""
        by_gene: dict[str, list["IsoformCluster"]] = defaultdict(list)
        for cluster in clusters:
            by_gene[cluster.gene].append(cluster)
        for gene in sorted(by_gene):
            self.write_gene(gene, by_gene[gene])


# =============================================================================
# Convenience Functions
# =============================================================================


def write_gff(
    clusters: Iterable["IsoformCluster"],
    path: Path | str,
    source: str = DEFAULT_SOURCE,
) -> int:
    """Write isoform clusters to a GFF3 file.

    Args:
        clusters: Clusters to write.
        path: Output file path.
        source: Source field value.

    Returns:
        Number of isoforms written.
    """
    with GFF3Writer(path, source=source) as writer:
        writer.write_header()
        writer.write_clusters(clusters)
        n = writer.n_isoforms

    logger.info(f"Wrote {n} isoforms to {path}")
    return n
