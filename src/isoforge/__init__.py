"""isoforge: isoform collapsing for single-cell long-read transcriptomics.

isoforge turns barcoded, UMI-tagged long-read alignments into a refined
isoform catalog: reads are merged into molecules, molecules clustered
into isoforms, isoforms filtered, classified against a reference gene
model, validated against CAGE, polyA and short-read evidence, and
optionally consensus-sequenced.

Example:
    >>> import isoforge
    >>> isoforge.__version__
    '0.1.0'

Modules:
    io: Readers and writers for BAM, refFlat, BED, GFF3 and FASTA files
    isoforms: Molecule building, clustering, filtering, classification,
        validation and consensus calling
    core: Pipeline orchestration and reports
    parallel: Parallel execution utilities
    utils: Logging and interval utilities
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
