"""Input/output handlers for isoforge.

- bam: Tagged long-read records and short-read junction counts (pysam)
- refflat: Reference gene model loading and refFlat export
- bed: CAGE peak and polyA site intervals
- barcodes: Cell barcode whitelists
- gff: GFF3 export of isoforms
- fasta: Consensus sequence FASTA
"""
