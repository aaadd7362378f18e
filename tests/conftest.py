"""Pytest configuration and shared fixtures for isoforge tests.

Fixtures are organized by category:

- Reference fixtures: refFlat files and loaded gene models
- Read and molecule factories: build records programmatically
- Evidence fixtures: CAGE, polyA and junction files
"""

from itertools import count
from pathlib import Path

import pytest

from isoforge.io.bam import ReadRecord
from isoforge.io.refflat import ReferenceGeneModel
from isoforge.isoforms.molecules import Molecule, MoleculeKey


# =============================================================================
# Reference Fixtures
# =============================================================================

REFFLAT_ROWS = [
    # gene, name, chrom, strand, txStart, txEnd, cdsStart, cdsEnd, exonCount, exonStarts, exonEnds
    ["Actb", "Actb-201", "chr1", "+", "100", "600", "120", "580", "3", "100,300,500,", "200,400,600,"],
    ["Actb", "Actb-202", "chr1", "+", "100", "600", "120", "580", "2", "100,500,", "200,600,"],
    ["Gapdh", "Gapdh-201", "chr1", "-", "1000", "1300", "1000", "1300", "2", "1000,1200,", "1100,1300,"],
    ["Mono", "Mono-201", "chr2", "+", "50", "500", "50", "500", "1", "50,", "500,"],
]


def write_refflat_rows(path: Path, rows: list[list[str]]) -> Path:
    """Write refFlat rows to a file."""
    with open(path, "w") as f:
        for row in rows:
            f.write("\t".join(row) + "\n")
    return path


@pytest.fixture
def refflat_path(tmp_path: Path) -> Path:
    """refFlat with three genes.

    - Actb (chr1, +): Actb-201 with three exons, Actb-202 skipping exon 2
    - Gapdh (chr1, -): Gapdh-201 with two exons
    - Mono (chr2, +): single-exon Mono-201
    """
    return write_refflat_rows(tmp_path / "refFlat.txt", REFFLAT_ROWS)


@pytest.fixture
def reference(refflat_path: Path) -> ReferenceGeneModel:
    """Loaded reference gene model."""
    return ReferenceGeneModel.load(refflat_path)


@pytest.fixture
def empty_reference() -> ReferenceGeneModel:
    """Gene model without transcripts."""
    return ReferenceGeneModel([])


# =============================================================================
# Read and Molecule Factories
# =============================================================================


@pytest.fixture
def make_read():
    """Factory for ReadRecord objects with sensible defaults."""
    counter = count(1)

    def _make(
        blocks=((100, 200), (300, 400)),
        cell="C1",
        umi="U1",
        gene="G1",
        seqid="chr1",
        strand="+",
        read_count=1,
        sequence=None,
        isoform=None,
    ) -> ReadRecord:
        return ReadRecord(
            name=f"read{next(counter)}",
            seqid=seqid,
            strand=strand,
            blocks=tuple(blocks),
            cell=cell,
            umi=umi,
            gene=gene,
            isoform=isoform,
            read_count=read_count,
            sequence=sequence,
        )

    return _make


@pytest.fixture
def make_molecule():
    """Factory for Molecule objects; UMIs default to a running counter."""
    counter = count(1)

    def _make(
        blocks=((100, 200), (300, 400)),
        gene="Actb",
        cell="C1",
        umi=None,
        seqid="chr1",
        strand="+",
        read_count=3,
        sequence=None,
    ) -> Molecule:
        return Molecule(
            key=MoleculeKey(cell, umi or f"U{next(counter)}", gene),
            seqid=seqid,
            strand=strand,
            blocks=tuple(blocks),
            read_count=read_count,
            sequence=sequence,
        )

    return _make


# =============================================================================
# Evidence Fixtures
# =============================================================================


@pytest.fixture
def cage_bed(tmp_path: Path) -> Path:
    """CAGE peaks near the Actb (+) and Gapdh (-) transcription starts."""
    path = tmp_path / "cage.bed"
    path.write_text(
        "track name=cage\n"
        "chr1\t90\t110\tpeak1\t10\t+\n"
        "chr1\t1290\t1310\tpeak2\t8\t-\n"
    )
    return path


@pytest.fixture
def polya_bed(tmp_path: Path) -> Path:
    """PolyA sites near the Actb (+) and Gapdh (-) transcription ends."""
    path = tmp_path / "polya.bed"
    path.write_text(
        "chr1\t610\t615\tpas1\t5\t+\n"
        "chr1\t990\t995\tpas2\t5\t-\n"
    )
    return path


@pytest.fixture
def junction_bed(tmp_path: Path) -> Path:
    """Short-read junctions in BED6+1 format (column 7 holds the count)."""
    path = tmp_path / "junctions.bed"
    path.write_text(
        "#chrom\tstart\tend\tname\tscore\tstrand\tread_count\n"
        "chr1\t200\t300\tJUNC000000\t4\t+\t4\n"
        "chr1\t400\t500\tJUNC000001\t2\t+\t2\n"
        "chr1\t1100\t1200\tJUNC000002\t3\t-\t3\n"
    )
    return path


@pytest.fixture
def cells_csv(tmp_path: Path) -> Path:
    """Cell barcode whitelist with a header line."""
    path = tmp_path / "barcodes.csv"
    path.write_text("barcode,n_reads\nC1,100\nC2,80\nC3,50\n")
    return path
