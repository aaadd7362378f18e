"""Tests for isoforge.core.collapse module.

Tests cover:
- End-to-end collapsing of small read sets
- Validation and consensus stages
- Output paths and report writing
"""

import csv
import json

import pytest

from isoforge.config import Capabilities, Config
from isoforge.core.collapse import (
    TABLE_HEADERS,
    CollapsePipeline,
    CollapseReportWriter,
    CollapseStatistics,
    OutputPaths,
    cluster_row,
)
from isoforge.io.refflat import ReferenceGeneModel
from isoforge.isoforms.consensus import ConsensusTools
from isoforge.isoforms.evidence import load_evidence

ACTB_201 = ((100, 200), (300, 400), (500, 600))
ACTB_202 = ((100, 200), (500, 600))
NOVEL = ((100, 250), (500, 600))

CELLS = {"C1", "C2", "C3"}


def molecule_reads(make_read, blocks, gene="Actb", cell="C1", umi="U1", n=3, **kwargs):
    """Reads forming one molecule."""
    return [make_read(blocks=blocks, gene=gene, cell=cell, umi=umi, **kwargs) for _ in range(n)]


@pytest.fixture
def evidence(cage_bed, polya_bed, junction_bed):
    return load_evidence(cage_bed, polya_bed, junction_bed)


# =============================================================================
# Pipeline
# =============================================================================


class TestCollapsePipeline:
    """Tests for CollapsePipeline.run."""

    def test_single_novel_molecule_dropped(self, make_read, reference):
        """Test five reads of one novel molecule are dropped below MINEVIDENCE."""
        reads = molecule_reads(make_read, ((100, 200), (300, 400)), gene="G1", n=5)
        config = Config().override(collapse={"rn_min": 3, "min_evidence": 2})

        result = CollapsePipeline(reference, CELLS, config=config).run(reads)
        stats = result.statistics

        assert stats.molecules.reads_seen == 5
        assert stats.molecules.molecules_built == 1
        assert stats.clustering.clusters_formed == 1
        assert stats.filtering.dropped == 1
        assert stats.filtering.dropped_molecules == 1
        assert result.n_isoforms == 0
        assert len(result.dropped) == 1
        assert result.dropped[0].n_reads == 5

    def test_known_isoform_kept_with_one_molecule(self, make_read, reference):
        reads = molecule_reads(make_read, ACTB_202)
        result = CollapsePipeline(reference, CELLS).run(reads)

        clusters = list(result.iter_clusters())
        assert [c.isoform_id for c in clusters] == ["Actb-202"]
        assert clusters[0].classification.is_known
        assert result.statistics.classification == {"known": 1}
        assert result.final_clusters() == []

    def test_novel_isoform_with_support(self, make_read, reference):
        reads = (
            molecule_reads(make_read, NOVEL, umi="U1")
            + molecule_reads(make_read, ((101, 251), (499, 600)), umi="U2", cell="C2")
        )
        result = CollapsePipeline(reference, CELLS).run(reads)

        cluster = result.clusters["Actb"][0]
        assert cluster.isoform_id == "Actb.novel1"
        assert cluster.n_molecules == 2
        assert cluster.n_cells == 2
        assert cluster.classification.label == "novel:splice"
        assert result.statistics.filtering.kept_supported == 1

    def test_without_validation(self, make_read, reference):
        """Test nothing reaches the final set unvalidated."""
        reads = molecule_reads(make_read, NOVEL, umi="U1") + molecule_reads(make_read, NOVEL, umi="U2")
        result = CollapsePipeline(reference, CELLS).run(reads)

        assert not result.statistics.validation_performed
        assert result.statistics.validation.not_validated == 1
        assert result.final_clusters() == []

    def test_with_validation(self, make_read, reference, evidence):
        reads = (
            molecule_reads(make_read, ACTB_201, umi="U1")
            + molecule_reads(make_read, ((1000, 1100), (1200, 1300)), gene="Gapdh", strand="-", umi="U2")
        )
        pipeline = CollapsePipeline(
            reference,
            CELLS,
            capabilities=Capabilities(validation=True),
            evidence=evidence,
        )
        result = pipeline.run(reads)

        assert result.statistics.validation_performed
        assert result.statistics.validation.fully_validated == 2
        assert all(c.is_fully_validated for c in result.iter_clusters())
        assert [c.isoform_id for c in result.final_clusters()] == ["Actb-201", "Gapdh-201"]

    def test_known_isoform_failing_junction_not_final(self, make_read, reference, evidence):
        """Test a known isoform without junction support stays out of the final set."""
        reads = (
            molecule_reads(make_read, ACTB_201, umi="U1")
            + molecule_reads(make_read, ACTB_202, umi="U2")
        )
        pipeline = CollapsePipeline(
            reference,
            CELLS,
            capabilities=Capabilities(validation=True),
            evidence=evidence,
        )
        result = pipeline.run(reads)

        actb_202 = result.clusters["Actb"][1]
        assert actb_202.isoform_id == "Actb-202"
        assert actb_202.classification.is_known
        assert actb_202.validation.tss_valid
        assert actb_202.validation.tes_valid
        assert actb_202.validation.junctions_valid == (False,)
        assert not actb_202.is_fully_validated

        assert [c.isoform_id for c in result.final_clusters()] == ["Actb-201"]

    def test_validation_requires_evidence(self, reference):
        with pytest.raises(ValueError, match="no evidence"):
            CollapsePipeline(reference, CELLS, capabilities=Capabilities(validation=True))

    def test_consensus_single_molecule(self, make_read, reference):
        """Test clusters with one sequence take it as their consensus."""
        tools = ConsensusTools(poa="poa", racon="racon", minimap2="minimap2")
        config = Config().override(consensus={"threads": 1})
        pipeline = CollapsePipeline(reference, CELLS, config=config, capabilities=Capabilities(consensus_tools=tools))
        assert pipeline.needs_sequences

        reads = molecule_reads(make_read, ACTB_202, sequence="ACGTACGT")
        result = pipeline.run(reads)

        assert result.statistics.consensus_performed
        assert result.statistics.consensus_called == 1
        assert result.clusters["Actb"][0].consensus == "ACGTACGT"

    def test_reads_outside_cells_ignored(self, make_read, reference):
        reads = molecule_reads(make_read, ACTB_202, cell="C9")
        result = CollapsePipeline(reference, CELLS).run(reads)
        assert result.n_isoforms == 0
        assert result.statistics.molecules.reads_rejected_cell == 3

    def test_empty_input(self, reference):
        result = CollapsePipeline(reference, CELLS).run([])
        assert result.n_isoforms == 0
        assert result.clusters == {}


# =============================================================================
# Reports
# =============================================================================


class TestOutputPaths:
    """Tests for output file naming."""

    def test_build(self, tmp_path):
        paths = OutputPaths.build(tmp_path, "CollapseModel", delta=2, rn_min=3, min_evidence=2)
        assert paths.table == tmp_path / "CollapseModel.d2.rn3.e2.txt"
        assert paths.refflat.name == "CollapseModel.d2.rn3.e2.refflat.txt"
        assert paths.final_gff.name == "CollapseModel.d2.rn3.e2.final.gff"
        assert paths.fasta.name == "CollapseModel.d2.rn3.e2.fas"
        assert paths.summary_json.name == "CollapseModel.d2.rn3.e2.summary.json"

    def test_from_config(self, tmp_path):
        config = Config().override(collapse={"delta": 5})
        assert OutputPaths.from_config(tmp_path, "run", config).gff.name == "run.d5.rn3.e2.gff"


class TestCollapseReportWriter:
    """Tests for report writing."""

    @pytest.fixture
    def result(self, make_read, reference):
        reads = (
            molecule_reads(make_read, ACTB_202, umi="U1", sequence="ACGT")
            + molecule_reads(make_read, NOVEL, umi="U2")
            + molecule_reads(make_read, NOVEL, umi="U3", cell="C2")
            + molecule_reads(make_read, ((10, 20), (30, 40)), gene="G9", umi="U4")
        )
        return CollapsePipeline(reference, CELLS).run(reads)

    def test_cluster_row(self, result):
        row = cluster_row(result.clusters["Actb"][1])
        assert set(row) == set(TABLE_HEADERS)
        assert row["exons"] == "100-250,500-600"
        assert row["category"] == "novel"
        assert row["reference_id"] == "Actb-202"
        assert row["new_splice_site"] == "1"
        assert row["altered_terminus"] == "0"
        assert row["validation"] == "not_validated"
        assert row["tss_valid"] == "NA"

    def test_format_summary(self, result):
        text = CollapseReportWriter.format_summary(result.statistics)
        assert "COLLAPSE SUMMARY" in text
        assert "Dropped (< MINEVIDENCE): 1 (1 molecules)" in text
        assert "Known isoforms:          1" in text
        assert "Novel isoforms:          1" in text
        assert "novel:splice:" in text
        assert "Validation:              not performed" in text
        assert "Consensus:               not performed" in text

    def test_format_summary_empty(self):
        text = CollapseReportWriter.format_summary(CollapseStatistics())
        assert "Kept isoforms:           0" in text

    def test_write_all(self, tmp_path, result):
        paths = OutputPaths.build(tmp_path / "out", "run", 2, 3, 2)
        written = CollapseReportWriter.write_all(result, paths)

        assert set(written) == {
            "table", "refflat", "final_refflat", "gff", "final_gff", "summary", "summary_json",
        }
        assert all(p.exists() for p in written.values())
        assert not paths.fasta.exists()

        with open(paths.table) as f:
            rows = list(csv.DictReader(f, delimiter="\t"))
        assert [r["isoform_id"] for r in rows] == ["Actb-202", "Actb.novel1"]

        all_isoforms = ReferenceGeneModel.load(paths.refflat)
        assert [tx.transcript_id for tx in all_isoforms.iter_transcripts()] == ["Actb-202", "Actb.novel1"]
        assert paths.gff.read_text().count("\tmRNA\t") == 2

        # Without validation the final exports hold no isoforms
        assert paths.final_refflat.read_text() == ""
        assert paths.final_gff.read_text().startswith("##gff-version 3")
        assert "\tmRNA\t" not in paths.final_gff.read_text()
        assert "COLLAPSE SUMMARY" in paths.summary.read_text()

        with open(paths.summary_json) as f:
            stats = json.load(f)
        assert stats["cells"] == 3
        assert stats["filtering"]["dropped"] == 1
        assert stats["classification"] == {"known": 1, "novel:splice": 1}
        assert stats["validation"]["performed"] is False
        assert stats["validation"]["not_validated"] == 2
        assert stats["consensus"]["performed"] is False
