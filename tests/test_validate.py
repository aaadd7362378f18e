"""Tests for isoforge.isoforms.validate and evidence loading."""

import pytest

from isoforge.io.bam import JunctionIndex
from isoforge.isoforms.cluster import IsoformCluster
from isoforge.isoforms.evidence import EvidenceSources, load_evidence, load_junctions
from isoforge.isoforms.validate import (
    ValidationResult,
    ValidationState,
    ValidationSummary,
    Validator,
    mark_not_validated,
    tes_position,
    tss_position,
)
from isoforge.utils.intervals import IntervalIndex

ACTB_201 = ((100, 200), (300, 400), (500, 600))
GAPDH_201 = ((1000, 1100), (1200, 1300))


@pytest.fixture
def evidence(cage_bed, polya_bed, junction_bed) -> EvidenceSources:
    """Evidence loaded from the shared BED fixtures."""
    return load_evidence(cage_bed, polya_bed, junction_bed)


def make_cluster(blocks, strand="+", seqid="chr1"):
    return IsoformCluster("T1", "G1", seqid, strand, blocks)


class TestPositions:
    """Tests for strand-aware TSS and TES positions."""

    def test_plus_strand(self):
        assert tss_position(ACTB_201, "+") == 100
        assert tes_position(ACTB_201, "+") == 599

    def test_minus_strand(self):
        assert tss_position(GAPDH_201, "-") == 1299
        assert tes_position(GAPDH_201, "-") == 1000


class TestEvidenceLoading:
    """Tests for loading validation sources."""

    def test_load_evidence(self, evidence):
        assert len(evidence.cage) == 2
        assert len(evidence.polya) == 2
        assert evidence.junctions.count("chr1", 200, 300) == 4

    def test_load_junctions_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_junctions(tmp_path / "short.bam")

    def test_load_evidence_missing_bed(self, tmp_path, junction_bed):
        with pytest.raises(FileNotFoundError):
            load_evidence(tmp_path / "cage.bed", tmp_path / "polya.bed", junction_bed)


class TestValidator:
    """Tests for TSS, TES and junction validation."""

    def test_fully_validated_plus(self, evidence):
        result = Validator(evidence).validate(make_cluster(ACTB_201))

        assert result.state is ValidationState.VALIDATED
        assert result.tss_valid
        assert result.tss_distance == 0
        assert result.tes_valid
        assert result.tes_distance == 11
        assert result.junctions_valid == (True, True)
        assert result.junction_counts == (4, 2)
        assert result.fully_validated

    def test_fully_validated_minus(self, evidence):
        """Test minus-strand TSS uses the last exon end."""
        result = Validator(evidence).validate(make_cluster(GAPDH_201, strand="-"))

        assert result.tss_distance == 0
        assert result.tes_distance == 6
        assert result.junction_counts == (3,)
        assert result.fully_validated

    def test_wrong_strand_peaks_ignored(self, evidence):
        result = Validator(evidence).validate(make_cluster(GAPDH_201, strand="+"))
        assert not result.tss_valid
        assert not result.fully_validated

    def test_cutoffs(self, evidence):
        validator = Validator(evidence, cage_cutoff=50, polya_cutoff=10, junction_cutoff=3)
        result = validator.validate(make_cluster(ACTB_201))

        assert result.tss_valid
        assert not result.tes_valid
        assert result.tes_distance is None
        assert result.junctions_valid == (True, False)
        assert not result.all_junctions_valid
        assert not result.fully_validated

    def test_all_checks_required(self, evidence):
        """Test one missing junction blocks full validation."""
        blocks = ((100, 200), (300, 450), (500, 600))
        result = Validator(evidence).validate(make_cluster(blocks))

        assert result.tss_valid and result.tes_valid
        assert result.junctions_valid == (True, False)
        assert not result.fully_validated

    def test_single_exon_junctions_vacuous(self):
        evidence = EvidenceSources(
            cage=IntervalIndex([("chr2", 50, 60, "+")]),
            polya=IntervalIndex([("chr2", 495, 500, ".")]),
            junctions=JunctionIndex({}),
        )
        result = Validator(evidence).validate(make_cluster(((50, 500),), seqid="chr2"))

        assert result.junctions_valid == ()
        assert result.all_junctions_valid
        assert result.fully_validated

    def test_validate_all(self, evidence):
        clusters = [make_cluster(ACTB_201), make_cluster(GAPDH_201, strand="+")]
        summary = Validator(evidence).validate_all(clusters)

        assert summary.validated == 2
        assert summary.fully_validated == 1
        assert summary.tss_valid == 1
        assert summary.junctions_valid == 2
        assert clusters[0].is_fully_validated
        assert not clusters[1].is_fully_validated


class TestNotValidated:
    """Tests for runs without evidence."""

    def test_not_validated_result(self):
        result = ValidationResult.not_validated()
        assert not result.is_validated
        assert not result.fully_validated

    def test_mark_not_validated(self):
        clusters = [make_cluster(ACTB_201), make_cluster(GAPDH_201)]
        summary = mark_not_validated(clusters)

        assert summary.not_validated == 2
        assert summary.validated == 0
        assert all(c.validation.state is ValidationState.NOT_VALIDATED for c in clusters)
        assert not any(c.is_fully_validated for c in clusters)

    def test_summary_to_dict(self):
        summary = ValidationSummary()
        summary.add(ValidationResult.not_validated())
        assert summary.to_dict()["not_validated"] == 1
