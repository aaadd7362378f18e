"""Tests for isoforge.isoforms.filter module."""

from isoforge.isoforms.cluster import IsoformCluster
from isoforge.isoforms.filter import EvidenceFilter

ACTB_202 = ((100, 200), (500, 600))
NOVEL = ((100, 250), (500, 600))


def make_cluster(make_molecule, blocks, n_molecules, gene="Actb", isoform_id=None, seqid="chr1"):
    cluster = IsoformCluster(isoform_id or f"{gene}.novel1", gene, seqid, "+", blocks)
    for _ in range(n_molecules):
        cluster.attach(make_molecule(blocks=blocks, gene=gene, seqid=seqid))
    return cluster


class TestEvidenceFilter:
    """Tests for minimum-evidence filtering."""

    def test_single_molecule_novel_dropped(self, reference, make_molecule):
        evidence_filter = EvidenceFilter(reference, min_evidence=2)
        assert not evidence_filter.passes(make_cluster(make_molecule, NOVEL, 1))

    def test_novel_at_threshold_kept(self, reference, make_molecule):
        evidence_filter = EvidenceFilter(reference, min_evidence=2)
        assert evidence_filter.passes(make_cluster(make_molecule, NOVEL, 2))

    def test_reference_match_always_kept(self, reference, make_molecule):
        """Test known structures bypass the molecule threshold."""
        evidence_filter = EvidenceFilter(reference, min_evidence=5)
        assert evidence_filter.passes(make_cluster(make_molecule, ACTB_202, 1, isoform_id="Actb-202"))

    def test_reference_on_other_seqid_not_exempt(self, reference, make_molecule):
        evidence_filter = EvidenceFilter(reference, min_evidence=2)
        assert not evidence_filter.passes(make_cluster(make_molecule, ACTB_202, 1, seqid="chr9"))

    def test_apply(self, reference, make_molecule):
        known = make_cluster(make_molecule, ACTB_202, 1, isoform_id="Actb-202")
        weak = make_cluster(make_molecule, NOVEL, 1)
        strong = make_cluster(make_molecule, ((100, 260), (500, 600)), 3, isoform_id="Actb.novel2")
        orphan = make_cluster(make_molecule, NOVEL, 1, gene="G9")

        evidence_filter = EvidenceFilter(reference, min_evidence=2)
        kept = evidence_filter.apply({"Actb": [known, weak, strong], "G9": [orphan]})

        assert list(kept) == ["Actb"]
        assert kept["Actb"] == [known, strong]
        assert evidence_filter.dropped == [weak, orphan]

        stats = evidence_filter.stats
        assert stats.total == 4
        assert stats.kept_reference == 1
        assert stats.kept_supported == 1
        assert stats.kept == 2
        assert stats.dropped == 2
        assert stats.dropped_molecules == 2
        assert stats.to_dict()["dropped"] == 2

    def test_apply_resets_state(self, reference, make_molecule):
        evidence_filter = EvidenceFilter(reference, min_evidence=2)
        evidence_filter.apply({"Actb": [make_cluster(make_molecule, NOVEL, 1)]})
        evidence_filter.apply({})
        assert evidence_filter.stats.total == 0
        assert evidence_filter.dropped == []
