"""Tests for isoforge.isoforms.classify module."""

import pytest

from isoforge.io.refflat import ReferenceGeneModel, Transcript
from isoforge.isoforms.classify import Classification, Classifier, IsoformCategory
from isoforge.isoforms.cluster import IsoformCluster


def cluster_for(blocks, gene="Actb", seqid="chr1", strand="+"):
    return IsoformCluster(f"{gene}.novel1", gene, seqid, strand, blocks)


class TestClassification:
    """Tests for the Classification record."""

    def test_known(self):
        c = Classification.known("Actb-201")
        assert c.is_known
        assert c.category is IsoformCategory.KNOWN
        assert c.label == "known"

    @pytest.mark.parametrize(
        "splice,terminus,label",
        [
            (False, False, "novel"),
            (True, False, "novel:splice"),
            (False, True, "novel:terminus"),
            (True, True, "novel:splice,terminus"),
        ],
    )
    def test_novel_labels(self, splice, terminus, label):
        c = Classification.novel("Actb-201", has_new_splice_site=splice, has_altered_terminus=terminus)
        assert not c.is_known
        assert c.label == label


class TestClassifier:
    """Tests for KNOWN/NOVEL classification."""

    def test_exact_reference_is_known(self, reference):
        result = Classifier(reference).classify(cluster_for(((100, 200), (300, 400), (500, 600))))
        assert result.is_known
        assert result.transcript_id == "Actb-201"

    def test_truncated_reference_is_known(self, reference):
        """Test relaxed terminals classify partial reads as known."""
        result = Classifier(reference).classify(cluster_for(((170, 200), (500, 550))))
        assert result.is_known
        assert result.transcript_id == "Actb-202"

    def test_exon_skipping_is_novel_without_new_sites(self):
        """Test a new exon combination reuses known splice sites."""
        model = ReferenceGeneModel([Transcript("T1", "Actb", "chr1", "+", ((100, 200), (300, 400), (500, 600)))])
        result = Classifier(model).classify(cluster_for(((100, 200), (500, 600))))
        assert not result.is_known
        assert not result.has_new_splice_site
        assert result.new_splice_sites == ()

    def test_new_splice_site(self, reference):
        result = Classifier(reference).classify(cluster_for(((100, 250), (500, 600))))
        assert result.has_new_splice_site
        assert result.new_splice_sites == (250,)
        assert result.transcript_id == "Actb-202"
        assert not result.has_altered_terminus

    def test_altered_terminus(self, reference):
        result = Classifier(reference).classify(cluster_for(((100, 200), (500, 700))))
        assert not result.has_new_splice_site
        assert result.has_altered_terminus
        assert result.label == "novel:terminus"

    def test_other_seqid_is_novel(self, reference):
        result = Classifier(reference).classify(cluster_for(((100, 200), (500, 600)), seqid="chr9"))
        assert not result.is_known

    def test_gene_without_reference(self, reference):
        multi = Classifier(reference).classify(cluster_for(((10, 20), (30, 40)), gene="Unknown"))
        single = Classifier(reference).classify(cluster_for(((10, 20),), gene="Unknown"))

        assert multi.transcript_id is None
        assert multi.has_new_splice_site
        assert multi.has_altered_terminus
        assert not single.has_new_splice_site

    def test_classify_all(self, reference):
        clusters = [
            cluster_for(((100, 200), (300, 400), (500, 600))),
            cluster_for(((100, 250), (500, 600))),
            cluster_for(((100, 200), (500, 700))),
        ]
        counts = Classifier(reference).classify_all(clusters)

        assert counts == {"known": 1, "novel:splice": 1, "novel:terminus": 1}
        assert all(c.classification is not None for c in clusters)
