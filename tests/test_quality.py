"""
Tests for clustering quality measures.
"""
import pytest

from app.clustering.models import Point
from app.clustering.quality import ClusterMeasures, cluster_measures, f_score, silhouette


class TestClusterMeasures:
    """Test automatic vs manual agreement."""

    def test_single_cluster_disagreement(self):
        automatic = {"s1": 0, "s2": 0, "s3": 0}
        manual = {"s1": 0, "s2": 0, "s4": 0}

        report = cluster_measures(automatic, manual)
        measures = report.clusters[0].to_dict()

        assert measures["true_positive"] == 2
        assert measures["false_positive"] == 1
        assert measures["false_negative"] == 1
        assert measures["precision"] == 0.667
        assert measures["recall"] == 0.667
        assert measures["f1"] == 0.667

    def test_moved_student_counts_against_both_clusters(self):
        automatic = {"a": 0, "b": 0, "c": 1, "d": 1}
        manual = {"a": 0, "b": 1, "c": 1, "d": 1}

        report = cluster_measures(automatic, manual)
        first, second = report.clusters

        assert (first.true_positive, first.false_positive, first.false_negative) == (1, 1, 0)
        assert (second.true_positive, second.false_positive, second.false_negative) == (2, 0, 1)
        assert report.total.true_positive == 3
        assert report.total.false_positive == 1
        assert report.total.false_negative == 1
        assert report.total.precision == pytest.approx(0.75)

    def test_perfect_agreement(self):
        assignments = {"a": 0, "b": 1, "c": 1}

        report = cluster_measures(assignments, dict(assignments))

        assert report.total.precision == 1.0
        assert report.total.recall == 1.0
        assert report.total.f1 == 1.0
        assert report.total.f05 == 1.0
        assert report.total.f2 == 1.0

    def test_zero_denominators_are_zero(self):
        measures = ClusterMeasures(cluster_number=3)

        assert measures.precision == 0.0
        assert measures.recall == 0.0
        assert measures.f1 == 0.0
        assert measures.f2 == 0.0

    def test_cluster_only_in_manual_clustering(self):
        report = cluster_measures({"a": 0}, {"a": 2})

        numbers = [m.cluster_number for m in report.clusters]
        assert numbers == [0, 2]
        assert report.clusters[1].false_negative == 1
        assert report.clusters[1].precision == 0.0

    def test_report_to_dict(self):
        report = cluster_measures({"a": 0, "b": 1}, {"a": 0, "b": 1}).to_dict()

        assert len(report["clusters"]) == 2
        assert report["total"]["cluster_number"] is None
        assert report["total"]["f1"] == 1.0


class TestFScore:
    """Test F-beta weighting."""

    def test_weighted_scores(self):
        assert f_score(0.5, 1.0, 1.0) == pytest.approx(2 / 3)
        assert f_score(0.5, 1.0, 0.5) == pytest.approx(1.25 * 0.5 / (0.25 * 0.5 + 1.0))
        assert f_score(0.5, 1.0, 2.0) == pytest.approx(5 * 0.5 / (4 * 0.5 + 1.0))

    def test_zero_precision_and_recall(self):
        assert f_score(0.0, 0.0, 2.0) == 0.0


class TestSilhouette:
    """Test silhouette scoring of assignments."""

    def test_well_separated_groups(self, four_points):
        score = silhouette(four_points, {"s1": 0, "s2": 0, "s3": 1, "s4": 1})

        assert score is not None
        assert score > 0.9

    def test_single_cluster_is_undefined(self, four_points):
        assert silhouette(four_points, {s: 0 for s in four_points}) is None

    def test_one_cluster_per_student_is_undefined(self):
        points = {"a": Point(0, 0), "b": Point(1, 1)}

        assert silhouette(points, {"a": 0, "b": 1}) is None
