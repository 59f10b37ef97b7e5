"""
Tests for the centroid aggregator.
"""
import itertools

import pytest

from app.clustering.aggregator import (
    CentroidAggregator,
    decomposed_centroids,
    geometric_centroids,
    merge_centroids,
    order_events,
)
from app.clustering.models import AccessEvent, GeometricCentroid, GraphConfiguration, ModuleNode, Point


class TestGeometricCentroids:
    """Test running-sum centroids."""

    def test_mean_of_visible_clicks(self, configuration, sample_events):
        centroids = geometric_centroids(sample_events, configuration)

        alice = centroids["alice"]
        assert alice.count == 3
        assert alice.point == Point(0.0, pytest.approx(1 / 3))

    def test_hidden_module_is_skipped(self, configuration, sample_events):
        centroids = geometric_centroids(sample_events, configuration)

        bob = centroids["bob"]
        assert bob.count == 2
        assert bob.point == Point(1.0, 0.0)

    def test_student_without_visible_clicks_has_no_centroid(self, configuration, sample_events):
        centroids = geometric_centroids(sample_events, configuration)

        assert "carol" not in centroids

    def test_unknown_module_is_skipped(self, configuration):
        events = [AccessEvent("dave", 99, 1), AccessEvent("dave", 1, 2)]
        centroids = geometric_centroids(events, configuration)

        assert centroids["dave"].count == 1

    def test_order_independence(self, configuration, sample_events):
        expected = {s: (c.total_x, c.total_y, c.count) for s, c in geometric_centroids(sample_events, configuration).items()}

        for permutation in itertools.islice(itertools.permutations(sample_events), 50):
            result = geometric_centroids(permutation, configuration)
            assert {s: (c.total_x, c.total_y, c.count) for s, c in result.items()} == expected

    def test_incremental_merge_matches_full_history(self, configuration, sample_events):
        first, second = sample_events[:3], sample_events[3:]
        merged = merge_centroids(geometric_centroids(first, configuration), geometric_centroids(second, configuration))
        full = geometric_centroids(sample_events, configuration)

        assert set(merged) == set(full)
        for student_id, centroid in full.items():
            assert merged[student_id].count == centroid.count
            assert merged[student_id].point == centroid.point

    def test_empty_centroid_has_no_point(self):
        with pytest.raises(ValueError):
            GeometricCentroid("nobody").point


class TestDecomposedCentroids:
    """Test midpoint centroids."""

    def test_midpoint_of_odd_sequence(self, configuration, sample_events):
        centres = decomposed_centroids(sample_events, configuration)

        # alice clicked 1, 2, 3: index 1
        assert centres["alice"] == Point(0.0, 1.0)

    def test_midpoint_of_even_sequence(self, configuration):
        events = [AccessEvent("eve", module, time) for time, module in enumerate([1, 2, 3, 1])]
        centres = decomposed_centroids(events, configuration)

        # index 4 // 2 == 2
        assert centres["eve"] == Point(1.0, 0.0)

    def test_hidden_nodes_are_filtered_before_midpoint(self, configuration):
        events = [AccessEvent("eve", module, time) for time, module in enumerate([4, 1, 4, 3, 2])]
        centres = decomposed_centroids(events, configuration)

        # visible sequence is 1, 3, 2
        assert centres["eve"] == Point(1.0, 0.0)

    def test_uses_timestamp_order(self, configuration):
        events = [AccessEvent("eve", 3, 30), AccessEvent("eve", 1, 10), AccessEvent("eve", 2, 20)]
        centres = decomposed_centroids(events, configuration)

        assert centres["eve"] == Point(0.0, 1.0)

    def test_deterministic(self, configuration, sample_events):
        assert decomposed_centroids(sample_events, configuration) == decomposed_centroids(sample_events, configuration)

    def test_student_without_visible_clicks_has_no_centre(self, configuration, sample_events):
        assert "carol" not in decomposed_centroids(sample_events, configuration)


class TestCentroidAggregator:
    """Test aggregation across configurations."""

    def test_each_configuration_uses_its_own_visibility(self, configuration, sample_events):
        other = GraphConfiguration(
            owner_id="researcher",
            configuration_id=1,
            nodes={module: ModuleNode(node.x, node.y) for module, node in configuration.nodes.items()},
        )
        aggregator = CentroidAggregator([configuration, other])

        increments = aggregator.accumulate(sample_events)

        assert "carol" not in increments[("teacher", 1)]
        assert increments[("researcher", 1)]["carol"].point == Point(0.0, -1.0)

    def test_decompose_keys_by_configuration(self, configuration, sample_events):
        aggregator = CentroidAggregator([configuration])

        centres = aggregator.decompose(sample_events)

        assert set(centres) == {("teacher", 1)}
        assert centres[("teacher", 1)]["bob"] == Point(1.0, 0.0)

    def test_order_events(self, sample_events):
        ordered = order_events(reversed(sample_events))

        assert [e.student_id for e in ordered] == ["alice"] * 3 + ["bob"] * 3 + ["carol"]
        assert [e.time for e in ordered[:3]] == [100, 110, 120]
