"""
Centroid Aggregator: raw access events to per-student centroids.

Two variants are produced per graph configuration:

- geometric: running mean of every visible module a student clicked. It is a
  commutative sum, so new events are merged additively and never need the
  history.
- decomposed: coordinate of the visible module at the temporal midpoint
  (index ``n // 2``) of the student's ordered click sequence. The midpoint
  moves as clicks arrive, so it is always recomputed from the full history.
"""
import logging
from typing import Dict, Iterable, List, Tuple

from app.clustering.models import AccessEvent, GeometricCentroid, GraphConfiguration, Point

logger = logging.getLogger("app.clustering")

ConfigurationKey = Tuple[str, int]


def order_events(events: Iterable[AccessEvent]) -> List[AccessEvent]:
    """Events grouped by student, each student's events in timestamp order."""
    return sorted(events, key=lambda event: (event.student_id, event.time))


def geometric_centroids(events: Iterable[AccessEvent],
                        configuration: GraphConfiguration) -> Dict[str, GeometricCentroid]:
    """Sum the visible clicked coordinates per student for one configuration."""
    centroids: Dict[str, GeometricCentroid] = {}
    for event in events:
        point = configuration.visible_point(event.module_id)
        if point is None:
            continue
        centroid = centroids.get(event.student_id)
        if centroid is None:
            centroid = centroids[event.student_id] = GeometricCentroid(event.student_id)
        centroid.add(point)
    return centroids


def decomposed_centroids(events: Iterable[AccessEvent], configuration: GraphConfiguration) -> Dict[str, Point]:
    """Midpoint node of each student's visible click sequence."""
    clicks: Dict[str, List[Point]] = {}
    for event in order_events(events):
        point = configuration.visible_point(event.module_id)
        if point is not None:
            clicks.setdefault(event.student_id, []).append(point)

    return {student_id: points[len(points) // 2] for student_id, points in clicks.items()}


def merge_centroids(existing: Dict[str, GeometricCentroid],
                    increments: Dict[str, GeometricCentroid]) -> Dict[str, GeometricCentroid]:
    """Add new sums onto stored running sums."""
    merged = dict(existing)
    for student_id, increment in increments.items():
        current = merged.get(student_id)
        merged[student_id] = increment if current is None else current.merge(increment)
    return merged


class CentroidAggregator:
    """Aggregates events for several graph configurations at once."""

    def __init__(self, configurations: Iterable[GraphConfiguration]):
        self.configurations = list(configurations)

    def accumulate(self, events: Iterable[AccessEvent]) -> Dict[ConfigurationKey, Dict[str, GeometricCentroid]]:
        """
        Geometric increments produced by a batch of new events.

        Events for modules missing from, or hidden in, a configuration are
        skipped for that configuration only.
        """
        events = list(events)
        increments = {}
        for configuration in self.configurations:
            increments[configuration.key] = geometric_centroids(events, configuration)
            logger.debug(
                f"Accumulated {len(events)} events for configuration {configuration.key}: "
                f"{len(increments[configuration.key])} students"
            )
        return increments

    def decompose(self, history: Iterable[AccessEvent]) -> Dict[ConfigurationKey, Dict[str, Point]]:
        """Decomposed centroids from the complete event history."""
        ordered = order_events(history)
        return {
            configuration.key: decomposed_centroids(ordered, configuration)
            for configuration in self.configurations
        }
