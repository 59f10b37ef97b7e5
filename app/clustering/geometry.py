"""
Assignment and update primitives shared by the k-means engine and the
reconciler.
"""
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from app.clustering.models import Point


def nearest_clusters(points: Dict[str, Point], centroids: Dict[int, Point]) -> Dict[str, int]:
    """
    Assign every student to the cluster with the nearest centroid.

    Ties go to the lowest cluster number.
    """
    if not points or not centroids:
        return {}

    numbers = sorted(centroids)
    students = list(points)
    student_matrix = np.array([[points[s].x, points[s].y] for s in students], dtype=float)
    centroid_matrix = np.array([[centroids[n].x, centroids[n].y] for n in numbers], dtype=float)

    distances = np.linalg.norm(student_matrix[:, None, :] - centroid_matrix[None, :, :], axis=2)
    # argmin returns the first minimum, i.e. the lowest cluster number
    nearest = np.argmin(distances, axis=1)
    return {student: numbers[int(index)] for student, index in zip(students, nearest)}


def mean_centroids(points: Dict[str, Point], assignments: Dict[str, int],
                   numbers: Iterable[int]) -> Tuple[Dict[int, Point], List[int]]:
    """
    Mean of the member points of each cluster.

    Returns:
        Tuple of (centroids of clusters with members, numbers of empty clusters)
    """
    sums = {number: [0.0, 0.0, 0] for number in numbers}
    for student_id, number in assignments.items():
        point = points[student_id]
        total = sums[number]
        total[0] += point.x
        total[1] += point.y
        total[2] += 1

    centroids = {}
    empty = []
    for number in sorted(sums):
        tx, ty, n = sums[number]
        if n == 0:
            empty.append(number)
        else:
            centroids[number] = Point(tx / n, ty / n)
    return centroids, empty


def bounding_box(points: Iterable[Point]) -> Optional[Tuple[Point, Point]]:
    points = list(points)
    if not points:
        return None
    return (
        Point(min(p.x for p in points), min(p.y for p in points)),
        Point(max(p.x for p in points), max(p.y for p in points)),
    )


def regenerate_centroid(rng: np.random.Generator, box: Tuple[Point, Point], avoid: List[Point],
                        min_distance: float, attempts: int = 100) -> Point:
    """
    Random point inside ``box`` kept away from the ``avoid`` points.

    Falls back to the candidate farthest from its nearest neighbour when no
    draw satisfies ``min_distance``.
    """
    low, high = box
    best = None
    best_gap = -1.0
    for _ in range(max(attempts, 1)):
        candidate = Point(float(rng.uniform(low.x, high.x)), float(rng.uniform(low.y, high.y)))
        if not avoid:
            return candidate
        gap = min(candidate.distance_to(other) for other in avoid)
        if gap >= min_distance:
            return candidate
        if gap > best_gap:
            best, best_gap = candidate, gap
    return best


def total_movement(previous: Dict[int, Point], current: Dict[int, Point]) -> float:
    """Sum of the distances each cluster centroid moved."""
    return sum(previous[number].distance_to(current[number]) for number in current if number in previous)
