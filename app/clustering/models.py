"""
Value types shared by the clustering core.

All coordinates are in normalized graph space unless a name says otherwise.
"""
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

# Iteration number of the converged result of an initial k-means run.
FINAL_ITERATION = -1


@dataclass(frozen=True)
class Point:
    """A 2D coordinate."""

    x: float
    y: float

    def distance_to(self, other: "Point") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def close_to(self, other: "Point", epsilon: float) -> bool:
        """Component-wise comparison."""
        return abs(self.x - other.x) <= epsilon and abs(self.y - other.y) <= epsilon


class CentroidVariant(str, Enum):
    """Which student centroid a run clusters on."""

    GEOMETRIC = "geometric"
    DECOMPOSED = "decomposed"

    @property
    def uses_geometric(self) -> bool:
        return self is CentroidVariant.GEOMETRIC

    @classmethod
    def from_flag(cls, uses_geometric: bool) -> "CentroidVariant":
        return cls.GEOMETRIC if uses_geometric else cls.DECOMPOSED


@dataclass(frozen=True)
class AccessEvent:
    """A student viewing a course module."""

    student_id: str
    module_id: int
    time: int


@dataclass(frozen=True)
class ModuleNode:
    x: float
    y: float
    visible: bool = True


@dataclass
class GraphConfiguration:
    """
    One owner's layout of the course graph.

    Node coordinates are normalized to the unit disk; ``scale`` and ``center``
    convert them back to the layout they were drawn in.
    """

    owner_id: str
    configuration_id: int
    nodes: Dict[int, ModuleNode]
    scale: float = 1.0
    center: Point = Point(0.0, 0.0)

    @property
    def key(self) -> Tuple[str, int]:
        return (self.owner_id, self.configuration_id)

    def visible_point(self, module_id: int) -> Optional[Point]:
        """Coordinate of a module, or None when it is missing or hidden."""
        node = self.nodes.get(module_id)
        if node is None or not node.visible:
            return None
        return Point(node.x, node.y)


@dataclass
class GeometricCentroid:
    """Running sum of the visible module coordinates a student clicked."""

    student_id: str
    total_x: float = 0.0
    total_y: float = 0.0
    count: int = 0

    def add(self, point: Point) -> None:
        self.total_x += point.x
        self.total_y += point.y
        self.count += 1

    def merge(self, other: "GeometricCentroid") -> "GeometricCentroid":
        return GeometricCentroid(
            student_id=self.student_id,
            total_x=self.total_x + other.total_x,
            total_y=self.total_y + other.total_y,
            count=self.count + other.count,
        )

    @property
    def point(self) -> Point:
        if self.count == 0:
            raise ValueError(f"Student {self.student_id} has no visible clicks")
        return Point(self.total_x / self.count, self.total_y / self.count)


@dataclass
class ClusterIteration:
    """
    One recorded pass of a clustering run.

    ``points`` holds the student centroid each assignment was made with, so an
    iteration can be replayed without the centroid store.
    """

    iteration: int
    centroids: Dict[int, Point]
    assignments: Dict[str, int]
    points: Dict[str, Point]
    pinned: Set[str] = field(default_factory=set)
    regenerated: List[int] = field(default_factory=list)
    movement: float = 0.0
    converged: bool = False

    @property
    def cluster_numbers(self) -> List[int]:
        return sorted(self.centroids)

    def members(self) -> Dict[int, List[str]]:
        """Students per cluster number, empty clusters included."""
        groups: Dict[int, List[str]] = {number: [] for number in self.cluster_numbers}
        for student_id, number in self.assignments.items():
            groups[number].append(student_id)
        return groups


@dataclass
class ClusteringState:
    """Everything the k-means engine needs to continue a run."""

    variant: CentroidVariant
    k: int
    colours: Dict[int, str]
    points: Dict[str, Point]
    iterations: List[ClusterIteration] = field(default_factory=list)
    pinned: Dict[str, int] = field(default_factory=dict)
    next_iteration: int = 1
    cap_reached: bool = False

    @property
    def current(self) -> ClusterIteration:
        return self.iterations[-1]

    @property
    def finished(self) -> bool:
        return any(it.iteration == FINAL_ITERATION for it in self.iterations)

    @property
    def converged(self) -> bool:
        return self.finished and self.current.converged


@dataclass
class ReconcileResult:
    """Outcome of reconciling one run against updated centroids."""

    iterations: List[ClusterIteration]
    converged: bool
    cap_reached: bool
    passes: int

    @property
    def regenerated_clusters(self) -> int:
        return sum(len(it.regenerated) for it in self.iterations)
