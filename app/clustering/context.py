"""
Per-invocation clustering context.

Nothing here is global: every engine or reconciler call receives a context
carrying its own random source and thresholds.
"""
from dataclasses import dataclass, field
from typing import Iterable, Optional

import numpy as np

from app.clustering.models import Point


@dataclass
class Viewport:
    """
    Screen area the clustering is drawn in.

    ``origin`` is the normalized point shown at the centre of the screen and
    ``scale`` the number of screen units per normalized unit.
    """

    width: float = 800.0
    height: float = 600.0
    margin: float = 100.0
    scale: float = 1.0
    origin: Point = Point(0.0, 0.0)

    def to_screen(self, point: Point) -> Point:
        return Point(
            (point.x - self.origin.x) * self.scale + self.width / 2,
            (point.y - self.origin.y) * self.scale + self.height / 2,
        )

    def to_normalized(self, point: Point) -> Point:
        return Point(
            (point.x - self.width / 2) / self.scale + self.origin.x,
            (point.y - self.height / 2) / self.scale + self.origin.y,
        )

    @classmethod
    def fit(cls, points: Iterable[Point], width: float = 800.0, height: float = 600.0,
            margin: float = 100.0) -> "Viewport":
        """
        Fit the viewport so every point lands inside the usable area.

        Centres on the box centre of the points and scales by the farthest
        point in x and y, shrunk by 10%.
        """
        points = list(points)
        if not points:
            return cls(width=width, height=height, margin=margin)

        min_x = min(p.x for p in points)
        max_x = max(p.x for p in points)
        min_y = min(p.y for p in points)
        max_y = max(p.y for p in points)
        origin = Point((min_x + max_x) / 2, (min_y + max_y) / 2)

        half_width = max(width / 2 - margin, 1.0)
        half_height = max(height / 2 - margin, 1.0)
        spread_x = max_x - origin.x
        spread_y = max_y - origin.y

        candidates = []
        if spread_x > 0:
            candidates.append(half_width / spread_x)
        if spread_y > 0:
            candidates.append(half_height / spread_y)

        # Single point, nothing to fit
        scale = min(candidates) * 0.9 if candidates else 1.0
        return cls(width=width, height=height, margin=margin, scale=scale, origin=origin)


@dataclass
class ClusteringContext:
    """Random source, viewport and thresholds for one clustering invocation."""

    rng: np.random.Generator = field(default_factory=np.random.default_rng)
    viewport: Viewport = field(default_factory=Viewport)
    convergence_distance: float = 1.0
    min_separation: float = 100.0
    max_passes: int = 100
    placement_attempts: int = 1000
    reconcile_epsilon: float = 0.000001
    reconcile_max_iterations: int = 100

    @classmethod
    def create(cls, seed: Optional[int] = None, **overrides) -> "ClusteringContext":
        """Build a context with a seeded generator."""
        return cls(rng=np.random.default_rng(seed), **overrides)

    def fitted(self, points: Iterable[Point]) -> "ClusteringContext":
        """Copy of this context whose viewport is fitted to ``points``."""
        viewport = Viewport.fit(
            points,
            width=self.viewport.width,
            height=self.viewport.height,
            margin=self.viewport.margin,
        )
        return ClusteringContext(
            rng=self.rng,
            viewport=viewport,
            convergence_distance=self.convergence_distance,
            min_separation=self.min_separation,
            max_passes=self.max_passes,
            placement_attempts=self.placement_attempts,
            reconcile_epsilon=self.reconcile_epsilon,
            reconcile_max_iterations=self.reconcile_max_iterations,
        )
