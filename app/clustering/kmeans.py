"""
K-Means Engine.

Lloyd's algorithm over student centroids with two extensions:

- a cluster left without members is given a regenerated centroid inside the
  bounding box of the student points and the pass cannot be the final one;
- a student may be pinned to a cluster by hand, which recomputes every
  centroid and holds that assignment for all later passes.

Iteration 0 is the random placement. Each later pass gets the next number
until the run converges; the converged pass is recorded as iteration -1.
"""
import logging
from typing import Dict, Optional

from app.clustering.context import ClusteringContext
from app.clustering.exceptions import InvalidClusterCountError, MissingCentroidsError, RunStateError
from app.clustering.geometry import (
    bounding_box,
    mean_centroids,
    nearest_clusters,
    regenerate_centroid,
    total_movement,
)
from app.clustering.models import (
    FINAL_ITERATION,
    CentroidVariant,
    ClusteringState,
    ClusterIteration,
    Point,
)
from app.clustering.palette import assign_colours

logger = logging.getLogger("app.clustering")


class KMeansEngine:
    """Iterative clustering of student centroids."""

    def __init__(self, context: ClusteringContext):
        """
        Args:
            context: Random source and thresholds. `start` fits the context's
                viewport to the student points; a run reloaded from storage
                should be continued with an already fitted context.
        """
        self.context = context

    @staticmethod
    def effective_k(points: Dict[str, Point], k: int) -> int:
        """Never cluster into more groups than there are distinct points."""
        if k < 2:
            raise InvalidClusterCountError(f"Number of clusters must be at least 2, got {k}")
        distinct = len({(point.x, point.y) for point in points.values()})
        return min(k, distinct)

    def run(self, points: Dict[str, Point], k: int,
            variant: CentroidVariant = CentroidVariant.GEOMETRIC) -> ClusteringState:
        """Cluster to convergence (or the pass cap)."""
        state = self.start(points, k, variant)
        return self.advance(state)

    def start(self, points: Dict[str, Point], k: int,
              variant: CentroidVariant = CentroidVariant.GEOMETRIC) -> ClusteringState:
        """Random placement and first assignment (iteration 0)."""
        if not points:
            raise MissingCentroidsError("No student centroids to cluster")

        effective = self.effective_k(points, k)
        self.context = self.context.fitted(points.values())
        if effective < k:
            logger.info(f"Reducing k from {k} to {effective}, only {effective} distinct student centroids")

        centroids = self._initial_centroids(effective)
        first = ClusterIteration(
            iteration=0,
            centroids=centroids,
            assignments=nearest_clusters(points, centroids),
            points=dict(points),
        )
        return ClusteringState(
            variant=variant,
            k=effective,
            colours=assign_colours(effective, self.context.rng),
            points=dict(points),
            iterations=[first],
            next_iteration=1,
        )

    def advance(self, state: ClusteringState, passes: Optional[int] = None) -> ClusteringState:
        """
        Run assignment+update passes.

        With ``passes`` the engine stops after that many passes even when not
        converged, so a caller can intervene. Without it the engine runs until
        convergence or the context's pass cap; hitting the cap finalizes the
        run in its last state.
        """
        limit = passes if passes is not None else self.context.max_passes
        done = 0
        while not state.finished and done < limit:
            self.step(state)
            done += 1

        if not state.finished and passes is None:
            logger.warning(
                f"K-means did not converge after {self.context.max_passes} passes, "
                f"finalizing run in its last state"
            )
            self.finalize(state)
        return state

    def step(self, state: ClusteringState) -> ClusterIteration:
        """One assignment+update pass."""
        if state.finished:
            return state.current

        previous = state.current
        assignments = nearest_clusters(state.points, previous.centroids)
        assignments.update(state.pinned)
        centroids, regenerated = self._update(state, previous.centroids, assignments)

        movement = total_movement(previous.centroids, centroids) * self.context.viewport.scale
        converged = not regenerated and movement <= self.context.convergence_distance

        iteration = ClusterIteration(
            iteration=FINAL_ITERATION if converged else state.next_iteration,
            centroids=centroids,
            assignments=assignments,
            points=dict(state.points),
            pinned=set(state.pinned),
            regenerated=regenerated,
            movement=movement,
            converged=converged,
        )
        if not converged:
            state.next_iteration += 1
        state.iterations.append(iteration)

        logger.debug(f"K-means pass {iteration.iteration}: movement={movement:.4f} regenerated={regenerated}")
        return iteration

    def reassign(self, state: ClusteringState, student_id: str, cluster_number: int) -> ClusterIteration:
        """
        Move a student to another cluster by hand.

        The assignment is pinned for every later pass and all centroids are
        recomputed. Allowed only after the first pass and before convergence.
        """
        if state.finished:
            raise RunStateError("Cannot reassign students after the run has converged")
        if len(state.iterations) < 2:
            raise RunStateError("Cannot reassign students before the first clustering pass")
        if student_id not in state.points:
            raise RunStateError(f"Student {student_id} is not part of this run")
        if cluster_number not in state.current.centroids:
            raise RunStateError(f"Unknown cluster number {cluster_number}")

        state.pinned[student_id] = cluster_number
        previous = state.current
        assignments = dict(previous.assignments)
        assignments.update(state.pinned)
        centroids, regenerated = self._update(state, previous.centroids, assignments)

        iteration = ClusterIteration(
            iteration=state.next_iteration,
            centroids=centroids,
            assignments=assignments,
            points=dict(state.points),
            pinned=set(state.pinned),
            regenerated=regenerated,
            movement=total_movement(previous.centroids, centroids) * self.context.viewport.scale,
        )
        state.next_iteration += 1
        state.iterations.append(iteration)

        logger.info(f"Student {student_id} manually moved to cluster {cluster_number}")
        return iteration

    def finalize(self, state: ClusteringState) -> ClusterIteration:
        """Record the current pass as the final iteration without convergence."""
        current = state.current
        final = ClusterIteration(
            iteration=FINAL_ITERATION,
            centroids=dict(current.centroids),
            assignments=dict(current.assignments),
            points=dict(current.points),
            pinned=set(current.pinned),
            movement=0.0,
            converged=False,
        )
        state.iterations.append(final)
        state.cap_reached = True
        return final

    def _initial_centroids(self, k: int) -> Dict[int, Point]:
        """Random screen positions inside the margins, kept apart from each other."""
        viewport = self.context.viewport
        rng = self.context.rng
        low_x, high_x = sorted((viewport.margin, viewport.width - viewport.margin))
        low_y, high_y = sorted((viewport.margin, viewport.height - viewport.margin))

        placed = []
        for number in range(k):
            candidate = None
            for _ in range(self.context.placement_attempts):
                candidate = Point(float(rng.uniform(low_x, high_x)), float(rng.uniform(low_y, high_y)))
                if all(candidate.distance_to(other) >= self.context.min_separation for other in placed):
                    break
            else:
                logger.warning(f"Could not keep minimum separation for initial centroid {number}")
            placed.append(candidate)

        return {number: viewport.to_normalized(point) for number, point in enumerate(placed)}

    def _update(self, state: ClusteringState, previous: Dict[int, Point],
                assignments: Dict[str, int]):
        """Mean update with regeneration of empty clusters."""
        centroids, empty = mean_centroids(state.points, assignments, previous)
        if not empty:
            return centroids, []

        box = bounding_box(state.points.values())
        min_distance = self.context.min_separation / self.context.viewport.scale
        for number in empty:
            avoid = list(centroids.values()) + [previous[number]]
            centroids[number] = regenerate_centroid(self.context.rng, box, avoid, min_distance)
            logger.warning(f"Cluster {number} has no members, regenerated centroid at {centroids[number]}")

        return dict(sorted(centroids.items())), empty
