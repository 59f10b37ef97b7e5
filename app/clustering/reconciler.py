"""
Incremental Reconciler.

Brings a finished clustering run up to date with student centroids that moved
after new log events arrived. The run keeps its identity and history: every
pass that changes something is appended as a new, more negative iteration
(-2, -3, ...), so the most negative iteration is always the current one.
"""
import logging
import math
from typing import Dict, Iterable, List

from app.clustering.context import ClusteringContext
from app.clustering.exceptions import MissingCentroidsError, RunStateError
from app.clustering.geometry import bounding_box, mean_centroids, nearest_clusters, regenerate_centroid
from app.clustering.models import ClusterIteration, Point, ReconcileResult

logger = logging.getLogger("app.clustering")


class IncrementalReconciler:
    """Re-converges one run against updated student centroids."""

    def __init__(self, context: ClusteringContext):
        self.context = context

    def reconcile(self, latest: ClusterIteration, current_points: Dict[str, Point],
                  tracked_points: Iterable[Point] = ()) -> ReconcileResult:
        """
        Re-assign the run's students and re-aggregate until centroids are stable.

        Args:
            latest: Current (most negative) iteration of a finished run
            current_points: Up-to-date centroid of every student in the run
            tracked_points: Every student centroid tracked for the run's
                configuration, used to bound regenerated centroids

        Returns:
            ReconcileResult with the iterations to append. A run that is
            already consistent with ``current_points`` yields no iterations.

        When students share points there can be more clusters than distinct
        points. That many empty clusters keep their previous centroid and do
        not count as regenerated.
        """
        if latest.iteration >= 0:
            raise RunStateError(f"Run has not finished its initial clustering (iteration {latest.iteration})")
        if not current_points:
            raise MissingCentroidsError("No student centroids to reconcile")

        epsilon = self.context.reconcile_epsilon
        tracked = list(tracked_points) or list(current_points.values())
        box = bounding_box(tracked)
        min_distance = self._regeneration_distance(box, len(latest.centroids))

        # Clusters beyond the number of distinct points can never receive members
        unfillable = max(len(latest.centroids) - len(set(current_points.values())), 0)

        state = latest
        next_number = latest.iteration - 1
        appended: List[ClusterIteration] = []

        for passes in range(1, self.context.reconcile_max_iterations + 1):
            assignments = nearest_clusters(current_points, state.centroids)
            centroids, empty = mean_centroids(current_points, assignments, state.centroids)
            regenerated = empty[:max(len(empty) - unfillable, 0)]
            for number in empty[len(regenerated):]:
                centroids[number] = state.centroids[number]
                logger.debug(f"Cluster {number} has no members and fewer distinct points than clusters, centroid kept")
            for number in regenerated:
                avoid = list(centroids.values()) + [state.centroids[number]]
                centroids[number] = regenerate_centroid(self.context.rng, box, avoid, min_distance)
                logger.warning(f"Cluster {number} lost all members during reconciliation, regenerated at {centroids[number]}")
            centroids = dict(sorted(centroids.items()))

            centroids_stable = not regenerated and self._same_centroids(state.centroids, centroids, epsilon)
            if centroids_stable and assignments == state.assignments \
                    and self._same_points(state.points, current_points, epsilon):
                if appended:
                    appended[-1].converged = True
                logger.debug(f"Reconciliation stable after {passes} passes, {len(appended)} new iterations")
                return ReconcileResult(iterations=appended, converged=True, cap_reached=False, passes=passes)

            iteration = ClusterIteration(
                iteration=next_number,
                centroids=centroids,
                assignments=assignments,
                points=dict(current_points),
                regenerated=regenerated,
                movement=sum(state.centroids[n].distance_to(c) for n, c in centroids.items()),
                converged=centroids_stable,
            )
            appended.append(iteration)
            next_number -= 1
            state = iteration

            if centroids_stable:
                return ReconcileResult(iterations=appended, converged=True, cap_reached=False, passes=passes)

        logger.warning(
            f"Reconciliation did not converge within {self.context.reconcile_max_iterations} passes, "
            f"run left at iteration {state.iteration}"
        )
        return ReconcileResult(
            iterations=appended,
            converged=False,
            cap_reached=True,
            passes=self.context.reconcile_max_iterations,
        )

    @staticmethod
    def _regeneration_distance(box, k: int) -> float:
        if box is None:
            return 0.0
        low, high = box
        return math.hypot(high.x - low.x, high.y - low.y) / (k + 1)

    @staticmethod
    def _same_centroids(previous: Dict[int, Point], current: Dict[int, Point], epsilon: float) -> bool:
        if set(previous) != set(current):
            return False
        return all(previous[number].close_to(current[number], epsilon) for number in current)

    @staticmethod
    def _same_points(previous: Dict[str, Point], current: Dict[str, Point], epsilon: float) -> bool:
        if set(previous) != set(current):
            return False
        return all(previous[student].close_to(current[student], epsilon) for student in current)
