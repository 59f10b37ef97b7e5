"""
Reconcile service: keeps finished clustering runs consistent with new centroids.
"""
import logging
import time
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from app.clustering.exceptions import ClusteringError
from app.clustering.reconciler import IncrementalReconciler
from app.models.cluster import ClusterRecord
from app.services.centroid_service import CentroidService
from app.services.cluster_service import ClusterService
from app.services.config_service import config_service
from app.services.graph_service import GraphService
from app.services.ml_monitoring_service import MLMonitoringService

logger = logging.getLogger("app.reconcile")


class ReconcileService:
    """Service for reconciling clustering runs after log updates."""

    def __init__(self):
        self.graph_service = GraphService()
        self.centroid_service = CentroidService()
        self.cluster_service = ClusterService()
        self.monitoring_service = MLMonitoringService()
        self.logger = logger

    def reconcile_course(self, course_id: int, db: Session) -> Dict[str, Any]:
        """
        Reconcile every run of every owner in a course.

        Returns:
            Dictionary with per-owner results
        """
        self.logger.info(f"Reconciling clustering runs of course {course_id}")
        owners = {}
        for owner_id, configuration_ids in sorted(self.graph_service.configurations_to_update(course_id, db).items()):
            owners[owner_id] = self.reconcile_owner(course_id, owner_id, db, configuration_ids)

        runs = [run for owner in owners.values() for run in owner["runs"]]
        return {
            "course_id": course_id,
            "owners": owners,
            "runs": len(runs),
            "iterations_added": sum(run.get("iterations_added", 0) for run in runs),
            "cap_reached": sum(1 for run in runs if run.get("cap_reached")),
        }

    def reconcile_owner(
        self,
        course_id: int,
        owner_id: str,
        db: Session,
        configuration_ids: Optional[Iterable[int]] = None,
    ) -> Dict[str, Any]:
        """Reconcile the finished runs of one owner's configurations."""
        if configuration_ids is None:
            configuration_ids = self.graph_service.configurations_to_update(course_id, db).get(owner_id, set())

        results = []
        for configuration_id in sorted(configuration_ids):
            run_ids = [
                run_id
                for (run_id,) in db.query(ClusterRecord.run_id)
                .filter(
                    and_(
                        ClusterRecord.course_id == course_id,
                        ClusterRecord.owner_id == owner_id,
                        ClusterRecord.configuration_id == configuration_id,
                    )
                )
                .distinct()
                .order_by(ClusterRecord.run_id)
                .all()
            ]
            for run_id in run_ids:
                try:
                    results.append(self.reconcile_run(course_id, owner_id, configuration_id, run_id, db))
                except ClusteringError as e:
                    # One broken run must not block the others
                    self.logger.error(f"Skipping run {run_id} of configuration {configuration_id}: {e}")
                    results.append(
                        {"configuration_id": configuration_id, "run_id": run_id, "status": "failed", "error": str(e)}
                    )

        return {"owner_id": owner_id, "runs": results}

    def reconcile_run(
        self,
        course_id: int,
        owner_id: str,
        configuration_id: int,
        run_id: int,
        db: Session,
        seed: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Reconcile one run against the current student centroids.

        Runs still in their initial k-means passes are skipped. Students whose
        centroid is no longer tracked keep the point they were clustered with.
        """
        state = self.cluster_service.load_state(course_id, owner_id, configuration_id, run_id, db)
        result = {"configuration_id": configuration_id, "run_id": run_id}
        if not state.finished:
            self.logger.debug(f"Run {run_id} has not finished its initial clustering, skipping")
            result.update({"status": "skipped", "iterations_added": 0})
            return result

        latest = state.current
        tracked = self.centroid_service.get_student_points(course_id, owner_id, configuration_id, state.variant, db)
        current_points = {
            student_id: tracked.get(student_id, latest.points[student_id]) for student_id in latest.assignments
        }

        started = time.time()
        reconciler = IncrementalReconciler(config_service.clustering_context(seed))
        outcome = reconciler.reconcile(latest, current_points, tracked.values())
        processing_time = time.time() - started

        try:
            for iteration in outcome.iterations:
                self.cluster_service.save_iteration(
                    course_id, owner_id, configuration_id, run_id, iteration, state.colours, state.variant, db
                )
            if not outcome.iterations and not latest.converged:
                # Previously capped run that is now stable
                self._mark_converged(course_id, owner_id, configuration_id, run_id, latest.iteration, db)
            db.commit()
        except Exception as e:
            self.logger.error(f"Error saving reconciliation of run {run_id}: {e}")
            db.rollback()
            raise

        if outcome.cap_reached:
            self.logger.warning(
                f"Run {run_id} of course {course_id} owner {owner_id} hit the reconciliation cap, "
                f"left at iteration {outcome.iterations[-1].iteration if outcome.iterations else latest.iteration}"
            )

        if outcome.iterations:
            final = outcome.iterations[-1]
            self.monitoring_service.record_clustering_metrics(
                run_key=dict(course_id=course_id, owner_id=owner_id, configuration_id=configuration_id, run_id=run_id),
                trigger="reconcile",
                variant=state.variant.value,
                n_clusters=len(final.centroids),
                points=final.points,
                assignments=final.assignments,
                passes=outcome.passes,
                iterations_recorded=len(outcome.iterations),
                regenerated_clusters=outcome.regenerated_clusters,
                converged=outcome.converged,
                processing_time=processing_time,
                db=db,
            )

        self.logger.info(
            f"Reconciled run {run_id} of course {course_id} owner {owner_id}: "
            f"{len(outcome.iterations)} iterations added in {outcome.passes} passes"
        )
        result.update(
            {
                "status": "converged" if outcome.converged else "cap_reached",
                "iterations_added": len(outcome.iterations),
                "passes": outcome.passes,
                "cap_reached": outcome.cap_reached,
                "current_iteration": outcome.iterations[-1].iteration if outcome.iterations else latest.iteration,
            }
        )
        return result

    def _mark_converged(
        self, course_id: int, owner_id: str, configuration_id: int, run_id: int, iteration: int, db: Session
    ) -> None:
        db.query(ClusterRecord).filter(
            and_(
                ClusterRecord.course_id == course_id,
                ClusterRecord.owner_id == owner_id,
                ClusterRecord.configuration_id == configuration_id,
                ClusterRecord.run_id == run_id,
                ClusterRecord.iteration == iteration,
            )
        ).update({ClusterRecord.converged: True}, synchronize_session=False)
