"""
Cluster service for k-means clustering runs over student centroids.
"""
import logging
import time
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, case, func
from sqlalchemy.orm import Session

from app.clustering.exceptions import MissingCentroidsError, RunNotFoundError, RunStateError
from app.clustering.kmeans import KMeansEngine
from app.clustering.models import (
    CentroidVariant,
    ClusteringState,
    ClusterIteration,
    Point,
)
from app.clustering.quality import cluster_measures
from app.models.cluster import ClusterMember, ClusterRecord, ManualCluster, ManualMember
from app.services.centroid_service import CentroidService
from app.services.config_service import config_service
from app.services.graph_service import GraphService
from app.services.ml_monitoring_service import MLMonitoringService

logger = logging.getLogger("app.cluster")


def iteration_order(iteration: int):
    """Recorded order: 0, 1, 2, ... then -1, -2, -3, ..."""
    return (0, iteration) if iteration >= 0 else (1, -iteration)


class ClusterService:
    """Service for starting, stepping and inspecting clustering runs."""

    def __init__(self):
        self.graph_service = GraphService()
        self.centroid_service = CentroidService()
        self.monitoring_service = MLMonitoringService()
        self.logger = logger

    def start_run(
        self,
        course_id: int,
        owner_id: str,
        configuration_id: int,
        k: int,
        db: Session,
        variant: CentroidVariant = CentroidVariant.GEOMETRIC,
        seed: Optional[int] = None,
        max_passes: Optional[int] = None,
        passes: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Start a new clustering run for a configuration.

        Args:
            course_id: Course ID
            owner_id: Owner of the configuration
            configuration_id: Graph configuration to cluster in
            k: Requested number of clusters
            db: Database session
            variant: Cluster geometric or decomposed student centroids
            seed: Optional seed for the random source
            max_passes: Pass cap overriding CLUSTER_MAX_PASSES
            passes: Stop after this many passes so students can be reassigned
                by hand; run to convergence when None

        Returns:
            Dictionary with the run summary
        """
        self.graph_service.get_configuration(course_id, owner_id, configuration_id, db)
        points = self.centroid_service.get_student_points(course_id, owner_id, configuration_id, variant, db)
        if not points:
            raise MissingCentroidsError(
                f"No {variant.value} student centroids for configuration {configuration_id} of owner {owner_id}"
            )

        started = time.time()
        engine = KMeansEngine(config_service.clustering_context(seed, max_passes=max_passes))
        state = engine.start(points, k, variant)
        engine.advance(state, passes)
        processing_time = time.time() - started

        try:
            run_id = self._next_run_id(course_id, owner_id, configuration_id, db)
            for iteration in state.iterations:
                self._save_iteration(course_id, owner_id, configuration_id, run_id, iteration, state, db)
            db.commit()
        except Exception as e:
            self.logger.error(f"Error saving clustering run for course {course_id}: {e}")
            db.rollback()
            raise

        self.logger.info(
            f"Started run {run_id} for course {course_id} owner {owner_id} configuration {configuration_id}: "
            f"k={state.k}, students={len(points)}, iterations={len(state.iterations)}, finished={state.finished}"
        )

        if state.finished:
            self._record_metrics(course_id, owner_id, configuration_id, run_id, state, processing_time, db)

        return self._summary(course_id, owner_id, configuration_id, run_id, state)

    def advance_run(
        self,
        course_id: int,
        owner_id: str,
        configuration_id: int,
        run_id: int,
        db: Session,
        passes: Optional[int] = None,
        seed: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Continue an unfinished run by ``passes`` passes, or to convergence."""
        state = self.load_state(course_id, owner_id, configuration_id, run_id, db)
        if state.finished:
            raise RunStateError(f"Run {run_id} has already finished its initial clustering")

        started = time.time()
        engine = KMeansEngine(config_service.clustering_context(seed).fitted(state.points.values()))
        recorded = len(state.iterations)
        engine.advance(state, passes)
        processing_time = time.time() - started

        self._save_new_iterations(course_id, owner_id, configuration_id, run_id, state, recorded, db)
        if state.finished:
            self._record_metrics(course_id, owner_id, configuration_id, run_id, state, processing_time, db)

        return self._summary(course_id, owner_id, configuration_id, run_id, state)

    def reassign_member(
        self,
        course_id: int,
        owner_id: str,
        configuration_id: int,
        run_id: int,
        student_id: str,
        cluster_number: int,
        db: Session,
    ) -> Dict[str, Any]:
        """
        Move a student to another cluster by hand.

        The student stays pinned to that cluster for every later pass of the run.
        """
        state = self.load_state(course_id, owner_id, configuration_id, run_id, db)
        engine = KMeansEngine(config_service.clustering_context().fitted(state.points.values()))
        recorded = len(state.iterations)
        engine.reassign(state, student_id, cluster_number)

        self._save_new_iterations(course_id, owner_id, configuration_id, run_id, state, recorded, db)
        return self._summary(course_id, owner_id, configuration_id, run_id, state)

    def load_iterations(
        self, course_id: int, owner_id: str, configuration_id: int, run_id: int, db: Session
    ) -> List[ClusterIteration]:
        """
        Every recorded iteration of a run in recorded order.

        Raises:
            RunNotFoundError: The run has no cluster records
        """
        records = self._run_query(ClusterRecord, course_id, owner_id, configuration_id, run_id, db).all()
        if not records:
            raise RunNotFoundError(
                f"Run {run_id} of configuration {configuration_id} owner {owner_id} not found in course {course_id}"
            )
        members = self._run_query(ClusterMember, course_id, owner_id, configuration_id, run_id, db).all()

        iterations: Dict[int, ClusterIteration] = {}
        for record in records:
            iteration = iterations.get(record.iteration)
            if iteration is None:
                iteration = iterations[record.iteration] = ClusterIteration(
                    iteration=record.iteration, centroids={}, assignments={}, points={}
                )
            iteration.centroids[record.cluster_number] = Point(record.x, record.y)
            iteration.converged = record.converged
            if record.regenerated:
                iteration.regenerated.append(record.cluster_number)

        for member in members:
            iteration = iterations[member.iteration]
            iteration.assignments[member.student_id] = member.cluster_number
            iteration.points[member.student_id] = Point(member.x, member.y)
            if member.pinned:
                iteration.pinned.add(member.student_id)

        return [iterations[number] for number in sorted(iterations, key=iteration_order)]

    def load_state(
        self, course_id: int, owner_id: str, configuration_id: int, run_id: int, db: Session
    ) -> ClusteringState:
        """Rebuild the engine state of a run from its records."""
        iterations = self.load_iterations(course_id, owner_id, configuration_id, run_id, db)
        records = (
            self._run_query(ClusterRecord, course_id, owner_id, configuration_id, run_id, db)
            .order_by(ClusterRecord.iteration, ClusterRecord.cluster_number)
            .all()
        )
        colours = {record.cluster_number: record.colour for record in records}
        current = iterations[-1]
        passes = [it.iteration for it in iterations if it.iteration >= 0]

        return ClusteringState(
            variant=CentroidVariant.from_flag(records[0].uses_geometric_centroid),
            k=len(current.centroids),
            colours=colours,
            points=dict(current.points),
            iterations=iterations,
            pinned={student_id: current.assignments[student_id] for student_id in current.pinned},
            next_iteration=max(passes) + 1 if passes else 1,
        )

    def get_run_history(
        self, course_id: int, owner_id: str, configuration_id: int, run_id: int, db: Session
    ) -> Dict[str, Any]:
        """Every iteration of a run with its clusters and members."""
        state = self.load_state(course_id, owner_id, configuration_id, run_id, db)
        summary = self._summary(course_id, owner_id, configuration_id, run_id, state)
        summary["iterations"] = [
            {
                "iteration": iteration.iteration,
                "converged": iteration.converged,
                "clusters": [
                    {
                        "cluster_number": number,
                        "x": point.x,
                        "y": point.y,
                        "colour": state.colours.get(number),
                        "regenerated": number in iteration.regenerated,
                    }
                    for number, point in sorted(iteration.centroids.items())
                ],
                "members": [
                    {
                        "student_id": student_id,
                        "cluster_number": number,
                        "x": iteration.points[student_id].x,
                        "y": iteration.points[student_id].y,
                        "pinned": student_id in iteration.pinned,
                    }
                    for student_id, number in sorted(iteration.assignments.items())
                ],
            }
            for iteration in state.iterations
        ]
        return summary

    def list_runs(
        self,
        course_id: int,
        db: Session,
        owner_id: Optional[str] = None,
        configuration_id: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Runs of a course with their current iteration."""
        query = db.query(
            ClusterRecord.owner_id,
            ClusterRecord.configuration_id,
            ClusterRecord.run_id,
            func.min(ClusterRecord.iteration),
            func.max(ClusterRecord.iteration),
            func.count(func.distinct(ClusterRecord.iteration)),
            func.count(func.distinct(ClusterRecord.cluster_number)),
            func.max(case((ClusterRecord.uses_geometric_centroid, 1), else_=0)),
        ).filter(ClusterRecord.course_id == course_id)
        if owner_id is not None:
            query = query.filter(ClusterRecord.owner_id == owner_id)
        if configuration_id is not None:
            query = query.filter(ClusterRecord.configuration_id == configuration_id)

        rows = query.group_by(ClusterRecord.owner_id, ClusterRecord.configuration_id, ClusterRecord.run_id).all()

        runs = []
        for owner, configuration, run_id, lowest, highest, iterations, k, geometric in sorted(rows):
            finished = lowest < 0
            runs.append(
                {
                    "course_id": course_id,
                    "owner_id": owner,
                    "configuration_id": configuration,
                    "run_id": run_id,
                    "k": k,
                    "variant": CentroidVariant.from_flag(bool(geometric)).value,
                    "finished": finished,
                    "current_iteration": lowest if finished else highest,
                    "iterations": iterations,
                }
            )
        return runs

    def delete_run(self, course_id: int, owner_id: str, configuration_id: int, run_id: int, db: Session) -> int:
        """
        Delete a run with its manual clustering.

        Returns:
            Number of deleted rows
        """
        try:
            deleted = 0
            for model in (ClusterRecord, ClusterMember, ManualCluster, ManualMember):
                deleted += self._run_query(model, course_id, owner_id, configuration_id, run_id, db).delete(
                    synchronize_session=False
                )
            if deleted == 0:
                raise RunNotFoundError(
                    f"Run {run_id} of configuration {configuration_id} owner {owner_id} not found in course {course_id}"
                )
            db.commit()
        except Exception:
            db.rollback()
            raise

        self.logger.info(f"Deleted run {run_id} of course {course_id} owner {owner_id}: {deleted} rows")
        return deleted

    def save_manual_clustering(
        self,
        course_id: int,
        owner_id: str,
        configuration_id: int,
        run_id: int,
        iteration: int,
        members: Dict[str, int],
        db: Session,
        centroids: Optional[Dict[int, Point]] = None,
    ) -> Dict[str, Any]:
        """
        Replace the manual clustering recorded for one iteration of a run.

        Args:
            members: Cluster number per student
            centroids: Manual cluster centroids; the mean of the members when None

        Returns:
            Dictionary with the stored manual clustering
        """
        iterations = {
            it.iteration: it for it in self.load_iterations(course_id, owner_id, configuration_id, run_id, db)
        }
        automatic = iterations.get(iteration)
        if automatic is None:
            raise RunStateError(f"Run {run_id} has no iteration {iteration}")

        unknown = sorted(set(members) - set(automatic.points))
        if unknown:
            raise RunStateError(f"Students {unknown} are not part of iteration {iteration}")

        centroids = dict(centroids or {})
        for number in sorted(set(members.values()) - set(centroids)):
            points = [automatic.points[s] for s, n in members.items() if n == number]
            centroids[number] = Point(sum(p.x for p in points) / len(points), sum(p.y for p in points) / len(points))

        try:
            for model in (ManualCluster, ManualMember):
                self._run_query(model, course_id, owner_id, configuration_id, run_id, db).filter(
                    model.iteration == iteration
                ).delete(synchronize_session=False)

            key = dict(course_id=course_id, owner_id=owner_id, configuration_id=configuration_id, run_id=run_id)
            for number, point in sorted(centroids.items()):
                db.add(ManualCluster(iteration=iteration, cluster_number=number, x=point.x, y=point.y, **key))
            for student_id, number in sorted(members.items()):
                point = automatic.points[student_id]
                db.add(
                    ManualMember(
                        iteration=iteration, cluster_number=number, student_id=student_id, x=point.x, y=point.y, **key
                    )
                )
            db.commit()
        except Exception as e:
            self.logger.error(f"Error saving manual clustering for run {run_id}: {e}")
            db.rollback()
            raise

        self.logger.info(f"Saved manual clustering of {len(members)} students for run {run_id} iteration {iteration}")
        return {
            "run_id": run_id,
            "iteration": iteration,
            "clusters": {number: {"x": p.x, "y": p.y} for number, p in sorted(centroids.items())},
            "members": dict(sorted(members.items())),
        }

    def get_quality_measures(
        self,
        course_id: int,
        owner_id: str,
        configuration_id: int,
        run_id: int,
        db: Session,
        iteration: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Compare the automatic clustering of an iteration with its manual clustering.

        The current iteration of the run is used when ``iteration`` is None.
        """
        iterations = self.load_iterations(course_id, owner_id, configuration_id, run_id, db)
        if iteration is None:
            automatic = iterations[-1]
        else:
            automatic = next((it for it in iterations if it.iteration == iteration), None)
            if automatic is None:
                raise RunStateError(f"Run {run_id} has no iteration {iteration}")

        manual_rows = (
            self._run_query(ManualMember, course_id, owner_id, configuration_id, run_id, db)
            .filter(ManualMember.iteration == automatic.iteration)
            .all()
        )
        if not manual_rows:
            raise RunStateError(f"No manual clustering recorded for run {run_id} iteration {automatic.iteration}")

        manual = {row.student_id: row.cluster_number for row in manual_rows}
        report = cluster_measures(automatic.assignments, manual).to_dict()
        report.update({"run_id": run_id, "iteration": automatic.iteration})
        return report

    def _save_new_iterations(
        self,
        course_id: int,
        owner_id: str,
        configuration_id: int,
        run_id: int,
        state: ClusteringState,
        recorded: int,
        db: Session,
    ) -> None:
        try:
            for iteration in state.iterations[recorded:]:
                self._save_iteration(course_id, owner_id, configuration_id, run_id, iteration, state, db)
            db.commit()
        except Exception as e:
            self.logger.error(f"Error saving iterations of run {run_id}: {e}")
            db.rollback()
            raise

    def save_iteration(
        self,
        course_id: int,
        owner_id: str,
        configuration_id: int,
        run_id: int,
        iteration: ClusterIteration,
        colours: Dict[int, Optional[str]],
        variant: CentroidVariant,
        db: Session,
    ) -> None:
        """Add the cluster and member records of one iteration to the session."""
        key = dict(course_id=course_id, owner_id=owner_id, configuration_id=configuration_id, run_id=run_id)
        for number, point in sorted(iteration.centroids.items()):
            db.add(
                ClusterRecord(
                    iteration=iteration.iteration,
                    cluster_number=number,
                    x=point.x,
                    y=point.y,
                    uses_geometric_centroid=variant.uses_geometric,
                    colour=colours.get(number),
                    converged=iteration.converged,
                    regenerated=number in iteration.regenerated,
                    **key,
                )
            )
        for student_id, number in sorted(iteration.assignments.items()):
            point = iteration.points[student_id]
            db.add(
                ClusterMember(
                    iteration=iteration.iteration,
                    cluster_number=number,
                    student_id=student_id,
                    x=point.x,
                    y=point.y,
                    pinned=student_id in iteration.pinned,
                    **key,
                )
            )

    def _save_iteration(self, course_id, owner_id, configuration_id, run_id, iteration, state, db) -> None:
        self.save_iteration(
            course_id, owner_id, configuration_id, run_id, iteration, state.colours, state.variant, db
        )

    def _record_metrics(
        self,
        course_id: int,
        owner_id: str,
        configuration_id: int,
        run_id: int,
        state: ClusteringState,
        processing_time: float,
        db: Session,
    ) -> None:
        current = state.current
        self.monitoring_service.record_clustering_metrics(
            run_key=dict(course_id=course_id, owner_id=owner_id, configuration_id=configuration_id, run_id=run_id),
            trigger="kmeans",
            variant=state.variant.value,
            n_clusters=state.k,
            points=current.points,
            assignments=current.assignments,
            passes=len(state.iterations) - 1,
            iterations_recorded=len(state.iterations),
            regenerated_clusters=sum(len(it.regenerated) for it in state.iterations),
            converged=state.converged,
            processing_time=processing_time,
            db=db,
        )

    def _summary(
        self, course_id: int, owner_id: str, configuration_id: int, run_id: int, state: ClusteringState
    ) -> Dict[str, Any]:
        current = state.current
        members = current.members()
        return {
            "course_id": course_id,
            "owner_id": owner_id,
            "configuration_id": configuration_id,
            "run_id": run_id,
            "k": state.k,
            "variant": state.variant.value,
            "finished": state.finished,
            "converged": state.converged,
            "current_iteration": current.iteration,
            "iterations": len(state.iterations),
            "colours": state.colours,
            "clusters": {
                number: {"x": point.x, "y": point.y, "members": sorted(members[number])}
                for number, point in sorted(current.centroids.items())
            },
            "pinned": dict(sorted(state.pinned.items())),
        }

    def _next_run_id(self, course_id: int, owner_id: str, configuration_id: int, db: Session) -> int:
        highest = (
            db.query(func.max(ClusterRecord.run_id))
            .filter(
                and_(
                    ClusterRecord.course_id == course_id,
                    ClusterRecord.owner_id == owner_id,
                    ClusterRecord.configuration_id == configuration_id,
                )
            )
            .scalar()
        )
        return (highest or 0) + 1

    @staticmethod
    def _run_query(model, course_id: int, owner_id: str, configuration_id: int, run_id: int, db: Session):
        return db.query(model).filter(
            and_(
                model.course_id == course_id,
                model.owner_id == owner_id,
                model.configuration_id == configuration_id,
                model.run_id == run_id,
            )
        )
