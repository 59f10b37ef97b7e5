"""
Centroid service: incremental log processing into per-student centroids.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from app.clustering.aggregator import CentroidAggregator, merge_centroids
from app.clustering.models import AccessEvent, CentroidVariant, GeometricCentroid, GraphConfiguration, Point
from app.models.centroid import StudentCentre, StudentCentroid
from app.models.cluster import ClusterMember, ClusterRecord, ManualCluster, ManualMember
from app.models.course import AccessLog, BehaviourCourse
from app.models.graph import ConfigurationScale, NodeCoordinate
from app.services.graph_service import GraphService

logger = logging.getLogger("app.centroids")


class CentroidService:
    """Service for maintaining student centroids as new log events arrive."""

    def __init__(self):
        self.graph_service = GraphService()
        self.logger = logger

    def get_or_create_course(self, course_id: int, db: Session, name: Optional[str] = None) -> BehaviourCourse:
        course = db.query(BehaviourCourse).filter(BehaviourCourse.id == course_id).first()
        if course is None:
            course = BehaviourCourse(id=course_id, name=name)
            db.add(course)
            db.flush()
            self.logger.info(f"Installed behaviour analytics for course {course_id}")
        return course

    def update_course(
        self,
        course_id: int,
        db: Session,
        events: Optional[Iterable[AccessEvent]] = None,
        imported: bool = False,
        reconcile: bool = True,
    ) -> Dict[str, Any]:
        """
        Process a log increment for a course.

        New events are stored, geometric centroids are updated additively and
        decomposed centroids of the affected students are recomputed from
        their full history. Afterwards every owner's clustering is reconciled.

        Args:
            course_id: Course ID
            db: Database session
            events: New access events
            imported: Events come from a file import; ``last_sync`` is left alone
                and events older than it are kept
            reconcile: Reconcile clustering runs after the update

        Returns:
            Dictionary with processing summary
        """
        try:
            course = self.get_or_create_course(course_id, db)
            events = list(events or [])
            if not imported:
                fresh = [event for event in events if event.time > course.last_sync]
                if len(fresh) < len(events):
                    self.logger.debug(f"Skipped {len(events) - len(fresh)} events not newer than last sync")
                events = fresh

            for event in events:
                db.add(
                    AccessLog(course_id=course_id, student_id=event.student_id, module_id=event.module_id, time=event.time)
                )
            db.flush()

            configurations = self.graph_service.get_configurations(course_id, db)
            updated_students = 0
            if events and configurations:
                aggregator = CentroidAggregator(configurations)
                accumulated = aggregator.accumulate(events)
                for configuration in configurations:
                    increments = accumulated[configuration.key]
                    self._merge_geometric(course_id, configuration, increments, db)
                    updated_students += len(increments)

                students = {event.student_id for event in events}
                history = self.load_history(course_id, db, students)
                for key, centres in aggregator.decompose(history).items():
                    self._store_decomposed(course_id, key[0], key[1], centres, db)

            if events and not imported:
                course.last_sync = max(course.last_sync, max(event.time for event in events))

            db.commit()

        except Exception as e:
            self.logger.error(f"Error updating centroids for course {course_id}: {e}")
            db.rollback()
            raise

        self.logger.info(
            f"Processed {len(events)} events for course {course_id} "
            f"across {len(configurations)} configurations"
        )

        summary = {
            "course_id": course_id,
            "events_processed": len(events),
            "configurations": len(configurations),
            "updated_centroids": updated_students,
            "last_sync": course.last_sync,
        }

        if reconcile and events:
            from app.services.reconcile_service import ReconcileService

            summary["reconciliation"] = ReconcileService().reconcile_course(course_id, db)

        return summary

    def reset_course(
        self,
        course_id: int,
        db: Session,
        clusters: bool = True,
        graph: bool = True,
        logs: bool = True,
    ) -> Dict[str, Any]:
        """
        Delete stored behaviour data of a course.

        Args:
            course_id: Course ID
            db: Database session
            clusters: Delete clustering runs, members and manual clusterings
            graph: Delete graph configurations and student centroids
            logs: Delete imported access events and reset ``last_sync``

        Returns:
            Dictionary with the number of deleted rows per table
        """
        groups = []
        if clusters:
            groups += [ClusterRecord, ClusterMember, ManualCluster, ManualMember]
        if graph:
            groups += [ConfigurationScale, NodeCoordinate, StudentCentroid, StudentCentre]
        if logs:
            groups += [AccessLog]

        try:
            deleted = {
                model.__tablename__: db.query(model).filter(model.course_id == course_id).delete(synchronize_session=False)
                for model in groups
            }
            course = db.query(BehaviourCourse).filter(BehaviourCourse.id == course_id).first()
            if logs and course is not None:
                course.last_sync = 0
            db.commit()

        except Exception as e:
            self.logger.error(f"Error resetting data of course {course_id}: {e}")
            db.rollback()
            raise

        self.logger.info(f"Reset course {course_id}: deleted {sum(deleted.values())} rows")
        return {"course_id": course_id, "deleted": deleted}

    def rebuild_configuration(self, course_id: int, configuration: GraphConfiguration, db: Session) -> int:
        """
        Recompute both centroid variants of one configuration from the whole log history.

        Returns:
            Number of students with a centroid
        """
        self._delete_centroids(course_id, configuration.owner_id, configuration.configuration_id, db)

        history = self.load_history(course_id, db)
        aggregator = CentroidAggregator([configuration])
        geometric = aggregator.accumulate(history)[configuration.key]
        self._merge_geometric(course_id, configuration, geometric, db)
        self._store_decomposed(
            course_id,
            configuration.owner_id,
            configuration.configuration_id,
            aggregator.decompose(history)[configuration.key],
            db,
        )
        db.flush()

        self.logger.info(
            f"Rebuilt centroids of configuration {configuration.key} in course {course_id} "
            f"from {len(history)} events: {len(geometric)} students"
        )
        return len(geometric)

    def load_history(self, course_id: int, db: Session, students: Optional[Iterable[str]] = None) -> List[AccessEvent]:
        """Stored events of a course in per-student time order."""
        query = db.query(AccessLog).filter(AccessLog.course_id == course_id)
        if students is not None:
            query = query.filter(AccessLog.student_id.in_(list(students)))
        rows = query.order_by(AccessLog.student_id, AccessLog.time, AccessLog.id).all()
        return [AccessEvent(row.student_id, row.module_id, row.time) for row in rows]

    def get_student_points(
        self,
        course_id: int,
        owner_id: str,
        configuration_id: int,
        variant: CentroidVariant,
        db: Session,
    ) -> Dict[str, Point]:
        """Centroid of every student tracked for a configuration."""
        if variant.uses_geometric:
            rows = self._centroid_query(StudentCentroid, course_id, owner_id, configuration_id, db).all()
            return {row.student_id: Point(row.x / row.count, row.y / row.count) for row in rows if row.count > 0}

        rows = self._centroid_query(StudentCentre, course_id, owner_id, configuration_id, db).all()
        return {row.student_id: Point(row.x, row.y) for row in rows}

    def _merge_geometric(
        self,
        course_id: int,
        configuration: GraphConfiguration,
        increments: Dict[str, GeometricCentroid],
        db: Session,
    ) -> None:
        if not increments:
            return

        owner_id, configuration_id = configuration.key
        rows = {
            row.student_id: row
            for row in self._centroid_query(StudentCentroid, course_id, owner_id, configuration_id, db)
            .filter(StudentCentroid.student_id.in_(list(increments)))
            .all()
        }
        existing = {
            student_id: GeometricCentroid(student_id, row.x, row.y, row.count) for student_id, row in rows.items()
        }
        for student_id, centroid in merge_centroids(existing, increments).items():
            row = rows.get(student_id)
            if row is None:
                row = StudentCentroid(
                    course_id=course_id,
                    owner_id=owner_id,
                    configuration_id=configuration_id,
                    student_id=student_id,
                )
                db.add(row)
            row.x = centroid.total_x
            row.y = centroid.total_y
            row.count = centroid.count

    def _store_decomposed(
        self,
        course_id: int,
        owner_id: str,
        configuration_id: int,
        centres: Dict[str, Point],
        db: Session,
    ) -> None:
        if not centres:
            return

        rows = {
            row.student_id: row
            for row in self._centroid_query(StudentCentre, course_id, owner_id, configuration_id, db)
            .filter(StudentCentre.student_id.in_(list(centres)))
            .all()
        }
        for student_id, point in centres.items():
            row = rows.get(student_id)
            if row is None:
                row = StudentCentre(
                    course_id=course_id,
                    owner_id=owner_id,
                    configuration_id=configuration_id,
                    student_id=student_id,
                    x=point.x,
                    y=point.y,
                )
                db.add(row)
            else:
                row.x = point.x
                row.y = point.y

    def _delete_centroids(self, course_id: int, owner_id: str, configuration_id: int, db: Session) -> None:
        for model in (StudentCentroid, StudentCentre):
            self._centroid_query(model, course_id, owner_id, configuration_id, db).delete(synchronize_session=False)

    @staticmethod
    def _centroid_query(model, course_id: int, owner_id: str, configuration_id: int, db: Session):
        return db.query(model).filter(
            and_(
                model.course_id == course_id,
                model.owner_id == owner_id,
                model.configuration_id == configuration_id,
            )
        )
