"""
Celery tasks for log ingestion, clustering and reconciliation.
"""
import logging
from typing import Any, Dict, List, Optional

from app.clustering.models import AccessEvent, CentroidVariant
from app.database.session import get_db_session
from app.models.course import BehaviourCourse
from app.services.centroid_service import CentroidService
from app.services.cluster_service import ClusterService
from app.services.ml_monitoring_service import MLMonitoringService
from app.services.reconcile_service import ReconcileService
from worker.celery_app import celery_app

logger = logging.getLogger("worker.cluster_tasks")
centroid_service = CentroidService()
cluster_service = ClusterService()
reconcile_service = ReconcileService()
monitoring_service = MLMonitoringService()


@celery_app.task(bind=True, name="cluster.update_course_logs")
def update_course_logs(self, course_id: int, events: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Ingest a batch of access events and reconcile the course's runs.

    Args:
        course_id: Course ID
        events: Events as dicts with student_id, module_id and time

    Returns:
        Dictionary with processing results
    """
    logger.info(f"Starting log update for course {course_id}: {len(events)} events")

    try:
        batch = [AccessEvent(str(e["student_id"]), int(e["module_id"]), int(e["time"])) for e in events]
        with get_db_session() as db:
            result = centroid_service.update_course(course_id, db, batch)

        logger.info(f"Log update completed for course {course_id}: {result['events_processed']} events processed")
        return {"status": "success", **result}

    except Exception as e:
        logger.error(f"Error in log update task for course {course_id}: {e}")
        return {"status": "failed", "error": str(e), "course_id": course_id}


@celery_app.task(bind=True, name="cluster.reconcile_course")
def reconcile_course(self, course_id: int) -> Dict[str, Any]:
    """
    Reconcile every finished run of a course against the current centroids.
    """
    logger.info(f"Starting reconciliation task for course: {course_id}")

    try:
        with get_db_session() as db:
            result = reconcile_service.reconcile_course(course_id, db)

        if result["cap_reached"]:
            logger.warning(f"{result['cap_reached']} runs of course {course_id} hit the reconciliation cap")

        logger.info(
            f"Reconciliation completed for course {course_id}: "
            f"{result['runs']} runs, {result['iterations_added']} iterations added"
        )
        return {"status": "success", **result}

    except Exception as e:
        logger.error(f"Error in reconciliation task for course {course_id}: {e}")
        return {"status": "failed", "error": str(e), "course_id": course_id}


@celery_app.task(bind=True, name="cluster.periodic_reconcile_update")
def periodic_reconcile_update(self) -> Dict[str, Any]:
    """
    Queue a reconciliation for every installed course.

    Courses are independent, so each one runs as its own task.
    """
    logger.info("Starting periodic reconciliation update")

    try:
        with get_db_session() as db:
            course_ids = [course_id for (course_id,) in db.query(BehaviourCourse.id).order_by(BehaviourCourse.id).all()]

        for course_id in course_ids:
            reconcile_course.delay(course_id)

        logger.info(f"Queued reconciliation for {len(course_ids)} courses")
        return {"status": "success", "courses_queued": len(course_ids), "course_ids": course_ids}

    except Exception as e:
        logger.error(f"Error in periodic reconciliation update: {e}")
        return {"status": "failed", "error": str(e)}


@celery_app.task(bind=True, name="cluster.start_clustering_run")
def start_clustering_run(
    self,
    course_id: int,
    owner_id: str,
    configuration_id: int,
    k: int,
    variant: str = CentroidVariant.GEOMETRIC.value,
    seed: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Cluster a configuration to convergence in the background.
    """
    logger.info(f"Starting clustering run task for course {course_id} owner {owner_id} configuration {configuration_id}")

    try:
        with get_db_session() as db:
            result = cluster_service.start_run(
                course_id, owner_id, configuration_id, k, db, variant=CentroidVariant(variant), seed=seed
            )

        logger.info(f"Clustering run {result['run_id']} completed for course {course_id}")
        return {"status": "success", **result}

    except Exception as e:
        logger.error(f"Error in clustering run task for course {course_id}: {e}")
        return {"status": "failed", "error": str(e), "course_id": course_id}


@celery_app.task(bind=True, name="cluster.check_clustering_alerts")
def check_clustering_alerts(self) -> Dict[str, Any]:
    """
    Summarize unresolved clustering alerts.
    """
    try:
        with get_db_session() as db:
            summary = monitoring_service.get_alert_summary(db)

        if summary:
            logger.warning(f"Unresolved clustering alerts: {summary}")
        return {"status": "success", "alerts": summary, "total_alerts": sum(summary.values())}

    except Exception as e:
        logger.error(f"Error checking clustering alerts: {e}")
        return {"status": "failed", "error": str(e)}
