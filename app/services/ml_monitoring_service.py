"""
ML monitoring service for tracking clustering quality and anomalies.
"""

import json
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

import psutil
from sqlalchemy import and_, desc, func
from sqlalchemy.orm import Session

from app.clustering.models import Point
from app.clustering.quality import silhouette
from app.models.ml_metrics import ClusteringAlert, ClusteringQualityMetrics
from app.services.config_service import config_service

logger = logging.getLogger("app.ml_monitoring")


class MLMonitoringService:
    """Service for monitoring clustering runs and reconciliation."""

    def __init__(self):
        self.logger = logger
        self.quality_thresholds = {
            "silhouette_min": config_service.get_float("CLUSTER_QUALITY_MIN_SILHOUETTE"),
            "empty_clusters_max": config_service.get_int("CLUSTER_EMPTY_ALERT_THRESHOLD"),
        }

    def record_clustering_metrics(
        self,
        run_key: Dict[str, Any],
        trigger: str,
        variant: str,
        n_clusters: int,
        points: Dict[str, Point],
        assignments: Dict[str, int],
        passes: int,
        iterations_recorded: int,
        regenerated_clusters: int,
        converged: bool,
        processing_time: float,
        db: Session,
    ) -> bool:
        """
        Record metrics of a clustering run and raise alerts for anomalies.

        Args:
            run_key: course_id, owner_id, configuration_id and run_id of the run
            trigger: "kmeans" for an initial run, "reconcile" for reconciliation
            variant: Centroid variant the run clusters on
            n_clusters: Number of clusters
            points: Student centroids of the final iteration
            assignments: Cluster of every student in the final iteration
            passes: Assignment+update passes performed
            iterations_recorded: Iterations written to storage
            regenerated_clusters: Clusters regenerated after losing all members
            converged: Whether the run converged
            processing_time: Time taken for clustering
            db: Database session

        Returns:
            True if metrics recorded successfully
        """
        try:
            memory_usage = psutil.Process().memory_info().rss / 1024 / 1024  # MB
            silhouette_score = silhouette(points, assignments)

            metrics = ClusteringQualityMetrics(
                trigger=trigger,
                variant=variant,
                n_clusters=n_clusters,
                total_students=len(assignments),
                passes=passes,
                iterations_recorded=iterations_recorded,
                regenerated_clusters=regenerated_clusters,
                converged=converged,
                silhouette_score=silhouette_score,
                processing_time_seconds=processing_time,
                memory_usage_mb=memory_usage,
                created_at=config_service.now(),
                **run_key,
            )
            db.add(metrics)
            db.commit()

            self._check_alerts(run_key, trigger, silhouette_score, regenerated_clusters, converged, passes, db)

            quality = f"{silhouette_score:.3f}" if silhouette_score is not None else "n/a"
            self.logger.info(
                f"Recorded clustering metrics for course {run_key['course_id']} run {run_key['run_id']}: "
                f"trigger={trigger}, passes={passes}, quality={quality}"
            )
            return True

        except Exception as e:
            self.logger.error(f"Error recording clustering metrics: {e}")
            db.rollback()
            return False

    def get_course_quality_history(self, course_id: int, db: Session, days: int = 30) -> List[Dict[str, Any]]:
        """
        Get metrics history for a course.

        Args:
            course_id: Course ID
            db: Database session
            days: Number of days to look back

        Returns:
            List of metrics records, newest first
        """
        cutoff_date = config_service.now() - timedelta(days=days)

        metrics = (
            db.query(ClusteringQualityMetrics)
            .filter(
                and_(ClusteringQualityMetrics.course_id == course_id, ClusteringQualityMetrics.created_at >= cutoff_date)
            )
            .order_by(desc(ClusteringQualityMetrics.created_at))
            .all()
        )

        return [
            {
                "id": m.id,
                "owner_id": m.owner_id,
                "configuration_id": m.configuration_id,
                "run_id": m.run_id,
                "trigger": m.trigger,
                "variant": m.variant,
                "n_clusters": m.n_clusters,
                "total_students": m.total_students,
                "passes": m.passes,
                "iterations_recorded": m.iterations_recorded,
                "regenerated_clusters": m.regenerated_clusters,
                "converged": m.converged,
                "silhouette_score": m.silhouette_score,
                "processing_time_seconds": m.processing_time_seconds,
                "memory_usage_mb": m.memory_usage_mb,
                "created_at": m.created_at,
            }
            for m in metrics
        ]

    def get_active_alerts(self, db: Session, course_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Get unresolved clustering alerts.

        Args:
            db: Database session
            course_id: Optional course ID to filter by

        Returns:
            List of active alerts
        """
        query = db.query(ClusteringAlert).filter(ClusteringAlert.resolved == False)  # noqa: E712

        if course_id:
            query = query.filter(ClusteringAlert.course_id == course_id)

        alerts = query.order_by(desc(ClusteringAlert.created_at)).all()

        return [
            {
                "id": a.id,
                "course_id": a.course_id,
                "owner_id": a.owner_id,
                "configuration_id": a.configuration_id,
                "run_id": a.run_id,
                "alert_type": a.alert_type,
                "alert_level": a.alert_level,
                "message": a.message,
                "details": json.loads(a.details) if a.details else {},
                "silhouette_score": a.silhouette_score,
                "threshold": a.threshold,
                "created_at": a.created_at,
            }
            for a in alerts
        ]

    def get_alert_summary(self, db: Session) -> Dict[str, int]:
        """Count unresolved alerts per alert type."""
        rows = (
            db.query(ClusteringAlert.alert_type, func.count(ClusteringAlert.id))
            .filter(ClusteringAlert.resolved == False)  # noqa: E712
            .group_by(ClusteringAlert.alert_type)
            .all()
        )
        return {alert_type: count for alert_type, count in rows}

    def resolve_alert(self, alert_id: int, resolution_notes: str, db: Session) -> bool:
        """
        Resolve a clustering alert.

        Args:
            alert_id: Alert ID to resolve
            resolution_notes: Notes about how the alert was resolved
            db: Database session

        Returns:
            True if alert resolved successfully
        """
        try:
            alert = db.query(ClusteringAlert).filter(ClusteringAlert.id == alert_id).first()

            if not alert:
                self.logger.error(f"Alert {alert_id} not found")
                return False

            alert.resolved = True
            alert.resolved_at = config_service.now()
            alert.resolution_notes = resolution_notes

            db.commit()

            self.logger.info(f"Resolved alert {alert_id}: {resolution_notes}")
            return True

        except Exception as e:
            self.logger.error(f"Error resolving alert: {e}")
            db.rollback()
            return False

    def _check_alerts(
        self,
        run_key: Dict[str, Any],
        trigger: str,
        silhouette_score: Optional[float],
        regenerated_clusters: int,
        converged: bool,
        passes: int,
        db: Session,
    ) -> None:
        """Check for anomalies and create alerts if necessary."""
        try:
            alerts_to_create = []

            if not converged:
                alerts_to_create.append(
                    {
                        "alert_type": "iteration_cap_exceeded",
                        "alert_level": "error",
                        "message": f"{trigger} stopped after {passes} passes without converging",
                        "details": json.dumps({"trigger": trigger, "passes": passes}),
                        "threshold": float(passes),
                    }
                )

            if regenerated_clusters >= self.quality_thresholds["empty_clusters_max"]:
                alerts_to_create.append(
                    {
                        "alert_type": "empty_cluster_regenerated",
                        "alert_level": "warning",
                        "message": f"{regenerated_clusters} clusters lost all members, k may be too large for the data",
                        "details": json.dumps({"trigger": trigger, "regenerated_clusters": regenerated_clusters}),
                        "threshold": float(self.quality_thresholds["empty_clusters_max"]),
                    }
                )

            if silhouette_score is not None and silhouette_score < self.quality_thresholds["silhouette_min"]:
                alerts_to_create.append(
                    {
                        "alert_type": "quality_low",
                        "alert_level": "warning" if silhouette_score > 0.1 else "error",
                        "message": f"Low clustering quality: silhouette score {silhouette_score:.3f} below threshold {self.quality_thresholds['silhouette_min']}",
                        "details": json.dumps({"trigger": trigger, "silhouette_score": silhouette_score}),
                        "silhouette_score": silhouette_score,
                        "threshold": self.quality_thresholds["silhouette_min"],
                    }
                )

            for alert_data in alerts_to_create:
                alert = ClusteringAlert(created_at=config_service.now(), **run_key, **alert_data)
                db.add(alert)

            if alerts_to_create:
                db.commit()
                self.logger.warning(
                    f"Created {len(alerts_to_create)} clustering alerts for course {run_key['course_id']} run {run_key['run_id']}"
                )

        except Exception as e:
            self.logger.error(f"Error checking clustering alerts: {e}")
            db.rollback()
