"""
Monitoring models for tracking clustering runs and anomalies.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Index
from sqlmodel import Field, SQLModel


class ClusteringQualityMetrics(SQLModel, table=True):
    """
    Model for storing clustering run metrics.

    One row per initial k-means run or reconciliation of a run.
    """

    __tablename__ = "clustering_quality_metrics"
    __table_args__ = (
        Index("ix_clustering_quality_metrics_course_created", "course_id", "created_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field(index=True, description="Course ID")
    owner_id: str = Field(max_length=100, description="Owner of the graph configuration")
    configuration_id: int = Field(description="Graph configuration ID")
    run_id: int = Field(description="Clustering run ID")
    trigger: str = Field(description="What produced the metrics (kmeans, reconcile)")
    variant: str = Field(description="Centroid variant (geometric, decomposed)")

    # Clustering results
    n_clusters: int = Field(description="Number of clusters")
    total_students: int = Field(description="Number of students clustered")
    passes: int = Field(description="Assignment+update passes performed")
    iterations_recorded: int = Field(default=0, description="Iterations written to storage")
    regenerated_clusters: int = Field(default=0, description="Clusters regenerated after losing all members")
    converged: bool = Field(default=True, description="Whether the run converged")
    silhouette_score: Optional[float] = Field(default=None, description="Silhouette score (higher is better)")

    # Performance metrics
    processing_time_seconds: float = Field(description="Time taken to process clustering")
    memory_usage_mb: float = Field(description="Memory usage during clustering")

    created_at: datetime = Field(default_factory=datetime.utcnow, description="When metrics were recorded")


class ClusteringAlert(SQLModel, table=True):
    """
    Model for storing clustering anomalies.

    Raised for iteration caps, repeated empty clusters and low quality runs.
    """

    __tablename__ = "clustering_alerts"
    __table_args__ = (
        Index("ix_clustering_alerts_type_resolved", "alert_type", "resolved"),
        Index("ix_clustering_alerts_level_resolved", "alert_level", "resolved"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field(index=True, description="Course ID")
    owner_id: str = Field(max_length=100, description="Owner of the graph configuration")
    configuration_id: int = Field(description="Graph configuration ID")
    run_id: int = Field(description="Clustering run ID")
    alert_type: str = Field(description="Type of alert (iteration_cap_exceeded, empty_cluster_regenerated, quality_low)")
    alert_level: str = Field(description="Alert level (warning, error, critical)")

    # Alert details
    message: str = Field(description="Alert message")
    details: str = Field(description="JSON string with additional alert details")
    silhouette_score: Optional[float] = Field(default=None, description="Silhouette score when alert was triggered")
    threshold: Optional[float] = Field(default=None, description="Threshold that was not met")

    # Resolution
    resolved: bool = Field(default=False, description="Whether alert has been resolved")
    resolved_at: Optional[datetime] = Field(default=None, description="When alert was resolved")
    resolution_notes: Optional[str] = Field(default=None, description="Notes about how alert was resolved")

    created_at: datetime = Field(default_factory=datetime.utcnow, description="When alert was created")
