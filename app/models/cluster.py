"""
Cluster models for clustering runs.

Every row is keyed by (course, owner, configuration, run, iteration). Iteration
0 and up are the passes of the initial k-means run, -1 its converged result and
-2, -3, ... the generations appended by reconciliation.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Index
from sqlmodel import Field, SQLModel


class ClusterRecord(SQLModel, table=True):
    """Centroid of one cluster in one iteration of a run."""

    __tablename__ = "cluster_records"
    __table_args__ = (
        Index("ix_cluster_records_run", "course_id", "owner_id", "configuration_id", "run_id", "iteration"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field()
    owner_id: str = Field(max_length=100)
    configuration_id: int = Field()
    run_id: int = Field()
    iteration: int = Field()
    cluster_number: int = Field()
    x: float = Field()
    y: float = Field()
    uses_geometric_centroid: bool = Field(default=True)
    colour: Optional[str] = Field(default=None, max_length=50)
    converged: bool = Field(default=False, description="Whether the iteration passed the convergence test")
    regenerated: bool = Field(default=False, description="Whether the centroid was regenerated for an empty cluster")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ClusterMember(SQLModel, table=True):
    """A student's cluster in one iteration, with the centroid it was assigned by."""

    __tablename__ = "cluster_members"
    __table_args__ = (
        Index("ix_cluster_members_run", "course_id", "owner_id", "configuration_id", "run_id", "iteration"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field()
    owner_id: str = Field(max_length=100)
    configuration_id: int = Field()
    run_id: int = Field()
    iteration: int = Field()
    cluster_number: int = Field()
    student_id: str = Field(max_length=100)
    x: float = Field()
    y: float = Field()
    pinned: bool = Field(default=False, description="Manually reassigned, held for later passes")


class ManualCluster(SQLModel, table=True):
    """Researcher-drawn cluster used for quality measures."""

    __tablename__ = "manual_clusters"
    __table_args__ = (
        Index("ix_manual_clusters_run", "course_id", "owner_id", "configuration_id", "run_id", "iteration"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field()
    owner_id: str = Field(max_length=100)
    configuration_id: int = Field()
    run_id: int = Field()
    iteration: int = Field()
    cluster_number: int = Field()
    x: float = Field()
    y: float = Field()


class ManualMember(SQLModel, table=True):
    __tablename__ = "manual_members"
    __table_args__ = (
        Index("ix_manual_members_run", "course_id", "owner_id", "configuration_id", "run_id", "iteration"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field()
    owner_id: str = Field(max_length=100)
    configuration_id: int = Field()
    run_id: int = Field()
    iteration: int = Field()
    cluster_number: int = Field()
    student_id: str = Field(max_length=100)
    x: float = Field()
    y: float = Field()
