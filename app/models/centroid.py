"""
Per-student centroid models, one row per student per graph configuration.
"""

from typing import Optional

from sqlalchemy import Index
from sqlmodel import Field, SQLModel


class StudentCentroid(SQLModel, table=True):
    """
    Geometric centroid kept as running sums.

    ``x`` and ``y`` are sums of module coordinates, divide by ``count`` for the
    centroid itself.
    """

    __tablename__ = "student_centroids"
    __table_args__ = (
        Index("ix_student_centroids_student", "course_id", "owner_id", "configuration_id", "student_id", unique=True),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field()
    owner_id: str = Field(max_length=100)
    configuration_id: int = Field()
    student_id: str = Field(max_length=100)
    x: float = Field(default=0.0)
    y: float = Field(default=0.0)
    count: int = Field(default=0)


class StudentCentre(SQLModel, table=True):
    """Decomposed centroid: the module at the midpoint of the student's click history."""

    __tablename__ = "student_centres"
    __table_args__ = (
        Index("ix_student_centres_student", "course_id", "owner_id", "configuration_id", "student_id", unique=True),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field()
    owner_id: str = Field(max_length=100)
    configuration_id: int = Field()
    student_id: str = Field(max_length=100)
    x: float = Field()
    y: float = Field()
