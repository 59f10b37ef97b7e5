"""
Behaviour analytics course and raw access log models.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Index
from sqlmodel import Field, SQLModel


class BehaviourCourse(SQLModel, table=True):
    """A course with behaviour analytics installed."""

    __tablename__ = "behaviour_courses"

    id: int = Field(primary_key=True)
    name: Optional[str] = Field(default=None, max_length=500)
    last_sync: int = Field(default=0, description="Timestamp of the newest processed log event")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AccessLog(SQLModel, table=True):
    """One imported module view."""

    __tablename__ = "access_logs"
    __table_args__ = (Index("ix_access_logs_course_student_time", "course_id", "student_id", "time"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field(index=True)
    student_id: str = Field(max_length=100)
    module_id: int = Field()
    time: int = Field(description="Unix timestamp of the view")
