"""
Graph configuration models: module node coordinates and layout scale.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Index
from sqlmodel import Field, SQLModel


class NodeCoordinate(SQLModel, table=True):
    """Normalized position of one module in one owner's graph configuration."""

    __tablename__ = "node_coordinates"
    __table_args__ = (
        Index("ix_node_coordinates_configuration", "course_id", "owner_id", "configuration_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field()
    owner_id: str = Field(max_length=100)
    configuration_id: int = Field()
    module_id: int = Field()
    x: float = Field()
    y: float = Field()
    visible: bool = Field(default=True)


class ConfigurationScale(SQLModel, table=True):
    """Scale and centre that map a normalized configuration back to its drawn layout."""

    __tablename__ = "configuration_scales"
    __table_args__ = (
        Index("ix_configuration_scales_configuration", "course_id", "owner_id", "configuration_id", unique=True),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field()
    owner_id: str = Field(max_length=100)
    configuration_id: int = Field()
    scale: float = Field(default=1.0)
    center_x: float = Field(default=0.0)
    center_y: float = Field(default=0.0)
    farthest_module_id: Optional[int] = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
