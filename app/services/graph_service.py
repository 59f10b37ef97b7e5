"""
Graph service for storing and loading owners' graph configurations.
"""
import logging
from typing import Dict, List, Optional, Set

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from app.clustering.exceptions import ConfigurationNotFoundError
from app.clustering.layout import normalize_layout
from app.clustering.models import FINAL_ITERATION, GraphConfiguration, ModuleNode, Point
from app.models.cluster import ClusterRecord
from app.models.graph import ConfigurationScale, NodeCoordinate

logger = logging.getLogger("app.graph")


class GraphService:
    """Service for graph configurations (module node layouts per owner)."""

    def __init__(self):
        self.logger = logger

    def save_configuration(
        self,
        course_id: int,
        owner_id: str,
        positions: Dict[int, ModuleNode],
        db: Session,
        configuration_id: Optional[int] = None,
        center: Optional[Point] = None,
    ) -> int:
        """
        Store a layout of the course graph.

        Positions are normalized to the unit disk before they are stored. The
        student centroids of the configuration are then rebuilt from the whole
        stored log history.

        Args:
            course_id: Course ID
            owner_id: Owner of the layout
            positions: Raw position and visibility per module ID
            db: Database session
            configuration_id: Configuration to overwrite, a new one when None
            center: Centre to normalize around, box centre of the positions when None

        Returns:
            ID of the stored configuration
        """
        layout = normalize_layout(positions, center)

        try:
            if configuration_id is None:
                configuration_id = (self.latest_configuration_id(course_id, owner_id, db) or 0) + 1
            else:
                self._delete_configuration_rows(course_id, owner_id, configuration_id, db)

            for module_id, node in layout.nodes.items():
                db.add(
                    NodeCoordinate(
                        course_id=course_id,
                        owner_id=owner_id,
                        configuration_id=configuration_id,
                        module_id=module_id,
                        x=node.x,
                        y=node.y,
                        visible=node.visible,
                    )
                )
            db.add(
                ConfigurationScale(
                    course_id=course_id,
                    owner_id=owner_id,
                    configuration_id=configuration_id,
                    scale=layout.scale,
                    center_x=layout.center.x,
                    center_y=layout.center.y,
                    farthest_module_id=layout.module_id,
                )
            )
            db.flush()

            configuration = GraphConfiguration(
                owner_id=owner_id,
                configuration_id=configuration_id,
                nodes=layout.nodes,
                scale=layout.scale,
                center=layout.center,
            )

            from app.services.centroid_service import CentroidService

            CentroidService().rebuild_configuration(course_id, configuration, db)
            db.commit()

        except Exception as e:
            self.logger.error(f"Error saving configuration for course {course_id} owner {owner_id}: {e}")
            db.rollback()
            raise

        self.logger.info(
            f"Saved configuration {configuration_id} for course {course_id} owner {owner_id}: "
            f"{len(layout.nodes)} modules, scale={layout.scale:.3f}"
        )
        return configuration_id

    def get_configuration(self, course_id: int, owner_id: str, configuration_id: int, db: Session) -> GraphConfiguration:
        """
        Load one configuration.

        Raises:
            ConfigurationNotFoundError: No nodes stored for the configuration
        """
        rows = (
            db.query(NodeCoordinate)
            .filter(
                and_(
                    NodeCoordinate.course_id == course_id,
                    NodeCoordinate.owner_id == owner_id,
                    NodeCoordinate.configuration_id == configuration_id,
                )
            )
            .all()
        )
        if not rows:
            raise ConfigurationNotFoundError(
                f"Configuration {configuration_id} of owner {owner_id} not found in course {course_id}"
            )

        scale = (
            db.query(ConfigurationScale)
            .filter(
                and_(
                    ConfigurationScale.course_id == course_id,
                    ConfigurationScale.owner_id == owner_id,
                    ConfigurationScale.configuration_id == configuration_id,
                )
            )
            .first()
        )
        return GraphConfiguration(
            owner_id=owner_id,
            configuration_id=configuration_id,
            nodes={row.module_id: ModuleNode(row.x, row.y, row.visible) for row in rows},
            scale=scale.scale if scale else 1.0,
            center=Point(scale.center_x, scale.center_y) if scale else Point(0.0, 0.0),
        )

    def get_configurations(self, course_id: int, db: Session, owner_id: Optional[str] = None) -> List[GraphConfiguration]:
        """Load every configuration of a course, optionally of one owner."""
        query = db.query(NodeCoordinate.owner_id, NodeCoordinate.configuration_id).filter(
            NodeCoordinate.course_id == course_id
        )
        if owner_id is not None:
            query = query.filter(NodeCoordinate.owner_id == owner_id)

        keys = sorted(set(query.distinct().all()))
        return [self.get_configuration(course_id, owner, configuration_id, db) for owner, configuration_id in keys]

    def latest_configuration_id(self, course_id: int, owner_id: str, db: Session) -> Optional[int]:
        return (
            db.query(func.max(NodeCoordinate.configuration_id))
            .filter(and_(NodeCoordinate.course_id == course_id, NodeCoordinate.owner_id == owner_id))
            .scalar()
        )

    def configurations_to_update(self, course_id: int, db: Session) -> Dict[str, Set[int]]:
        """
        Configurations whose clustering must follow new log data.

        Per owner: every configuration used by a finished run plus the owner's
        latest configuration.
        """
        result: Dict[str, Set[int]] = {}

        finished = (
            db.query(ClusterRecord.owner_id, ClusterRecord.configuration_id)
            .filter(and_(ClusterRecord.course_id == course_id, ClusterRecord.iteration == FINAL_ITERATION))
            .distinct()
            .all()
        )
        for owner_id, configuration_id in finished:
            result.setdefault(owner_id, set()).add(configuration_id)

        latest = (
            db.query(NodeCoordinate.owner_id, func.max(NodeCoordinate.configuration_id))
            .filter(NodeCoordinate.course_id == course_id)
            .group_by(NodeCoordinate.owner_id)
            .all()
        )
        for owner_id, configuration_id in latest:
            result.setdefault(owner_id, set()).add(configuration_id)

        return result

    def _delete_configuration_rows(self, course_id: int, owner_id: str, configuration_id: int, db: Session) -> None:
        for model in (NodeCoordinate, ConfigurationScale):
            db.query(model).filter(
                and_(
                    model.course_id == course_id,
                    model.owner_id == owner_id,
                    model.configuration_id == configuration_id,
                )
            ).delete(synchronize_session=False)
