"""
Graph configuration API routes.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.clustering.exceptions import ClusteringError
from app.clustering.models import ModuleNode, Point
from app.database.session import get_session
from app.routes.errors import http_error
from app.services.graph_service import GraphService


class NodePosition(BaseModel):
    module_id: int
    x: float
    y: float
    visible: bool = True


class ConfigurationRequest(BaseModel):
    owner_id: str
    nodes: List[NodePosition]
    configuration_id: Optional[int] = None
    center_x: Optional[float] = None
    center_y: Optional[float] = None


logger = logging.getLogger("app.graph")
router = APIRouter(prefix="/api/graph", tags=["graph"])

graph_service = GraphService()


@router.post("/{course_id}/configurations")
async def save_configuration(
    course_id: int, request_data: ConfigurationRequest, db: Session = Depends(get_session)
) -> Dict[str, Any]:
    """
    Store an owner's layout of the course graph.

    Centroids of the configuration are rebuilt from the stored log history.
    """
    logger.info(f"Saving configuration for course {course_id} owner {request_data.owner_id}")

    center = None
    if request_data.center_x is not None and request_data.center_y is not None:
        center = Point(request_data.center_x, request_data.center_y)

    positions = {node.module_id: ModuleNode(node.x, node.y, node.visible) for node in request_data.nodes}
    try:
        configuration_id = graph_service.save_configuration(
            course_id, request_data.owner_id, positions, db, request_data.configuration_id, center
        )
        configuration = graph_service.get_configuration(course_id, request_data.owner_id, configuration_id, db)
    except ClusteringError as e:
        raise http_error(e)

    return {
        "course_id": course_id,
        "owner_id": request_data.owner_id,
        "configuration_id": configuration_id,
        "scale": configuration.scale,
        "center": {"x": configuration.center.x, "y": configuration.center.y},
        "nodes": {
            module_id: {"x": node.x, "y": node.y, "visible": node.visible}
            for module_id, node in sorted(configuration.nodes.items())
        },
    }


@router.get("/{course_id}/configurations/{owner_id}/{configuration_id}")
async def get_configuration(
    course_id: int, owner_id: str, configuration_id: int, db: Session = Depends(get_session)
) -> Dict[str, Any]:
    try:
        configuration = graph_service.get_configuration(course_id, owner_id, configuration_id, db)
    except ClusteringError as e:
        raise http_error(e)

    return {
        "course_id": course_id,
        "owner_id": owner_id,
        "configuration_id": configuration_id,
        "scale": configuration.scale,
        "center": {"x": configuration.center.x, "y": configuration.center.y},
        "nodes": {
            module_id: {"x": node.x, "y": node.y, "visible": node.visible}
            for module_id, node in sorted(configuration.nodes.items())
        },
    }


@router.get("/{course_id}/configurations")
async def list_configurations(course_id: int, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """Configurations that follow new log data, per owner."""
    try:
        owners = graph_service.configurations_to_update(course_id, db)
    except Exception as e:
        logger.error(f"Error listing configurations for course {course_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return {"course_id": course_id, "owners": {owner: sorted(ids) for owner, ids in sorted(owners.items())}}
