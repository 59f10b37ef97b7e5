"""
Log ingestion API routes.
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.clustering.exceptions import ClusteringError
from app.clustering.models import AccessEvent
from app.database.session import get_session
from app.routes.errors import http_error
from app.services.centroid_service import CentroidService
from app.services.log_import_service import LogImportService


class LogEvent(BaseModel):
    student_id: str
    module_id: int
    time: int


class LogBatchRequest(BaseModel):
    events: List[LogEvent]
    reconcile: bool = True


logger = logging.getLogger("app.import")
router = APIRouter(prefix="/api/logs", tags=["logs"])

centroid_service = CentroidService()


@router.post("/{course_id}")
async def ingest_logs(course_id: int, request_data: LogBatchRequest, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """
    Accept a batch of new access events and update centroids.

    Returns:
        Processing summary, with reconciliation results when requested
    """
    logger.info(f"Received {len(request_data.events)} events for course {course_id}")

    events = [AccessEvent(e.student_id, e.module_id, e.time) for e in request_data.events]
    try:
        return centroid_service.update_course(course_id, db, events, reconcile=request_data.reconcile)
    except ClusteringError as e:
        raise http_error(e)


@router.post("/{course_id}/import")
async def import_logs(course_id: int, file: UploadFile = File(...), db: Session = Depends(get_session)) -> Dict[str, Any]:
    """
    Import a JSON or CSV export of access events.
    """
    logger.info(f"Log import requested for course {course_id}: {file.filename}")

    if not file.filename.endswith((".json", ".csv")):
        raise HTTPException(status_code=400, detail="Only JSON or CSV files are allowed")

    import_service = LogImportService()
    file_path = import_service.save_uploaded_file(await file.read(), file.filename)
    try:
        return import_service.import_file(course_id, file_path, db)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ClusteringError as e:
        raise http_error(e)
    finally:
        import_service.cleanup_file(file_path)


@router.delete("/{course_id}")
async def reset_course_data(
    course_id: int,
    clusters: bool = True,
    graph: bool = True,
    logs: bool = True,
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    """
    Delete a course's clustering data, graph configurations and imported logs.

    Returns:
        Number of deleted rows per table
    """
    logger.info(f"Data reset requested for course {course_id}: clusters={clusters} graph={graph} logs={logs}")
    return centroid_service.reset_course(course_id, db, clusters=clusters, graph=graph, logs=logs)
