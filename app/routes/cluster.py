"""
Clustering run API routes.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.clustering.exceptions import ClusteringError
from app.clustering.models import CentroidVariant, Point
from app.database.session import get_session
from app.routes.errors import http_error
from app.services.cluster_service import ClusterService
from app.services.reconcile_service import ReconcileService


class RunRequest(BaseModel):
    owner_id: str
    configuration_id: int
    k: int = Field(ge=2)
    variant: CentroidVariant = CentroidVariant.GEOMETRIC
    seed: Optional[int] = None
    max_passes: Optional[int] = Field(default=None, ge=1)
    passes: Optional[int] = Field(default=None, ge=0)


class RunKey(BaseModel):
    owner_id: str
    configuration_id: int


class AdvanceRequest(RunKey):
    passes: Optional[int] = Field(default=None, ge=1)
    seed: Optional[int] = None


class ReassignRequest(RunKey):
    student_id: str
    cluster_number: int


class ManualCentroid(BaseModel):
    cluster_number: int
    x: float
    y: float


class ManualRequest(RunKey):
    iteration: int
    members: Dict[str, int]
    clusters: List[ManualCentroid] = []


class ReconcileRequest(BaseModel):
    owner_id: Optional[str] = None


logger = logging.getLogger("app.cluster")
router = APIRouter(prefix="/api/cluster", tags=["cluster"])

cluster_service = ClusterService()


@router.post("/{course_id}/runs")
async def start_run(course_id: int, request_data: RunRequest, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """
    Start a k-means run.

    Without ``passes`` the run is clustered to convergence, otherwise it stops
    after that many passes so students can be reassigned by hand.
    """
    logger.info(
        f"Starting run for course {course_id} owner {request_data.owner_id} "
        f"configuration {request_data.configuration_id}, k={request_data.k}"
    )
    try:
        return cluster_service.start_run(
            course_id,
            request_data.owner_id,
            request_data.configuration_id,
            request_data.k,
            db,
            variant=request_data.variant,
            seed=request_data.seed,
            max_passes=request_data.max_passes,
            passes=request_data.passes,
        )
    except ClusteringError as e:
        raise http_error(e)


@router.get("/{course_id}/runs")
async def list_runs(
    course_id: int,
    owner_id: Optional[str] = None,
    configuration_id: Optional[int] = None,
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    runs = cluster_service.list_runs(course_id, db, owner_id, configuration_id)
    return {"course_id": course_id, "runs": runs}


@router.get("/{course_id}/runs/{run_id}")
async def get_run(
    course_id: int, run_id: int, owner_id: str, configuration_id: int, db: Session = Depends(get_session)
) -> Dict[str, Any]:
    """Every iteration of a run."""
    try:
        return cluster_service.get_run_history(course_id, owner_id, configuration_id, run_id, db)
    except ClusteringError as e:
        raise http_error(e)


@router.post("/{course_id}/runs/{run_id}/advance")
async def advance_run(
    course_id: int, run_id: int, request_data: AdvanceRequest, db: Session = Depends(get_session)
) -> Dict[str, Any]:
    try:
        return cluster_service.advance_run(
            course_id,
            request_data.owner_id,
            request_data.configuration_id,
            run_id,
            db,
            passes=request_data.passes,
            seed=request_data.seed,
        )
    except ClusteringError as e:
        raise http_error(e)


@router.post("/{course_id}/runs/{run_id}/reassign")
async def reassign_member(
    course_id: int, run_id: int, request_data: ReassignRequest, db: Session = Depends(get_session)
) -> Dict[str, Any]:
    """Move a student to another cluster and pin it there."""
    logger.info(f"Reassigning student {request_data.student_id} to cluster {request_data.cluster_number} in run {run_id}")
    try:
        return cluster_service.reassign_member(
            course_id,
            request_data.owner_id,
            request_data.configuration_id,
            run_id,
            request_data.student_id,
            request_data.cluster_number,
            db,
        )
    except ClusteringError as e:
        raise http_error(e)


@router.post("/{course_id}/runs/{run_id}/manual")
async def save_manual_clustering(
    course_id: int, run_id: int, request_data: ManualRequest, db: Session = Depends(get_session)
) -> Dict[str, Any]:
    """Replace the manual clustering of one iteration."""
    centroids = {cluster.cluster_number: Point(cluster.x, cluster.y) for cluster in request_data.clusters}
    try:
        return cluster_service.save_manual_clustering(
            course_id,
            request_data.owner_id,
            request_data.configuration_id,
            run_id,
            request_data.iteration,
            request_data.members,
            db,
            centroids=centroids or None,
        )
    except ClusteringError as e:
        raise http_error(e)


@router.get("/{course_id}/runs/{run_id}/measures")
async def get_quality_measures(
    course_id: int,
    run_id: int,
    owner_id: str,
    configuration_id: int,
    iteration: Optional[int] = None,
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Precision, recall and F-measures of the automatic against the manual clustering."""
    try:
        return cluster_service.get_quality_measures(course_id, owner_id, configuration_id, run_id, db, iteration)
    except ClusteringError as e:
        raise http_error(e)


@router.delete("/{course_id}/runs/{run_id}")
async def delete_run(
    course_id: int, run_id: int, owner_id: str, configuration_id: int, db: Session = Depends(get_session)
) -> Dict[str, Any]:
    try:
        deleted = cluster_service.delete_run(course_id, owner_id, configuration_id, run_id, db)
    except ClusteringError as e:
        raise http_error(e)
    return {"status": "success", "run_id": run_id, "deleted_rows": deleted}


@router.post("/{course_id}/reconcile")
async def reconcile(
    course_id: int, request_data: Optional[ReconcileRequest] = None, db: Session = Depends(get_session)
) -> Dict[str, Any]:
    """Reconcile finished runs of a course, or of one owner."""
    reconcile_service = ReconcileService()
    try:
        if request_data is not None and request_data.owner_id is not None:
            return reconcile_service.reconcile_owner(course_id, request_data.owner_id, db)
        return reconcile_service.reconcile_course(course_id, db)
    except ClusteringError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error reconciling course {course_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

