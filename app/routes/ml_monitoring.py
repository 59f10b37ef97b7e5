"""
ML monitoring API routes for clustering run tracking.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.database.session import get_session
from app.services.ml_monitoring_service import MLMonitoringService


class ResolveRequest(BaseModel):
    resolution_notes: str


logger = logging.getLogger("app.ml_monitoring")
router = APIRouter(prefix="/api/ml-monitoring", tags=["ml-monitoring"])

monitoring_service = MLMonitoringService()


@router.get("/course/{course_id}/quality-history")
async def get_course_quality_history(
    course_id: int,
    days: int = Query(default=30, ge=1, le=365, description="Number of days to look back"),
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    """
    Get clustering metrics history for a course.

    Args:
        course_id: Course ID
        days: Number of days to look back
        db: Database session

    Returns:
        Metrics history
    """
    try:
        history = monitoring_service.get_course_quality_history(course_id, db, days)

        return {
            "status": "success",
            "course_id": course_id,
            "period_days": days,
            "quality_history": history,
            "total_records": len(history),
        }

    except Exception as e:
        logger.error(f"Error getting course quality history: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/alerts")
async def get_active_alerts(
    course_id: Optional[int] = Query(default=None, description="Filter by course ID"),
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    """
    Get unresolved clustering alerts.
    """
    try:
        alerts = monitoring_service.get_active_alerts(db, course_id)

        return {
            "status": "success",
            "alerts": alerts,
            "total_alerts": len(alerts),
            "summary": monitoring_service.get_alert_summary(db),
        }

    except Exception as e:
        logger.error(f"Error getting active alerts: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/alerts/{alert_id}/resolve")
async def resolve_alert(alert_id: int, request_data: ResolveRequest, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """
    Resolve a clustering alert.
    """
    resolved = monitoring_service.resolve_alert(alert_id, request_data.resolution_notes, db)
    if not resolved:
        raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")

    return {"status": "success", "alert_id": alert_id}
