"""
Health check endpoints.
"""
import logging
import time
from typing import Any, Dict

import psutil
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.database.session import get_session

router = APIRouter()
logger = logging.getLogger("app.health")

SERVICE_NAME = "behaviour-clustering"
SERVICE_VERSION = "0.1.0"


@router.get("/healthz")
async def health_check() -> Dict[str, Any]:
    """
    Health check endpoint for Kubernetes/Docker health probes.

    Returns:
        Dict with status information
    """
    logger.info("Health check requested")

    return {"status": "ok", "service": SERVICE_NAME, "version": SERVICE_VERSION}


@router.get("/health")
async def detailed_health(db: Session = Depends(get_session)) -> Dict[str, Any]:
    """
    Detailed health check with database and process status.

    Returns:
        Dict with detailed health information
    """
    logger.info("Detailed health check requested")

    database = {"status": "healthy", "response_time": 0.0}
    try:
        start_time = time.time()
        db.execute(text("SELECT 1"))
        database["response_time"] = round((time.time() - start_time) * 1000, 2)  # ms
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        database = {"status": "unhealthy", "error": str(e)}

    process = psutil.Process()
    return {
        "status": "ok" if database["status"] == "healthy" else "degraded",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "components": {
            "database": database,
            "process": {
                "memory_mb": round(process.memory_info().rss / 1024 / 1024, 2),
                "threads": process.num_threads(),
            },
        },
    }
