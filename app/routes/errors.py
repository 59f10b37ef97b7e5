"""
Translation of clustering errors to HTTP errors.
"""
from fastapi import HTTPException

from app.clustering.exceptions import ConfigurationNotFoundError, ClusteringError, RunNotFoundError


def http_error(error: ClusteringError) -> HTTPException:
    """404 for missing configurations and runs, 422 for everything else."""
    if isinstance(error, (ConfigurationNotFoundError, RunNotFoundError)):
        return HTTPException(status_code=404, detail=str(error))
    return HTTPException(status_code=422, detail=str(error))
