"""
Configuration service for reading settings from the environment.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Optional

from app.clustering.context import ClusteringContext, Viewport

logger = logging.getLogger("app.config")

DEFAULTS = {
    "CLUSTER_CONVERGENCE_DISTANCE": "1.0",
    "CLUSTER_RECONCILE_EPSILON": "0.000001",
    "CLUSTER_RECONCILE_MAX_ITERATIONS": "100",
    "CLUSTER_MAX_PASSES": "100",
    "CLUSTER_VIEW_WIDTH": "800",
    "CLUSTER_VIEW_HEIGHT": "600",
    "CLUSTER_VIEW_MARGIN": "100",
    "CLUSTER_MIN_SEPARATION": "100",
    "CLUSTER_QUALITY_MIN_SILHOUETTE": "0.2",
    "CLUSTER_EMPTY_ALERT_THRESHOLD": "3",
}


class ConfigService:
    """Service for managing application configuration."""

    def __init__(self):
        self._cache: dict[str, Any] = {}

    def get_setting(self, key: str, default: Any = None) -> Any:
        """
        Get setting value from the environment.

        Priority: Cache > Environment > Default
        """
        if key in self._cache:
            return self._cache[key]

        if default is None:
            default = DEFAULTS.get(key)
        value = os.getenv(key, default)

        self._cache[key] = value

        logger.debug(f"Retrieved setting {key}={value}")
        return value

    def set_setting(self, key: str, value: Any) -> None:
        """Override a setting for the lifetime of this process."""
        self._cache[key] = value
        logger.info(f"Set setting {key}={value}")

    def clear_cache(self) -> None:
        self._cache.clear()

    def get_float(self, key: str, default: Optional[float] = None) -> float:
        value = self.get_setting(key, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning(f"Invalid float for {key}: {value}, using default")
            return float(default if default is not None else DEFAULTS[key])

    def get_int(self, key: str, default: Optional[int] = None) -> int:
        value = self.get_setting(key, default)
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning(f"Invalid integer for {key}: {value}, using default")
            return int(default if default is not None else DEFAULTS[key])

    def clustering_context(self, seed: Optional[int] = None, **overrides) -> ClusteringContext:
        """
        Build a clustering context from the CLUSTER_* settings.

        Args:
            seed: Optional seed for the random source
            overrides: Context fields that take precedence over settings

        Returns:
            ClusteringContext for one clustering invocation
        """
        settings = {
            "viewport": Viewport(
                width=self.get_float("CLUSTER_VIEW_WIDTH"),
                height=self.get_float("CLUSTER_VIEW_HEIGHT"),
                margin=self.get_float("CLUSTER_VIEW_MARGIN"),
            ),
            "convergence_distance": self.get_float("CLUSTER_CONVERGENCE_DISTANCE"),
            "min_separation": self.get_float("CLUSTER_MIN_SEPARATION"),
            "max_passes": self.get_int("CLUSTER_MAX_PASSES"),
            "reconcile_epsilon": self.get_float("CLUSTER_RECONCILE_EPSILON"),
            "reconcile_max_iterations": self.get_int("CLUSTER_RECONCILE_MAX_ITERATIONS"),
        }
        settings.update({key: value for key, value in overrides.items() if value is not None})
        return ClusteringContext.create(seed, **settings)

    def now(self) -> datetime:
        """
        Get current time (real or fake based on APP_NOW_MODE).

        Returns:
            Current datetime (real or fake)
        """
        now_mode = self.get_setting("APP_NOW_MODE", "real")

        if now_mode == "fake":
            fake_now_str = self.get_setting("APP_FAKE_NOW")
            if fake_now_str:
                try:
                    # Parse YYYY-MM-DD format
                    fake_date = datetime.strptime(fake_now_str, "%Y-%m-%d")
                    logger.debug(f"Using fake time: {fake_date}")
                    return fake_date
                except ValueError:
                    logger.warning(f"Invalid APP_FAKE_NOW format: {fake_now_str}, using real time")

        return datetime.now(timezone.utc)


# Global instance
config_service = ConfigService()
