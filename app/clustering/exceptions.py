"""
Errors raised by the clustering core.

Only malformed or missing required input is reported this way; every other
condition (empty clusters, iteration caps) is recovered from locally.
"""


class ClusteringError(Exception):
    """Base class for clustering failures."""


class MissingCentroidsError(ClusteringError):
    """No student centroids exist for a requested run."""


class ConfigurationNotFoundError(ClusteringError):
    """No graph configuration exists for the requested owner/id."""


class InvalidClusterCountError(ClusteringError, ValueError):
    """The requested number of clusters is not usable."""


class RunNotFoundError(ClusteringError):
    """No clustering run exists for the requested key."""


class RunStateError(ClusteringError):
    """The run is not in a state that allows the requested operation."""
