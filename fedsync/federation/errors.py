"""
Errors raised by the host store and member-cluster clients.
"""

from typing import List


class ApiError(Exception):
    """Base class for errors returned by an API client."""
    pass


class NotFoundError(ApiError):
    """The requested resource does not exist."""
    pass


class AlreadyExistsError(ApiError):
    """A resource with the same name already exists."""
    pass


class ConflictError(ApiError):
    """The resource changed since it was read."""
    pass


class OverrideError(Exception):
    """An override could not be applied to a cluster object."""
    pass


class DispatchTimeoutError(Exception):
    """
    A dispatch round did not finish before its deadline.
    
    Attributes:
        pending_clusters: Clusters whose operations were still running
        timeout_ms: The deadline that elapsed
    """
    
    def __init__(self, pending_clusters: List[str], timeout_ms: int):
        self.pending_clusters = sorted(pending_clusters)
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Failed to finish {len(self.pending_clusters)} operation(s) in "
            f"{timeout_ms}ms: {', '.join(self.pending_clusters)}"
        )
