"""
Propagation status.

Per-cluster status codes, the aggregate reason, and the aggregator that
writes both to the status subresource of a federated resource.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from fedsync.federation.errors import ConflictError
from fedsync.federation.interfaces import HostClient
from fedsync.federation.metadata import ReconciliationStatus
from fedsync.utils.config import ControllerConfig
from fedsync.utils.diagnostics import ErrorReporter
from fedsync.utils.logging import get_logger

logger = get_logger(__name__)

PROPAGATION_CONDITION_TYPE = "Propagation"


class PropagationStatus(str, Enum):
    """Outcome of propagation to one member cluster."""
    
    OK = "OK"
    WAITING_FOR_REMOVAL = "WaitingForRemoval"
    
    # Cluster-level failures
    CLUSTER_NOT_READY = "ClusterNotReady"
    CACHED_RETRIEVAL_FAILED = "CachedRetrievalFailed"
    CLIENT_RETRIEVAL_FAILED = "ClientRetrievalFailed"
    
    # Operation failures
    COMPUTE_RESOURCE_FAILED = "ComputeResourceFailed"
    APPLY_OVERRIDES_FAILED = "ApplyOverridesFailed"
    CREATION_FAILED = "CreationFailed"
    UPDATE_FAILED = "UpdateFailed"
    DELETION_FAILED = "DeletionFailed"
    LABEL_REMOVAL_FAILED = "LabelRemovalFailed"
    RETRIEVAL_FAILED = "RetrievalFailed"
    ALREADY_EXISTS = "AlreadyExists"
    MANAGED_LABEL_FALSE = "ManagedLabelFalse"
    
    # Operations still running at the dispatch deadline
    CREATION_TIMED_OUT = "CreationTimedOut"
    UPDATE_TIMED_OUT = "UpdateTimedOut"
    DELETION_TIMED_OUT = "DeletionTimedOut"
    LABEL_REMOVAL_TIMED_OUT = "LabelRemovalTimedOut"


class AggregateReason(str, Enum):
    """Reason attached to the propagation condition."""
    
    AGGREGATE_SUCCESS = "AggregateSuccess"
    CLUSTER_RETRIEVAL_FAILED = "ClusterRetrievalFailed"
    COMPUTE_PLACEMENT_FAILED = "ComputePlacementFailed"


@dataclass(frozen=True)
class ClusterStatus:
    """
    Status entry for one cluster.
    
    Attributes:
        code: Propagation status code
        error: Error message, empty on success
    """
    code: PropagationStatus
    error: str = ""
    
    def to_dict(self, cluster_name: str) -> Dict[str, str]:
        entry = {"name": cluster_name, "status": self.code.value}
        if self.error:
            entry["error"] = self.error
        return entry


PropagationStatusMap = Dict[str, ClusterStatus]


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def set_propagation_status(
    obj: Dict[str, Any],
    reason: AggregateReason,
    status_map: Optional[PropagationStatusMap],
) -> bool:
    """
    Merge propagation results into an object's status in place.
    
    The cluster list is replaced by the entries of status_map. When
    status_map is None (the round never reached the clusters) the
    existing cluster list is kept and only the condition changes.
    
    Args:
        obj: Federated object
        reason: Aggregate reason
        status_map: Per-cluster results, or None
    
    Returns:
        True if the status changed
    """
    status = obj.get("status")
    if not isinstance(status, dict):
        status = obj["status"] = {}
    
    changed = False
    
    if status_map is not None:
        clusters = [
            status_map[name].to_dict(name)
            for name in sorted(status_map)
        ]
        if status.get("clusters") != clusters:
            status["clusters"] = clusters
            changed = True
    
    generation = obj.get("metadata", {}).get("generation")
    if generation is not None and status.get("observedGeneration") != generation:
        status["observedGeneration"] = generation
        changed = True
    
    condition_status = "True" if reason == AggregateReason.AGGREGATE_SUCCESS else "False"
    conditions = [
        c for c in status.get("conditions") or []
        if c.get("type") != PROPAGATION_CONDITION_TYPE
    ]
    existing = next(
        (c for c in status.get("conditions") or [] if c.get("type") == PROPAGATION_CONDITION_TYPE),
        None,
    )
    
    if existing is None or existing.get("status") != condition_status or existing.get("reason") != reason.value:
        now = _now()
        transition_time = now
        if existing is not None and existing.get("status") == condition_status:
            transition_time = existing.get("lastTransitionTime", now)
        conditions.append({
            "type": PROPAGATION_CONDITION_TYPE,
            "status": condition_status,
            "reason": reason.value,
            "lastUpdateTime": now,
            "lastTransitionTime": transition_time,
        })
        status["conditions"] = conditions
        changed = True
    elif changed:
        existing["lastUpdateTime"] = _now()
    
    return changed


class StatusAggregator:
    """
    Writes propagation status to the host store.
    
    A conflicting write re-fetches the latest object and repeats the whole
    merge-and-write cycle, so results already merged are never written on
    top of a stale object.
    """
    
    def __init__(
        self,
        host_client: HostClient,
        config: Optional[ControllerConfig] = None,
        reporter: Optional[ErrorReporter] = None,
    ):
        """
        Initialize status aggregator.
        
        Args:
            host_client: Host store client
            config: Controller configuration (retry timing)
            reporter: Error reporter
        """
        self.host_client = host_client
        self.config = config or ControllerConfig()
        self.reporter = reporter or ErrorReporter()
    
    async def set_propagation_status(
        self,
        fed_resource,
        reason: AggregateReason,
        status_map: Optional[PropagationStatusMap],
    ) -> ReconciliationStatus:
        """
        Merge and write propagation status.
        
        Args:
            fed_resource: FederatedResource being reconciled
            reason: Aggregate reason
            status_map: Per-cluster results, or None
        
        Returns:
            ALL_OK once written (or unchanged), ERROR otherwise
        """
        kind = fed_resource.federated_kind()
        name = fed_resource.federated_name()
        
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.status_retry_timeout_ms / 1000
        attempt = 0
        
        while True:
            attempt += 1
            obj = fed_resource.object()
            
            if not set_propagation_status(obj, reason, status_map):
                return ReconciliationStatus.ALL_OK
            
            try:
                stored = await self.host_client.update_status(obj)
                fed_resource.set_object(stored)
                
                logger.debug(
                    "Updated propagation status",
                    kind=kind,
                    key=str(name),
                    reason=reason.value,
                    attempt=attempt,
                )
                return ReconciliationStatus.ALL_OK
            
            except ConflictError as e:
                logger.info(
                    "Conflict setting propagation status, will retry",
                    kind=kind,
                    key=str(name),
                    attempt=attempt,
                    error=str(e),
                )
            except Exception as e:
                self.reporter.handle_error(
                    e, f"failed to set propagation status for {kind} {name}",
                )
                return ReconciliationStatus.ERROR
            
            try:
                latest = await self.host_client.get(kind, name)
            except Exception as e:
                self.reporter.handle_error(
                    e, f"failed to retrieve {kind} {name} after status conflict",
                )
                return ReconciliationStatus.ERROR
            fed_resource.set_object(latest)
            
            if loop.time() + self.config.status_retry_interval_ms / 1000 > deadline:
                self.reporter.handle_error(
                    TimeoutError(f"gave up after {attempt} attempt(s)"),
                    f"failed to set propagation status for {kind} {name}",
                )
                return ReconciliationStatus.ERROR
            
            await asyncio.sleep(self.config.status_retry_interval_ms / 1000)
