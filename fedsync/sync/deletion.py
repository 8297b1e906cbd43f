"""
Deletion protocol for federated resources.

Runs whenever a federated resource carrying a deletion timestamp is
reconciled. The protocol is a small state machine:

    STARTED --no finalizer--> COMPLETED
    STARTED --orphan--------> ORPHANING --finalizer removed--> COMPLETED
    STARTED ----------------> CASCADING --resources remain---> AWAITING_REMOVAL
                              CASCADING --none remain--------> VERIFYING
                              VERIFYING --all confirmed------> FINALIZING --> COMPLETED

Any failed step ends in FAILED. The finalizer is only removed after a
direct (uncached) check of every ready cluster, and never when a cluster
is not ready.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from fedsync.federation.finalizers import has_finalizer, remove_finalizers
from fedsync.federation.interfaces import ClusterInformer, HostClient
from fedsync.federation.metadata import (
    FINALIZER_SYNC_CONTROLLER,
    QualifiedName,
    ReconciliationStatus,
    target_key,
)
from fedsync.federation.unstructured import is_terminating
from fedsync.sync.dispatch import CheckUnmanagedDispatcher, UnmanagedDispatcher
from fedsync.utils.config import ControllerConfig
from fedsync.utils.diagnostics import ErrorReporter
from fedsync.utils.logging import get_logger

logger = get_logger(__name__)


class DeletionError(Exception):
    """Managed resources could not be removed or verified."""
    pass


class DeletionPhase(str, Enum):
    """Phases of the deletion protocol."""
    
    STARTED = "started"
    ORPHANING = "orphaning"
    CASCADING = "cascading"
    VERIFYING = "verifying"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    AWAITING_REMOVAL = "awaiting_removal"
    FAILED = "failed"


TERMINAL_STATUS = {
    DeletionPhase.COMPLETED: ReconciliationStatus.ALL_OK,
    DeletionPhase.AWAITING_REMOVAL: ReconciliationStatus.NEEDS_RECHECK,
    DeletionPhase.FAILED: ReconciliationStatus.ERROR,
}


@dataclass(frozen=True)
class DeletionFacts:
    """
    What the protocol has learned so far.
    
    Attributes:
        finalizer_present: The resource carries the sync finalizer
        orphan: Managed resources should be detached, not deleted
        dispatch_ok: Deletion dispatch finished without failures
        remaining_clusters: Ready clusters still holding a managed copy
        check_ok: The direct check confirmed removal in every cluster
        finalizer_removed: The finalizer was removed
    """
    finalizer_present: bool = False
    orphan: bool = False
    dispatch_ok: Optional[bool] = None
    remaining_clusters: Tuple[str, ...] = ()
    check_ok: Optional[bool] = None
    finalizer_removed: Optional[bool] = None


def next_phase(phase: DeletionPhase, facts: DeletionFacts) -> DeletionPhase:
    """
    Compute the phase following a completed one.
    
    Args:
        phase: Phase whose action has just run
        facts: Facts gathered so far
    
    Returns:
        Next phase
    
    Raises:
        ValueError: If phase is terminal
    """
    if phase == DeletionPhase.STARTED:
        if not facts.finalizer_present:
            return DeletionPhase.COMPLETED
        if facts.orphan:
            return DeletionPhase.ORPHANING
        return DeletionPhase.CASCADING
    
    if phase == DeletionPhase.ORPHANING:
        return DeletionPhase.COMPLETED if facts.finalizer_removed else DeletionPhase.FAILED
    
    if phase == DeletionPhase.CASCADING:
        if not facts.dispatch_ok:
            return DeletionPhase.FAILED
        if facts.remaining_clusters:
            return DeletionPhase.AWAITING_REMOVAL
        return DeletionPhase.VERIFYING
    
    if phase == DeletionPhase.VERIFYING:
        return DeletionPhase.FINALIZING if facts.check_ok else DeletionPhase.FAILED
    
    if phase == DeletionPhase.FINALIZING:
        return DeletionPhase.COMPLETED if facts.finalizer_removed else DeletionPhase.FAILED
    
    raise ValueError(f"{phase.value} is a terminal phase")


async def remove_finalizer(host_client: HostClient, fed_resource) -> None:
    """
    Remove the sync finalizer, writing only if it was present.
    
    Raises:
        Exception: If the write fails
    """
    obj = fed_resource.object()
    if not remove_finalizers(obj, [FINALIZER_SYNC_CONTROLLER]):
        return
    
    logger.info(
        "Removing finalizer",
        finalizer=FINALIZER_SYNC_CONTROLLER,
        kind=fed_resource.federated_kind(),
        key=str(fed_resource.federated_name()),
    )
    stored = await host_client.update(obj)
    fed_resource.set_object(stored)


DeletionFunc = Callable[[UnmanagedDispatcher, str, Dict[str, Any]], None]


class DeletionProtocol:
    """
    Drives teardown of the resources managed by a terminating federated
    resource.
    """
    
    def __init__(
        self,
        informer: ClusterInformer,
        host_client: HostClient,
        config: Optional[ControllerConfig] = None,
        reporter: Optional[ErrorReporter] = None,
    ):
        """
        Initialize deletion protocol.
        
        Args:
            informer: Cluster registry and object caches
            host_client: Host store client
            config: Controller configuration
            reporter: Error reporter
        """
        self.informer = informer
        self.host_client = host_client
        self.config = config or ControllerConfig()
        self.reporter = reporter or ErrorReporter()
        
        self._actions = {
            DeletionPhase.ORPHANING: self._orphan,
            DeletionPhase.CASCADING: self._cascade,
            DeletionPhase.VERIFYING: self._verify,
            DeletionPhase.FINALIZING: self._finalize,
        }
    
    async def ensure_deletion(self, fed_resource) -> ReconciliationStatus:
        """
        Advance deletion of a terminating federated resource.
        
        Args:
            fed_resource: FederatedResource with a deletion timestamp
        
        Returns:
            ALL_OK when finished, NEEDS_RECHECK while managed resources
            are being removed, ERROR on failure
        """
        kind = fed_resource.federated_kind()
        key = str(fed_resource.federated_name())
        
        try:
            await fed_resource.delete_versions()
        except Exception as e:
            self.reporter.handle_error(e, f"failed to delete propagated versions of {kind} {key}")
        
        facts = DeletionFacts(
            finalizer_present=has_finalizer(fed_resource.object(), FINALIZER_SYNC_CONTROLLER),
            orphan=fed_resource.orphan_requested(),
        )
        phase = next_phase(DeletionPhase.STARTED, facts)
        
        while phase not in TERMINAL_STATUS:
            logger.debug("Deletion phase", kind=kind, key=key, phase=phase.value)
            facts = await self._actions[phase](fed_resource, facts)
            phase = next_phase(phase, facts)
        
        logger.info(
            "Deletion step finished",
            kind=kind,
            key=key,
            phase=phase.value,
            remaining_clusters=list(facts.remaining_clusters),
        )
        return TERMINAL_STATUS[phase]
    
    async def _orphan(self, fed_resource, facts: DeletionFacts) -> DeletionFacts:
        kind = fed_resource.federated_kind()
        key = str(fed_resource.federated_name())
        
        logger.info("Orphaning managed resources, removing finalizer", kind=kind, key=key)
        try:
            await remove_finalizer(self.host_client, fed_resource)
        except Exception as e:
            self.reporter.handle_error(e, f"failed to remove finalizer from {kind} {key}")
            return replace(facts, finalizer_removed=False)
        
        # The orphan annotation already severed ownership; detaching is best effort.
        try:
            await self.remove_managed_label(fed_resource.target_kind(), fed_resource.target_name())
        except Exception as e:
            self.reporter.handle_error(
                e, f"failed to remove the managed label from resources previously managed by {kind} {key}",
            )
        
        return replace(facts, finalizer_removed=True)
    
    async def _cascade(self, fed_resource, facts: DeletionFacts) -> DeletionFacts:
        remaining: List[str] = []
        
        def delete_in_cluster(
            dispatcher: UnmanagedDispatcher,
            cluster_name: str,
            cluster_obj: Dict[str, Any],
        ) -> None:
            host_namespace = fed_resource.is_namespace_in_host_cluster(cluster_obj)
            
            # A terminating host namespace will take the federated
            # resource with it; it cannot gate finalizer removal.
            if host_namespace and is_terminating(cluster_obj):
                return
            
            remaining.append(cluster_name)
            
            if is_terminating(cluster_obj):
                return
            
            if host_namespace:
                dispatcher.remove_managed_label(cluster_name, cluster_obj)
            else:
                dispatcher.delete(cluster_name)
        
        try:
            await self.handle_deletion_in_clusters(
                fed_resource.target_kind(),
                fed_resource.target_name(),
                delete_in_cluster,
            )
        except Exception as e:
            self.reporter.handle_error(
                e, f"failed to delete {fed_resource.federated_kind()} {fed_resource.federated_name()}",
            )
            return replace(facts, dispatch_ok=False, remaining_clusters=tuple(sorted(remaining)))
        
        if remaining:
            logger.info(
                "Waiting for managed resources to be removed",
                kind=fed_resource.federated_kind(),
                key=str(fed_resource.federated_name()),
                clusters=sorted(remaining),
            )
        
        return replace(facts, dispatch_ok=True, remaining_clusters=tuple(sorted(remaining)))
    
    async def _verify(self, fed_resource, facts: DeletionFacts) -> DeletionFacts:
        try:
            await self.ensure_removed_or_unmanaged(fed_resource)
        except Exception as e:
            self.reporter.handle_error(
                e, "failed to verify that managed resources no longer exist in any cluster",
            )
            return replace(facts, check_ok=False)
        return replace(facts, check_ok=True)
    
    async def _finalize(self, fed_resource, facts: DeletionFacts) -> DeletionFacts:
        try:
            await remove_finalizer(self.host_client, fed_resource)
        except Exception as e:
            self.reporter.handle_error(
                e,
                f"failed to remove finalizer from {fed_resource.federated_kind()} "
                f"{fed_resource.federated_name()}",
            )
            return replace(facts, finalizer_removed=False)
        return replace(facts, finalizer_removed=True)
    
    async def remove_managed_label(self, kind: str, qualified_name: QualifiedName) -> None:
        """
        Remove the managed label from the named resource in every ready
        cluster holding a cached, non-terminating copy.
        
        Raises:
            DeletionError: If any cluster could not be handled
        """
        
        def detach(dispatcher: UnmanagedDispatcher, cluster_name: str, cluster_obj: Dict[str, Any]) -> None:
            if is_terminating(cluster_obj):
                return
            dispatcher.remove_managed_label(cluster_name, cluster_obj)
        
        await self.handle_deletion_in_clusters(kind, qualified_name, detach)
    
    async def handle_deletion_in_clusters(
        self,
        kind: str,
        qualified_name: QualifiedName,
        deletion_func: DeletionFunc,
    ) -> None:
        """
        Invoke deletion_func for every cached copy in a ready cluster and
        wait for the dispatched operations.
        
        Args:
            kind: Target kind
            qualified_name: Target name
            deletion_func: Called with (dispatcher, cluster name, cached object)
        
        Raises:
            DeletionError: On timeout, cache failures, unready clusters or
                failed operations
        """
        clusters = self.informer.get_clusters()
        
        dispatcher = UnmanagedDispatcher(
            self.informer.get_client_for_cluster,
            kind,
            qualified_name,
            timeout_ms=self.config.update_timeout_ms,
        )
        key = target_key(qualified_name)
        retrieval_failures: List[str] = []
        unready: List[str] = []
        
        for cluster in clusters:
            if not cluster.ready:
                unready.append(cluster.name)
                continue
            
            try:
                cluster_obj = self.informer.get_target(cluster.name, key)
            except Exception as e:
                logger.warning(
                    "Failed to retrieve cached resource",
                    cluster=cluster.name,
                    kind=kind,
                    key=key,
                    error=str(e),
                )
                retrieval_failures.append(cluster.name)
                continue
            
            if cluster_obj is None:
                continue
            
            deletion_func(dispatcher, cluster.name, cluster_obj)
        
        ok, timeout_err = await dispatcher.wait()
        if timeout_err is not None:
            raise timeout_err
        if retrieval_failures:
            raise DeletionError(
                f"failed to retrieve a managed resource for the following cluster(s): "
                f"{', '.join(retrieval_failures)}"
            )
        if unready:
            raise DeletionError(f"the following clusters were not ready: {', '.join(unready)}")
        if not ok:
            raise DeletionError("failed to handle managed resources in one or more clusters")
    
    async def ensure_removed_or_unmanaged(self, fed_resource) -> None:
        """
        Confirm, directly against each ready cluster, that no managed copy
        of the target remains.
        
        Raises:
            DispatchTimeoutError: If the checks did not finish in time
            DeletionError: If a cluster is not ready or a check failed
        """
        clusters = self.informer.get_clusters()
        
        dispatcher = CheckUnmanagedDispatcher(
            self.informer.get_client_for_cluster,
            fed_resource.target_kind(),
            fed_resource.target_name(),
            timeout_ms=self.config.update_timeout_ms,
        )
        unready: List[str] = []
        for cluster in clusters:
            if not cluster.ready:
                unready.append(cluster.name)
                continue
            dispatcher.check_removed_or_unlabeled(cluster.name, fed_resource.is_namespace_in_host_cluster)
        
        ok, timeout_err = await dispatcher.wait()
        if timeout_err is not None:
            raise timeout_err
        if unready:
            raise DeletionError(f"the following clusters were not ready: {', '.join(unready)}")
        if not ok:
            raise DeletionError("one or more checks failed")
