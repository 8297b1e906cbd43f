"""
Sync controller for one federated type.

Reconciles federated resources against member clusters: places each
resource, propagates it, reports per-cluster status and runs the
deletion protocol for terminating resources.
"""

import time
from typing import Any, Dict, Optional

from fedsync.federation.finalizers import add_finalizers
from fedsync.federation.interfaces import (
    ClusterInformer,
    FederatedResourceAccessor,
    HostClient,
)
from fedsync.federation.metadata import (
    FINALIZER_SYNC_CONTROLLER,
    MANAGED_BY_FEDERATION_LABEL_KEY,
    ClusterSnapshot,
    QualifiedName,
    ReconciliationStatus,
    TypeConfig,
    target_key,
    target_name_for,
)
from fedsync.federation.unstructured import is_terminating
from fedsync.sync.deletion import DeletionProtocol
from fedsync.sync.dispatch import ManagedDispatcher
from fedsync.sync.status import AggregateReason, PropagationStatus, StatusAggregator
from fedsync.sync.worker import ReconcileWorker, WorkerTiming
from fedsync.utils.config import ControllerConfig
from fedsync.utils.deliverer import DelayingDeliverer, DeliveryItem
from fedsync.utils.diagnostics import ErrorReporter
from fedsync.utils.logging import get_logger, reconcile_context

logger = get_logger(__name__)

ALL_CLUSTERS_KEY = "ALL_CLUSTERS"


class SyncController:
    """
    Reconcile engine for a federated type.
    
    Responsibilities:
    - Readiness gating on the cluster list, accessor and object caches
    - Finalizer management
    - Placement and propagation to member clusters
    - Status reporting
    - Deletion (cascading or orphaning)
    - Re-sweeping all resources when cluster availability changes
    """
    
    def __init__(
        self,
        type_config: TypeConfig,
        informer: ClusterInformer,
        accessor: FederatedResourceAccessor,
        host_client: HostClient,
        config: Optional[ControllerConfig] = None,
        reporter: Optional[ErrorReporter] = None,
    ):
        """
        Initialize sync controller.
        
        Args:
            type_config: Federated/target kind pairing
            informer: Cluster registry and per-cluster object caches
            accessor: Resolves names to federated resources
            host_client: Host store client
            config: Controller configuration
            reporter: Error reporter
        """
        self.type_config = type_config
        self.informer = informer
        self.accessor = accessor
        self.host_client = host_client
        self.config = config or ControllerConfig()
        self.reporter = reporter or ErrorReporter()
        
        self.status_aggregator = StatusAggregator(host_client, self.config, self.reporter)
        self.deletion = DeletionProtocol(informer, host_client, self.config, self.reporter)
        
        self.worker = ReconcileWorker(
            self.reconcile,
            WorkerTiming.from_config(self.config),
            workers=self.config.max_concurrent_reconciles,
            reporter=self.reporter,
        )
        self.cluster_deliverer = DelayingDeliverer()
        
        logger.info(
            "SyncController initialized",
            federated_kind=type_config.federated_kind,
            target_kind=type_config.target_kind,
            update_timeout_ms=self.config.update_timeout_ms,
        )
    
    async def start(self) -> None:
        """Start the reconcile worker and the cluster re-sweep deliverer."""
        await self.worker.start()
        self.cluster_deliverer.start(self._handle_cluster_delivery)
        
        logger.info("SyncController started", federated_kind=self.type_config.federated_kind)
    
    async def stop(self) -> None:
        """Stop the controller."""
        await self.cluster_deliverer.stop()
        await self.worker.stop()
        
        logger.info("SyncController stopped", federated_kind=self.type_config.federated_kind)
    
    def on_cluster_available(self, cluster: ClusterSnapshot) -> None:
        """Re-sweep all resources once a new cluster has had time to settle."""
        logger.info("Cluster became available", cluster=cluster.name)
        self.cluster_deliverer.deliver_after(
            ALL_CLUSTERS_KEY, None, self.config.cluster_available_delay_ms,
        )
    
    def on_cluster_unavailable(self, cluster: ClusterSnapshot) -> None:
        logger.info("Cluster became unavailable", cluster=cluster.name)
        self.cluster_deliverer.deliver_after(
            ALL_CLUSTERS_KEY, None, self.config.cluster_unavailable_delay_ms,
        )
    
    def on_target_object_changed(self, obj: Dict[str, Any]) -> None:
        """Handle a change to a target object observed in a member cluster."""
        self.worker.enqueue_for_retry(QualifiedName.from_object(obj))
    
    async def _handle_cluster_delivery(self, item: DeliveryItem) -> None:
        await self.reconcile_on_cluster_change()
    
    async def reconcile_on_cluster_change(self) -> None:
        """Enqueue every federated resource for reconciliation."""
        if not self.is_synced():
            self.cluster_deliverer.deliver_after(
                ALL_CLUSTERS_KEY, None, self.config.cluster_available_delay_ms,
            )
        
        def enqueue(obj: Dict[str, Any]) -> None:
            self.worker.enqueue_with_delay(
                QualifiedName.from_object(obj), self.config.small_delay_ms,
            )
        
        self.accessor.visit_federated_resources(enqueue)
    
    def is_synced(self) -> bool:
        """
        Check whether every store the controller reads from has synced.
        
        Returns:
            False if the cluster list, the federated resource accessor or
            the object cache of any ready cluster is not yet synced
        """
        if not self.informer.clusters_synced():
            logger.debug("Cluster list not synced")
            return False
        
        if not self.accessor.has_synced():
            logger.debug("Federated resource accessor not synced")
            return False
        
        try:
            clusters = self.informer.get_ready_clusters()
        except Exception as e:
            self.reporter.handle_error(e, "failed to get ready clusters")
            return False
        
        return self.informer.target_store_synced(clusters)
    
    async def reconcile(self, qualified_name: QualifiedName) -> ReconciliationStatus:
        """
        Reconcile one federated resource.
        
        Args:
            qualified_name: Name of the federated resource
        
        Returns:
            Reconciliation status for the retry scheduler
        """
        if not self.is_synced():
            return ReconciliationStatus.NOT_SYNCED
        
        kind = self.type_config.federated_kind
        with reconcile_context(kind, str(qualified_name)):
            return await self._reconcile(kind, qualified_name)
    
    async def _reconcile(self, kind: str, qualified_name: QualifiedName) -> ReconciliationStatus:
        try:
            fed_resource, possible_orphan = await self.accessor.federated_resource(qualified_name)
        except Exception as e:
            self.reporter.handle_error(
                e, f"error creating FederatedResource helper for {kind} {qualified_name}",
            )
            return ReconciliationStatus.ERROR
        
        if possible_orphan:
            return await self._remove_orphaned_labels(qualified_name)
        
        if fed_resource is None:
            return ReconciliationStatus.ALL_OK
        
        key = str(fed_resource.federated_name())
        start_time = time.monotonic()
        logger.debug("Starting to reconcile", kind=kind, key=key)
        
        try:
            if fed_resource.is_terminating():
                logger.info("Handling deletion", kind=kind, key=key)
                return await self.deletion.ensure_deletion(fed_resource)
            
            try:
                await self.ensure_finalizer(fed_resource)
            except Exception as e:
                fed_resource.record_error("EnsureFinalizerError", e)
                return ReconciliationStatus.ERROR
            
            return await self.sync_to_clusters(fed_resource)
        finally:
            logger.debug(
                "Finished reconciling",
                kind=kind,
                key=key,
                duration_ms=int((time.monotonic() - start_time) * 1000),
            )
    
    async def _remove_orphaned_labels(self, qualified_name: QualifiedName) -> ReconciliationStatus:
        """Detach copies left behind by a resource that is no longer federated."""
        target_kind = self.type_config.target_kind
        target_name = target_name_for(self.type_config, qualified_name)
        
        logger.info(
            "Ensuring removal of the managed label in member clusters",
            label=MANAGED_BY_FEDERATION_LABEL_KEY,
            kind=target_kind,
            key=str(target_name),
        )
        try:
            await self.deletion.remove_managed_label(target_kind, target_name)
        except Exception as e:
            self.reporter.handle_error(
                e,
                f"failed to remove the label {MANAGED_BY_FEDERATION_LABEL_KEY} from "
                f"{target_kind} {target_name} in member clusters",
            )
            return ReconciliationStatus.ERROR
        
        return ReconciliationStatus.ALL_OK
    
    async def ensure_finalizer(self, fed_resource) -> None:
        """
        Add the sync finalizer if it is missing.
        
        Raises:
            Exception: If the write fails
        """
        obj = fed_resource.object()
        if not add_finalizers(obj, [FINALIZER_SYNC_CONTROLLER]):
            return
        
        logger.info(
            "Adding finalizer",
            finalizer=FINALIZER_SYNC_CONTROLLER,
            kind=fed_resource.federated_kind(),
            key=str(fed_resource.federated_name()),
        )
        stored = await self.host_client.update(obj)
        fed_resource.set_object(stored)
    
    async def sync_to_clusters(self, fed_resource) -> ReconciliationStatus:
        """
        Propagate a federated resource to member clusters.
        
        Args:
            fed_resource: FederatedResource without a deletion timestamp
        
        Returns:
            Error when clusters or placement could not be determined,
            otherwise the status of the propagation status write
        """
        try:
            clusters = self.informer.get_clusters()
        except Exception as e:
            fed_resource.record_error(
                AggregateReason.CLUSTER_RETRIEVAL_FAILED.value,
                RuntimeError(f"Failed to retrieve list of clusters: {e}"),
            )
            await self.status_aggregator.set_propagation_status(
                fed_resource, AggregateReason.CLUSTER_RETRIEVAL_FAILED, None,
            )
            return ReconciliationStatus.ERROR
        
        try:
            selected = fed_resource.compute_placement(clusters)
        except Exception as e:
            fed_resource.record_error(
                AggregateReason.COMPUTE_PLACEMENT_FAILED.value,
                RuntimeError(f"Failed to compute placement: {e}"),
            )
            await self.status_aggregator.set_propagation_status(
                fed_resource, AggregateReason.COMPUTE_PLACEMENT_FAILED, None,
            )
            return ReconciliationStatus.ERROR
        
        kind = fed_resource.target_kind()
        key = target_key(fed_resource.target_name())
        
        logger.debug(
            "Syncing resource to clusters",
            kind=kind,
            key=key,
            selected_clusters=sorted(selected),
        )
        
        dispatcher = ManagedDispatcher(
            self.informer.get_client_for_cluster,
            fed_resource,
            skip_adopting_resources=self.config.skip_adopting_resources,
            timeout_ms=self.config.update_timeout_ms,
        )
        
        for cluster in clusters:
            cluster_name = cluster.name
            is_selected = cluster_name in selected
            
            if not cluster.ready:
                # Only selected clusters are reported in status.
                if is_selected:
                    dispatcher.record_status(
                        cluster_name, PropagationStatus.CLUSTER_NOT_READY, "Cluster not ready",
                    )
                continue
            
            try:
                cluster_obj = self.informer.get_target(cluster_name, key)
            except Exception as e:
                dispatcher.record_cluster_error(
                    PropagationStatus.CACHED_RETRIEVAL_FAILED,
                    cluster_name,
                    RuntimeError(f"Failed to retrieve cached cluster object: {e}"),
                )
                continue
            
            if not is_selected:
                if cluster_obj is None:
                    continue
                if is_terminating(cluster_obj):
                    dispatcher.record_status(cluster_name, PropagationStatus.WAITING_FOR_REMOVAL)
                    continue
                if fed_resource.is_namespace_in_host_cluster(cluster_obj):
                    # The host namespace is never deleted; unlabeling
                    # drops it from the cache.
                    dispatcher.remove_managed_label(cluster_name, cluster_obj)
                else:
                    dispatcher.delete(cluster_name)
                continue
            
            if cluster_obj is None:
                dispatcher.create(cluster_name)
            else:
                dispatcher.update(cluster_name, cluster_obj)
        
        _, timeout_err = await dispatcher.wait()
        if timeout_err is not None:
            fed_resource.record_error("OperationTimeoutError", timeout_err)
        
        try:
            await fed_resource.update_versions(sorted(selected), dispatcher.version_map())
        except Exception as e:
            # Version tracking only saves redundant updates.
            self.reporter.handle_error(
                e,
                f"failed to record propagated versions for {fed_resource.federated_kind()} "
                f"{fed_resource.federated_name()}",
            )
        
        return await self.status_aggregator.set_propagation_status(
            fed_resource, AggregateReason.AGGREGATE_SUCCESS, dispatcher.status_map(),
        )
