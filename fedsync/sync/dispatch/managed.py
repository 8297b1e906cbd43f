"""
Dispatcher for propagating a federated resource to member clusters.

Every operation reports a per-cluster status entry. Successful writes also
report the resulting object version, which is persisted so that unchanged
objects are not rewritten on the next reconcile.
"""

from typing import Any, Dict, Optional

from fedsync.federation.errors import AlreadyExistsError, OverrideError
from fedsync.federation.events import EVENT_TYPE_NORMAL
from fedsync.federation.interfaces import ResourceClient
from fedsync.federation.resource import ComputeResourceError
from fedsync.federation.unstructured import (
    get_finalizers,
    has_managed_label,
    is_explicitly_unmanaged,
    metadata,
    object_version,
)
from fedsync.sync.dispatch.operation import ClientAccessor, OperationType
from fedsync.sync.dispatch.unmanaged import UnmanagedDispatcher
from fedsync.sync.status import ClusterStatus, PropagationStatus, PropagationStatusMap
from fedsync.utils.logging import get_logger

logger = get_logger(__name__)

TIMED_OUT_STATUS = {
    OperationType.CREATE: PropagationStatus.CREATION_TIMED_OUT,
    OperationType.UPDATE: PropagationStatus.UPDATE_TIMED_OUT,
    OperationType.DELETE: PropagationStatus.DELETION_TIMED_OUT,
    OperationType.REMOVE_MANAGED_LABEL: PropagationStatus.LABEL_REMOVAL_TIMED_OUT,
}

FAILED_STATUS = {
    OperationType.CREATE: PropagationStatus.CREATION_FAILED,
    OperationType.UPDATE: PropagationStatus.UPDATE_FAILED,
    OperationType.DELETE: PropagationStatus.DELETION_FAILED,
    OperationType.REMOVE_MANAGED_LABEL: PropagationStatus.LABEL_REMOVAL_FAILED,
}


def object_needs_update(cluster_obj: Dict[str, Any], recorded_version: str) -> bool:
    """
    Whether a cluster object has to be rewritten.
    
    The object is current when the version recorded after the last write
    still matches it and it still carries the managed label.
    """
    if not recorded_version:
        return True
    if recorded_version != object_version(cluster_obj):
        return True
    return not has_managed_label(cluster_obj)


class ManagedDispatcher(UnmanagedDispatcher):
    """
    Creates, updates and removes the resources managed by one federated
    resource, recording status and versions per cluster.
    """
    
    def __init__(
        self,
        client_accessor: ClientAccessor,
        fed_resource,
        skip_adopting_resources: bool = False,
        timeout_ms: int = 30000,
    ):
        """
        Initialize managed dispatcher.
        
        Args:
            client_accessor: Resolves a cluster name to its client
            fed_resource: FederatedResource being propagated
            skip_adopting_resources: Fail rather than adopt pre-existing
                unmanaged resources
            timeout_ms: Shared deadline for wait()
        """
        super().__init__(
            client_accessor,
            fed_resource.target_kind(),
            fed_resource.target_name(),
            timeout_ms,
        )
        self.fed_resource = fed_resource
        self.skip_adopting_resources = skip_adopting_resources
        
        self._status_map: PropagationStatusMap = {}
        self._version_map: Dict[str, str] = {}
    
    def status_map(self) -> PropagationStatusMap:
        return dict(self._status_map)
    
    def version_map(self) -> Dict[str, str]:
        return dict(self._version_map)
    
    def record_status(self, cluster_name: str, code: PropagationStatus, error: str = "") -> None:
        if self.closed:
            logger.debug(
                "Discarding status reported after the deadline",
                cluster=cluster_name,
                status=code.value,
            )
            return
        self._status_map[cluster_name] = ClusterStatus(code=code, error=error)
    
    def record_cluster_error(
        self,
        code: PropagationStatus,
        cluster_name: str,
        err: BaseException,
    ) -> None:
        """Record a failure for a cluster without dispatching anything."""
        self.record_status(cluster_name, code, str(err))
    
    def record_error(
        self,
        cluster_name: str,
        code: PropagationStatus,
        err: BaseException,
    ) -> None:
        super().record_error(cluster_name, code, err)
        self.record_status(cluster_name, code, str(err))
    
    def record_version(self, cluster_name: str, version: str) -> None:
        if self.closed or not version:
            return
        self._version_map[cluster_name] = version
    
    def on_client_failure(self, cluster_name: str, err: Exception) -> None:
        super().on_client_failure(cluster_name, err)
        self.record_status(cluster_name, PropagationStatus.CLIENT_RETRIEVAL_FAILED, str(err))
    
    def on_operation_failure(
        self,
        cluster_name: str,
        op_type: OperationType,
        err: Exception,
    ) -> None:
        super().on_operation_failure(cluster_name, op_type, err)
        code = FAILED_STATUS.get(op_type)
        if code is not None:
            self.record_status(cluster_name, code, str(err))
    
    def on_timeout(self, cluster_name: str, op_type: OperationType) -> None:
        super().on_timeout(cluster_name, op_type)
        code = TIMED_OUT_STATUS.get(op_type)
        if code is not None:
            self.record_status(
                cluster_name, code, f"operation did not finish within {self.timeout_ms}ms",
            )
    
    def _desired_object(self, cluster_name: str) -> Optional[Dict[str, Any]]:
        try:
            obj = self.fed_resource.object_for_cluster(cluster_name)
        except ComputeResourceError as e:
            self.record_error(cluster_name, PropagationStatus.COMPUTE_RESOURCE_FAILED, e)
            return None
        
        try:
            return self.fed_resource.apply_overrides(obj, cluster_name)
        except OverrideError as e:
            self.record_error(cluster_name, PropagationStatus.APPLY_OVERRIDES_FAILED, e)
            return None
    
    def create(self, cluster_name: str) -> None:
        """
        Create the resource in a cluster.
        
        If the name is already taken, the existing object is adopted by
        updating it, unless adoption is disabled or the object is
        explicitly labelled as unmanaged.
        """
        
        async def operation(client: ResourceClient) -> bool:
            obj = self._desired_object(cluster_name)
            if obj is None:
                return False
            
            logger.debug(
                "Creating resource",
                cluster=cluster_name,
                kind=self.target_kind,
                key=str(self.target_name),
            )
            try:
                created = await client.create(obj)
            except AlreadyExistsError as e:
                return await self._adopt(client, cluster_name, obj, e)
            except Exception as e:
                self.record_error(cluster_name, PropagationStatus.CREATION_FAILED, e)
                return False
            
            self.fed_resource.record_event(
                EVENT_TYPE_NORMAL, "CreateInCluster", f"Created {self.target_kind} in cluster {cluster_name}",
            )
            self.record_version(cluster_name, object_version(created))
            self.record_status(cluster_name, PropagationStatus.OK)
            return True
        
        self.record_operation(cluster_name, OperationType.CREATE, operation)
    
    async def _adopt(
        self,
        client: ResourceClient,
        cluster_name: str,
        desired: Dict[str, Any],
        exists_err: AlreadyExistsError,
    ) -> bool:
        try:
            existing = await client.get(self.target_kind, self.target_name)
        except Exception as e:
            self.record_error(cluster_name, PropagationStatus.RETRIEVAL_FAILED, e)
            return False
        
        if is_explicitly_unmanaged(existing):
            self.record_error(
                cluster_name,
                PropagationStatus.MANAGED_LABEL_FALSE,
                ValueError("resource is explicitly labelled as unmanaged"),
            )
            return False
        
        # A managed object missing from the cache is ours already.
        if self.skip_adopting_resources and not has_managed_label(existing):
            self.record_error(cluster_name, PropagationStatus.ALREADY_EXISTS, exists_err)
            return False
        
        logger.info(
            "Adopting existing resource",
            cluster=cluster_name,
            kind=self.target_kind,
            key=str(self.target_name),
        )
        return await self._write_update(client, cluster_name, existing, desired)
    
    def update(self, cluster_name: str, cluster_obj: Dict[str, Any]) -> None:
        """
        Bring the resource in a cluster up to date.
        
        The write is skipped when the recorded version shows the cluster
        object is already current.
        """
        
        async def operation(client: ResourceClient) -> bool:
            if is_explicitly_unmanaged(cluster_obj):
                self.record_error(
                    cluster_name,
                    PropagationStatus.MANAGED_LABEL_FALSE,
                    ValueError("resource is explicitly labelled as unmanaged"),
                )
                return False
            
            desired = self._desired_object(cluster_name)
            if desired is None:
                return False
            
            recorded_version = await self.fed_resource.version_for_cluster(cluster_name)
            if not object_needs_update(cluster_obj, recorded_version):
                self.record_version(cluster_name, recorded_version)
                self.record_status(cluster_name, PropagationStatus.OK)
                return True
            
            return await self._write_update(client, cluster_name, cluster_obj, desired)
        
        self.record_operation(cluster_name, OperationType.UPDATE, operation)
    
    async def _write_update(
        self,
        client: ResourceClient,
        cluster_name: str,
        cluster_obj: Dict[str, Any],
        desired: Dict[str, Any],
    ) -> bool:
        # Fields owned by the member cluster are carried over.
        current_meta = cluster_obj.get("metadata", {})
        desired_meta = metadata(desired)
        for field_name in ("resourceVersion", "uid"):
            if current_meta.get(field_name):
                desired_meta[field_name] = current_meta[field_name]
        if get_finalizers(cluster_obj):
            desired_meta["finalizers"] = get_finalizers(cluster_obj)
        
        logger.debug(
            "Updating resource",
            cluster=cluster_name,
            kind=self.target_kind,
            key=str(self.target_name),
        )
        try:
            updated = await client.update(desired)
        except Exception as e:
            self.record_error(cluster_name, PropagationStatus.UPDATE_FAILED, e)
            return False
        
        self.fed_resource.record_event(
            EVENT_TYPE_NORMAL, "UpdateInCluster", f"Updated {self.target_kind} in cluster {cluster_name}",
        )
        self.record_version(cluster_name, object_version(updated))
        self.record_status(cluster_name, PropagationStatus.OK)
        return True
