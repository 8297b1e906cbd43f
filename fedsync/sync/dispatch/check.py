"""
Read-only dispatcher verifying that managed resources are gone.

Checks go to the member cluster API directly rather than the cache, so a
resource that was created but not yet cached is still found.
"""

from typing import Any, Callable, Dict

from fedsync.federation.errors import NotFoundError
from fedsync.federation.interfaces import ResourceClient
from fedsync.federation.metadata import QualifiedName
from fedsync.federation.unstructured import has_managed_label, is_terminating
from fedsync.sync.dispatch.operation import ClientAccessor, OperationDispatcher, OperationType
from fedsync.utils.logging import get_logger

logger = get_logger(__name__)


class CheckUnmanagedDispatcher(OperationDispatcher):
    """Confirms per cluster that the target is absent or unlabeled."""
    
    def __init__(
        self,
        client_accessor: ClientAccessor,
        target_kind: str,
        target_name: QualifiedName,
        timeout_ms: int = 30000,
    ):
        super().__init__(client_accessor, timeout_ms)
        self.target_kind = target_kind
        self.target_name = target_name
    
    def check_removed_or_unlabeled(
        self,
        cluster_name: str,
        is_namespace_in_host_cluster: Callable[[Dict[str, Any]], bool],
    ) -> None:
        """
        Check one cluster.
        
        A terminating host-cluster namespace passes: its removal is not
        driven by this controller.
        
        Args:
            cluster_name: Cluster to check
            is_namespace_in_host_cluster: Predicate identifying the host
                cluster's own namespace
        """
        
        async def operation(client: ResourceClient) -> bool:
            try:
                cluster_obj = await client.get(self.target_kind, self.target_name)
            except NotFoundError:
                return True
            except Exception as e:
                logger.warning(
                    "Failed to check for managed resource",
                    cluster=cluster_name,
                    kind=self.target_kind,
                    key=str(self.target_name),
                    error=str(e),
                )
                return False
            
            if is_namespace_in_host_cluster(cluster_obj) and is_terminating(cluster_obj):
                return True
            
            if has_managed_label(cluster_obj):
                logger.info(
                    "Managed resource still present",
                    cluster=cluster_name,
                    kind=self.target_kind,
                    key=str(self.target_name),
                )
                return False
            
            return True
        
        self.record_operation(cluster_name, OperationType.CHECK, operation)
