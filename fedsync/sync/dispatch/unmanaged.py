"""
Dispatcher for removing or detaching resources during teardown.
"""

from typing import Any, Dict

from fedsync.federation.errors import NotFoundError
from fedsync.federation.interfaces import ResourceClient
from fedsync.federation.metadata import QualifiedName
from fedsync.federation.unstructured import without_managed_label
from fedsync.sync.dispatch.operation import ClientAccessor, OperationDispatcher, OperationType
from fedsync.sync.status import PropagationStatus
from fedsync.utils.logging import get_logger

logger = get_logger(__name__)


class UnmanagedDispatcher(OperationDispatcher):
    """
    Deletes target resources or strips their managed label.
    
    Does not track versions. Failures are logged and make wait() report
    failure.
    """
    
    def __init__(
        self,
        client_accessor: ClientAccessor,
        target_kind: str,
        target_name: QualifiedName,
        timeout_ms: int = 30000,
    ):
        """
        Initialize unmanaged dispatcher.
        
        Args:
            client_accessor: Resolves a cluster name to its client
            target_kind: Kind of the member-cluster resources
            target_name: Name of the member-cluster resources
            timeout_ms: Shared deadline for wait()
        """
        super().__init__(client_accessor, timeout_ms)
        self.target_kind = target_kind
        self.target_name = target_name
    
    def delete(self, cluster_name: str) -> None:
        """Delete the target resource from a cluster. Absence counts as success."""
        
        async def operation(client: ResourceClient) -> bool:
            logger.debug(
                "Deleting resource",
                cluster=cluster_name,
                kind=self.target_kind,
                key=str(self.target_name),
            )
            try:
                await client.delete(self.target_kind, self.target_name)
            except NotFoundError:
                pass
            except Exception as e:
                self.record_error(cluster_name, PropagationStatus.DELETION_FAILED, e)
                return False
            return True
        
        self.record_operation(cluster_name, OperationType.DELETE, operation)
    
    def remove_managed_label(self, cluster_name: str, cluster_obj: Dict[str, Any]) -> None:
        """
        Detach a resource by removing its managed label.
        
        Args:
            cluster_name: Target cluster
            cluster_obj: Current copy of the resource in that cluster
        """
        updated = without_managed_label(cluster_obj)
        
        async def operation(client: ResourceClient) -> bool:
            logger.debug(
                "Removing managed label",
                cluster=cluster_name,
                kind=self.target_kind,
                key=str(self.target_name),
            )
            try:
                await client.update(updated)
            except NotFoundError:
                pass
            except Exception as e:
                self.record_error(cluster_name, PropagationStatus.LABEL_REMOVAL_FAILED, e)
                return False
            return True
        
        self.record_operation(cluster_name, OperationType.REMOVE_MANAGED_LABEL, operation)
    
    def record_error(
        self,
        cluster_name: str,
        code: PropagationStatus,
        err: BaseException,
    ) -> None:
        logger.warning(
            "Cluster operation failed",
            cluster=cluster_name,
            kind=self.target_kind,
            key=str(self.target_name),
            status=code.value,
            error=str(err),
        )
