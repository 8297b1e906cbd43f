"""
Fan-out/join core shared by the dispatchers.

Each recorded operation runs as its own task as soon as it is recorded.
wait() joins all of them under one shared deadline. The deadline does not
cancel anything: operations still running when it passes keep running,
but whatever they report afterwards is discarded.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple

from fedsync.federation.errors import DispatchTimeoutError
from fedsync.federation.interfaces import ResourceClient
from fedsync.utils.logging import get_logger

logger = get_logger(__name__)

ClientAccessor = Callable[[str], ResourceClient]
Operation = Callable[[ResourceClient], Awaitable[bool]]

# Operations outliving their dispatcher must stay referenced until done.
_detached_tasks: Set[asyncio.Task] = set()


class OperationType(str, Enum):
    """Kinds of per-cluster operations."""
    
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    REMOVE_MANAGED_LABEL = "remove-managed-label"
    CHECK = "check"


class OperationDispatcher:
    """
    Runs per-cluster operations concurrently and joins them.
    
    Subclasses supply the operations and decide what a failure or a
    timeout means for their accumulators by overriding the hooks.
    """
    
    def __init__(
        self,
        client_accessor: ClientAccessor,
        timeout_ms: int = 30000,
    ):
        """
        Initialize dispatcher.
        
        Args:
            client_accessor: Resolves a cluster name to its client
            timeout_ms: Shared deadline for wait()
        """
        self.client_accessor = client_accessor
        self.timeout_ms = timeout_ms
        
        # task -> (cluster name, operation type)
        self._operations: Dict[asyncio.Task, Tuple[str, OperationType]] = {}
        self._closed = False
    
    @property
    def closed(self) -> bool:
        """Whether wait() has returned; results arriving later are dropped."""
        return self._closed
    
    def operations_initiated(self) -> int:
        return len(self._operations)
    
    def record_operation(
        self,
        cluster_name: str,
        op_type: OperationType,
        operation: Operation,
    ) -> None:
        """
        Start an operation against one cluster.
        
        Args:
            cluster_name: Target cluster
            op_type: Operation type, used for logging and timeouts
            operation: Coroutine function receiving the cluster client and
                returning True on success
        """
        if self._closed:
            raise RuntimeError("cannot record operations after wait()")
        
        task = asyncio.create_task(self._run(cluster_name, op_type, operation))
        self._operations[task] = (cluster_name, op_type)
    
    async def _run(
        self,
        cluster_name: str,
        op_type: OperationType,
        operation: Operation,
    ) -> bool:
        try:
            client = self.client_accessor(cluster_name)
        except Exception as e:
            self.on_client_failure(cluster_name, e)
            return False
        
        try:
            return await operation(client)
        except Exception as e:
            self.on_operation_failure(cluster_name, op_type, e)
            return False
    
    async def wait(self) -> Tuple[bool, Optional[DispatchTimeoutError]]:
        """
        Wait for all recorded operations.
        
        Returns:
            (ok, timeout_error). ok is True only if every operation finished
            and succeeded; timeout_error is set if the deadline passed.
        """
        if self._closed:
            raise RuntimeError("wait() may only be called once")
        
        if not self._operations:
            self._closed = True
            return True, None
        
        done, pending = await asyncio.wait(
            list(self._operations),
            timeout=self.timeout_ms / 1000,
        )
        
        ok = all(task.result() for task in done)
        
        for task in pending:
            cluster_name, op_type = self._operations[task]
            self.on_timeout(cluster_name, op_type)
            _detached_tasks.add(task)
            task.add_done_callback(_detached_tasks.discard)
        
        self._closed = True
        
        if pending:
            timeout_err = DispatchTimeoutError(
                [self._operations[task][0] for task in pending],
                self.timeout_ms,
            )
            logger.warning(
                "Dispatch timed out",
                pending=timeout_err.pending_clusters,
                timeout_ms=self.timeout_ms,
            )
            return False, timeout_err
        
        return ok, None
    
    def on_client_failure(self, cluster_name: str, err: Exception) -> None:
        logger.warning(
            "Failed to get client for cluster",
            cluster=cluster_name,
            error=str(err),
        )
    
    def on_operation_failure(
        self,
        cluster_name: str,
        op_type: OperationType,
        err: Exception,
    ) -> None:
        """Called when an operation raises instead of reporting its outcome."""
        logger.error(
            "Unexpected error in cluster operation",
            cluster=cluster_name,
            operation=op_type.value,
            error=str(err),
        )
    
    def on_timeout(self, cluster_name: str, op_type: OperationType) -> None:
        logger.warning(
            "Cluster operation did not finish before the deadline",
            cluster=cluster_name,
            operation=op_type.value,
        )
