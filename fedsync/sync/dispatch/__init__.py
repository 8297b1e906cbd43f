"""
Concurrent per-cluster operation dispatch.

Three dispatchers share one fan-out/join core:
- ManagedDispatcher: create, update, delete and label removal, tracking
  status and versions per cluster
- UnmanagedDispatcher: delete and label removal for teardown
- CheckUnmanagedDispatcher: read-only removal checks
"""

from fedsync.sync.dispatch.check import CheckUnmanagedDispatcher
from fedsync.sync.dispatch.managed import ManagedDispatcher, object_needs_update
from fedsync.sync.dispatch.operation import OperationDispatcher, OperationType
from fedsync.sync.dispatch.unmanaged import UnmanagedDispatcher

__all__ = [
    "CheckUnmanagedDispatcher",
    "ManagedDispatcher",
    "OperationDispatcher",
    "OperationType",
    "UnmanagedDispatcher",
    "object_needs_update",
]
