"""
Sync controller.

Propagates federated resources to member clusters, reports per-cluster
outcomes and tears managed resources down on deletion.
"""

from fedsync.sync.controller import SyncController
from fedsync.sync.deletion import DeletionPhase, DeletionProtocol
from fedsync.sync.status import (
    AggregateReason,
    ClusterStatus,
    PropagationStatus,
    StatusAggregator,
)
from fedsync.sync.worker import ReconcileWorker

__all__ = [
    "SyncController",
    "DeletionPhase",
    "DeletionProtocol",
    "AggregateReason",
    "ClusterStatus",
    "PropagationStatus",
    "StatusAggregator",
    "ReconcileWorker",
]
