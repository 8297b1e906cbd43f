"""Federated resource model and external collaborator contracts."""

from fedsync.federation.metadata import (
    FINALIZER_SYNC_CONTROLLER,
    MANAGED_BY_FEDERATION_LABEL_KEY,
    ORPHAN_MANAGED_RESOURCES,
    ClusterSnapshot,
    QualifiedName,
    ReconciliationStatus,
    TypeConfig,
)
from fedsync.federation.placement import PlacementError, compute_placement
from fedsync.federation.resource import FederatedResource
from fedsync.federation.versions import VersionManager

__all__ = [
    "FINALIZER_SYNC_CONTROLLER",
    "MANAGED_BY_FEDERATION_LABEL_KEY",
    "ORPHAN_MANAGED_RESOURCES",
    "ClusterSnapshot",
    "QualifiedName",
    "ReconciliationStatus",
    "TypeConfig",
    "PlacementError",
    "compute_placement",
    "FederatedResource",
    "VersionManager",
]
