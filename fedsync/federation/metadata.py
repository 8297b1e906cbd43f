"""
Core federation metadata.

Identifiers, cluster snapshots, type configuration and the reconcile
status contract shared by the sync controller.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

# Present on a federated resource while the sync controller still has
# member-cluster resources to clean up.
FINALIZER_SYNC_CONTROLLER = "kubefed.io/sync-controller"

# When "true", managed resources are detached instead of deleted.
ORPHAN_MANAGED_RESOURCES = "kubefed.io/orphan"

# Marks a member-cluster resource as managed by federation.
MANAGED_BY_FEDERATION_LABEL_KEY = "kubefed.io/managed"
MANAGED_BY_FEDERATION_LABEL_VALUE = "true"
UNMANAGED_BY_FEDERATION_LABEL_VALUE = "false"

NAMESPACE_KIND = "Namespace"


@dataclass(frozen=True, order=True)
class QualifiedName:
    """
    Namespace/name pair identifying a resource.
    
    Attributes:
        namespace: Namespace, empty for cluster-scoped resources
        name: Resource name
    """
    namespace: str
    name: str
    
    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "QualifiedName":
        metadata = obj.get("metadata", {})
        return cls(
            namespace=metadata.get("namespace", "") or "",
            name=metadata.get("name", ""),
        )
    
    @classmethod
    def parse(cls, key: str) -> "QualifiedName":
        """
        Parse a "namespace/name" or "name" key.
        
        Args:
            key: Store key
        
        Returns:
            Qualified name
        """
        if "/" in key:
            namespace, name = key.split("/", 1)
            return cls(namespace=namespace, name=name)
        return cls(namespace="", name=key)
    
    def __str__(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name


@dataclass
class ClusterSnapshot:
    """
    Member cluster as seen by the cluster registry.
    
    Attributes:
        name: Cluster name
        ready: Whether the last health check passed
        labels: Cluster labels used by placement selectors
    """
    name: str
    ready: bool = True
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TypeConfig:
    """
    Pairing of a federated kind with the kind it propagates.
    
    Attributes:
        federated_kind: Kind of the template resource in the host store
        target_kind: Kind created in member clusters
        target_api_version: API version of the target kind
        namespaced: Whether the target kind is namespaced
    """
    federated_kind: str
    target_kind: str
    target_api_version: str = "v1"
    namespaced: bool = True
    
    @property
    def is_namespace(self) -> bool:
        return self.target_kind == NAMESPACE_KIND


class ReconciliationStatus(str, Enum):
    """Outcome of one reconcile, driving the requeue delay."""
    
    ALL_OK = "AllOK"
    ERROR = "Error"
    NOT_SYNCED = "NotSynced"
    NEEDS_RECHECK = "NeedsRecheck"


def target_key(qualified_name: QualifiedName) -> str:
    """Return the cache key for a qualified name."""
    return str(qualified_name)


def target_name_for(type_config: TypeConfig, federated_name: QualifiedName) -> QualifiedName:
    """
    Name of the member-cluster target for a federated name.
    
    A federated namespace lives inside the namespace it federates, so its
    target is the cluster-scoped namespace of the same name.
    """
    if type_config.is_namespace or not type_config.namespaced:
        return QualifiedName(namespace="", name=federated_name.name)
    return federated_name
