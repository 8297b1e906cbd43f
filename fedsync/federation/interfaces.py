"""
Contracts of the collaborators the sync controller depends on.

Cluster health tracking, object caching, API transport and discovery of
federated resources live outside this package; these classes define how
the controller talks to them.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

from fedsync.federation.metadata import ClusterSnapshot, QualifiedName


class ResourceClient(ABC):
    """
    Client for one API server.
    
    Errors are reported with the exceptions in fedsync.federation.errors.
    """
    
    @abstractmethod
    async def get(self, kind: str, qualified_name: QualifiedName) -> Dict[str, Any]:
        """
        Get a resource.
        
        Raises:
            NotFoundError: If the resource does not exist
        """
        pass
    
    @abstractmethod
    async def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a resource and return the stored object.
        
        Raises:
            AlreadyExistsError: If the name is taken
        """
        pass
    
    @abstractmethod
    async def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update metadata and spec and return the stored object.
        
        Raises:
            ConflictError: If the object changed since it was read
        """
        pass
    
    @abstractmethod
    async def delete(self, kind: str, qualified_name: QualifiedName) -> None:
        """
        Delete a resource.
        
        Raises:
            NotFoundError: If the resource does not exist
        """
        pass


class HostClient(ResourceClient):
    """Client for the host store, which also exposes the status subresource."""
    
    @abstractmethod
    async def update_status(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """
        Write the status subresource and return the stored object.
        
        Raises:
            ConflictError: If the object changed since it was read
        """
        pass


class ClusterInformer(ABC):
    """Cluster registry plus per-cluster caches of the target kind."""
    
    @abstractmethod
    def get_clusters(self) -> List[ClusterSnapshot]:
        pass
    
    @abstractmethod
    def get_ready_clusters(self) -> List[ClusterSnapshot]:
        pass
    
    @abstractmethod
    def clusters_synced(self) -> bool:
        """Whether the cluster list has been populated."""
        pass
    
    @abstractmethod
    def target_store_synced(self, clusters: List[ClusterSnapshot]) -> bool:
        """Whether the object cache of every given cluster has synced."""
        pass
    
    @abstractmethod
    def get_target(self, cluster_name: str, key: str) -> Optional[Dict[str, Any]]:
        """
        Return the cached target object, or None if it is not cached.
        
        Raises:
            Exception: If the cache cannot be read
        """
        pass
    
    @abstractmethod
    def get_client_for_cluster(self, cluster_name: str) -> ResourceClient:
        pass


class FederatedResourceAccessor(ABC):
    """Resolves qualified names to federated resources."""
    
    @abstractmethod
    async def federated_resource(
        self,
        qualified_name: QualifiedName,
    ) -> Tuple[Optional[Any], bool]:
        """
        Resolve a federated resource.
        
        Returns:
            (resource or None, possible_orphan). possible_orphan is True when
            the name no longer refers to a federated resource but managed
            copies may remain in member clusters.
        """
        pass
    
    @abstractmethod
    def has_synced(self) -> bool:
        pass
    
    @abstractmethod
    def visit_federated_resources(self, visitor: Callable[[Dict[str, Any]], None]) -> None:
        pass
