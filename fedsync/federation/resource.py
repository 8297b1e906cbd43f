"""
Federated resource wrapper.

A FederatedResource is built for one reconcile and owns a private copy of
the host-store object. It derives naming, placement, per-cluster objects
and version bookkeeping from that copy.
"""

import copy
from typing import Any, Dict, Iterable, List, Optional, Set

from fedsync.federation.events import EVENT_TYPE_WARNING, EventRecorder
from fedsync.federation.metadata import (
    ORPHAN_MANAGED_RESOURCES,
    ClusterSnapshot,
    QualifiedName,
    TypeConfig,
    target_name_for,
)
from fedsync.federation.overrides import apply_overrides, overrides_for_cluster
from fedsync.federation.placement import compute_placement
from fedsync.federation.unstructured import (
    add_managed_label,
    get_annotations,
    get_uid,
    is_terminating,
)
from fedsync.federation.versions import VersionManager, compute_template_version
from fedsync.utils.logging import get_logger

logger = get_logger(__name__)


class ComputeResourceError(Exception):
    """The per-cluster object could not be derived from the template."""
    pass


class FederatedResource:
    """
    A federated template resource and the operations derived from it.
    
    The wrapped object is copied on construction; the controller replaces
    it through set_object() after writes so later steps see the stored
    version.
    """
    
    def __init__(
        self,
        type_config: TypeConfig,
        fed_object: Dict[str, Any],
        version_manager: VersionManager,
        event_recorder: EventRecorder,
        host_namespace_uid: Optional[str] = None,
    ):
        """
        Initialize federated resource.
        
        Args:
            type_config: Federated/target kind pairing
            fed_object: Federated object from the host store
            version_manager: Propagated version store
            event_recorder: Sink for events about this resource
            host_namespace_uid: UID of the namespace in the host cluster,
                for federated namespaces
        """
        self.type_config = type_config
        self.version_manager = version_manager
        self.event_recorder = event_recorder
        self.host_namespace_uid = host_namespace_uid
        
        self._object = copy.deepcopy(fed_object)
        self._cluster_versions: Optional[Dict[str, str]] = None
    
    def object(self) -> Dict[str, Any]:
        return self._object
    
    def set_object(self, obj: Dict[str, Any]) -> None:
        self._object = copy.deepcopy(obj)
    
    def federated_kind(self) -> str:
        return self.type_config.federated_kind
    
    def federated_name(self) -> QualifiedName:
        return QualifiedName.from_object(self._object)
    
    def target_kind(self) -> str:
        return self.type_config.target_kind
    
    def target_name(self) -> QualifiedName:
        return target_name_for(self.type_config, self.federated_name())
    
    def spec(self) -> Dict[str, Any]:
        return self._object.get("spec") or {}
    
    def is_terminating(self) -> bool:
        return is_terminating(self._object)
    
    def orphan_requested(self) -> bool:
        return get_annotations(self._object).get(ORPHAN_MANAGED_RESOURCES) == "true"
    
    def compute_placement(self, clusters: Iterable[ClusterSnapshot]) -> Set[str]:
        """
        Compute the clusters this resource should be placed in.
        
        Raises:
            PlacementError: If the placement directives are malformed
        """
        return compute_placement(clusters, self.spec())
    
    def template_version(self) -> str:
        spec = self.spec()
        return compute_template_version(spec.get("template"), spec.get("overrides"))
    
    def object_for_cluster(self, cluster_name: str) -> Dict[str, Any]:
        """
        Build the target object for a member cluster, without overrides.
        
        Raises:
            ComputeResourceError: If the template is missing
        """
        template = self.spec().get("template")
        if not isinstance(template, dict):
            raise ComputeResourceError(
                f"{self.federated_kind()} {self.federated_name()} has no template"
            )
        
        obj = copy.deepcopy(template)
        obj["apiVersion"] = self.type_config.target_api_version
        obj["kind"] = self.type_config.target_kind
        
        target_name = self.target_name()
        meta = obj.setdefault("metadata", {})
        meta["name"] = target_name.name
        if target_name.namespace:
            meta["namespace"] = target_name.namespace
        else:
            meta.pop("namespace", None)
        for field_name in ("resourceVersion", "uid", "deletionTimestamp", "finalizers"):
            meta.pop(field_name, None)
        
        return add_managed_label(obj)
    
    def apply_overrides(self, obj: Dict[str, Any], cluster_name: str) -> Dict[str, Any]:
        """
        Apply the overrides for a cluster in place.
        
        Raises:
            OverrideError: If an override cannot be applied
        """
        apply_overrides(obj, overrides_for_cluster(self.spec(), cluster_name))
        # Overrides may not strip ownership.
        return add_managed_label(obj)
    
    async def version_for_cluster(self, cluster_name: str) -> str:
        """
        Return the recorded object version for a cluster.
        
        An empty string means no usable version is recorded. Read failures
        are logged and treated as "no version".
        """
        if self._cluster_versions is None:
            try:
                self._cluster_versions = await self.version_manager.cluster_versions(
                    self.federated_name(), self.template_version(),
                )
            except Exception as e:
                logger.warning(
                    "Failed to read propagated versions",
                    kind=self.federated_kind(),
                    key=str(self.federated_name()),
                    error=str(e),
                )
                self._cluster_versions = {}
        
        return self._cluster_versions.get(cluster_name, "")
    
    async def update_versions(
        self,
        selected_clusters: List[str],
        version_map: Dict[str, str],
    ) -> None:
        """
        Persist the versions produced by a dispatch round.
        
        Raises:
            Exception: If the write fails; callers treat this as advisory
        """
        qualified_name = self.federated_name()
        try:
            await self.version_manager.update(
                qualified_name,
                self.template_version(),
                selected_clusters,
                version_map,
            )
        except Exception:
            self.version_manager.forget(qualified_name)
            raise
    
    async def delete_versions(self) -> None:
        await self.version_manager.delete(self.federated_name())
    
    def is_namespace_in_host_cluster(self, cluster_obj: Dict[str, Any]) -> bool:
        """
        Whether a cluster object is the host cluster's own namespace.
        
        The host cluster may also be a member cluster. Its copy of a
        federated namespace is the namespace that contains the federated
        resource, so the controller must never delete it.
        """
        if not self.type_config.is_namespace or not self.host_namespace_uid:
            return False
        return get_uid(cluster_obj) == self.host_namespace_uid
    
    def record_error(self, reason: str, err: BaseException) -> None:
        """
        Record an error against this resource.
        
        Args:
            reason: Machine-readable reason code
            err: The error
        """
        logger.warning(
            "Federated resource error",
            kind=self.federated_kind(),
            key=str(self.federated_name()),
            reason=reason,
            error=str(err),
        )
        self.event_recorder.event(self._object, EVENT_TYPE_WARNING, reason, str(err))
    
    def record_event(self, event_type: str, reason: str, message: str) -> None:
        self.event_recorder.event(self._object, event_type, reason, message)
