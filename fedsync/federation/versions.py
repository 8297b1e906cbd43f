"""
Propagated version tracking.

Records, per federated resource, the template version that was last
propagated and the resulting object version in each member cluster. The
record lets the managed dispatcher skip updates of unchanged objects. It
is an optimization only: failing to read or write it never fails
propagation.

The record is stored in the host store as:

    kind: PropagatedVersion
    metadata: {name, namespace}        # same as the federated resource
    status:
      templateVersion: <hash>
      clusterVersions:
      - {clusterName: a, version: "42"}
"""

import copy
import hashlib
import json
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from fedsync.federation.errors import NotFoundError
from fedsync.federation.interfaces import HostClient
from fedsync.federation.metadata import QualifiedName
from fedsync.utils.logging import get_logger

logger = get_logger(__name__)

PROPAGATED_VERSION_KIND = "PropagatedVersion"
PROPAGATED_VERSION_API_VERSION = "core.kubefed.io/v1beta1"


def compute_template_version(template: Any, overrides: Any) -> str:
    """Return a stable hash of a template and its overrides."""
    payload = json.dumps(
        {"template": template, "overrides": overrides},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def cluster_versions_from_record(record: Optional[Dict[str, Any]]) -> Dict[str, str]:
    if not record:
        return {}
    status = record.get("status") or {}
    return {
        entry["clusterName"]: entry["version"]
        for entry in status.get("clusterVersions") or []
        if entry.get("clusterName")
    }


class VersionManager:
    """
    Reads and writes PropagatedVersion records through the host client.
    
    Records are cached after the first read so that repeated reconciles
    of the same resource do not hit the host store. The cache keeps the
    most recently used max_records entries.
    """
    
    def __init__(self, host_client: HostClient, max_records: int = 1024):
        """
        Initialize version manager.
        
        Args:
            host_client: Host store client
            max_records: Number of records kept in the cache
        """
        self.host_client = host_client
        self.max_records = max(1, max_records)
        
        # qualified name -> PropagatedVersion record (None when absent), LRU order
        self._records: "OrderedDict[QualifiedName, Optional[Dict[str, Any]]]" = OrderedDict()
    
    async def get(self, qualified_name: QualifiedName) -> Optional[Dict[str, Any]]:
        """
        Get the version record for a federated resource.
        
        Args:
            qualified_name: Name of the federated resource
        
        Returns:
            The record, or None if no version has been recorded
        """
        if qualified_name in self._records:
            self._records.move_to_end(qualified_name)
            return self._records[qualified_name]
        
        try:
            record = await self.host_client.get(PROPAGATED_VERSION_KIND, qualified_name)
        except NotFoundError:
            record = None
        
        self._remember(qualified_name, record)
        return record
    
    async def cluster_versions(
        self,
        qualified_name: QualifiedName,
        template_version: str,
    ) -> Dict[str, str]:
        """
        Get recorded cluster versions valid for the given template version.
        
        Versions recorded for an older template are discarded, since every
        cluster object has to be brought up to date.
        """
        record = await self.get(qualified_name)
        if not record:
            return {}
        if (record.get("status") or {}).get("templateVersion") != template_version:
            return {}
        return cluster_versions_from_record(record)
    
    async def update(
        self,
        qualified_name: QualifiedName,
        template_version: str,
        selected_clusters: List[str],
        version_map: Dict[str, str],
    ) -> bool:
        """
        Record the versions propagated to the selected clusters.
        
        A selected cluster missing from version_map keeps its previously
        recorded version, as long as the template has not changed.
        
        Args:
            qualified_name: Name of the federated resource
            template_version: Version of the propagated template
            selected_clusters: Clusters the resource was placed in
            version_map: Versions produced by the last dispatch round
        
        Returns:
            True if the record was written
        """
        old_versions = await self.cluster_versions(qualified_name, template_version)
        
        cluster_versions = []
        for cluster_name in sorted(selected_clusters):
            version = version_map.get(cluster_name) or old_versions.get(cluster_name)
            if version:
                cluster_versions.append({"clusterName": cluster_name, "version": version})
        
        status = {
            "templateVersion": template_version,
            "clusterVersions": cluster_versions,
        }
        
        existing = await self.get(qualified_name)
        if existing is not None and existing.get("status") == status:
            return False
        
        if existing is None:
            record = {
                "apiVersion": PROPAGATED_VERSION_API_VERSION,
                "kind": PROPAGATED_VERSION_KIND,
                "metadata": {
                    "name": qualified_name.name,
                    "namespace": qualified_name.namespace,
                },
                "status": status,
            }
            stored = await self.host_client.create(record)
            # Hosts may drop status on create; it is written through the
            # status subresource.
            if stored.get("status") != status:
                stored["status"] = status
                stored = await self.host_client.update_status(stored)
        else:
            record = copy.deepcopy(existing)
            record["status"] = status
            stored = await self.host_client.update_status(record)
        
        self._remember(qualified_name, stored)
        
        logger.debug(
            "Updated propagated versions",
            key=str(qualified_name),
            template_version=template_version,
            clusters=len(cluster_versions),
        )
        return True
    
    async def delete(self, qualified_name: QualifiedName) -> None:
        """
        Delete the version record for a federated resource.
        
        Args:
            qualified_name: Name of the federated resource
        """
        self._records.pop(qualified_name, None)
        try:
            await self.host_client.delete(PROPAGATED_VERSION_KIND, qualified_name)
        except NotFoundError:
            pass
        
        logger.debug("Deleted propagated versions", key=str(qualified_name))
    
    def forget(self, qualified_name: QualifiedName) -> None:
        self._records.pop(qualified_name, None)
    
    def cached_records(self) -> int:
        return len(self._records)
    
    def _remember(self, qualified_name: QualifiedName, record: Optional[Dict[str, Any]]) -> None:
        self._records[qualified_name] = record
        self._records.move_to_end(qualified_name)
        while len(self._records) > self.max_records:
            self._records.popitem(last=False)
