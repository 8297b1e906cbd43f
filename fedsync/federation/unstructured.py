"""
Helpers for resources represented as plain dictionaries.

Objects follow the usual API shape: apiVersion, kind, metadata, spec and
status keys, with labels, annotations and finalizers under metadata.
"""

import copy
from typing import Any, Dict, List, Optional

from fedsync.federation.metadata import (
    MANAGED_BY_FEDERATION_LABEL_KEY,
    MANAGED_BY_FEDERATION_LABEL_VALUE,
    UNMANAGED_BY_FEDERATION_LABEL_VALUE,
)


def metadata(obj: Dict[str, Any]) -> Dict[str, Any]:
    return obj.setdefault("metadata", {})


def get_labels(obj: Dict[str, Any]) -> Dict[str, str]:
    return dict(obj.get("metadata", {}).get("labels") or {})


def get_annotations(obj: Dict[str, Any]) -> Dict[str, str]:
    return dict(obj.get("metadata", {}).get("annotations") or {})


def get_finalizers(obj: Dict[str, Any]) -> List[str]:
    return list(obj.get("metadata", {}).get("finalizers") or [])


def get_deletion_timestamp(obj: Dict[str, Any]) -> Optional[str]:
    return obj.get("metadata", {}).get("deletionTimestamp")


def is_terminating(obj: Optional[Dict[str, Any]]) -> bool:
    return obj is not None and get_deletion_timestamp(obj) is not None


def get_uid(obj: Dict[str, Any]) -> Optional[str]:
    return obj.get("metadata", {}).get("uid")


def object_version(obj: Dict[str, Any]) -> str:
    """
    Return the version string of a cluster object.
    
    The resourceVersion changes on every write, so it is used in
    preference to the generation.
    """
    meta = obj.get("metadata", {})
    if meta.get("resourceVersion"):
        return str(meta["resourceVersion"])
    if meta.get("generation") is not None:
        return f"gen:{meta['generation']}"
    return ""


def has_managed_label(obj: Dict[str, Any]) -> bool:
    return get_labels(obj).get(MANAGED_BY_FEDERATION_LABEL_KEY) == MANAGED_BY_FEDERATION_LABEL_VALUE


def is_explicitly_unmanaged(obj: Dict[str, Any]) -> bool:
    return get_labels(obj).get(MANAGED_BY_FEDERATION_LABEL_KEY) == UNMANAGED_BY_FEDERATION_LABEL_VALUE


def add_managed_label(obj: Dict[str, Any]) -> Dict[str, Any]:
    """Set the managed label in place and return the object."""
    meta = metadata(obj)
    labels = dict(meta.get("labels") or {})
    labels[MANAGED_BY_FEDERATION_LABEL_KEY] = MANAGED_BY_FEDERATION_LABEL_VALUE
    meta["labels"] = labels
    return obj


def without_managed_label(obj: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of the object with the managed label removed."""
    updated = copy.deepcopy(obj)
    meta = metadata(updated)
    labels = dict(meta.get("labels") or {})
    labels.pop(MANAGED_BY_FEDERATION_LABEL_KEY, None)
    meta["labels"] = labels
    return updated
