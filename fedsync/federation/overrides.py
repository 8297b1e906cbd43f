"""
Per-cluster overrides.

    spec:
      overrides:
      - clusterName: cluster-a
        clusterOverrides:
        - path: /spec/replicas
          value: 5
        - op: remove
          path: /metadata/annotations/debug
"""

from typing import Any, Dict, List

from fedsync.federation.errors import OverrideError

OVERRIDE_OPS = ("add", "replace", "remove")


def overrides_for_cluster(spec: Dict[str, Any], cluster_name: str) -> List[Dict[str, Any]]:
    """Return the override list for one cluster."""
    result: List[Dict[str, Any]] = []
    for entry in spec.get("overrides") or []:
        if entry.get("clusterName") == cluster_name:
            result.extend(entry.get("clusterOverrides") or [])
    return result


def _split_path(path: str) -> List[str]:
    if not path or not path.startswith("/"):
        raise OverrideError(f"override path {path!r} must start with '/'")
    parts = [p.replace("~1", "/").replace("~0", "~") for p in path[1:].split("/")]
    if not all(parts):
        raise OverrideError(f"override path {path!r} has an empty segment")
    if parts[0] in ("apiVersion", "kind") or parts[:2] in (["metadata", "name"], ["metadata", "namespace"]):
        raise OverrideError(f"override path {path!r} is not allowed")
    return parts


def _child(container: Any, segment: str, path: str) -> Any:
    if isinstance(container, dict):
        if segment not in container:
            raise OverrideError(f"path {path!r} does not exist")
        return container[segment]
    if isinstance(container, list):
        try:
            return container[int(segment)]
        except (ValueError, IndexError):
            raise OverrideError(f"path {path!r} does not exist")
    raise OverrideError(f"path {path!r} traverses a scalar")


def apply_override(obj: Dict[str, Any], override: Dict[str, Any]) -> None:
    """
    Apply one override to an object in place.
    
    Args:
        obj: Cluster object
        override: Override entry (op, path, value)
    
    Raises:
        OverrideError: If the override cannot be applied
    """
    op = override.get("op") or "replace"
    path = override.get("path", "")
    if op not in OVERRIDE_OPS:
        raise OverrideError(f"unsupported override op {op!r}")
    
    parts = _split_path(path)
    parent: Any = obj
    for i, segment in enumerate(parts[:-1]):
        if op == "add" and isinstance(parent, dict) and segment not in parent:
            parent[segment] = {}
        parent = _child(parent, segment, "/" + "/".join(parts[:i + 1]))
    
    last = parts[-1]
    if isinstance(parent, dict):
        if op == "remove":
            if last not in parent:
                raise OverrideError(f"path {path!r} does not exist")
            del parent[last]
        elif op == "replace" and last not in parent:
            raise OverrideError(f"path {path!r} does not exist")
        else:
            parent[last] = override.get("value")
    elif isinstance(parent, list):
        if op == "add" and last == "-":
            parent.append(override.get("value"))
            return
        try:
            index = int(last)
        except ValueError:
            raise OverrideError(f"path {path!r} has an invalid index")
        if op == "add":
            if index > len(parent):
                raise OverrideError(f"path {path!r} is out of range")
            parent.insert(index, override.get("value"))
        elif index >= len(parent):
            raise OverrideError(f"path {path!r} is out of range")
        elif op == "remove":
            del parent[index]
        else:
            parent[index] = override.get("value")
    else:
        raise OverrideError(f"path {path!r} traverses a scalar")


def apply_overrides(obj: Dict[str, Any], overrides: List[Dict[str, Any]]) -> Dict[str, Any]:
    for override in overrides:
        apply_override(obj, override)
    return obj
