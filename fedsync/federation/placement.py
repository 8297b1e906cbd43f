"""
Placement resolution for federated resources.

Resolves the set of member clusters a federated resource should exist in
from its placement directives:

    spec:
      placement:
        clusters:                # explicit names, wins when present
        - name: cluster-a
        clusterSelector:         # used only when clusters is absent
          matchLabels: {region: eu}
          matchExpressions:
          - {key: tier, operator: In, values: [gold]}

An explicit list is intersected with the known clusters. An empty selector
selects every cluster; no placement at all selects none. Resolution is a
pure function of the cluster list and the resource spec.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from fedsync.federation.metadata import ClusterSnapshot


class PlacementError(Exception):
    """Placement directives are malformed."""
    pass


SELECTOR_OPERATORS = ("In", "NotIn", "Exists", "DoesNotExist")


@dataclass(frozen=True)
class SelectorRequirement:
    """
    One matchExpressions entry.
    
    Attributes:
        key: Label key
        operator: In, NotIn, Exists or DoesNotExist
        values: Values for In/NotIn
    """
    key: str
    operator: str
    values: tuple = ()
    
    def matches(self, labels: Dict[str, str]) -> bool:
        if self.operator == "In":
            return self.key in labels and labels[self.key] in self.values
        if self.operator == "NotIn":
            return self.key not in labels or labels[self.key] not in self.values
        if self.operator == "Exists":
            return self.key in labels
        return self.key not in labels


@dataclass(frozen=True)
class ClusterSelector:
    """Label selector over cluster labels."""
    
    match_labels: Dict[str, str] = field(default_factory=dict)
    match_expressions: List[SelectorRequirement] = field(default_factory=list)
    
    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ClusterSelector":
        """
        Parse a selector from its spec form.
        
        Args:
            raw: Selector dictionary
        
        Returns:
            Parsed selector
        
        Raises:
            PlacementError: If an expression is invalid
        """
        if not isinstance(raw, dict):
            raise PlacementError(f"clusterSelector must be a mapping, got {type(raw).__name__}")
        
        match_labels = {str(k): str(v) for k, v in (raw.get("matchLabels") or {}).items()}
        
        expressions = []
        for expr in raw.get("matchExpressions") or []:
            key = expr.get("key")
            operator = expr.get("operator")
            values = tuple(str(v) for v in (expr.get("values") or []))
            
            if not key:
                raise PlacementError("matchExpressions entry is missing a key")
            if operator not in SELECTOR_OPERATORS:
                raise PlacementError(f"unsupported selector operator {operator!r}")
            if operator in ("In", "NotIn") and not values:
                raise PlacementError(f"operator {operator} requires at least one value")
            if operator in ("Exists", "DoesNotExist") and values:
                raise PlacementError(f"operator {operator} does not take values")
            
            expressions.append(SelectorRequirement(key=key, operator=operator, values=values))
        
        return cls(match_labels=match_labels, match_expressions=expressions)
    
    def matches(self, labels: Dict[str, str]) -> bool:
        for key, value in self.match_labels.items():
            if labels.get(key) != value:
                return False
        return all(req.matches(labels) for req in self.match_expressions)


def get_cluster_names(spec: Dict[str, Any]) -> Optional[List[str]]:
    """
    Return the explicit cluster names, or None if none were given.
    
    Raises:
        PlacementError: If an entry has no name
    """
    placement = spec.get("placement") or {}
    if "clusters" not in placement or placement["clusters"] is None:
        return None
    
    names = []
    for entry in placement["clusters"]:
        name = entry.get("name") if isinstance(entry, dict) else None
        if not name:
            raise PlacementError("placement.clusters entry is missing a name")
        names.append(name)
    return names


def get_cluster_selector(spec: Dict[str, Any]) -> Optional[ClusterSelector]:
    placement = spec.get("placement") or {}
    if "clusterSelector" not in placement or placement["clusterSelector"] is None:
        return None
    return ClusterSelector.from_dict(placement["clusterSelector"])


def compute_placement(
    clusters: Iterable[ClusterSnapshot],
    spec: Dict[str, Any],
) -> Set[str]:
    """
    Compute the names of the clusters selected by a resource spec.
    
    Readiness is not considered; callers decide what to do with selected
    clusters that are not ready.
    
    Args:
        clusters: Known member clusters
        spec: Spec of the federated resource
    
    Returns:
        Selected cluster names
    
    Raises:
        PlacementError: If the placement directives are malformed
    """
    clusters = list(clusters)
    known = {cluster.name for cluster in clusters}
    
    names = get_cluster_names(spec)
    if names is not None:
        return known.intersection(names)
    
    selector = get_cluster_selector(spec)
    if selector is None:
        return set()
    
    return {cluster.name for cluster in clusters if selector.matches(cluster.labels)}
