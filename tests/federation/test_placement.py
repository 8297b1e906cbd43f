"""Tests for placement resolution."""

import pytest

from fedsync.federation.metadata import ClusterSnapshot
from fedsync.federation.placement import (
    ClusterSelector,
    PlacementError,
    compute_placement,
)


CLUSTERS = [
    ClusterSnapshot(name="a", labels={"region": "eu", "tier": "gold"}),
    ClusterSnapshot(name="b", labels={"region": "us", "tier": "silver"}),
    ClusterSnapshot(name="c", ready=False, labels={"region": "eu"}),
]


class TestComputePlacement:
    """Test compute_placement."""
    
    def test_explicit_clusters(self):
        """Test explicit cluster names are intersected with known clusters."""
        spec = {"placement": {"clusters": [{"name": "a"}, {"name": "missing"}]}}
        
        assert compute_placement(CLUSTERS, spec) == {"a"}
    
    def test_explicit_clusters_win_over_selector(self):
        """Test the cluster list takes precedence over the selector."""
        spec = {
            "placement": {
                "clusters": [{"name": "b"}],
                "clusterSelector": {"matchLabels": {"region": "eu"}},
            },
        }
        
        assert compute_placement(CLUSTERS, spec) == {"b"}
    
    def test_empty_cluster_list_selects_none(self):
        """Test an explicitly empty list selects nothing."""
        spec = {
            "placement": {
                "clusters": [],
                "clusterSelector": {},
            },
        }
        
        assert compute_placement(CLUSTERS, spec) == set()
    
    def test_empty_selector_selects_all(self):
        """Test an empty selector selects every cluster, ready or not."""
        spec = {"placement": {"clusterSelector": {}}}
        
        assert compute_placement(CLUSTERS, spec) == {"a", "b", "c"}
    
    def test_no_placement_selects_none(self):
        """Test a spec without placement selects nothing."""
        assert compute_placement(CLUSTERS, {}) == set()
    
    def test_match_labels(self):
        """Test matchLabels selection."""
        spec = {"placement": {"clusterSelector": {"matchLabels": {"region": "eu"}}}}
        
        assert compute_placement(CLUSTERS, spec) == {"a", "c"}
    
    def test_match_expressions(self):
        """Test matchExpressions operators."""
        def select(expression):
            spec = {"placement": {"clusterSelector": {"matchExpressions": [expression]}}}
            return compute_placement(CLUSTERS, spec)
        
        assert select({"key": "tier", "operator": "In", "values": ["gold", "silver"]}) == {"a", "b"}
        assert select({"key": "tier", "operator": "NotIn", "values": ["gold"]}) == {"b", "c"}
        assert select({"key": "tier", "operator": "Exists"}) == {"a", "b"}
        assert select({"key": "tier", "operator": "DoesNotExist"}) == {"c"}
    
    def test_deterministic(self):
        """Test repeated resolution gives the same result."""
        spec = {"placement": {"clusterSelector": {"matchLabels": {"region": "eu"}}}}
        
        results = [compute_placement(list(reversed(CLUSTERS)), spec) for _ in range(5)]
        results.append(compute_placement(CLUSTERS, spec))
        
        assert all(result == results[0] for result in results)
    
    def test_invalid_operator(self):
        """Test unsupported operators are rejected."""
        spec = {
            "placement": {
                "clusterSelector": {
                    "matchExpressions": [{"key": "tier", "operator": "Gt", "values": ["1"]}],
                },
            },
        }
        
        with pytest.raises(PlacementError):
            compute_placement(CLUSTERS, spec)
    
    def test_cluster_entry_without_name(self):
        """Test a nameless cluster entry is rejected."""
        with pytest.raises(PlacementError):
            compute_placement(CLUSTERS, {"placement": {"clusters": [{}]}})


class TestClusterSelector:
    """Test ClusterSelector parsing."""
    
    def test_in_requires_values(self):
        with pytest.raises(PlacementError):
            ClusterSelector.from_dict({"matchExpressions": [{"key": "x", "operator": "In"}]})
    
    def test_exists_rejects_values(self):
        with pytest.raises(PlacementError):
            ClusterSelector.from_dict(
                {"matchExpressions": [{"key": "x", "operator": "Exists", "values": ["y"]}]}
            )
    
    def test_matches(self):
        selector = ClusterSelector.from_dict({"matchLabels": {"region": "eu"}})
        
        assert selector.matches({"region": "eu", "other": "x"})
        assert not selector.matches({"region": "us"})
        assert not selector.matches({})
