"""Tests for propagation status merging and writing."""

import pytest

from fedsync.federation.metadata import QualifiedName, ReconciliationStatus
from fedsync.sync.status import (
    AggregateReason,
    ClusterStatus,
    PropagationStatus,
    StatusAggregator,
    set_propagation_status,
)
from fedsync.utils.config import ControllerConfig
from fedsync.utils.diagnostics import ErrorReporter
from tests.fakes import DEPLOYMENT_TYPE, FakeAccessor, FakeHostClient, make_federated

NAME = QualifiedName("default", "web")


def condition(obj):
    return next(c for c in obj["status"]["conditions"] if c["type"] == "Propagation")


class TestSetPropagationStatus:
    """Test set_propagation_status."""
    
    def test_writes_sorted_clusters(self):
        obj = make_federated()
        
        changed = set_propagation_status(obj, AggregateReason.AGGREGATE_SUCCESS, {
            "b": ClusterStatus(PropagationStatus.CREATION_FAILED, "denied"),
            "a": ClusterStatus(PropagationStatus.OK),
        })
        
        assert changed
        assert obj["status"]["clusters"] == [
            {"name": "a", "status": "OK"},
            {"name": "b", "status": "CreationFailed", "error": "denied"},
        ]
        assert obj["status"]["observedGeneration"] == 1
        assert condition(obj)["status"] == "True"
        assert condition(obj)["reason"] == "AggregateSuccess"
    
    def test_unchanged(self):
        obj = make_federated()
        status_map = {"a": ClusterStatus(PropagationStatus.OK)}
        set_propagation_status(obj, AggregateReason.AGGREGATE_SUCCESS, status_map)
        
        assert not set_propagation_status(obj, AggregateReason.AGGREGATE_SUCCESS, status_map)
    
    def test_none_map_keeps_clusters(self):
        """Test a failed round keeps the last known cluster entries."""
        obj = make_federated()
        set_propagation_status(obj, AggregateReason.AGGREGATE_SUCCESS, {
            "a": ClusterStatus(PropagationStatus.OK),
        })
        
        changed = set_propagation_status(obj, AggregateReason.CLUSTER_RETRIEVAL_FAILED, None)
        
        assert changed
        assert obj["status"]["clusters"] == [{"name": "a", "status": "OK"}]
        assert condition(obj)["status"] == "False"
        assert condition(obj)["reason"] == "ClusterRetrievalFailed"
    
    def test_transition_time_kept_for_same_status(self):
        obj = make_federated()
        obj["status"] = {
            "observedGeneration": 1,
            "conditions": [{
                "type": "Propagation",
                "status": "False",
                "reason": "ClusterRetrievalFailed",
                "lastUpdateTime": "old",
                "lastTransitionTime": "old",
            }],
        }
        
        set_propagation_status(obj, AggregateReason.COMPUTE_PLACEMENT_FAILED, None)
        
        assert condition(obj)["reason"] == "ComputePlacementFailed"
        assert condition(obj)["lastTransitionTime"] == "old"
        assert condition(obj)["lastUpdateTime"] != "old"
    
    def test_other_conditions_preserved(self):
        obj = make_federated()
        obj["status"] = {"conditions": [{"type": "Ready", "status": "True"}]}
        
        set_propagation_status(obj, AggregateReason.AGGREGATE_SUCCESS, {})
        
        types = [c["type"] for c in obj["status"]["conditions"]]
        assert types == ["Ready", "Propagation"]


@pytest.fixture
def host():
    client = FakeHostClient()
    client.put(make_federated())
    return client


@pytest.fixture
def config():
    return ControllerConfig(status_retry_interval_ms=10, status_retry_timeout_ms=500)


@pytest.mark.asyncio
class TestStatusAggregator:
    """Test StatusAggregator."""
    
    async def load(self, host):
        fed_resource, _ = await FakeAccessor(DEPLOYMENT_TYPE, host).federated_resource(NAME)
        return fed_resource
    
    async def test_writes_status(self, host, config):
        fed_resource = await self.load(host)
        aggregator = StatusAggregator(host, config)
        
        result = await aggregator.set_propagation_status(
            fed_resource, AggregateReason.AGGREGATE_SUCCESS,
            {"a": ClusterStatus(PropagationStatus.OK)},
        )
        
        assert result == ReconciliationStatus.ALL_OK
        stored = host.stored("FederatedDeployment", NAME)
        assert stored["status"]["clusters"] == [{"name": "a", "status": "OK"}]
        assert fed_resource.object()["metadata"]["resourceVersion"] == stored["metadata"]["resourceVersion"]
    
    async def test_skips_unchanged_write(self, host, config):
        fed_resource = await self.load(host)
        aggregator = StatusAggregator(host, config)
        status_map = {"a": ClusterStatus(PropagationStatus.OK)}
        
        await aggregator.set_propagation_status(
            fed_resource, AggregateReason.AGGREGATE_SUCCESS, status_map,
        )
        result = await aggregator.set_propagation_status(
            fed_resource, AggregateReason.AGGREGATE_SUCCESS, status_map,
        )
        
        assert result == ReconciliationStatus.ALL_OK
        assert len(host.status_writes) == 1
    
    async def test_retries_conflicts(self, host, config):
        """Test conflicts re-fetch the object and retry the write."""
        fed_resource = await self.load(host)
        host.status_conflicts = 2
        aggregator = StatusAggregator(host, config)
        
        result = await aggregator.set_propagation_status(
            fed_resource, AggregateReason.AGGREGATE_SUCCESS,
            {"a": ClusterStatus(PropagationStatus.OK)},
        )
        
        assert result == ReconciliationStatus.ALL_OK
        assert host.ops().count("update_status") == 3
        assert host.ops().count("get") == 2
        assert len(host.status_writes) == 1
    
    async def test_gives_up_after_timeout(self, host):
        fed_resource = await self.load(host)
        host.status_conflicts = 1000
        reporter = ErrorReporter()
        aggregator = StatusAggregator(
            host,
            ControllerConfig(status_retry_interval_ms=10, status_retry_timeout_ms=50),
            reporter,
        )
        
        result = await aggregator.set_propagation_status(
            fed_resource, AggregateReason.AGGREGATE_SUCCESS,
            {"a": ClusterStatus(PropagationStatus.OK)},
        )
        
        assert result == ReconciliationStatus.ERROR
        assert reporter.error_count == 1
        assert host.status_writes == []
    
    async def test_write_error(self, host, config):
        fed_resource = await self.load(host)
        host.errors["update_status"] = RuntimeError("unavailable")
        reporter = ErrorReporter()
        aggregator = StatusAggregator(host, config, reporter)
        
        result = await aggregator.set_propagation_status(
            fed_resource, AggregateReason.AGGREGATE_SUCCESS, {},
        )
        
        assert result == ReconciliationStatus.ERROR
        assert reporter.error_count == 1
