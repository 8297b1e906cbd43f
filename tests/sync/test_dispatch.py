"""Tests for the managed, unmanaged and check dispatchers."""

import asyncio

import pytest

from fedsync.federation.errors import ApiError, DispatchTimeoutError
from fedsync.federation.events import LoggingEventRecorder
from fedsync.federation.metadata import MANAGED_BY_FEDERATION_LABEL_KEY, QualifiedName
from fedsync.federation.resource import FederatedResource
from fedsync.federation.versions import VersionManager
from fedsync.sync.dispatch import (
    CheckUnmanagedDispatcher,
    ManagedDispatcher,
    UnmanagedDispatcher,
    object_needs_update,
)
from fedsync.sync.status import PropagationStatus
from tests.fakes import (
    DEPLOYMENT_TYPE,
    FakeClient,
    FakeHostClient,
    make_federated,
    make_target,
)

NAME = QualifiedName("default", "web")


@pytest.fixture
def clients():
    return {"a": FakeClient("a"), "b": FakeClient("b")}


@pytest.fixture
def fed_resource():
    return FederatedResource(
        DEPLOYMENT_TYPE,
        make_federated(clusters=["a", "b"]),
        VersionManager(FakeHostClient()),
        LoggingEventRecorder(),
    )


def managed(clients, fed_resource, **kwargs):
    kwargs.setdefault("timeout_ms", 1000)
    return ManagedDispatcher(clients.__getitem__, fed_resource, **kwargs)


class TestObjectNeedsUpdate:
    """Test object_needs_update."""
    
    def test_no_recorded_version(self):
        assert object_needs_update(make_target(), "")
    
    def test_matching_version(self):
        obj = make_target()
        obj["metadata"]["resourceVersion"] = "7"
        
        assert not object_needs_update(obj, "7")
    
    def test_changed_version(self):
        obj = make_target()
        obj["metadata"]["resourceVersion"] = "8"
        
        assert object_needs_update(obj, "7")
    
    def test_missing_label(self):
        obj = make_target(managed=None)
        obj["metadata"]["resourceVersion"] = "7"
        
        assert object_needs_update(obj, "7")


@pytest.mark.asyncio
class TestManagedDispatcher:
    """Test ManagedDispatcher."""
    
    async def test_create(self, clients, fed_resource):
        """Test creation records status and version."""
        dispatcher = managed(clients, fed_resource)
        
        dispatcher.create("a")
        dispatcher.create("b")
        ok, timeout_err = await dispatcher.wait()
        
        assert ok
        assert timeout_err is None
        assert dispatcher.operations_initiated() == 2
        for name in ("a", "b"):
            stored = clients[name].stored("Deployment", NAME)
            assert stored["metadata"]["labels"][MANAGED_BY_FEDERATION_LABEL_KEY] == "true"
            assert dispatcher.status_map()[name].code == PropagationStatus.OK
            assert dispatcher.version_map()[name] == stored["metadata"]["resourceVersion"]
        assert fed_resource.event_recorder.reasons() == ["CreateInCluster", "CreateInCluster"]
    
    async def test_create_failure(self, clients, fed_resource):
        clients["a"].errors["create"] = ApiError("forbidden")
        dispatcher = managed(clients, fed_resource)
        
        dispatcher.create("a")
        ok, _ = await dispatcher.wait()
        
        assert not ok
        status = dispatcher.status_map()["a"]
        assert status.code == PropagationStatus.CREATION_FAILED
        assert status.error == "forbidden"
        assert "a" not in dispatcher.version_map()
    
    async def test_client_failure(self, fed_resource):
        """Test an unresolvable client is reported per cluster."""
        
        def accessor(name):
            raise RuntimeError("no credentials")
        
        dispatcher = ManagedDispatcher(accessor, fed_resource, timeout_ms=1000)
        dispatcher.create("a")
        ok, _ = await dispatcher.wait()
        
        assert not ok
        assert dispatcher.status_map()["a"].code == PropagationStatus.CLIENT_RETRIEVAL_FAILED
    
    async def test_adopts_existing_resource(self, clients, fed_resource):
        """Test an unlabelled pre-existing resource is adopted."""
        clients["a"].put(make_target(managed=None))
        dispatcher = managed(clients, fed_resource)
        
        dispatcher.create("a")
        ok, _ = await dispatcher.wait()
        
        assert ok
        assert clients["a"].ops() == ["create", "get", "update"]
        stored = clients["a"].stored("Deployment", NAME)
        assert stored["metadata"]["labels"][MANAGED_BY_FEDERATION_LABEL_KEY] == "true"
        assert dispatcher.status_map()["a"].code == PropagationStatus.OK
    
    async def test_skip_adopting(self, clients, fed_resource):
        clients["a"].put(make_target(managed=None))
        dispatcher = managed(clients, fed_resource, skip_adopting_resources=True)
        
        dispatcher.create("a")
        ok, _ = await dispatcher.wait()
        
        assert not ok
        assert dispatcher.status_map()["a"].code == PropagationStatus.ALREADY_EXISTS
        assert "update" not in clients["a"].ops()
    
    async def test_skip_adopting_still_updates_managed(self, clients, fed_resource):
        """Test a managed object missing from the cache is not treated as foreign."""
        clients["a"].put(make_target())
        dispatcher = managed(clients, fed_resource, skip_adopting_resources=True)
        
        dispatcher.create("a")
        ok, _ = await dispatcher.wait()
        
        assert ok
        assert dispatcher.status_map()["a"].code == PropagationStatus.OK
    
    async def test_create_refuses_unmanaged(self, clients, fed_resource):
        clients["a"].put(make_target(managed="false"))
        dispatcher = managed(clients, fed_resource)
        
        dispatcher.create("a")
        ok, _ = await dispatcher.wait()
        
        assert not ok
        assert dispatcher.status_map()["a"].code == PropagationStatus.MANAGED_LABEL_FALSE
        assert "update" not in clients["a"].ops()
    
    async def test_update(self, clients, fed_resource):
        """Test a drifted object is rewritten."""
        current = clients["a"].put(make_target())
        current["spec"]["replicas"] = 5
        dispatcher = managed(clients, fed_resource)
        
        dispatcher.update("a", current)
        ok, _ = await dispatcher.wait()
        
        assert ok
        assert clients["a"].ops() == ["update"]
        stored = clients["a"].stored("Deployment", NAME)
        assert stored["spec"]["replicas"] == 1
        assert dispatcher.version_map()["a"] == stored["metadata"]["resourceVersion"]
    
    async def test_update_skipped_when_current(self, clients, fed_resource):
        """Test the recorded version suppresses redundant writes."""
        current = clients["a"].put(make_target())
        await fed_resource.version_manager.update(
            fed_resource.federated_name(),
            fed_resource.template_version(),
            ["a"],
            {"a": current["metadata"]["resourceVersion"]},
        )
        dispatcher = managed(clients, fed_resource)
        
        dispatcher.update("a", current)
        ok, _ = await dispatcher.wait()
        
        assert ok
        assert clients["a"].ops() == []
        assert dispatcher.status_map()["a"].code == PropagationStatus.OK
        assert dispatcher.version_map()["a"] == current["metadata"]["resourceVersion"]
    
    async def test_update_refuses_unmanaged(self, clients, fed_resource):
        current = clients["a"].put(make_target(managed="false"))
        dispatcher = managed(clients, fed_resource)
        
        dispatcher.update("a", current)
        ok, _ = await dispatcher.wait()
        
        assert not ok
        assert dispatcher.status_map()["a"].code == PropagationStatus.MANAGED_LABEL_FALSE
    
    async def test_update_failure(self, clients, fed_resource):
        current = clients["a"].put(make_target())
        clients["a"].errors["update"] = ApiError("invalid")
        dispatcher = managed(clients, fed_resource)
        
        dispatcher.update("a", current)
        ok, _ = await dispatcher.wait()
        
        assert not ok
        assert dispatcher.status_map()["a"].code == PropagationStatus.UPDATE_FAILED
    
    async def test_bad_override(self, clients):
        fed_resource = FederatedResource(
            DEPLOYMENT_TYPE,
            make_federated(overrides=[
                {"clusterName": "a", "clusterOverrides": [{"path": "/spec/missing", "value": 1}]},
            ]),
            VersionManager(FakeHostClient()),
            LoggingEventRecorder(),
        )
        dispatcher = managed(clients, fed_resource)
        
        dispatcher.create("a")
        ok, _ = await dispatcher.wait()
        
        assert not ok
        assert dispatcher.status_map()["a"].code == PropagationStatus.APPLY_OVERRIDES_FAILED
        assert clients["a"].ops() == []
    
    async def test_unexpected_error_records_status(self, clients):
        """Test an operation that raises still reports a status."""
        obj = make_federated(clusters=["a", "b"])
        obj["spec"]["template"]["metadata"] = None
        fed_resource = FederatedResource(
            DEPLOYMENT_TYPE,
            obj,
            VersionManager(FakeHostClient()),
            LoggingEventRecorder(),
        )
        dispatcher = managed(clients, fed_resource)
        
        dispatcher.create("a")
        ok, timeout_err = await dispatcher.wait()
        
        assert not ok
        assert timeout_err is None
        status = dispatcher.status_map()["a"]
        assert status.code == PropagationStatus.CREATION_FAILED
        assert status.error
        assert clients["a"].ops() == []
    
    async def test_delete_records_only_failures(self, clients, fed_resource):
        clients["a"].put(make_target())
        clients["b"].put(make_target())
        clients["b"].errors["delete"] = ApiError("forbidden")
        dispatcher = managed(clients, fed_resource)
        
        dispatcher.delete("a")
        dispatcher.delete("b")
        ok, _ = await dispatcher.wait()
        
        assert not ok
        assert clients["a"].stored("Deployment", NAME) is None
        assert "a" not in dispatcher.status_map()
        assert dispatcher.status_map()["b"].code == PropagationStatus.DELETION_FAILED
    
    async def test_timeout(self, clients, fed_resource):
        """Test operations past the deadline are reported as timed out."""
        clients["b"].delays["create"] = 0.3
        dispatcher = managed(clients, fed_resource, timeout_ms=50)
        
        dispatcher.create("a")
        dispatcher.create("b")
        ok, timeout_err = await dispatcher.wait()
        
        assert not ok
        assert isinstance(timeout_err, DispatchTimeoutError)
        assert timeout_err.pending_clusters == ["b"]
        assert dispatcher.status_map()["a"].code == PropagationStatus.OK
        assert dispatcher.status_map()["b"].code == PropagationStatus.CREATION_TIMED_OUT
        await asyncio.sleep(0.3)
    
    async def test_late_results_are_discarded(self, clients, fed_resource):
        """Test a timed-out operation finishing later cannot change the results."""
        clients["a"].delays["create"] = 0.1
        dispatcher = managed(clients, fed_resource, timeout_ms=20)
        
        dispatcher.create("a")
        await dispatcher.wait()
        await asyncio.sleep(0.2)
        
        # The write itself went through.
        assert clients["a"].stored("Deployment", NAME) is not None
        assert dispatcher.status_map()["a"].code == PropagationStatus.CREATION_TIMED_OUT
        assert dispatcher.version_map() == {}
    
    async def test_wait_only_once(self, clients, fed_resource):
        dispatcher = managed(clients, fed_resource)
        await dispatcher.wait()
        
        with pytest.raises(RuntimeError):
            await dispatcher.wait()
        with pytest.raises(RuntimeError):
            dispatcher.create("a")


@pytest.mark.asyncio
class TestUnmanagedDispatcher:
    """Test UnmanagedDispatcher."""
    
    async def test_delete(self, clients):
        clients["a"].put(make_target())
        dispatcher = UnmanagedDispatcher(clients.__getitem__, "Deployment", NAME, timeout_ms=1000)
        
        dispatcher.delete("a")
        dispatcher.delete("b")
        ok, _ = await dispatcher.wait()
        
        # Absence in b counts as success.
        assert ok
        assert clients["a"].stored("Deployment", NAME) is None
    
    async def test_delete_failure(self, clients):
        clients["a"].put(make_target())
        clients["a"].errors["delete"] = ApiError("forbidden")
        dispatcher = UnmanagedDispatcher(clients.__getitem__, "Deployment", NAME, timeout_ms=1000)
        
        dispatcher.delete("a")
        ok, _ = await dispatcher.wait()
        
        assert not ok
    
    async def test_remove_managed_label(self, clients):
        """Test detaching keeps the object but drops the label."""
        current = clients["a"].put(make_target())
        dispatcher = UnmanagedDispatcher(clients.__getitem__, "Deployment", NAME, timeout_ms=1000)
        
        dispatcher.remove_managed_label("a", current)
        ok, _ = await dispatcher.wait()
        
        assert ok
        stored = clients["a"].stored("Deployment", NAME)
        assert MANAGED_BY_FEDERATION_LABEL_KEY not in stored["metadata"]["labels"]
        assert current["metadata"]["labels"][MANAGED_BY_FEDERATION_LABEL_KEY] == "true"


@pytest.mark.asyncio
class TestCheckUnmanagedDispatcher:
    """Test CheckUnmanagedDispatcher."""
    
    @staticmethod
    def never_host(obj):
        return False
    
    async def test_absent_and_unlabelled_pass(self, clients):
        clients["b"].put(make_target(managed=None))
        dispatcher = CheckUnmanagedDispatcher(clients.__getitem__, "Deployment", NAME, timeout_ms=1000)
        
        dispatcher.check_removed_or_unlabeled("a", self.never_host)
        dispatcher.check_removed_or_unlabeled("b", self.never_host)
        ok, _ = await dispatcher.wait()
        
        assert ok
        assert clients["a"].ops() == ["get"]
    
    async def test_managed_copy_fails(self, clients):
        clients["a"].put(make_target())
        dispatcher = CheckUnmanagedDispatcher(clients.__getitem__, "Deployment", NAME, timeout_ms=1000)
        
        dispatcher.check_removed_or_unlabeled("a", self.never_host)
        ok, _ = await dispatcher.wait()
        
        assert not ok
    
    async def test_get_error_fails(self, clients):
        clients["a"].errors["get"] = ApiError("unavailable")
        dispatcher = CheckUnmanagedDispatcher(clients.__getitem__, "Deployment", NAME, timeout_ms=1000)
        
        dispatcher.check_removed_or_unlabeled("a", self.never_host)
        ok, _ = await dispatcher.wait()
        
        assert not ok
    
    async def test_terminating_host_namespace_passes(self, clients):
        """Test the host cluster's own namespace does not block teardown."""
        clients["a"].put(make_target(deleting=True))
        dispatcher = CheckUnmanagedDispatcher(clients.__getitem__, "Deployment", NAME, timeout_ms=1000)
        
        dispatcher.check_removed_or_unlabeled("a", lambda obj: True)
        ok, _ = await dispatcher.wait()
        
        assert ok
