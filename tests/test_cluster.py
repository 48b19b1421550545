"""Tests for the Kubernetes client wrapper, against mocked API objects."""

from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException
from kubernetes.dynamic.exceptions import ResourceNotFoundError as UnknownKindError

from apptemplate_controller.cluster import MERGE_PATCH, ClusterClient, WatchStream
from apptemplate_controller.exceptions import KubernetesAPIError, ResourceNotFoundError

SERVICE = {"apiVersion": "v1", "kind": "Service", "metadata": {"name": "web"}}


@pytest.fixture
def resource():
    resource = MagicMock()
    resource.namespaced = True
    return resource


@pytest.fixture
def cluster(resource):
    cluster = ClusterClient(api_client=MagicMock())
    cluster._dynamic = MagicMock()
    cluster._dynamic.resources.get.return_value = resource
    cluster.custom_api = MagicMock()
    return cluster


class TestClusterClient:
    def test_read_defaults_namespace(self, cluster, resource):
        resource.get.return_value.to_dict.return_value = {"kind": "Service"}
        assert cluster.read_sync(SERVICE) == {"kind": "Service"}
        resource.get.assert_called_once_with(name="web", namespace="default")

    def test_cluster_scoped_kind(self, cluster, resource):
        resource.namespaced = False
        cluster.read_sync({"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": "foo", "namespace": "x"}})
        resource.get.assert_called_once_with(name="foo", namespace=None)

    def test_read_missing(self, cluster, resource):
        resource.get.side_effect = ApiException(status=404, reason="Not Found")
        with pytest.raises(ResourceNotFoundError):
            cluster.read_sync(SERVICE)

    def test_read_other_error(self, cluster, resource):
        resource.get.side_effect = ApiException(status=500, reason="Internal")
        with pytest.raises(KubernetesAPIError) as exc_info:
            cluster.read_sync(SERVICE)
        assert not isinstance(exc_info.value, ResourceNotFoundError)
        assert exc_info.value.status == 500

    def test_unknown_kind(self, cluster):
        cluster._dynamic.resources.get.side_effect = UnknownKindError("no match")
        with pytest.raises(KubernetesAPIError) as exc_info:
            cluster.read_sync({"apiVersion": "example.com/v1", "kind": "Widget", "metadata": {"name": "w"}})
        assert "Widget" in exc_info.value.message

    def test_patch_uses_merge_patch(self, cluster, resource):
        cluster.patch_sync(SERVICE)
        resource.patch.assert_called_once_with(body=SERVICE, name="web", namespace="default",
                                               content_type=MERGE_PATCH)

    @pytest.mark.asyncio
    async def test_create(self, cluster, resource):
        resource.create.return_value.to_dict.return_value = SERVICE
        assert await cluster.create(SERVICE) == SERVICE
        resource.create.assert_called_once_with(body=SERVICE, namespace="default")

    @pytest.mark.asyncio
    async def test_patch_status(self, cluster):
        await cluster.patch_status("myapp.domain.com", "v1", "apptemplates", "default", "demo", {"phase": "Ready"})
        cluster.custom_api.patch_namespaced_custom_object_status.assert_called_once_with(
            group="myapp.domain.com",
            version="v1",
            namespace="default",
            plural="apptemplates",
            name="demo",
            body={"status": {"phase": "Ready"}},
        )

    @pytest.mark.asyncio
    async def test_patch_status_error(self, cluster):
        cluster.custom_api.patch_namespaced_custom_object_status.side_effect = ApiException(status=404)
        with pytest.raises(KubernetesAPIError):
            await cluster.patch_status("g", "v1", "p", "default", "demo", {})

    def test_watch_stream_can_be_stopped(self, cluster, monkeypatch):
        watcher = MagicMock()
        watcher.stream.return_value = iter([{"type": "ADDED", "object": {}}])
        monkeypatch.setattr("apptemplate_controller.cluster.watch.Watch", lambda: watcher)

        stream = cluster.watch("myapp.domain.com", "v1", "apptemplates", timeout_seconds=60)

        assert isinstance(stream, WatchStream)
        assert list(stream) == [{"type": "ADDED", "object": {}}]
        watcher.stream.assert_called_once_with(
            cluster.custom_api.list_cluster_custom_object,
            group="myapp.domain.com",
            version="v1",
            plural="apptemplates",
            timeout_seconds=60,
        )
        stream.stop()
        watcher.stop.assert_called_once_with()
