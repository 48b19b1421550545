"""Kubernetes client wrapper used by the apply engine and the controller."""

import asyncio
import logging
import threading
from typing import Any, Dict, Iterator, Optional

from kubernetes import client, config, dynamic, watch
from kubernetes.client.rest import ApiException
from kubernetes.dynamic.exceptions import ResourceNotFoundError as UnknownKindError

from apptemplate_controller.exceptions import (
    ClusterAccessError,
    KubernetesAPIError,
    ResourceNotFoundError,
    handle_kubernetes_api_exception,
)

logger = logging.getLogger(__name__)

MERGE_PATCH = "application/merge-patch+json"


class WatchStream:
    """Blocking iterator of watch events that can be stopped from another thread."""

    def __init__(self, watcher: watch.Watch, events: Iterator[Dict[str, Any]]):
        self.watcher = watcher
        self.events = events

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return self.events

    def stop(self) -> None:
        self.watcher.stop()


class ClusterClient:
    """Handles interaction with the Kubernetes API.

    One instance is built at startup and passed to everything that talks to
    the cluster. The underlying client is synchronous; every public
    coroutine runs its request in a worker thread so the event loop keeps
    serving other reconciliations.
    """

    def __init__(self, kubeconfig: Optional[str] = None, context: Optional[str] = None,
                 api_client: Optional[client.ApiClient] = None):
        """Initialize the cluster client.

        Args:
            kubeconfig: Path to a kubeconfig file. Defaults to $KUBECONFIG or ~/.kube/config
            context: Kubeconfig context to use. Defaults to the current context
            api_client: Preconfigured API client, bypassing configuration loading

        Raises:
            ClusterAccessError: If Kubernetes configuration cannot be loaded
        """
        self.api_client = api_client or self._load_api_client(kubeconfig, context)
        self.custom_api = client.CustomObjectsApi(self.api_client)
        self._dynamic: Optional[dynamic.DynamicClient] = None
        self._dynamic_lock = threading.Lock()

    @staticmethod
    def _load_api_client(kubeconfig: Optional[str], context: Optional[str]) -> client.ApiClient:
        configuration = client.Configuration()
        try:
            config.load_kube_config(config_file=kubeconfig, context=context,
                                    client_configuration=configuration)
        except config.ConfigException:
            try:
                # Fall back to in-cluster config if kubeconfig is not available
                config.load_incluster_config(client_configuration=configuration)
            except Exception as e:
                raise ClusterAccessError(f"Failed to load Kubernetes configuration: {str(e)}")
        except Exception as e:
            raise ClusterAccessError(f"Failed to initialize Kubernetes client: {str(e)}")

        return client.ApiClient(configuration)

    @property
    def dynamic_client(self) -> dynamic.DynamicClient:
        # Discovery hits the API server, so it is deferred to the first request.
        with self._dynamic_lock:
            if self._dynamic is None:
                try:
                    self._dynamic = dynamic.DynamicClient(self.api_client)
                except ApiException as e:
                    raise handle_kubernetes_api_exception(e, "discover API resources")
                except Exception as e:
                    raise ClusterAccessError(f"Failed to discover API resources: {str(e)}")
            return self._dynamic

    def _resource_for(self, spec: Dict[str, Any]):
        api_version = spec.get("apiVersion") or "v1"
        kind = spec["kind"]
        try:
            resource = self.dynamic_client.resources.get(api_version=api_version, kind=kind)
        except UnknownKindError:
            raise KubernetesAPIError(
                f"Unknown resource type {api_version}/{kind}; is its CRD installed?", None, kind, "discover"
            )

        metadata = spec.get("metadata") or {}
        namespace = None
        if resource.namespaced:
            namespace = metadata.get("namespace") or "default"
        return resource, metadata.get("name"), namespace

    def read_sync(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        resource, name, namespace = self._resource_for(spec)
        try:
            return resource.get(name=name, namespace=namespace).to_dict()
        except ApiException as e:
            if e.status == 404:
                raise ResourceNotFoundError(spec["kind"], name, namespace)
            raise handle_kubernetes_api_exception(e, "get", spec["kind"])

    def create_sync(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        resource, _, namespace = self._resource_for(spec)
        try:
            return resource.create(body=spec, namespace=namespace).to_dict()
        except ApiException as e:
            raise handle_kubernetes_api_exception(e, "create", spec["kind"])

    def patch_sync(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        resource, name, namespace = self._resource_for(spec)
        try:
            return resource.patch(body=spec, name=name, namespace=namespace,
                                  content_type=MERGE_PATCH).to_dict()
        except ApiException as e:
            raise handle_kubernetes_api_exception(e, "patch", spec["kind"])

    async def read(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        """Fetch the live object matching ``spec``.

        Raises:
            ResourceNotFoundError: If the object does not exist
            KubernetesAPIError: For any other API failure
        """
        return await asyncio.to_thread(self.read_sync, spec)

    async def create(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        return await asyncio.to_thread(self.create_sync, spec)

    async def patch(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        """Merge-patch the live object with ``spec``."""
        return await asyncio.to_thread(self.patch_sync, spec)

    def watch(self, group: str, version: str, plural: str,
              timeout_seconds: Optional[int] = None) -> WatchStream:
        """Open a watch on a custom resource type across all namespaces.

        Returns a blocking iterator of ``{"type": ..., "object": ...}`` events.
        The first events replay every existing object as ``ADDED``. Calling
        ``stop()`` on it ends the iteration after the next event.
        """
        watcher = watch.Watch()
        kwargs = {}
        if timeout_seconds:
            kwargs["timeout_seconds"] = timeout_seconds
        events = watcher.stream(
            self.custom_api.list_cluster_custom_object,
            group=group,
            version=version,
            plural=plural,
            **kwargs,
        )
        return WatchStream(watcher, events)

    async def patch_status(self, group: str, version: str, plural: str, namespace: str,
                           name: str, status: Dict[str, Any]) -> Dict[str, Any]:
        """Patch the status subresource of a namespaced custom object."""
        def _patch():
            try:
                return self.custom_api.patch_namespaced_custom_object_status(
                    group=group,
                    version=version,
                    namespace=namespace,
                    plural=plural,
                    name=name,
                    body={"status": status},
                )
            except ApiException as e:
                raise handle_kubernetes_api_exception(e, "patch status", plural)

        return await asyncio.to_thread(_patch)
