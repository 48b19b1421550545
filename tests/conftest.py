"""
Pytest configuration and shared fixtures for AppTemplate controller tests.
"""

import asyncio
import copy
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from apptemplate_controller.exceptions import ResourceNotFoundError


# =============================================================================
# Bundle Tree Fixtures
# =============================================================================

NAMESPACE_TEMPLATE = """\
apiVersion: v1
kind: Namespace
metadata:
  name: ${serviceName}
"""

DEPLOYMENT_TEMPLATE = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: ${serviceName}
  namespace: ${serviceName}
spec:
  replicas: ${replicas}
  template:
    spec:
      containers:
        - name: app
          image: ${image}
"""

SERVICE_TEMPLATE = """\
apiVersion: v1
kind: Service
metadata:
  name: ${serviceName}
  namespace: ${serviceName}
spec:
  ports:
    - port: 80
---
apiVersion: v1
kind: ServiceAccount
metadata:
  name: ${serviceName}-runner
  namespace: ${serviceName}
"""

CONFIGMAP_TEMPLATE = """\
apiVersion: v1
kind: ConfigMap
metadata:
  name: ${serviceName}-{name}
  namespace: ${serviceName}
data:
  owner: ${owner}
"""


def write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


@pytest.fixture
def bundle_tree(tmp_path: Path) -> Path:
    """A bundle root with base, extra, unused and extras-foo bundles."""
    root = tmp_path / "configs"
    write(root / "base" / "namespace.yaml", NAMESPACE_TEMPLATE)
    write(root / "base" / "deployment.yaml", DEPLOYMENT_TEMPLATE)
    write(root / "base" / ".git" / "leaked.yaml", NAMESPACE_TEMPLATE)
    write(root / "extra" / "service.yml", SERVICE_TEMPLATE)
    write(root / "extra" / "notes.txt", "not a manifest")
    write(root / "extra" / "nested" / "configmap.yaml", CONFIGMAP_TEMPLATE.replace("{name}", "nested"))
    write(root / "unused" / "configmap.yaml", CONFIGMAP_TEMPLATE.replace("{name}", "unused"))
    write(root / "extras-foo" / "configmap.yaml", CONFIGMAP_TEMPLATE.replace("{name}", "extras"))
    write(root / "extras-bar" / "configmap.yaml", CONFIGMAP_TEMPLATE.replace("{name}", "bar"))
    write(root / "root-level.yaml", NAMESPACE_TEMPLATE)
    return root


def app_template(name: str = "demo", namespace: str = "default", generation: int = 1,
                 service_name: str = "foo", configs: str = "base,extra",
                 variables: str = '{"replicas": "2", "image": "nginx:1.25", "owner": "team-a"}') -> Dict[str, Any]:
    """Build an AppTemplate object as delivered by the watch API."""
    return {
        "apiVersion": "myapp.domain.com/v1",
        "kind": "AppTemplate",
        "metadata": {"name": name, "namespace": namespace, "generation": generation, "uid": f"uid-{name}"},
        "spec": {
            "serviceName": service_name,
            "configsToUse": configs,
            "templateVariables": variables,
        },
    }


def watch_event(event_type: str, obj: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": event_type, "object": obj}


# =============================================================================
# Fake Cluster
# =============================================================================


class FakeWatchStream:
    """Scripted watch stream. Without events it blocks until stopped or closed."""

    def __init__(self, events: Optional[List[Dict[str, Any]]], closed: threading.Event):
        self.events = events
        self.closed = closed
        self.stopped = threading.Event()

    def __iter__(self):
        if self.events is not None:
            for event in self.events:
                if self.stopped.is_set():
                    return
                yield event
            return

        while not (self.stopped.is_set() or self.closed.is_set()):
            self.stopped.wait(0.01)

    def stop(self):
        self.stopped.set()


def resource_key(spec: Dict[str, Any]) -> Tuple[str, Optional[str], str]:
    metadata = spec.get("metadata") or {}
    return spec["kind"], metadata.get("namespace"), metadata.get("name")


class FakeCluster:
    """In-memory Cluster Access Provider.

    Records every call in ``log`` as ``(event, operation, kind, name)`` where
    event is ``start`` or ``end``. Failures and latency can be injected per
    ``(operation, kind)``.
    """

    def __init__(self):
        self.objects: Dict[Tuple[str, Optional[str], str], Dict[str, Any]] = {}
        self.log: List[Tuple[str, str, str, str]] = []
        self.failures: Dict[Tuple[str, str], Exception] = {}
        self.latency: Dict[str, float] = {}
        self.watch_script: List[Any] = []
        self.watch_calls: List[float] = []
        self.status_patches: List[Dict[str, Any]] = []
        self.streams: List["FakeWatchStream"] = []
        self.closed = threading.Event()

    def fail(self, operation: str, kind: str, error: Exception) -> None:
        self.failures[(operation, kind)] = error

    async def _call(self, operation: str, spec: Dict[str, Any]) -> None:
        kind, _, name = resource_key(spec)
        self.log.append(("start", operation, kind, name))
        try:
            await asyncio.sleep(self.latency.get(kind, 0))
            error = self.failures.get((operation, kind))
            if error is not None:
                raise error
        finally:
            self.log.append(("end", operation, kind, name))

    async def read(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        await self._call("read", spec)
        key = resource_key(spec)
        if key not in self.objects:
            raise ResourceNotFoundError(key[0], key[2], key[1])
        return copy.deepcopy(self.objects[key])

    async def create(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        await self._call("create", spec)
        self.objects[resource_key(spec)] = copy.deepcopy(spec)
        return copy.deepcopy(spec)

    async def patch(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        await self._call("patch", spec)
        self.objects[resource_key(spec)].update(copy.deepcopy(spec))
        return copy.deepcopy(self.objects[resource_key(spec)])

    def watch(self, group: str, version: str, plural: str, timeout_seconds: Optional[int] = None):
        self.watch_calls.append(time.monotonic())
        if not self.watch_script:
            stream = FakeWatchStream(None, self.closed)
        else:
            step = self.watch_script.pop(0)
            if isinstance(step, Exception):
                raise step
            stream = FakeWatchStream(step, self.closed)
        self.streams.append(stream)
        return stream

    async def patch_status(self, group, version, plural, namespace, name, status):
        self.status_patches.append({"namespace": namespace, "name": name, "status": status})
        return status

    def operations(self, kind: Optional[str] = None) -> List[Tuple[str, str]]:
        """Completed (operation, kind) pairs, optionally for one kind."""
        return [(op, k) for event, op, k, _ in self.log if event == "end" and (kind is None or k == kind)]


@pytest.fixture
def fake_cluster():
    cluster = FakeCluster()
    yield cluster
    cluster.closed.set()


async def wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
    """Poll ``predicate`` until it holds or fail after ``timeout`` seconds."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)
