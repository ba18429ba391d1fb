"""
Shared fixtures: an in-memory stand-in for one cluster's API server.

FakeResourceClient implements the ResourceClient protocol with the API
server behaviour the engine relies on:
  - 404 / 409 ApiException on missing / existing / stale objects
  - resourceVersion only moves when the stored content actually changes
  - update is optimistic: a stale resourceVersion is a 409 conflict
  - delete with finalizers only sets deletionTimestamp; the object goes
    away once an update removes the last finalizer
  - server-side apply replaces the applied content and keeps server-owned
    metadata and status
"""

import copy
import itertools
import threading
import time
from typing import Optional

import pytest
from kubernetes.client import ApiException

from sync_agent import metadata
from sync_agent.models import GroupVersionResource, SyncConfig

SERVER_FIELDS = ("uid", "resourceVersion", "creationTimestamp", "deletionTimestamp", "generation")


def _without_version(obj: dict) -> dict:
    stripped = copy.deepcopy(obj)
    stripped.get("metadata", {}).pop("resourceVersion", None)
    return stripped


class FakeResourceClient:

    def __init__(self, name: str = "fake"):
        self.name = name
        self.objects: dict = {}
        self.calls: list = []
        self.writes: list = []
        self.failures: dict = {}
        self.watch_events: list = []
        self._versions = itertools.count(1)
        self._lock = threading.RLock()

    # --- test helpers ---

    def seed(self, gvr: GroupVersionResource, obj: dict) -> dict:
        """Store an object directly, as if another actor had created it."""
        obj = copy.deepcopy(obj)
        meta = obj.setdefault("metadata", {})
        meta.setdefault("uid", f"uid-{meta['name']}")
        meta["resourceVersion"] = str(next(self._versions))
        with self._lock:
            self.objects[(gvr, meta.get("namespace", ""), meta["name"])] = obj
        return copy.deepcopy(obj)

    def stored(self, gvr: GroupVersionResource, namespace: str, name: str) -> Optional[dict]:
        with self._lock:
            obj = self.objects.get((gvr, namespace, name))
            return copy.deepcopy(obj) if obj is not None else None

    def fail(self, verb: str, status: int = 500, reason: str = "Internal Server Error") -> None:
        self.failures[verb] = ApiException(status=status, reason=reason)

    def writes_for(self, verb: str) -> list:
        return [w for w in self.writes if w[0] == verb]

    def _check(self, verb: str, gvr, namespace, name) -> None:
        self.calls.append((verb, gvr, namespace, name))
        if verb in self.failures:
            raise self.failures[verb]

    def _bump(self, obj: dict) -> None:
        obj.setdefault("metadata", {})["resourceVersion"] = str(next(self._versions))

    # --- ResourceClient ---

    def get(self, gvr, namespace, name):
        with self._lock:
            self._check("get", gvr, namespace, name)
            obj = self.objects.get((gvr, namespace, name))
            if obj is None:
                raise ApiException(status=404, reason="Not Found")
            return copy.deepcopy(obj)

    def list(self, gvr, namespace=None):
        with self._lock:
            self._check("list", gvr, namespace, None)
            items = [
                copy.deepcopy(obj) for (g, ns, _), obj in self.objects.items()
                if g == gvr and (namespace is None or ns == namespace)
            ]
            return items, str(next(self._versions))

    def create(self, gvr, namespace, body):
        name = body["metadata"]["name"]
        with self._lock:
            self._check("create", gvr, namespace, name)
            if (gvr, namespace, name) in self.objects:
                raise ApiException(status=409, reason="AlreadyExists")
            obj = copy.deepcopy(body)
            meta = obj.setdefault("metadata", {})
            if namespace:
                meta["namespace"] = namespace
            meta["uid"] = f"uid-{name}"
            self._bump(obj)
            self.objects[(gvr, namespace, name)] = obj
            self.writes.append(("create", gvr, namespace, name))
            return copy.deepcopy(obj)

    def update(self, gvr, namespace, body):
        name = body["metadata"]["name"]
        with self._lock:
            self._check("update", gvr, namespace, name)
            current = self.objects.get((gvr, namespace, name))
            if current is None:
                raise ApiException(status=404, reason="Not Found")
            sent_version = body["metadata"].get("resourceVersion")
            if sent_version and sent_version != current["metadata"].get("resourceVersion"):
                raise ApiException(status=409, reason="Conflict")

            obj = copy.deepcopy(body)
            for field in SERVER_FIELDS:
                if field in current["metadata"]:
                    obj["metadata"][field] = current["metadata"][field]
                else:
                    obj["metadata"].pop(field, None)
            if _without_version(obj) == _without_version(current):
                return copy.deepcopy(current)

            self._bump(obj)
            self.writes.append(("update", gvr, namespace, name))
            if metadata.is_being_deleted(obj) and not metadata.get_finalizers(obj):
                del self.objects[(gvr, namespace, name)]
            else:
                self.objects[(gvr, namespace, name)] = obj
            return copy.deepcopy(obj)

    def delete(self, gvr, namespace, name):
        with self._lock:
            self._check("delete", gvr, namespace, name)
            current = self.objects.get((gvr, namespace, name))
            if current is None:
                raise ApiException(status=404, reason="Not Found")
            self.writes.append(("delete", gvr, namespace, name))
            if metadata.get_finalizers(current):
                if not metadata.is_being_deleted(current):
                    current["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
                    self._bump(current)
                return
            del self.objects[(gvr, namespace, name)]

    def apply(self, gvr, namespace, body, field_manager, force=True):
        name = body["metadata"]["name"]
        with self._lock:
            self._check("apply", gvr, namespace, name)
            self.calls.append(("apply-manager", field_manager, force))
            current = self.objects.get((gvr, namespace, name))
            obj = copy.deepcopy(body)
            obj["metadata"]["namespace"] = namespace
            if current is None:
                obj["metadata"]["uid"] = f"uid-{name}"
            else:
                for field in SERVER_FIELDS:
                    if field in current["metadata"]:
                        obj["metadata"][field] = current["metadata"][field]
                if "status" in current:
                    obj["status"] = current["status"]
                if _without_version(obj) == _without_version(current):
                    return copy.deepcopy(current)
            self._bump(obj)
            self.objects[(gvr, namespace, name)] = obj
            self.writes.append(("apply", gvr, namespace, name))
            return copy.deepcopy(obj)

    def watch(self, gvr, namespace=None, resource_version=None, timeout_seconds=None, watcher=None):
        with self._lock:
            self.calls.append(("watch", gvr, namespace, resource_version))
            events = self.watch_events.pop(0) if self.watch_events else []
        for event in events:
            yield event
        # an idle stream, closed by the server after a short while
        time.sleep(0.05)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

DEPLOYMENTS = GroupVersionResource(group="apps", version="v1", resource="deployments")
UPSTREAM_NS = "mctc-tenant"
DOWNSTREAM_NS = "mctc-downstream"


def make_object(name: str = "A", namespace: str = UPSTREAM_NS, annotations: Optional[dict] = None,
                labels: Optional[dict] = None, replicas: int = 1, **meta) -> dict:
    obj = {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"replicas": replicas},
    }
    if annotations is not None:
        obj["metadata"]["annotations"] = dict(annotations)
    if labels is not None:
        obj["metadata"]["labels"] = dict(labels)
    obj["metadata"].update(meta)
    return obj


@pytest.fixture
def gvr():
    return DEPLOYMENTS


@pytest.fixture
def upstream():
    return FakeResourceClient("upstream")


@pytest.fixture
def downstream():
    return FakeResourceClient("downstream")


@pytest.fixture
def sync_config():
    return SyncConfig(
        target="clusterA",
        resources=["deployments.v1.apps"],
        upstream_namespaces=[UPSTREAM_NS],
        downstream_namespace=DOWNSTREAM_NS,
        workers=2,
        max_retries=2,
    )


@pytest.fixture
def stop():
    event = threading.Event()
    yield event
    event.set()
