"""
Kubernetes service layer: generic CRUD/apply/watch over any resource type.

Design principles:
  - Schema-agnostic: objects go in and come out as plain dicts
  - One ApiClient per cluster: upstream and downstream are talked to at the
    same time, so the global default configuration is never used
  - Errors are the client's ApiException, untouched; callers branch on .status
"""

import logging
import threading
from typing import Iterator, Optional, Protocol

from kubernetes import client, config, dynamic, watch
from kubernetes.client import ApiException

from ..models import GroupVersionResource

logger = logging.getLogger("sync_agent.kubernetes_service")


def is_not_found(err: BaseException) -> bool:
    return isinstance(err, ApiException) and err.status == 404


def is_already_exists(err: BaseException) -> bool:
    return isinstance(err, ApiException) and err.status == 409


def is_gone(err: BaseException) -> bool:
    return isinstance(err, ApiException) and err.status == 410


def is_unauthorized(err: BaseException) -> bool:
    return isinstance(err, ApiException) and err.status in (401, 403)


class ResourceClient(Protocol):
    """CRUD + declarative apply + watch for one cluster, any resource type."""

    def get(self, gvr: GroupVersionResource, namespace: str, name: str) -> dict: ...

    def list(self, gvr: GroupVersionResource, namespace: Optional[str] = None) -> tuple[list, str]: ...

    def create(self, gvr: GroupVersionResource, namespace: str, body: dict) -> dict: ...

    def update(self, gvr: GroupVersionResource, namespace: str, body: dict) -> dict: ...

    def delete(self, gvr: GroupVersionResource, namespace: str, name: str) -> None: ...

    def apply(self, gvr: GroupVersionResource, namespace: str, body: dict,
              field_manager: str, force: bool = True) -> dict: ...

    def watch(self, gvr: GroupVersionResource, namespace: Optional[str] = None,
              resource_version: Optional[str] = None, timeout_seconds: Optional[int] = None,
              watcher: Optional[watch.Watch] = None) -> Iterator[dict]: ...


# ---------------------------------------------------------------------------
# Client construction
# ---------------------------------------------------------------------------

def load_api_client(kubeconfig: str = "", in_cluster: bool = False) -> client.ApiClient:
    """Build an isolated ApiClient from a kubeconfig path or the in-cluster service account."""
    if in_cluster:
        configuration = client.Configuration()
        config.load_incluster_config(client_configuration=configuration)
        return client.ApiClient(configuration)
    return config.new_client_from_config(config_file=kubeconfig or None)


class DynamicResourceClient:
    """ResourceClient backed by kubernetes.dynamic.DynamicClient."""

    def __init__(self, api_client: client.ApiClient, name: str = "cluster"):
        self.name = name
        self._dynamic = dynamic.DynamicClient(api_client)
        self._resources: dict = {}
        self._lock = threading.Lock()

    def _resource(self, gvr: GroupVersionResource):
        with self._lock:
            resource = self._resources.get(gvr)
        if resource is None:
            # discovery is cached by the dynamic client; this only saves the lookup
            resource = self._dynamic.resources.get(api_version=gvr.api_version, name=gvr.resource)
            with self._lock:
                self._resources[gvr] = resource
        return resource

    def get(self, gvr: GroupVersionResource, namespace: str, name: str) -> dict:
        obj = self._dynamic.get(self._resource(gvr), name=name, namespace=namespace or None)
        return obj.to_dict()

    def list(self, gvr: GroupVersionResource, namespace: Optional[str] = None) -> tuple[list, str]:
        result = self._dynamic.get(self._resource(gvr), namespace=namespace or None).to_dict()
        items = result.get("items") or []
        resource_version = (result.get("metadata") or {}).get("resourceVersion", "")
        return items, resource_version

    def create(self, gvr: GroupVersionResource, namespace: str, body: dict) -> dict:
        obj = self._dynamic.create(self._resource(gvr), body=body, namespace=namespace or None)
        return obj.to_dict()

    def update(self, gvr: GroupVersionResource, namespace: str, body: dict) -> dict:
        obj = self._dynamic.replace(
            self._resource(gvr),
            body=body,
            name=body["metadata"]["name"],
            namespace=namespace or None,
        )
        return obj.to_dict()

    def delete(self, gvr: GroupVersionResource, namespace: str, name: str) -> None:
        self._dynamic.delete(self._resource(gvr), name=name, namespace=namespace or None)

    def apply(self, gvr: GroupVersionResource, namespace: str, body: dict,
              field_manager: str, force: bool = True) -> dict:
        obj = self._dynamic.server_side_apply(
            self._resource(gvr),
            body=body,
            name=body["metadata"]["name"],
            namespace=namespace or None,
            field_manager=field_manager,
            force_conflicts=force,
        )
        return obj.to_dict()

    def watch(self, gvr: GroupVersionResource, namespace: Optional[str] = None,
              resource_version: Optional[str] = None, timeout_seconds: Optional[int] = None,
              watcher: Optional[watch.Watch] = None) -> Iterator[dict]:
        """Yield ``{"type": ..., "object": dict}`` events."""
        stream = self._dynamic.watch(
            self._resource(gvr),
            namespace=namespace or None,
            resource_version=resource_version or None,
            timeout=timeout_seconds,
            watcher=watcher,
        )
        for event in stream:
            raw = event.get("raw_object")
            if raw is None and event.get("object") is not None:
                raw = event["object"].to_dict()
            yield {"type": event.get("type", ""), "object": raw}
