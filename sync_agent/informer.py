"""
Informer: list-then-watch loop with a local cache, per resource type.

  1. List the resource type and replace the cache, emitting add / update /
     delete for whatever changed since the previous list.
  2. Watch from the list's resourceVersion, applying each event to the
     cache and firing handlers.
  3. On 410 Gone (compaction past our resourceVersion) re-list and resume.
  4. On 401/403 stop: RBAC problems do not heal by retrying.
  5. On any other failure back off exponentially with jitter (1s .. 30s).

Handlers run on the informer thread and must be cheap; in this engine they
only enqueue work items.
"""

import logging
import random
import threading
import time
from typing import Callable, Optional

from kubernetes import watch
from kubernetes.client import ApiException

from .metadata import meta_namespace_key
from .metrics import INFORMER_EVENTS_TOTAL, WATCH_ERRORS_TOTAL
from .models import GroupVersionResource
from .services.kubernetes_service import ResourceClient, is_gone, is_unauthorized

logger = logging.getLogger("sync_agent.informer")

MAX_BACKOFF_SECONDS = 30
WATCH_TIMEOUT_SECONDS = 60

AddHandler = Callable[[dict], None]
UpdateHandler = Callable[[dict, dict], None]
DeleteHandler = Callable[[dict], None]


class Informer:

    def __init__(self, client: ResourceClient, gvr: GroupVersionResource,
                 namespace: Optional[str] = None):
        self.client = client
        self.gvr = gvr
        self.namespace = namespace
        self._cache: dict = {}
        self._handlers: list = []
        self._lock = threading.Lock()
        self._synced = threading.Event()
        self._active_watcher: Optional[watch.Watch] = None

    # --- handlers & cache ---

    def add_event_handler(self, on_add: Optional[AddHandler] = None,
                          on_update: Optional[UpdateHandler] = None,
                          on_delete: Optional[DeleteHandler] = None) -> None:
        """Register callbacks. Objects already cached are replayed as adds."""
        with self._lock:
            self._handlers.append((on_add, on_update, on_delete))
            existing = list(self._cache.values())
        if on_add:
            for obj in existing:
                self._call(on_add, obj)

    def get(self, key: str) -> Optional[dict]:
        with self._lock:
            return self._cache.get(key)

    def list_keys(self) -> list:
        with self._lock:
            return list(self._cache)

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def wait_for_cache_sync(self, stop: threading.Event, timeout: Optional[float] = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self._synced.is_set():
            if stop.is_set():
                return False
            if deadline is not None and time.monotonic() >= deadline:
                return False
            self._synced.wait(0.1)
        return True

    def _call(self, fn: Callable, *args) -> None:
        try:
            fn(*args)
        except Exception:
            logger.exception(f"[{self.gvr}] event handler failed")

    def _fire(self, event_type: str, *args) -> None:
        INFORMER_EVENTS_TOTAL.labels(gvr=str(self.gvr), type=event_type).inc()
        index = {"ADDED": 0, "MODIFIED": 1, "DELETED": 2}[event_type]
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            fn = handler[index]
            if fn:
                self._call(fn, *args)

    # --- list & watch ---

    def _relist(self) -> str:
        items, resource_version = self.client.list(self.gvr, self.namespace)
        fresh: dict = {}
        for item in items:
            try:
                fresh[meta_namespace_key(item)] = item
            except TypeError as e:
                logger.error(f"[{self.gvr}] skipping listed object without metadata: {e}")
        with self._lock:
            previous = self._cache
            self._cache = fresh

        for key, obj in fresh.items():
            old = previous.get(key)
            if old is None:
                self._fire("ADDED", obj)
            elif _resource_version(old) != _resource_version(obj):
                self._fire("MODIFIED", old, obj)
        for key, old in previous.items():
            if key not in fresh:
                self._fire("DELETED", old)

        self._synced.set()
        logger.info(f"[{self.gvr}] listed {len(fresh)} objects at resourceVersion {resource_version}")
        return resource_version

    def _apply_event(self, event: dict, resource_version: str) -> Optional[str]:
        """Apply one watch event. Returns the new resourceVersion, or None to force a re-list."""
        event_type = event.get("type", "")
        obj = event.get("object")

        if event_type == "ERROR":
            code = obj.get("code") if isinstance(obj, dict) else None
            if code == 410:
                logger.warning(f"[{self.gvr}] watch resource version expired, re-listing")
                return None
            message = obj.get("message", "") if isinstance(obj, dict) else str(obj)
            raise ApiException(status=code, reason=message)

        if not isinstance(obj, dict):
            return resource_version
        new_version = _resource_version(obj) or resource_version
        if event_type == "BOOKMARK":
            return new_version

        try:
            key = meta_namespace_key(obj)
        except TypeError as e:
            logger.error(f"[{self.gvr}] dropping {event_type} event: {e}")
            return new_version

        with self._lock:
            old = self._cache.get(key)
            if event_type == "DELETED":
                self._cache.pop(key, None)
            else:
                self._cache[key] = obj

        if event_type == "DELETED":
            self._fire("DELETED", old or obj)
        elif old is None:
            self._fire("ADDED", obj)
        else:
            self._fire("MODIFIED", old, obj)
        return new_version

    def stop(self) -> None:
        """Interrupt an open watch stream."""
        with self._lock:
            watcher = self._active_watcher
        if watcher is not None:
            watcher.stop()

    def run(self, stop: threading.Event) -> None:
        resource_version: Optional[str] = None
        backoff = 1

        while not stop.is_set():
            watcher = watch.Watch()
            with self._lock:
                self._active_watcher = watcher
            try:
                if resource_version is None:
                    resource_version = self._relist()
                stream = self.client.watch(
                    self.gvr,
                    namespace=self.namespace,
                    resource_version=resource_version,
                    timeout_seconds=WATCH_TIMEOUT_SECONDS,
                    watcher=watcher,
                )
                for event in stream:
                    if stop.is_set():
                        break
                    resource_version = self._apply_event(event, resource_version)
                    if resource_version is None:
                        break
                backoff = 1
            except ApiException as e:
                if is_gone(e):
                    logger.warning(f"[{self.gvr}] watch resource version expired, re-listing")
                    resource_version = None
                    continue
                if is_unauthorized(e):
                    logger.error(
                        f"[{self.gvr}] access denied (status={e.status}). "
                        f"Check RBAC for the sync agent service account."
                    )
                    WATCH_ERRORS_TOTAL.labels(gvr=str(self.gvr)).inc()
                    return
                logger.error(f"[{self.gvr}] list/watch failed: {e}")
                WATCH_ERRORS_TOTAL.labels(gvr=str(self.gvr)).inc()
                backoff = self._backoff(stop, backoff)
            except Exception:
                logger.exception(f"[{self.gvr}] unexpected list/watch error")
                WATCH_ERRORS_TOTAL.labels(gvr=str(self.gvr)).inc()
                backoff = self._backoff(stop, backoff)
            finally:
                watcher.stop()
                with self._lock:
                    if self._active_watcher is watcher:
                        self._active_watcher = None

        logger.info(f"[{self.gvr}] informer stopped")

    @staticmethod
    def _backoff(stop: threading.Event, backoff: int) -> int:
        stop.wait(timeout=backoff * (0.5 + random.random()))
        return min(backoff * 2, MAX_BACKOFF_SECONDS)


def _resource_version(obj: dict) -> str:
    return (obj.get("metadata") or {}).get("resourceVersion", "")


class InformerFactory:
    """Shares one informer per resource type against one cluster."""

    def __init__(self, client: ResourceClient, namespace: Optional[str] = None):
        self.client = client
        self.namespace = namespace
        self._informers: dict = {}
        self._threads: dict = {}
        self._lock = threading.Lock()

    def for_resource(self, gvr: GroupVersionResource) -> Informer:
        with self._lock:
            informer = self._informers.get(gvr)
            if informer is None:
                informer = Informer(self.client, gvr, self.namespace)
                self._informers[gvr] = informer
            return informer

    def start(self, stop: threading.Event) -> None:
        """Start every informer not yet running, each on its own thread."""
        with self._lock:
            for gvr, informer in self._informers.items():
                if gvr in self._threads:
                    continue
                thread = threading.Thread(
                    target=informer.run, args=(stop,), name=f"informer-{gvr}", daemon=True
                )
                thread.start()
                self._threads[gvr] = thread

    def wait_for_cache_sync(self, stop: threading.Event, timeout: Optional[float] = None) -> dict:
        with self._lock:
            informers = dict(self._informers)
        return {gvr: informer.wait_for_cache_sync(stop, timeout) for gvr, informer in informers.items()}

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Interrupt open watches and join informer threads. The stop event must already be set."""
        with self._lock:
            informers = list(self._informers.values())
            threads = list(self._threads.values())
        for informer in informers:
            informer.stop()
        for thread in threads:
            thread.join(timeout)
