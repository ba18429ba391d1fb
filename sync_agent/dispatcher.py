"""
Sync dispatcher: turns informer events into work items.

One dispatcher per direction. It registers add / update / delete callbacks
on an informer for every synced resource type and enqueues
``WorkItem(gvr, key)`` for objects that are in a source namespace and pass
the eligibility filter. The controller always re-reads the latest state, so
the event payload itself is only used for routing.
"""

import logging
import threading
from typing import Callable, Iterable, List, Optional

from . import metadata
from .informer import InformerFactory
from .models import GroupVersionResource

logger = logging.getLogger("sync_agent.dispatcher")

Eligibility = Callable[[dict, str], bool]


def annotation_eligibility(obj: dict, target: str) -> bool:
    """
    Spec direction: sync annotation for the target, or the wildcard.
    Objects still holding this target's finalizer pass too, so losing the
    annotation reaches the spec syncer and the downstream copy is cleaned up.
    """
    if metadata.is_sync_eligible(obj, target):
        return True
    return metadata.has_finalizer(obj, metadata.finalizer_name(target))


def synced_label_eligibility(obj: dict, target: str) -> bool:
    """Status direction: the object was written here by this target's spec syncer."""
    return metadata.get_label(obj, metadata.SYNCED_TARGET_LABEL) == target


class SyncDispatcher:

    def __init__(self, name: str, target: str, factory: InformerFactory,
                 resources: Iterable[GroupVersionResource], namespaces: Iterable[str],
                 enqueue: Callable[[GroupVersionResource, dict], None],
                 eligible: Eligibility = annotation_eligibility,
                 sync_timeout: Optional[float] = None):
        self.name = name
        self.target = target
        self.factory = factory
        self.resources: List[GroupVersionResource] = list(resources)
        self.namespaces = set(namespaces)
        self.enqueue = enqueue
        self.eligible = eligible
        self.sync_timeout = sync_timeout

    def handle(self, gvr: GroupVersionResource, obj) -> bool:
        """Route one event object. Returns True when it was enqueued."""
        try:
            metadata.get_metadata(obj)
        except TypeError as e:
            logger.error(f"[{self.name}] [{gvr}] dropping event: {e}")
            return False

        namespace = metadata.get_namespace(obj)
        if namespace not in self.namespaces:
            return False
        if not self.eligible(obj, self.target):
            logger.debug(
                f"[{self.name}] [{gvr}] {namespace}/{metadata.get_name(obj)} not eligible for {self.target}"
            )
            return False

        self.enqueue(gvr, obj)
        return True

    def register(self) -> None:
        for gvr in self.resources:
            informer = self.factory.for_resource(gvr)
            informer.add_event_handler(
                on_add=lambda obj, gvr=gvr: self.handle(gvr, obj),
                on_update=lambda old, new, gvr=gvr: self.handle(gvr, new),
                on_delete=lambda obj, gvr=gvr: self.handle(gvr, obj),
            )
            logger.info(f"[{self.name}] watching {gvr}")

    def run(self, stop: threading.Event) -> None:
        self.register()
        self.factory.start(stop)

        synced = self.factory.wait_for_cache_sync(stop, self.sync_timeout)
        pending = [str(gvr) for gvr, ok in synced.items() if not ok]
        if not pending:
            logger.info(f"[{self.name}] caches synced for {len(synced)} resource types")
        elif not stop.is_set():
            logger.warning(f"[{self.name}] caches not synced: {', '.join(pending)}")

        stop.wait()
        self.factory.shutdown(self.sync_timeout)
        logger.info(f"[{self.name}] stopped")
