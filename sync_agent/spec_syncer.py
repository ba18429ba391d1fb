"""
Spec Syncer: replicates upstream objects into the downstream namespace.

Every pass re-reads the upstream object and classifies it into one of four
states. Each state has exactly one handler:

  UPSTREAM_MISSING   upstream gone          -> delete downstream copy
  NO_FINALIZER       finalizer not yet set  -> add finalizer, then as NORMAL
  DELETION_INTENDED  target should drop it  -> delete downstream copy,
                                               then release the finalizer
  NORMAL             everything in place    -> server-side apply downstream

Deletion is finalizer-gated: the upstream object cannot disappear while a
downstream copy may still exist, and the finalizer is released only after
the downstream delete succeeded.
"""

import enum
from types import MappingProxyType
from typing import Callable, List, Optional

from . import metadata
from .controller import QueueController
from .models import NAMESPACES_GVR, GroupVersionResource, SyncConfig, WorkItem
from .mutators import Mutator, MutatorConfig, run_mutators
from .services.kubernetes_service import ResourceClient, is_already_exists, is_not_found

CONTROLLER_NAME = "spec-syncer"
FIELD_MANAGER = "syncer"


class SyncState(str, enum.Enum):
    UPSTREAM_MISSING = "UpstreamMissing"
    NO_FINALIZER = "UpstreamPresentNoFinalizer"
    DELETION_INTENDED = "UpstreamPresentDeletionIntended"
    NORMAL = "UpstreamPresentNormal"


def is_deletion_intended(upstream: dict, target: str) -> bool:
    """
    The target should drop its copy: explicit deletion-intent annotation,
    upstream deletion in progress, or the object is no longer selected
    for this target.
    """
    if metadata.get_annotation(upstream, metadata.deletion_annotation(target)):
        return True
    if metadata.is_being_deleted(upstream):
        return True
    return not metadata.is_sync_eligible(upstream, target)


def is_externally_claimed(upstream: dict, target: str) -> bool:
    """An external actor still needs the downstream copy (annotation keyed like the finalizer)."""
    return bool(metadata.get_annotation(upstream, metadata.finalizer_name(target)))


def classify(upstream: Optional[dict], target: str) -> SyncState:
    if upstream is None:
        return SyncState.UPSTREAM_MISSING

    has_finalizer = metadata.has_finalizer(upstream, metadata.finalizer_name(target))
    deleting = is_deletion_intended(upstream, target)
    claimed = is_externally_claimed(upstream, target)

    if not has_finalizer and (not deleting or claimed):
        # finalizers cannot be added once deletion has started
        if metadata.is_being_deleted(upstream):
            return SyncState.NORMAL
        return SyncState.NO_FINALIZER
    if deleting and not claimed:
        return SyncState.DELETION_INTENDED
    return SyncState.NORMAL


class SpecSyncer(QueueController):

    def __init__(self, config: SyncConfig, upstream: ResourceClient, downstream: ResourceClient,
                 mutators: List[Mutator], shutdown_timeout: Optional[float] = 30):
        super().__init__(
            CONTROLLER_NAME,
            workers=config.workers,
            max_retries=config.max_retries,
            shutdown_timeout=shutdown_timeout,
        )
        self.config = config
        self.target = config.target
        self.upstream = upstream
        self.downstream = downstream
        self.mutators = list(mutators)
        self._handlers: "MappingProxyType[SyncState, Callable]" = MappingProxyType({
            SyncState.UPSTREAM_MISSING: self._handle_upstream_missing,
            SyncState.NO_FINALIZER: self._handle_no_finalizer,
            SyncState.DELETION_INTENDED: self._handle_deletion_intended,
            SyncState.NORMAL: self._handle_normal,
        })

    # ---------------------------------------------------------------------------
    # Reconcile
    # ---------------------------------------------------------------------------

    def process(self, item: WorkItem) -> Optional[float]:
        try:
            namespace, name = metadata.split_meta_namespace_key(item.key)
        except ValueError as e:
            self.logger.error(f"[{item.gvr}] invalid key: {e}")
            return None

        try:
            upstream = self.upstream.get(item.gvr, namespace, name)
        except Exception as e:
            if not is_not_found(e):
                raise
            upstream = None

        state = classify(upstream, self.target)
        self.logger.debug(f"[{item.gvr}] {item.key}: {state.value}")
        self._handlers[state](item.gvr, name, upstream)
        return None

    def _handle_upstream_missing(self, gvr: GroupVersionResource, name: str, upstream: None) -> None:
        self.logger.info(f"[{gvr}] {name}: upstream object gone, deleting downstream copy")
        self._delete_downstream(gvr, name)

    def _handle_no_finalizer(self, gvr: GroupVersionResource, name: str, upstream: dict) -> None:
        desired = self._render(upstream)

        updated = metadata.deep_copy(upstream)
        metadata.add_finalizer(updated, metadata.finalizer_name(self.target))
        self.upstream.update(gvr, metadata.get_namespace(upstream), updated)
        self.logger.info(f"[{gvr}] {name}: added finalizer {metadata.finalizer_name(self.target)}")

        self._apply(gvr, desired)

    def _handle_deletion_intended(self, gvr: GroupVersionResource, name: str, upstream: dict) -> None:
        self.logger.info(f"[{gvr}] {name}: deletion intended for {self.target}, deleting downstream copy")
        self._delete_downstream(gvr, name)
        self._release_finalizer(gvr, upstream)

    def _handle_normal(self, gvr: GroupVersionResource, name: str, upstream: dict) -> None:
        self._apply(gvr, self._render(upstream))

    # ---------------------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------------------

    def _render(self, upstream: dict) -> dict:
        """Downstream document for ``upstream``. Mutator failures raise before any write."""
        name = metadata.get_name(upstream)
        source_namespace = metadata.get_namespace(upstream)

        # mutators see the object as the control plane stores it
        obj = metadata.deep_copy(upstream)
        run_mutators(self.mutators, MutatorConfig(target=self.target, logger=self.logger), obj)
        metadata.strip_control_metadata(obj, namespace=self.config.downstream_namespace)

        obj["metadata"]["name"] = name
        metadata.add_label(obj, metadata.SYNCED_TARGET_LABEL, self.target)
        metadata.add_label(obj, metadata.UPSTREAM_NAMESPACE_LABEL, source_namespace)
        return obj

    def _apply(self, gvr: GroupVersionResource, desired: dict) -> None:
        self._ensure_downstream_namespace()
        self.downstream.apply(
            gvr, self.config.downstream_namespace, desired, field_manager=FIELD_MANAGER, force=True
        )
        self.logger.info(
            f"[{gvr}] applied {self.config.downstream_namespace}/{metadata.get_name(desired)}"
        )

    def _ensure_downstream_namespace(self) -> None:
        namespace = {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {"name": self.config.downstream_namespace},
        }
        try:
            self.downstream.create(NAMESPACES_GVR, "", namespace)
            self.logger.info(f"Namespace {self.config.downstream_namespace} created")
        except Exception as e:
            if not is_already_exists(e):
                raise

    def _delete_downstream(self, gvr: GroupVersionResource, name: str) -> None:
        try:
            self.downstream.delete(gvr, self.config.downstream_namespace, name)
            self.logger.info(f"[{gvr}] deleted {self.config.downstream_namespace}/{name}")
        except Exception as e:
            if not is_not_found(e):
                raise
            self.logger.debug(f"[{gvr}] {self.config.downstream_namespace}/{name} already gone")

    def _release_finalizer(self, gvr: GroupVersionResource, upstream: dict) -> None:
        """Drop this target's finalizer and its coordination annotations in one write."""
        updated = metadata.deep_copy(upstream)
        metadata.remove_finalizer(updated, metadata.finalizer_name(self.target))
        metadata.remove_annotation(updated, metadata.status_annotation(self.target))
        metadata.remove_annotation(updated, metadata.deletion_annotation(self.target))
        if updated == upstream:
            return
        self.upstream.update(gvr, metadata.get_namespace(upstream), updated)
        self.logger.info(f"[{gvr}] {metadata.get_name(upstream)}: released finalizer for {self.target}")
