"""
Status Syncer: mirrors downstream ``status`` back to the upstream object.

Downstream has no write access to the upstream status subresource, so the
observed status travels as a JSON annotation keyed by target. Several
targets write to the same upstream object; each owns exactly one key and
writes go through optimistic concurrency, so a conflict is re-read and
merged on the next attempt instead of clobbering another target's key.
"""

import json
from typing import Optional

from . import metadata
from .controller import QueueController
from .models import SyncConfig, WorkItem
from .services.kubernetes_service import ResourceClient, is_not_found

CONTROLLER_NAME = "status-syncer"


def encode_status(status) -> str:
    """Stable JSON for a status subtree."""
    return json.dumps(status, sort_keys=True, separators=(",", ":"))


class StatusSyncer(QueueController):

    def __init__(self, config: SyncConfig, upstream: ResourceClient, downstream: ResourceClient,
                 shutdown_timeout: Optional[float] = 30):
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

    def process(self, item: WorkItem) -> Optional[float]:
        try:
            namespace, name = metadata.split_meta_namespace_key(item.key)
        except ValueError as e:
            self.logger.error(f"[{item.gvr}] invalid key: {e}")
            return None

        try:
            downstream_obj = self.downstream.get(item.gvr, namespace, name)
        except Exception as e:
            if is_not_found(e):
                return None
            raise

        # the spec syncer already released this copy upstream
        if metadata.is_being_deleted(downstream_obj):
            return None

        status, found = metadata.nested_field(downstream_obj, "status")
        if not found or status is None:
            return None
        encoded = encode_status(status)

        upstream_namespace = metadata.get_label(downstream_obj, metadata.UPSTREAM_NAMESPACE_LABEL)
        if upstream_namespace not in self.config.upstream_namespaces:
            self.logger.warning(
                f"[{item.gvr}] {item.key}: no valid {metadata.UPSTREAM_NAMESPACE_LABEL} label "
                f"({upstream_namespace!r}), status not synced"
            )
            return None

        try:
            upstream_obj = self.upstream.get(item.gvr, upstream_namespace, name)
        except Exception as e:
            if is_not_found(e):
                self.logger.debug(f"[{item.gvr}] {upstream_namespace}/{name}: no upstream object for status")
                return None
            raise

        key = metadata.status_annotation(self.target)
        if metadata.has_annotation(upstream_obj, key) and metadata.get_annotation(upstream_obj, key) == encoded:
            return None

        updated = metadata.deep_copy(upstream_obj)
        metadata.add_annotation(updated, key, encoded)
        self.upstream.update(item.gvr, upstream_namespace, updated)
        self.logger.info(f"[{item.gvr}] {upstream_namespace}/{name}: status updated for {self.target}")
        return None
