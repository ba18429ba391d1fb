"""
Queue controller: worker pool shared by the spec and status syncers.

Each controller owns one rate-limited queue and N worker threads. A worker
takes one WorkItem, calls process(), and decides what happens next:

  success              -> forget (reset backoff)
  requeue after N sec  -> add_after
  PermanentSyncError   -> forget + error log (a new event re-enqueues it)
  anything else        -> add_rate_limited, until max_retries, then drop
"""

import logging
import threading
from typing import Optional

from .errors import MalformedAnnotationError, PermanentSyncError
from .metadata import meta_namespace_key
from .metrics import DROPPED_TOTAL, MALFORMED_ANNOTATIONS_TOTAL, RECONCILE_TOTAL
from .models import GroupVersionResource, WorkItem
from .workqueue import RateLimitingQueue

logger = logging.getLogger("sync_agent.controller")


class QueueController:

    def __init__(self, name: str, workers: int = 8, max_retries: int = 5,
                 queue: Optional[RateLimitingQueue] = None,
                 shutdown_timeout: Optional[float] = 30):
        self.name = name
        self.workers = workers
        self.max_retries = max_retries
        self.shutdown_timeout = shutdown_timeout
        self.queue = queue or RateLimitingQueue(name)
        self.logger = logging.getLogger(f"sync_agent.{name}")

    def add_to_queue(self, gvr: GroupVersionResource, obj: dict) -> None:
        try:
            key = meta_namespace_key(obj)
        except TypeError as e:
            self.logger.error(f"[{gvr}] cannot derive key for queued object: {e}")
            return
        self.queue.add(WorkItem(gvr=gvr, key=key))

    def process(self, item: WorkItem) -> Optional[float]:
        """Reconcile one item. Return seconds to requeue after, or None when done."""
        raise NotImplementedError

    def process_next_work_item(self) -> bool:
        item, shutdown = self.queue.get()
        if shutdown:
            return False
        try:
            self._handle(item)
        finally:
            # always release the key so concurrent re-adds are picked up
            self.queue.done(item)
        return True

    def _handle(self, item: WorkItem) -> None:
        try:
            requeue_after = self.process(item)
        except PermanentSyncError as e:
            self.queue.forget(item)
            RECONCILE_TOTAL.labels(controller=self.name, result="permanent_error").inc()
            DROPPED_TOTAL.labels(controller=self.name, reason="permanent").inc()
            if isinstance(e, MalformedAnnotationError):
                MALFORMED_ANNOTATIONS_TOTAL.labels(controller=self.name).inc()
            self.logger.error(f"[{item.gvr}] {item.key}: not retrying: {e}")
            return
        except Exception as e:
            RECONCILE_TOTAL.labels(controller=self.name, result="error").inc()
            attempts = self.queue.num_requeues(item)
            if attempts < self.max_retries:
                self.logger.warning(
                    f"[{item.gvr}] {item.key}: sync failed (attempt {attempts + 1}/{self.max_retries + 1}): {e}"
                )
                self.queue.add_rate_limited(item)
                return
            self.queue.forget(item)
            DROPPED_TOTAL.labels(controller=self.name, reason="max_retries").inc()
            self.logger.error(
                f"[{item.gvr}] {item.key}: dropping after {attempts + 1} attempts: {e}",
                exc_info=True,
            )
            return

        if requeue_after is not None:
            RECONCILE_TOTAL.labels(controller=self.name, result="requeue").inc()
            self.queue.add_after(item, requeue_after)
            return
        RECONCILE_TOTAL.labels(controller=self.name, result="success").inc()
        self.queue.forget(item)

    def _worker(self) -> None:
        while self.process_next_work_item():
            pass

    def run(self, stop: threading.Event) -> None:
        """Run the worker pool until ``stop`` is set, then drain in-flight items."""
        threads = [
            threading.Thread(target=self._worker, name=f"{self.name}-worker-{i}", daemon=True)
            for i in range(self.workers)
        ]
        for t in threads:
            t.start()
        self.logger.info(f"{self.name} started with {self.workers} workers")

        stop.wait()

        if not self.queue.shut_down_with_drain(self.shutdown_timeout):
            self.logger.warning(f"{self.name}: in-flight items did not finish within {self.shutdown_timeout}s")
        for t in threads:
            t.join(self.shutdown_timeout)
        self.logger.info(f"{self.name} stopped")
