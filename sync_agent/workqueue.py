"""
Rate-limited, deduplicating work queue.

Semantics:
  - An item added while already queued collapses into the pending entry.
  - An item is handed to at most one worker at a time. Adds that arrive
    while it is being processed mark it dirty; it is queued again on done().
  - Delayed adds keep the earliest requested deadline per item.
  - After shut_down() no item is handed out and adds are ignored.

Reconcilers must therefore always re-read the latest state: several events
for one key may coalesce into a single pass.
"""

import heapq
import itertools
import logging
import threading
import time
from collections import deque
from typing import Hashable, Optional

from .metrics import QUEUE_ADDS_TOTAL, QUEUE_DEPTH, QUEUE_RETRIES_TOTAL

logger = logging.getLogger("sync_agent.workqueue")


# ---------------------------------------------------------------------------
# Rate limiters
# ---------------------------------------------------------------------------

class ItemExponentialFailureRateLimiter:
    """base_delay * 2^failures per item, capped at max_delay."""

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: dict = {}
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            exp = self._failures.get(item, 0)
            self._failures[item] = exp + 1
        # 2^64 * base is far past any sane cap
        if exp > 64:
            return self.max_delay
        return min(self.base_delay * (2 ** exp), self.max_delay)

    def num_requeues(self, item: Hashable) -> int:
        with self._lock:
            return self._failures.get(item, 0)

    def forget(self, item: Hashable) -> None:
        with self._lock:
            self._failures.pop(item, None)


class BucketRateLimiter:
    """Overall token bucket shared by all items."""

    def __init__(self, qps: float = 10.0, burst: int = 100):
        self.qps = qps
        self.burst = burst
        self._tokens = float(burst)
        self._last = time.monotonic()
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            now = time.monotonic()
            self._tokens = min(float(self.burst), self._tokens + (now - self._last) * self.qps)
            self._last = now
            self._tokens -= 1
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.qps

    def num_requeues(self, item: Hashable) -> int:
        return 0

    def forget(self, item: Hashable) -> None:
        pass


class MaxOfRateLimiter:
    """Delay is the worst case of all wrapped limiters."""

    def __init__(self, *limiters):
        self.limiters = limiters

    def when(self, item: Hashable) -> float:
        return max(limiter.when(item) for limiter in self.limiters)

    def num_requeues(self, item: Hashable) -> int:
        return max(limiter.num_requeues(item) for limiter in self.limiters)

    def forget(self, item: Hashable) -> None:
        for limiter in self.limiters:
            limiter.forget(item)


def default_controller_rate_limiter() -> MaxOfRateLimiter:
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(0.005, 1000.0),
        BucketRateLimiter(qps=10.0, burst=100),
    )


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------

class RateLimitingQueue:

    def __init__(self, name: str, rate_limiter=None):
        self.name = name
        self.rate_limiter = rate_limiter or default_controller_rate_limiter()

        self._lock = threading.Lock()
        self._ready = threading.Condition(self._lock)
        self._delay_changed = threading.Condition(self._lock)
        self._drained = threading.Condition(self._lock)

        self._queue: deque = deque()
        self._dirty: set = set()
        self._processing: set = set()
        self._shutting_down = False

        # Delayed adds: item -> earliest deadline, plus a heap of (deadline, seq, item).
        # Heap entries whose deadline no longer matches _waiting are stale.
        self._waiting: dict = {}
        self._heap: list = []
        self._seq = itertools.count()

        self._delay_thread = threading.Thread(
            target=self._waiting_loop, name=f"{name}-delay", daemon=True
        )
        self._delay_thread.start()

    # --- basic queue ---

    def add(self, item: Hashable) -> None:
        with self._lock:
            self._add_locked(item)

    def _add_locked(self, item: Hashable) -> None:
        if self._shutting_down or item in self._dirty:
            return
        self._dirty.add(item)
        QUEUE_ADDS_TOTAL.labels(queue=self.name).inc()
        if item in self._processing:
            return
        self._queue.append(item)
        QUEUE_DEPTH.labels(queue=self.name).set(len(self._queue))
        self._ready.notify()

    def get(self) -> tuple[Optional[Hashable], bool]:
        """Block until an item is available. Returns (item, shutdown)."""
        with self._lock:
            while not self._queue and not self._shutting_down:
                self._ready.wait()
            if self._shutting_down:
                return None, True
            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            QUEUE_DEPTH.labels(queue=self.name).set(len(self._queue))
            return item, False

    def done(self, item: Hashable) -> None:
        with self._lock:
            self._processing.discard(item)
            if item in self._dirty and not self._shutting_down:
                self._queue.append(item)
                QUEUE_DEPTH.labels(queue=self.name).set(len(self._queue))
                self._ready.notify()
            if not self._processing:
                self._drained.notify_all()

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        with self._lock:
            return self._shutting_down

    def shut_down(self) -> None:
        with self._lock:
            self._shutting_down = True
            self._ready.notify_all()
            self._delay_changed.notify_all()

    def shut_down_with_drain(self, timeout: Optional[float] = None) -> bool:
        """Shut down, then wait for in-flight items. Returns False on timeout."""
        self.shut_down()
        with self._lock:
            return self._drained.wait_for(lambda: not self._processing, timeout)

    # --- delaying ---

    def add_after(self, item: Hashable, delay: float) -> None:
        if delay <= 0:
            self.add(item)
            return
        with self._lock:
            if self._shutting_down:
                return
            deadline = time.monotonic() + delay
            existing = self._waiting.get(item)
            if existing is not None and existing <= deadline:
                return
            self._waiting[item] = deadline
            heapq.heappush(self._heap, (deadline, next(self._seq), item))
            self._delay_changed.notify()

    def _waiting_loop(self) -> None:
        with self._lock:
            while not self._shutting_down:
                now = time.monotonic()
                while self._heap and self._heap[0][0] <= now:
                    deadline, _, item = heapq.heappop(self._heap)
                    if self._waiting.get(item) != deadline:
                        continue
                    del self._waiting[item]
                    self._add_locked(item)
                timeout = self._heap[0][0] - now if self._heap else None
                self._delay_changed.wait(timeout)

    # --- rate limiting ---

    def add_rate_limited(self, item: Hashable) -> None:
        if self.shutting_down:
            return
        QUEUE_RETRIES_TOTAL.labels(queue=self.name).inc()
        self.add_after(item, self.rate_limiter.when(item))

    def forget(self, item: Hashable) -> None:
        self.rate_limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return self.rate_limiter.num_requeues(item)
