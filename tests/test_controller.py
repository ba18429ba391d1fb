import threading
import time

import pytest
from kubernetes.client import ApiException

from sync_agent.controller import QueueController
from sync_agent.errors import MalformedAnnotationError
from sync_agent.models import WorkItem
from sync_agent.workqueue import ItemExponentialFailureRateLimiter, RateLimitingQueue

from conftest import DEPLOYMENTS, make_object

ITEM = WorkItem(gvr=DEPLOYMENTS, key="mctc-tenant/A")


class ScriptedController(QueueController):
    """Returns or raises the next scripted outcome on every pass."""

    def __init__(self, outcomes, max_retries=2):
        super().__init__(
            "scripted",
            workers=1,
            max_retries=max_retries,
            queue=RateLimitingQueue("scripted", ItemExponentialFailureRateLimiter(0.001, 0.01)),
        )
        self.outcomes = list(outcomes)
        self.seen = []

    def process(self, item):
        self.seen.append(item)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def run_one(controller):
    assert controller.process_next_work_item()


@pytest.fixture
def controller():
    c = ScriptedController([])
    yield c
    c.queue.shut_down()


def test_add_to_queue_builds_work_item(controller):
    controller.add_to_queue(DEPLOYMENTS, make_object("A"))
    controller.add_to_queue(DEPLOYMENTS, {"spec": {}})
    assert len(controller.queue) == 1
    item, _ = controller.queue.get()
    assert item == ITEM


def test_success_forgets_backoff():
    c = ScriptedController([None])
    c.queue.add(ITEM)
    c.queue.rate_limiter.when(ITEM)
    run_one(c)
    assert c.queue.num_requeues(ITEM) == 0
    assert len(c.queue) == 0
    c.queue.shut_down()


def test_transient_error_is_retried_then_dropped():
    c = ScriptedController([ApiException(status=500)] * 5, max_retries=2)
    c.queue.add(ITEM)

    for _ in range(3):
        run_one(c)

    assert len(c.seen) == 3
    assert c.queue.num_requeues(ITEM) == 0
    time.sleep(0.05)
    assert len(c.queue) == 0
    c.queue.shut_down()


def test_permanent_error_is_not_retried():
    c = ScriptedController([MalformedAnnotationError("mctc-syncer-patch/clusterA", "bad")])
    c.queue.add(ITEM)
    run_one(c)
    time.sleep(0.05)
    assert len(c.queue) == 0
    assert c.queue.num_requeues(ITEM) == 0
    c.queue.shut_down()


def test_requeue_after_schedules_item():
    c = ScriptedController([0.05, None])
    c.queue.add(ITEM)
    run_one(c)
    run_one(c)
    assert len(c.seen) == 2
    c.queue.shut_down()


def test_run_processes_until_stopped():
    c = ScriptedController([None, None])
    stop = threading.Event()
    thread = threading.Thread(target=c.run, args=(stop,), daemon=True)
    thread.start()

    c.add_to_queue(DEPLOYMENTS, make_object("A"))
    c.add_to_queue(DEPLOYMENTS, make_object("B"))
    deadline = time.monotonic() + 5
    while len(c.seen) < 2 and time.monotonic() < deadline:
        time.sleep(0.01)

    stop.set()
    thread.join(5)
    assert not thread.is_alive()
    assert sorted(i.key for i in c.seen) == ["mctc-tenant/A", "mctc-tenant/B"]
    assert c.queue.shutting_down
