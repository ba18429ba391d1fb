"""
Prometheus metrics for the sync engine.

Exposed by the host process via prometheus_client.start_http_server.
"""
from prometheus_client import Counter, Gauge

RECONCILE_TOTAL = Counter(
    "sync_agent_reconcile_total",
    "Work items processed, by outcome",
    ["controller", "result"],
)
DROPPED_TOTAL = Counter(
    "sync_agent_dropped_total",
    "Work items given up on",
    ["controller", "reason"],
)
MALFORMED_ANNOTATIONS_TOTAL = Counter(
    "sync_agent_malformed_annotations_total",
    "Upstream objects carrying a control annotation that cannot be applied",
    ["controller"],
)
QUEUE_DEPTH = Gauge(
    "sync_agent_queue_depth",
    "Items waiting in a work queue",
    ["queue"],
)
QUEUE_ADDS_TOTAL = Counter(
    "sync_agent_queue_adds_total",
    "Items added to a work queue",
    ["queue"],
)
QUEUE_RETRIES_TOTAL = Counter(
    "sync_agent_queue_retries_total",
    "Rate limited re-adds to a work queue",
    ["queue"],
)
INFORMER_EVENTS_TOTAL = Counter(
    "sync_agent_informer_events_total",
    "Watch events delivered to informer handlers",
    ["gvr", "type"],
)
WATCH_ERRORS_TOTAL = Counter(
    "sync_agent_watch_errors_total",
    "List/watch failures per resource type",
    ["gvr"],
)
