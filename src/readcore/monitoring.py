"""Monitoring configuration for the reading core."""
from prometheus_client import Counter, Gauge, Histogram, start_http_server

# Sync queue metrics
pending_mutations = Gauge(
    "readcore_pending_mutations",
    "Number of progress mutations waiting for server acknowledgment",
)

mutations_enqueued = Counter(
    "readcore_mutations_enqueued_total",
    "Total number of mutations queued for replay",
    ["kind"],
)

mutations_replayed = Counter(
    "readcore_mutations_replayed_total",
    "Total number of queued mutations acknowledged by the server",
    ["kind"],
)

mutations_dropped = Counter(
    "readcore_mutations_dropped_total",
    "Total number of queued mutations dropped after a non-retryable error",
    ["reason"],
)

sync_runs = Counter(
    "readcore_sync_runs_total",
    "Total number of queue drains",
    ["outcome"],
)

# Remote metrics
remote_request_duration = Histogram(
    "readcore_remote_request_duration_seconds",
    "Duration of remote progress and content requests in seconds",
    ["operation"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0],
)

# Content cache metrics
content_cache_requests = Counter(
    "readcore_content_cache_requests_total",
    "Content listing requests by how they were served",
    ["state"],
)

# Learning metrics
tier_changes = Counter(
    "readcore_tier_changes_total",
    "Difficulty tier transitions",
    ["direction"],
)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)
