"""Prometheus metric inventory.

Every metric the service exposes is declared here; the modules that own
the behavior import the metric and increment/observe it at the point of
action.  Counters are monotonically increasing, so tests assert on deltas.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Certificate generation
# ---------------------------------------------------------------------------

GENERATION_REQUESTS = Counter(
    "certificate_generation_requests_total",
    "Generation requests by outcome",
    # issued|already_issued|not_completed|not_entitled|failed|timeout|error|cached
    ["outcome"],
)

GENERATION_COALESCED = Counter(
    "certificate_generation_coalesced_total",
    "Requests that attached to an in-flight generation instead of starting one",
)

GENERATIONS_IN_FLIGHT = Gauge(
    "certificate_generations_in_flight",
    "Generations currently IN_FLIGHT in the coordinator cache",
)

RENDER_DURATION = Histogram(
    "certificate_render_duration_seconds",
    "Time spent rendering one certificate PDF",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)

DELIVERY_FAILURES = Counter(
    "certificate_delivery_failures_total",
    "Failed delivery steps after a credential was persisted",
    ["step"],  # storage|notification
)

# ---------------------------------------------------------------------------
# Shared infrastructure
# ---------------------------------------------------------------------------

RATE_LIMIT_HITS = Counter(
    "rate_limit_hits_total",
    "Requests rejected by rate limiting (429s)",
    ["key_type"],  # "user" or "ip"
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Verification cache lookups by result",
    ["operation"],  # "hit" or "miss"
)
