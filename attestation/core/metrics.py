"""Prometheus metric inventory.

All metrics live here so there is one place to see everything the
service measures.  Modules import the metric they own and increment it at
the point of action; /metrics exposes the default registry.

HTTP metrics are populated by MetricsMiddleware.  Attestation metrics are
populated by the connectors, so they count operations issued through the
CLI as well as through the REST API.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics
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
    # Ledger-backed mints and transfers are far slower than reads, hence
    # the long tail.
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Attestation metrics
# ---------------------------------------------------------------------------

ATTESTATION_OPERATIONS = Counter(
    "attestation_operations_total",
    "Attestation lifecycle operations by outcome",
    ["operation", "namespace", "result"],  # result: success|failure
)

ATTESTATION_VERIFICATIONS = Counter(
    "attestation_verifications_total",
    "Attestation verification outcomes",
    ["namespace", "result"],  # result: verified|noData|proofFailed|revoked
)
