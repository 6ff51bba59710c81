"""Prometheus metrics for request authentication."""

import os

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
    multiprocess,
)
from starlette.requests import Request
from starlette.responses import Response

# === Counters ===

AUTH_DECISIONS_TOTAL = Counter(
    "ncsa_hmac_auth_decisions_total",
    "Total HMAC authentication decisions",
    ["outcome"],  # outcome: authenticated, unknown_identity, signature_mismatch, malformed, ...
)

CLIENT_REQUESTS_TOTAL = Counter(
    "ncsa_hmac_client_requests_total",
    "Total signed outbound requests",
    ["method", "status"],
)

# === Histograms ===

VERIFY_LATENCY = Histogram(
    "ncsa_hmac_verify_latency_seconds",
    "Signature verification latency in seconds, including key resolution",
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0],
)


# === Helper Functions ===


def record_auth_decision(outcome: str, latency: float | None = None) -> None:
    """Record an authentication decision."""
    AUTH_DECISIONS_TOTAL.labels(outcome=outcome).inc()
    if latency is not None:
        VERIFY_LATENCY.observe(latency)


def record_client_request(method: str, status: int) -> None:
    """Record a signed outbound request."""
    CLIENT_REQUESTS_TOTAL.labels(method=method, status=str(status)).inc()


# === HTTP Endpoint ===


async def metrics_endpoint(_request: Request) -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    multiproc_dir = os.environ.get("PROMETHEUS_MULTIPROC_DIR")
    if multiproc_dir:
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)  # type: ignore[no-untyped-call]
        return Response(
            generate_latest(registry),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    return Response(
        generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
