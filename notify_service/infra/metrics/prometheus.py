"""Prometheus metrics registry and infrastructure-level collectors."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Histogram

# Custom registry; feature metrics register here too and /metrics serves it
REGISTRY = CollectorRegistry()

# Covers durations from 1ms to 10s
DEFAULT_LATENCY_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
)

database_query_duration_seconds = Histogram(
    "database_query_duration_seconds",
    "Database query duration in seconds",
    ["operation"],
    buckets=DEFAULT_LATENCY_BUCKETS,
    registry=REGISTRY,
)

retry_attempts_total = Counter(
    "retry_attempts_total",
    "Retries performed by the retry decorator",
    ["function"],
    registry=REGISTRY,
)

retry_exhausted_total = Counter(
    "retry_exhausted_total",
    "Calls that exhausted every retry attempt",
    ["function"],
    registry=REGISTRY,
)

ratelimit_checks_total = Counter(
    "ratelimit_checks_total",
    "Quota admission checks by channel and outcome",
    ["channel", "result"],
    registry=REGISTRY,
)

http_requests_total = Counter(
    "http_requests_total",
    "HTTP requests by method, route template and status code",
    ["method", "endpoint", "status"],
    registry=REGISTRY,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=DEFAULT_LATENCY_BUCKETS,
    registry=REGISTRY,
)

http_errors_total = Counter(
    "http_errors_total",
    "Error responses rendered as problem details, by problem type",
    ["error_type", "status"],
    registry=REGISTRY,
)
