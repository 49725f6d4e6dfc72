"""Prometheus metrics for outbound webhooks."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

from notify_service.infra.metrics.prometheus import DEFAULT_LATENCY_BUCKETS, REGISTRY

webhook_events_published_total = Counter(
    "webhook_events_published_total",
    "Domain events published for webhook fan-out",
    labelnames=["event_type"],
    registry=REGISTRY,
)

webhook_deliveries_total = Counter(
    "webhook_deliveries_total",
    "Webhook delivery attempts by outcome",
    labelnames=["outcome"],
    registry=REGISTRY,
)
"""
Labels:
    outcome: delivered, retry_scheduled, failed, skipped
"""

webhook_delivery_duration_seconds = Histogram(
    "webhook_delivery_duration_seconds",
    "Webhook HTTP call latency",
    buckets=(*DEFAULT_LATENCY_BUCKETS, 30.0, 60.0),
    registry=REGISTRY,
)

webhook_auto_disabled_total = Counter(
    "webhook_auto_disabled_total",
    "Webhooks deactivated after consecutive exhausted deliveries",
    registry=REGISTRY,
)

webhook_inflight = Gauge(
    "webhook_inflight",
    "Webhook HTTP calls currently in progress",
    registry=REGISTRY,
)
