"""Prometheus metrics for the notification dispatch path.

Usage:
    from notify_service.features.notifications.metrics import notification_submitted_total

    notification_submitted_total.labels(channel="sms", outcome="queued").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

from notify_service.infra.metrics.prometheus import DEFAULT_LATENCY_BUCKETS, REGISTRY

# =============================================================================
# Submission
# =============================================================================

notification_submitted_total = Counter(
    "notification_submitted_total",
    "Notification requests accepted at submission",
    labelnames=["channel", "outcome"],
    registry=REGISTRY,
)
"""
Labels:
    channel: email, sms, push, in_app, whatsapp, webhook
    outcome: queued, deferred, suppressed, deduplicated, dead, failed
"""

notification_rejected_total = Counter(
    "notification_rejected_total",
    "Notification requests rejected synchronously",
    labelnames=["reason"],
    registry=REGISTRY,
)

# =============================================================================
# Dispatch
# =============================================================================

notification_dispatch_total = Counter(
    "notification_dispatch_total",
    "Channel sender invocations by outcome",
    labelnames=["channel", "outcome"],
    registry=REGISTRY,
)
"""
Labels:
    outcome: delivered, transient_failure, permanent_failure
"""

notification_dispatch_duration_seconds = Histogram(
    "notification_dispatch_duration_seconds",
    "Channel sender latency",
    labelnames=["channel"],
    buckets=(*DEFAULT_LATENCY_BUCKETS, 30.0),
    registry=REGISTRY,
)

notification_retries_scheduled_total = Counter(
    "notification_retries_scheduled_total",
    "Transient failures sent back to the queue",
    labelnames=["channel"],
    registry=REGISTRY,
)

notification_dead_total = Counter(
    "notification_dead_total",
    "Entries parked as dead",
    labelnames=["channel", "reason"],
    registry=REGISTRY,
)

notification_deferred_total = Counter(
    "notification_deferred_total",
    "Entries pushed to a later eligibility time without dispatch",
    labelnames=["channel", "reason"],
    registry=REGISTRY,
)

notification_claims_total = Counter(
    "notification_claims_total",
    "Entries claimed by dispatch workers",
    labelnames=["channel"],
    registry=REGISTRY,
)

notification_released_total = Counter(
    "notification_released_total",
    "In-flight entries released after their visibility timeout",
    registry=REGISTRY,
)

dispatch_workers_active = Gauge(
    "dispatch_workers_active",
    "Dispatch worker tasks currently running",
    registry=REGISTRY,
)

# =============================================================================
# Analytics
# =============================================================================

analytics_events_folded_total = Counter(
    "analytics_events_folded_total",
    "Delivery events folded into analytics buckets",
    labelnames=["event_type"],
    registry=REGISTRY,
)
