"""Multi-tenant notification dispatch.

Pipeline:
    submit / ingest_event
        -> template resolution and rendering (templates)
        -> preference decision (preferences)
        -> durable priority queue (queue)
    dispatch workers (worker)
        -> claim with rate-limit admission (queue + infra.ratelimit)
        -> channel sender (dispatcher, channels)
        -> retry with backoff or a terminal state (retry)
    every transition -> DeliveryEvent (tracker) -> daily buckets (analytics)
"""

from .analytics import AnalyticsAggregator, get_analytics_aggregator
from .dispatcher import ChannelDispatcher, get_channel_dispatcher
from .enums import Channel, EntryStatus, EventType, FailureReason, Priority
from .queue import DispatchQueue, get_dispatch_queue
from .retry import RetryManager
from .router import router
from .service import NotificationService, SubmitOutcome, get_notification_service
from .tracker import DeliveryTracker, get_delivery_tracker
from .worker import AnalyticsFolder, DispatchWorkerPool

__all__ = [
    "AnalyticsAggregator",
    "AnalyticsFolder",
    "Channel",
    "ChannelDispatcher",
    "DeliveryTracker",
    "DispatchQueue",
    "DispatchWorkerPool",
    "EntryStatus",
    "EventType",
    "FailureReason",
    "NotificationService",
    "Priority",
    "RetryManager",
    "SubmitOutcome",
    "get_analytics_aggregator",
    "get_channel_dispatcher",
    "get_delivery_tracker",
    "get_dispatch_queue",
    "get_notification_service",
    "router",
]
