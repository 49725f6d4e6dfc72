"""Background worker infrastructure."""

from .loop import PollingLoop, default_worker_prefix

__all__ = ["PollingLoop", "default_worker_prefix"]
