"""Metrics infrastructure for Prometheus monitoring."""

from __future__ import annotations

from prometheus_client import generate_latest

from notify_service.infra.metrics.prometheus import REGISTRY

__all__ = ["REGISTRY", "generate_latest"]
