"""Observability layer: in-process decision metrics. No external SaaS."""

from opsguard.observability.metrics import MetricsCollector

__all__ = ["MetricsCollector"]
