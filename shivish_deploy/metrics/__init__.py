"""Metrics module using Prometheus."""

from .prometheus_metrics import StackMetrics, get_metrics_handler

__all__ = [
    "StackMetrics",
    "get_metrics_handler",
]
