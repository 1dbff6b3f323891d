"""Observability utilities and Prometheus integration helpers."""

from observability.metrics_registry import (
    configure_metrics,
    disable_metrics,
    get_metrics_registry,
    get_metrics_status,
    is_metrics_enabled,
    metrics,
    reset_metrics,
)

__all__ = [
    "configure_metrics",
    "disable_metrics",
    "get_metrics_registry",
    "get_metrics_status",
    "is_metrics_enabled",
    "metrics",
    "reset_metrics",
]
