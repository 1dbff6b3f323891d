#!/usr/bin/env python3

"""
Prometheus metrics for refresh scheduling, liveness checks and heartbeats.

Metrics are off until ``configure_metrics`` is given an ``ObservabilityConfig``
with ``enable_prometheus_metrics=True``. Until then every call on the bundle
returned by ``metrics()`` lands on an unbound proxy and does nothing, so the
core never has to check whether observability is switched on.

Series (default namespace ``portal``):
    refresh_events_total{consumer,event_type,outcome}
    liveness_checks_total{result}
    session_invalidations_total{reason}
    activity_heartbeats_total{result}
    session_valid
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge

if TYPE_CHECKING:
    from config.config_schema import ObservabilityConfig

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "portal"

# name -> (help text, label names); an empty label tuple means a gauge
_SERIES: dict[str, tuple[str, tuple[str, ...]]] = {
    "refresh_events": ("Refresh scheduling decisions per consumer", ("consumer", "event_type", "outcome")),
    "liveness_checks": ("Session liveness checks by result", ("result",)),
    "session_invalidations": ("Terminal session invalidations by reason", ("reason",)),
    "activity_heartbeats": ("Activity heartbeat posts by result", ("result",)),
    "session_valid": ("1 while the monitored session is valid, 0 once invalidated", ()),
}


class _LabelledCounter:
    """Counter proxy taking its label values positionally."""

    def __init__(self, labelnames: tuple[str, ...]) -> None:
        self.labelnames = labelnames
        self._counter: Optional[Counter] = None

    def bind(self, counter: Optional[Counter]) -> None:
        self._counter = counter

    def inc(self, *values: str, amount: float = 1.0) -> None:
        if len(values) != len(self.labelnames):
            raise ValueError(f"Expected labels {self.labelnames}, got {values}")
        counter = self._counter
        if counter is not None:
            counter.labels(*values).inc(amount)


class _FlagGauge:
    """0/1 gauge proxy."""

    def __init__(self) -> None:
        self._gauge: Optional[Gauge] = None

    def bind(self, gauge: Optional[Gauge]) -> None:
        self._gauge = gauge

    def set(self, flag: bool) -> None:
        gauge = self._gauge
        if gauge is not None:
            gauge.set(1.0 if flag else 0.0)


class MetricsBundle:
    """The proxies the core writes to."""

    def __init__(self) -> None:
        self.refresh_events = _LabelledCounter(_SERIES["refresh_events"][1])
        self.liveness_checks = _LabelledCounter(_SERIES["liveness_checks"][1])
        self.session_invalidations = _LabelledCounter(_SERIES["session_invalidations"][1])
        self.activity_heartbeats = _LabelledCounter(_SERIES["activity_heartbeats"][1])
        self.session_valid = _FlagGauge()

    def bind(self, collectors: dict[str, Any]) -> None:
        for name in _SERIES:
            getattr(self, name).bind(collectors.get(name))

    def unbind(self) -> None:
        self.bind({})


def _build_collectors(namespace: str, registry: CollectorRegistry) -> dict[str, Any]:
    collectors: dict[str, Any] = {}
    for name, (documentation, labelnames) in _SERIES.items():
        if labelnames:
            collectors[name] = Counter(
                f"{name}_total", documentation, labelnames=labelnames, namespace=namespace, registry=registry
            )
        else:
            collectors[name] = Gauge(name, documentation, namespace=namespace, registry=registry)
    return collectors


class MetricsRegistry:
    """Owns the private ``CollectorRegistry`` and the proxy bundle."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._namespace = DEFAULT_NAMESPACE
        self._registry: Optional[CollectorRegistry] = None
        self._bundle = MetricsBundle()

    def configure(self, settings: Optional[ObservabilityConfig]) -> None:
        """Enable, re-namespace or disable metrics to match ``settings``.

        Reconfiguring with the namespace already in use keeps the existing
        registry and its accumulated samples.
        """
        with self._lock:
            if settings is None or not settings.enable_prometheus_metrics:
                if self._registry is not None:
                    logger.info("📉 Prometheus metrics switched off")
                self._clear()
                return

            namespace = settings.metrics_namespace or DEFAULT_NAMESPACE
            if self._registry is not None and namespace == self._namespace:
                return

            registry = CollectorRegistry(auto_describe=True)
            self._bundle.bind(_build_collectors(namespace, registry))
            self._registry = registry
            self._namespace = namespace
            logger.info(f"📈 Prometheus metrics on (namespace={namespace})")

    def reset(self) -> None:
        with self._lock:
            self._clear()

    def _clear(self) -> None:
        self._registry = None
        self._bundle.unbind()

    def status(self) -> dict[str, Any]:
        with self._lock:
            return {"enabled": self._registry is not None, "namespace": self._namespace}

    def get_registry(self) -> Optional[CollectorRegistry]:
        return self._registry

    @property
    def metrics(self) -> MetricsBundle:
        return self._bundle

    def is_enabled(self) -> bool:
        return self._registry is not None


_REGISTRY = MetricsRegistry()


def configure_metrics(settings: Optional[ObservabilityConfig]) -> None:
    _REGISTRY.configure(settings)


def disable_metrics() -> None:
    _REGISTRY.reset()


# Tests call this name; same effect as disable_metrics
reset_metrics = disable_metrics


def metrics() -> MetricsBundle:
    """Process-wide proxy bundle; safe to use while metrics are off."""
    return _REGISTRY.metrics


def get_metrics_registry() -> Optional[CollectorRegistry]:
    """Registry to scrape, or None while metrics are off."""
    return _REGISTRY.get_registry()


def is_metrics_enabled() -> bool:
    return _REGISTRY.is_enabled()


def get_metrics_status() -> dict[str, Any]:
    return _REGISTRY.status()


__all__ = [
    "MetricsBundle",
    "MetricsRegistry",
    "configure_metrics",
    "disable_metrics",
    "get_metrics_registry",
    "get_metrics_status",
    "is_metrics_enabled",
    "metrics",
    "reset_metrics",
]
