"""
Prometheus metrics for AFIP authorization.

Tracks ticket requests, CAE requests, sequence reconciliation outcomes and
call latency. Metrics are only registered when ``AFIP_METRICS_ENABLED`` is
set; otherwise every metric is a no-op.
"""

from __future__ import annotations

import logging
from typing import Any

from prometheus_client import Counter, Histogram

from .settings import afip_settings

logger = logging.getLogger(__name__)


class NoOpMetric:
    """Stand-in used while metrics are disabled."""

    def labels(self, *args: Any, **kwargs: Any) -> NoOpMetric:
        return self

    def inc(self, amount: float = 1) -> None:
        pass

    def observe(self, value: float) -> None:
        pass


def _create_counter(name: str, description: str, labels: list[str]) -> Any:
    if afip_settings.metrics_enabled:
        return Counter(f"{afip_settings.metrics_prefix}_{name}", description, labels)
    return NoOpMetric()


def _create_histogram(name: str, description: str, labels: list[str], buckets: tuple[float, ...]) -> Any:
    if afip_settings.metrics_enabled:
        return Histogram(f"{afip_settings.metrics_prefix}_{name}", description, labels, buckets=buckets)
    return NoOpMetric()


class AfipMetrics:
    """AFIP metrics collection, prefixed with ``AFIP_METRICS_PREFIX``."""

    def __init__(self) -> None:
        self.ticket_requests_total = _create_counter(
            "ticket_requests_total",
            "WSAA login requests by outcome",
            ["outcome", "environment"],
        )
        self.ticket_cache_hits_total = _create_counter(
            "ticket_cache_hits_total",
            "Access tickets served from the connection cache",
            ["environment"],
        )
        self.cae_requests_total = _create_counter(
            "cae_requests_total",
            "CAE requests by outcome",
            ["outcome", "environment"],
        )
        self.sequence_checks_total = _create_counter(
            "sequence_checks_total",
            "Sequence reconciliation checks by state",
            ["state"],
        )
        self.call_duration_seconds = _create_histogram(
            "call_duration_seconds",
            "Duration of AFIP web service calls",
            ["operation"],
            buckets=(0.25, 0.5, 1, 2, 5, 10, 30, 60),
        )


_metrics: AfipMetrics | None = None


def get_metrics() -> AfipMetrics:
    """Return the process-wide metrics, registering them on first use."""
    global _metrics  # noqa: PLW0603
    if _metrics is None:
        _metrics = AfipMetrics()
        logger.debug(f"📊 [AFIP Metrics] Initialized (enabled={afip_settings.metrics_enabled})")
    return _metrics
