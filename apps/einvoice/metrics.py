"""
Prometheus metrics for e-Invoice observability.

Tracks:
- Submission outcomes per provider
- Status poll outcomes per provider
- Rate-limit exhaustion per provider and limit
- Provider API latency

Metrics are only registered if enabled in settings; otherwise every metric
is a no-op so call sites never need to check.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from prometheus_client import Counter, Histogram

from .settings import einvoice_settings

logger = logging.getLogger(__name__)


class NoOpMetric:
    """Stand-in used when metrics are disabled in settings."""

    def labels(self, *args: Any, **kwargs: Any) -> NoOpMetric:
        return self

    def inc(self, amount: float = 1) -> None:
        pass

    def observe(self, value: float) -> None:
        pass


def _create_counter(name: str, description: str, labels: list[str]) -> Any:
    if einvoice_settings.metrics_enabled:
        return Counter(f"{einvoice_settings.metrics_prefix}_{name}", description, labels)
    return NoOpMetric()


def _create_histogram(name: str, description: str, labels: list[str], buckets: tuple[float, ...]) -> Any:
    if einvoice_settings.metrics_enabled:
        return Histogram(f"{einvoice_settings.metrics_prefix}_{name}", description, labels, buckets=buckets)
    return NoOpMetric()


class EInvoiceMetrics:
    """e-Invoice metrics collection, prefixed with the configured prefix (default: 'einvoice')."""

    def __init__(self) -> None:
        self.submissions_total = _create_counter(
            "submissions_total",
            "Submission attempts by provider and resulting status",
            ["provider", "outcome"],
        )
        self.status_polls_total = _create_counter(
            "status_polls_total",
            "Status polls by provider and exit path",
            ["provider", "outcome"],
        )
        self.rate_limited_total = _create_counter(
            "rate_limited_total",
            "Calls refused by the rate-limit guard",
            ["provider", "limit"],
        )
        self.api_request_duration_seconds = _create_histogram(
            "api_request_duration_seconds",
            "Provider API request duration",
            ["provider", "operation"],
            buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
        )

    def record_submission(self, provider: str, outcome: str) -> None:
        self.submissions_total.labels(provider=provider, outcome=outcome).inc()

    def record_poll(self, provider: str, outcome: str) -> None:
        self.status_polls_total.labels(provider=provider, outcome=outcome).inc()

    def record_rate_limited(self, provider: str, limit_name: str) -> None:
        self.rate_limited_total.labels(provider=provider, limit=limit_name).inc()

    @contextmanager
    def time_api_request(self, provider: str, operation: str) -> Generator[None]:
        """Context manager to time provider API requests."""
        start = time.monotonic()
        try:
            yield
        finally:
            duration = time.monotonic() - start
            self.api_request_duration_seconds.labels(provider=provider, operation=operation).observe(duration)
            logger.debug(f"[Metrics] {provider}.{operation}: {duration:.3f}s")


# Module-level metrics instance
metrics = EInvoiceMetrics()
