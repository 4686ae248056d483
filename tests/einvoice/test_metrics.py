"""
Tests for e-Invoice Prometheus metrics
"""

from unittest.mock import MagicMock, patch

from django.test import SimpleTestCase, override_settings
from prometheus_client import CollectorRegistry, Counter

from apps.einvoice.metrics import EInvoiceMetrics, NoOpMetric, _create_counter


class NoOpMetricTestCase(SimpleTestCase):
    """Test NoOpMetric class."""

    def test_labels_returns_self(self):
        """Test labels() returns self for chaining."""
        metric = NoOpMetric()
        self.assertIs(metric.labels(provider="anaf", outcome="accepted"), metric)

    def test_chained_calls(self):
        """Test chained calls work."""
        metric = NoOpMetric()
        metric.labels(provider="anaf").inc()
        metric.labels(provider="anaf").observe(1.5)


class EInvoiceMetricsTestCase(SimpleTestCase):
    """Test metric recording with metrics disabled (test settings)."""

    def setUp(self):
        self.metrics = EInvoiceMetrics()

    def test_disabled_metrics_are_noops(self):
        """Test every metric is a no-op when disabled"""
        self.assertIsInstance(self.metrics.submissions_total, NoOpMetric)
        self.assertIsInstance(self.metrics.api_request_duration_seconds, NoOpMetric)

    def test_record_helpers(self):
        """Test recording through the helpers uses the right labels"""
        self.metrics.submissions_total = MagicMock()
        self.metrics.rate_limited_total = MagicMock()

        self.metrics.record_submission("anaf", "accepted")
        self.metrics.record_rate_limited("xrechnung", "global")

        self.metrics.submissions_total.labels.assert_called_once_with(provider="anaf", outcome="accepted")
        self.metrics.rate_limited_total.labels.assert_called_once_with(provider="xrechnung", limit="global")

    def test_time_api_request_observes_on_error(self):
        """Test the duration is observed even when the call raises"""
        self.metrics.api_request_duration_seconds = MagicMock()

        with self.assertRaises(ValueError), self.metrics.time_api_request("anaf", "upload"):
            raise ValueError("boom")

        self.metrics.api_request_duration_seconds.labels.assert_called_once_with(provider="anaf", operation="upload")
        self.metrics.api_request_duration_seconds.labels.return_value.observe.assert_called_once()

    @override_settings(EINVOICE_METRICS_ENABLED=True, EINVOICE_METRICS_PREFIX="acme")
    def test_enabled_counter_uses_prefix(self):
        """Test enabled metrics are real Prometheus counters with the configured prefix"""
        registry = CollectorRegistry()
        with patch("apps.einvoice.metrics.Counter", lambda *a, **kw: Counter(*a, registry=registry, **kw)):
            counter = _create_counter("submissions_total", "Submissions", ["provider"])

        counter.labels(provider="anaf").inc()
        self.assertEqual(registry.get_sample_value("acme_submissions_total", {"provider": "anaf"}), 1.0)
