"""
Metrics Collection with Prometheus.

Exposes gateway business and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from jeesi_gateway.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class GatewayMetrics:
    """
    Centralized metrics for the agent gateway.

    Covers:
    - HTTP requests (rate, duration, in-flight)
    - Credit gate decisions
    - Upstream completion calls (outcome, time to first byte)
    - Usage recording and side-channel jobs
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "gateway_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "gateway_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "gateway_http_request_duration_seconds",
            "HTTP request duration in seconds (until response headers)",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "gateway_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Credit Gate Metrics
        # ====================================================================
        self.credit_gate_total = Counter(
            "gateway_credit_gate_total",
            "Credit gate decisions",
            [MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Upstream Metrics
        # ====================================================================
        self.upstream_requests_total = Counter(
            "gateway_upstream_requests_total",
            "Upstream completion requests by outcome",
            [MetricLabels.OUTCOME],
        )

        self.upstream_latency_seconds = Histogram(
            "gateway_upstream_latency_seconds",
            "Time until upstream response headers, in seconds",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        # ====================================================================
        # Usage / Side Channel Metrics
        # ====================================================================
        self.usage_recorded_total = Counter(
            "gateway_usage_recorded_total",
            "Usage recordings by outcome (charged, skipped, failed)",
            [MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        self.side_channel_jobs_total = Counter(
            "gateway_side_channel_jobs_total",
            "Side-channel jobs by outcome (succeeded, failed, dropped)",
            ["job", MetricLabels.OUTCOME],
        )

        self.side_channel_pending = Gauge(
            "gateway_side_channel_pending",
            "Side-channel jobs waiting to run",
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "gateway_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_credit_gate(self, operation: str, admitted: bool) -> None:
        """Record a credit gate decision."""
        self.credit_gate_total.labels(
            operation=operation, outcome="admitted" if admitted else "rejected"
        ).inc()

    def record_upstream(self, outcome: str, duration: float | None = None) -> None:
        """Record an upstream call outcome."""
        self.upstream_requests_total.labels(outcome=outcome).inc()
        if duration is not None:
            self.upstream_latency_seconds.observe(duration)

    def record_usage(self, operation: str, outcome: str) -> None:
        """Record a usage recording outcome."""
        self.usage_recorded_total.labels(operation=operation, outcome=outcome).inc()

    def record_side_channel_job(self, job: str, outcome: str) -> None:
        """Record a side-channel job outcome."""
        self.side_channel_jobs_total.labels(job=job, outcome=outcome).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = GatewayMetrics()
