"""
Metrics Collection with Prometheus.

Exposes request, webhook, entitlement and media-cleanup metrics.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from app.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    ITEM_TYPE = "item_type"
    ERROR_TYPE = "error_type"


class StudioMetrics:
    """
    Centralized metrics for the Studio Access API.

    - HTTP requests (rate, duration, in flight)
    - IPN notifications by event and outcome
    - Entitlement grants and revokes
    - Media asset deletions by outcome
    - Errors by type
    """

    def __init__(self) -> None:
        self.service_info = Info("studio_service", "Service information")
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
            "studio_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "studio_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "studio_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Payment Webhook Metrics
        # ====================================================================
        self.ipn_events_total = Counter(
            "studio_ipn_events_total",
            "IPN notifications received, by event kind and processing outcome",
            ["event", "outcome"],
        )

        self.entitlement_changes_total = Counter(
            "studio_entitlement_changes_total",
            "Access grants and revokes applied",
            ["action", MetricLabels.ITEM_TYPE],
        )

        # ====================================================================
        # Media Store Metrics
        # ====================================================================
        self.asset_deletions_total = Counter(
            "studio_asset_deletions_total",
            "Best-effort media deletions, by resource kind and outcome",
            ["kind", "outcome"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "studio_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_ipn(self, event: str, outcome: str) -> None:
        self.ipn_events_total.labels(event=event, outcome=outcome).inc()

    def record_entitlement_change(self, action: str, item_type: str) -> None:
        self.entitlement_changes_total.labels(action=action, item_type=item_type).inc()

    def record_asset_deletion(self, kind: str, outcome: str) -> None:
        self.asset_deletions_total.labels(kind=kind, outcome=outcome).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = StudioMetrics()
