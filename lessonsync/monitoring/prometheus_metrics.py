"""
Prometheus metrics for the lesson scheduling core.

Service timings come from ``@BaseService.measure_operation``; the domain
helpers below count reconciliation outcomes, reminder moves, booking-lock
results and availability cache effectiveness.
"""

from threading import Lock
from time import monotonic
from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "lessonsync_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

service_operations_total = Counter(
    "lessonsync_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "lessonsync_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

reconciliation_outcomes_total = Counter(
    "lessonsync_reconciliation_outcomes_total",
    "Booking reconciliations by resolution path",
    ["resolution", "context"],  # resolution: direct|via_instance|via_scan|not_found
    registry=REGISTRY,
)

booking_timing_overwrites_total = Counter(
    "lessonsync_booking_timing_overwrites_total",
    "Bookings whose stored timing was replaced by calendar truth",
    ["context"],
    registry=REGISTRY,
)

reminder_reschedules_total = Counter(
    "lessonsync_reminder_reschedules_total",
    "Reminder schedule changes",
    ["action"],  # scheduled | rescheduled | cancelled
    registry=REGISTRY,
)

booking_lock_total = Counter(
    "lessonsync_booking_lock_total",
    "Per-instructor booking lock operations",
    ["action", "outcome"],
    registry=REGISTRY,
)

availability_cache_total = Counter(
    "lessonsync_availability_cache_total",
    "Availability cache lookups",
    ["result"],  # hit | miss | error
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    _cache_lock: Lock = Lock()
    _cache_payload: Optional[bytes] = None
    _cache_ts: Optional[float] = None
    _cache_ttl_seconds: float = 1.0

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'AvailabilityService')
            operation: Operation name (e.g., 'get_slots')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_reconciliation(resolution: str, context: str) -> None:
        reconciliation_outcomes_total.labels(resolution=resolution, context=context).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_timing_overwrite(context: str) -> None:
        booking_timing_overwrites_total.labels(context=context).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_reminder(action: str) -> None:
        reminder_reschedules_total.labels(action=action).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_booking_lock(action: str, outcome: str) -> None:
        booking_lock_total.labels(action=action, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_availability_cache(result: str) -> None:
        availability_cache_total.labels(result=result).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format, cached briefly."""
        now = monotonic()
        with PrometheusMetrics._cache_lock:
            payload = PrometheusMetrics._cache_payload
            ts = PrometheusMetrics._cache_ts
            if payload is None or ts is None or (now - ts) > PrometheusMetrics._cache_ttl_seconds:
                payload = cast(bytes, generate_latest(REGISTRY))
                PrometheusMetrics._cache_payload = payload
                PrometheusMetrics._cache_ts = now
        return payload

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)

    @staticmethod
    def _invalidate_cache() -> None:
        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_ts = None
            PrometheusMetrics._cache_payload = None


# Singleton instance
prometheus_metrics = PrometheusMetrics()
