"""
Prometheus metrics for the booking engine.

Service timings are fed by ``BaseService.measure_operation``; the remaining
counters are recorded directly by the lifecycle manager, the outbound task
dispatcher and the schedule lock.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

# Custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "lesson_booking_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "lesson_booking_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status", "error_type"],
    registry=REGISTRY,
)

booking_transitions_total = Counter(
    "lesson_booking_booking_transitions_total",
    "Booking lifecycle transitions",
    ["transition"],
    registry=REGISTRY,
)

outbound_task_outcomes_total = Counter(
    "lesson_booking_outbound_task_outcomes_total",
    "Outbound task delivery outcomes",
    ["kind", "outcome"],
    registry=REGISTRY,
)

schedule_lock_total = Counter(
    "lesson_booking_schedule_lock_total",
    "Schedule lock acquisition outcomes",
    ["backend", "outcome"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin static facade so callers don't touch metric objects directly."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str,
        error_type: Optional[str] = None,
    ) -> None:
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(
            service=service,
            operation=operation,
            status=status,
            error_type=error_type or "none",
        ).inc()

    @staticmethod
    def record_transition(transition: str) -> None:
        booking_transitions_total.labels(transition=transition).inc()

    @staticmethod
    def record_outbound_outcome(kind: str, outcome: str) -> None:
        outbound_task_outcomes_total.labels(kind=kind, outcome=outcome).inc()

    @staticmethod
    def record_schedule_lock(backend: str, outcome: str) -> None:
        schedule_lock_total.labels(backend=backend, outcome=outcome).inc()

    @staticmethod
    def export() -> bytes:
        return generate_latest(REGISTRY)


prometheus_metrics = PrometheusMetrics()
