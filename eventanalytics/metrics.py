"""
Prometheus metrics for the analytics engine.
"""
from prometheus_client import Counter, Histogram, Info, CollectorRegistry, generate_latest


class Metrics:
    """
    Centralized metrics for engine runs.

    Each instance owns its registry so tests and multiple engines in one
    process do not collide on metric names.
    """

    def __init__(self, service_name: str = "eventanalytics", version: str = "0.1.0", registry=None):
        self.service_name = service_name
        self.version = version
        self.registry = registry or CollectorRegistry()

        self.app_info = Info(
            "app",
            "Application information",
            registry=self.registry,
        )
        self.app_info.info({"service": service_name, "version": version})

        self.events_tracked_total = Counter(
            "eventanalytics_events_tracked_total",
            "Total events tracked",
            ["event_kind"],
            registry=self.registry,
        )

        self.summaries_written_total = Counter(
            "eventanalytics_summaries_written_total",
            "Total summaries persisted",
            ["period"],
            registry=self.registry,
        )

        self.anomalies_detected_total = Counter(
            "eventanalytics_anomalies_detected_total",
            "Total anomaly findings emitted",
            ["metric"],
            registry=self.registry,
        )

        self.anomaly_scan_failures_total = Counter(
            "eventanalytics_anomaly_scan_failures_total",
            "Entities whose anomaly detection failed during a scan",
            registry=self.registry,
        )

        self.retention_deleted_total = Counter(
            "eventanalytics_retention_deleted_total",
            "Records deleted by retention policies",
            ["record_type"],
            registry=self.registry,
        )

        self.job_duration = Histogram(
            "eventanalytics_job_duration_seconds",
            "Scheduled job duration in seconds",
            ["job", "status"],
            registry=self.registry,
        )

    def record_event_tracked(self, event_kind: str):
        self.events_tracked_total.labels(event_kind=event_kind).inc()

    def record_summary_written(self, period: str):
        self.summaries_written_total.labels(period=period).inc()

    def record_anomaly(self, metric: str):
        self.anomalies_detected_total.labels(metric=metric).inc()

    def record_scan_failure(self):
        self.anomaly_scan_failures_total.inc()

    def record_retention_deleted(self, record_type: str, count: int):
        self.retention_deleted_total.labels(record_type=record_type).inc(count)

    def observe_job(self, job: str, status: str, duration_seconds: float):
        self.job_duration.labels(job=job, status=status).observe(duration_seconds)

    def sample(self, name: str, labels: dict[str, str] | None = None) -> float | None:
        """Read a sample value from this registry (for reporting and tests)."""
        return self.registry.get_sample_value(name, labels or {})

    def render(self) -> bytes:
        """Render the registry in the Prometheus text exposition format."""
        return generate_latest(self.registry)
