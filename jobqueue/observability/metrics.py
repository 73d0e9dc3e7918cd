"""
Prometheus metrics collection.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from jobqueue.constants import (
    METRIC_ACTIVE_WORKERS,
    METRIC_HANDLER_DURATION,
    METRIC_JOBS_ACKED,
    METRIC_JOBS_CLAIMED,
    METRIC_JOBS_CLEANED,
    METRIC_JOBS_ENQUEUED,
    METRIC_JOBS_NACKED,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Job submissions, claims, acks, nacks and cleanups
    - Handler execution duration
    - Active worker loops
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            registry=self._registry,
        )

        self.jobs_claimed = Counter(
            METRIC_JOBS_CLAIMED,
            "Total number of job claims made by dequeue",
            ["fair_scheduling"],
            registry=self._registry,
        )

        self.jobs_acked = Counter(
            METRIC_JOBS_ACKED,
            "Total number of jobs acknowledged",
            ["deleted"],
            registry=self._registry,
        )

        self.jobs_nacked = Counter(
            METRIC_JOBS_NACKED,
            "Total number of jobs marked failed",
            registry=self._registry,
        )

        self.jobs_cleaned = Counter(
            METRIC_JOBS_CLEANED,
            "Total number of terminal jobs deleted by cleanup",
            registry=self._registry,
        )

        self.handler_duration = Histogram(
            METRIC_HANDLER_DURATION,
            "Job handler execution duration in seconds",
            ["job_type", "outcome"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.active_workers = Gauge(
            METRIC_ACTIVE_WORKERS,
            "Number of worker loops currently running in this process",
            registry=self._registry,
        )

    def record_jobs_enqueued(self, count: int = 1) -> None:
        """Record job submissions."""
        self.jobs_enqueued.inc(count)

    def record_jobs_claimed(self, fair_scheduling: str, count: int) -> None:
        """Record jobs claimed by one dequeue."""
        self.jobs_claimed.labels(fair_scheduling=fair_scheduling).inc(count)

    def record_jobs_acked(self, count: int, deleted: bool) -> None:
        """Record acknowledgements."""
        self.jobs_acked.labels(deleted=str(deleted).lower()).inc(count)

    def record_job_nacked(self) -> None:
        """Record an explicit failure."""
        self.jobs_nacked.inc()

    def record_jobs_cleaned(self, count: int) -> None:
        """Record cleanup deletions."""
        self.jobs_cleaned.inc(count)

    def record_handler_run(self, job_type: str, outcome: str, duration_seconds: float) -> None:
        """Record one handler execution."""
        self.handler_duration.labels(job_type=job_type, outcome=outcome).observe(
            duration_seconds
        )

    def set_active_workers(self, count: int) -> None:
        """Update the number of running worker loops."""
        self.active_workers.set(count)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics


def serve_metrics(port: int) -> None:
    """Expose the default registry over HTTP for scraping."""
    start_http_server(port)
