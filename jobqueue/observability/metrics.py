"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from jobqueue.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_COMPLETED,
    METRIC_JOBS_DEAD_LETTERED,
    METRIC_JOBS_ENQUEUED,
    METRIC_JOBS_FAILED,
    METRIC_JOBS_IN_FLIGHT,
    METRIC_LEASE_ACQUIRED,
    METRIC_LEASE_EXPIRED,
    METRIC_QUEUE_DEPTH,
    METRIC_STORE_ERRORS,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Depth of every store collection
    - Jobs currently executing in this process
    - Enqueues, completions, failures and dead-letters
    - Job execution duration
    - Lease acquisition and expiry
    - Transient store errors
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        # Collection depth gauge (waiting, scheduled, in_flight, ...)
        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of jobs in each store collection",
            ["collection"],
            registry=self._registry,
        )

        # Handlers running in this process
        self.jobs_in_flight = Gauge(
            METRIC_JOBS_IN_FLIGHT,
            "Number of job handlers currently executing",
            ["worker_id"],
            registry=self._registry,
        )

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            ["job_type", "state"],
            registry=self._registry,
        )

        self.jobs_completed = Counter(
            METRIC_JOBS_COMPLETED,
            "Total number of jobs completed",
            ["job_type"],
            registry=self._registry,
        )

        self.jobs_failed = Counter(
            METRIC_JOBS_FAILED,
            "Total number of failed job attempts",
            ["job_type", "will_retry"],
            registry=self._registry,
        )

        self.jobs_dead_lettered = Counter(
            METRIC_JOBS_DEAD_LETTERED,
            "Total number of jobs moved to dead-letter",
            ["job_type"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["job_type", "status"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.lease_expired = Counter(
            METRIC_LEASE_EXPIRED,
            "Total number of expired leases",
            ["job_type"],
            registry=self._registry,
        )

        self.lease_acquired = Counter(
            METRIC_LEASE_ACQUIRED,
            "Total number of leases acquired",
            ["worker_id"],
            registry=self._registry,
        )

        self.store_errors = Counter(
            METRIC_STORE_ERRORS,
            "Total number of transient store errors",
            ["operation"],
            registry=self._registry,
        )

    def record_job_enqueued(self, job_type: str, state: str) -> None:
        """Record a job submission."""
        self.jobs_enqueued.labels(job_type=job_type, state=state).inc()

    def record_job_completed(self, job_type: str, duration_seconds: float) -> None:
        """Record a successful job."""
        self.jobs_completed.labels(job_type=job_type).inc()
        self.job_duration.labels(job_type=job_type, status="completed").observe(
            duration_seconds
        )

    def record_job_failed(
        self,
        job_type: str,
        will_retry: bool,
        duration_seconds: float | None = None,
    ) -> None:
        """Record a failed attempt."""
        self.jobs_failed.labels(job_type=job_type, will_retry=str(will_retry).lower()).inc()
        if duration_seconds is not None:
            self.job_duration.labels(job_type=job_type, status="failed").observe(
                duration_seconds
            )

    def record_job_dead_lettered(self, job_type: str) -> None:
        """Record a job moved to dead-letter."""
        self.jobs_dead_lettered.labels(job_type=job_type).inc()

    def record_lease_expired(self, job_type: str) -> None:
        """Record an expired lease."""
        self.lease_expired.labels(job_type=job_type).inc()

    def record_lease_acquired(self, worker_id: str, count: int = 1) -> None:
        """Record lease acquisition."""
        self.lease_acquired.labels(worker_id=worker_id).inc(count)

    def record_store_error(self, operation: str) -> None:
        """Record a transient store failure."""
        self.store_errors.labels(operation=operation).inc()

    def update_queue_depth(self, collection: str, depth: int) -> None:
        """Update the depth of one collection."""
        self.queue_depth.labels(collection=collection).set(depth)

    def update_in_flight(self, worker_id: str, count: int) -> None:
        """Update the number of handlers running in a worker."""
        self.jobs_in_flight.labels(worker_id=worker_id).set(count)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


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
    Get the metrics collector instance.

    Returns:
        MetricsCollector: The metrics collector instance, created on first use.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
