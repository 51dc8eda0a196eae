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

from formqueue.constants import (
    METRIC_API_LATENCY,
    METRIC_API_REQUESTS,
    METRIC_JOB_DURATION,
    METRIC_JOBS_COMPLETED,
    METRIC_JOBS_RETRIED,
    METRIC_JOBS_SUBMITTED,
    METRIC_OFFLINE_RECORDS,
    METRIC_QUEUE_DEPTH,
    METRIC_RECONCILE_PASSES,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the queue engine and offline client.

    Collects metrics for:
    - Queue depth
    - Job submissions, retries and terminal outcomes
    - Job execution duration
    - Offline records stored, synced and failed
    - API requests
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of jobs waiting in the queue",
            registry=self._registry,
        )

        self.jobs_submitted = Counter(
            METRIC_JOBS_SUBMITTED,
            "Total number of jobs accepted at intake",
            ["kind"],
            registry=self._registry,
        )

        self.jobs_completed = Counter(
            METRIC_JOBS_COMPLETED,
            "Total number of jobs reaching a terminal state",
            ["kind", "status"],
            registry=self._registry,
        )

        self.jobs_retried = Counter(
            METRIC_JOBS_RETRIED,
            "Total number of failed attempts re-queued for retry",
            ["kind"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Duration of a single processing attempt in seconds",
            ["kind", "status"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
            registry=self._registry,
        )

        # Offline records by outcome (stored, synced, failed)
        self.offline_records = Counter(
            METRIC_OFFLINE_RECORDS,
            "Offline records by lifecycle outcome",
            ["outcome"],
            registry=self._registry,
        )

        self.reconcile_passes = Counter(
            METRIC_RECONCILE_PASSES,
            "Reconciliation passes by trigger source",
            ["source"],
            registry=self._registry,
        )

        self.api_requests = Counter(
            METRIC_API_REQUESTS,
            "Total number of API requests",
            ["method", "endpoint", "status"],
            registry=self._registry,
        )

        self.api_latency = Histogram(
            METRIC_API_LATENCY,
            "API request latency in seconds",
            ["method", "endpoint"],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
            registry=self._registry,
        )

    def record_job_submitted(self, kind: str) -> None:
        """Record a job accepted at intake."""
        self.jobs_submitted.labels(kind=kind).inc()

    def record_job_attempt(
        self,
        kind: str,
        status: str,
        duration_seconds: float,
    ) -> None:
        """Record the outcome of one processing attempt."""
        self.job_duration.labels(kind=kind, status=status).observe(duration_seconds)
        if status == "retried":
            self.jobs_retried.labels(kind=kind).inc()
        else:
            self.jobs_completed.labels(kind=kind, status=status).inc()

    def update_queue_depth(self, depth: int) -> None:
        """Update number of waiting jobs."""
        self.queue_depth.set(depth)

    def record_offline(self, outcome: str, count: int = 1) -> None:
        """Record offline records reaching ``outcome``."""
        self.offline_records.labels(outcome=outcome).inc(count)

    def record_reconcile_pass(self, source: str) -> None:
        """Record a reconciliation pass."""
        self.reconcile_passes.labels(source=source).inc()

    def record_api_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration_seconds: float,
    ) -> None:
        """Record an API request."""
        self.api_requests.labels(
            method=method,
            endpoint=endpoint,
            status=str(status),
        ).inc()
        self.api_latency.labels(method=method, endpoint=endpoint).observe(
            duration_seconds
        )

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
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
