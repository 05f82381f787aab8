"""Prometheus metrics for the request pipeline."""

from prometheus_client import Counter, Histogram

# Request pipeline metrics
request_latency_ms = Histogram(
    "pipeline_request_latency_ms",
    "Pipeline request latency in milliseconds",
    ["route", "status"],
    buckets=[10, 50, 100, 200, 500, 1000, 2000, 4000, 8000],
)

pipeline_rejections_total = Counter(
    "pipeline_rejections_total",
    "Requests rejected before reaching the handler",
    ["route", "reason"],
)

audit_writes_total = Counter(
    "audit_writes_total",
    "Audit sink write attempts by outcome",
    ["outcome"],
)

identity_failsafe_total = Counter(
    "identity_failsafe_total",
    "Identity provider failures degraded to passthrough",
)


class PrometheusPipelineMetrics:
    """Prometheus-based pipeline metrics implementation."""

    def record_latency(self, route: str, status: int, latency_ms: float) -> None:
        """Record request latency."""
        request_latency_ms.labels(route=route, status=str(status)).observe(latency_ms)

    def inc_rejection(self, route: str, reason: str) -> None:
        """Increment rejection counter."""
        pipeline_rejections_total.labels(route=route, reason=reason).inc()

    def inc_audit_write(self, outcome: str) -> None:
        """Increment audit write counter."""
        audit_writes_total.labels(outcome=outcome).inc()
