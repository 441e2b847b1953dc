"""Prometheus metrics for completion and retrieval."""

from prometheus_client import Counter, Histogram

# Completion tier metrics
completion_latency_ms = Histogram(
    "completion_latency_ms",
    "Completion attempt latency in milliseconds",
    ["tier", "outcome"],
    buckets=[50, 100, 250, 500, 1000, 2000, 5000, 10000, 30000, 60000],
)

completion_errors_total = Counter(
    "completion_errors_total",
    "Total failed completion attempts",
    ["tier", "reason"],
)

# Retrieval metrics
retrieval_fallback_total = Counter(
    "retrieval_fallback_total",
    "Total retrieval fallbacks",
    ["reason"],
)

# Stream decoding
stream_decode_anomalies_total = Counter(
    "stream_decode_anomalies_total",
    "Total stream frames that could not be decoded",
)


class PrometheusCompletionMetrics:
    """Prometheus-based completion metrics implementation."""

    def record_latency(self, tier: str, outcome: str, latency_ms: float) -> None:
        """Record completion attempt latency."""
        completion_latency_ms.labels(tier=tier, outcome=outcome).observe(latency_ms)

    def inc_error(self, tier: str, reason: str) -> None:
        """Increment error counter."""
        completion_errors_total.labels(tier=tier, reason=reason).inc()

    def inc_retrieval_fallback(self, reason: str) -> None:
        """Increment retrieval fallback counter."""
        retrieval_fallback_total.labels(reason=reason).inc()

    def inc_decode_anomaly(self) -> None:
        """Increment decode anomaly counter."""
        stream_decode_anomalies_total.inc()


metrics = PrometheusCompletionMetrics()
