"""Loader metrics.

Prometheus counters for each routing outcome and a latency histogram for
time-to-submit.  Every ``LoaderMetrics`` owns its own ``CollectorRegistry``
so several loaders (or tests) in one process never collide on metric
names.
"""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

# Milliseconds; spans an immediate submission through a long backoff run
_LATENCY_BUCKETS_MS = (
    10.0, 50.0, 100.0, 500.0, 1_000.0, 5_000.0, 15_000.0,
    30_000.0, 60_000.0, 300_000.0, 900_000.0,
)

_COUNTERS = {
    "submitted": "Load jobs submitted to BigQuery",
    "backoff_exhausted": "Submissions that never found free capacity within the backoff budget",
    "bigquery_exception": "Submissions rejected by BigQuery",
    "backoff_interrupted": "Submissions whose backoff wait was interrupted",
    "submitted_for_retry_cycles": "Requests sent back through the stream for another cycle",
    "dead_lettered": "Requests dead-lettered after exhausting their retry cycles",
    "malformed": "Inbound messages that could not be decoded",
    "snapshot_refreshes": "Running-jobs listings fetched from BigQuery",
    "snapshot_refresh_failures": "Running-jobs listings that failed",
}


class LoaderMetrics:
    """Counters and the submission latency distribution for one loader."""

    def __init__(self, namespace: str = "bqloader") -> None:
        self.namespace = namespace
        self.registry = CollectorRegistry()
        self._counters: dict[str, Counter] = {
            name: Counter(name, doc, namespace=namespace, registry=self.registry)
            for name, doc in _COUNTERS.items()
        }
        self.submission_latency_ms = Histogram(
            "load_job_submission_latency_ms",
            "Milliseconds from first capacity check to a submitted load job",
            namespace=namespace,
            buckets=_LATENCY_BUCKETS_MS,
            registry=self.registry,
        )

    def inc(self, name: str, amount: int = 1) -> None:
        """Increment the counter ``name`` (one of the keys in ``snapshot()``)."""
        self._counters[name].inc(amount)

    def observe_latency(self, latency_ms: float) -> None:
        self.submission_latency_ms.observe(latency_ms)

    def value(self, name: str) -> float:
        if name not in self._counters:
            raise KeyError(name)
        sample = self.registry.get_sample_value(f"{self.namespace}_{name}_total")
        return sample or 0.0

    def snapshot(self) -> dict[str, float]:
        """Current counter values plus latency count and mean."""
        result = {name: self.value(name) for name in self._counters}
        prefix = f"{self.namespace}_load_job_submission_latency_ms"
        count = self.registry.get_sample_value(f"{prefix}_count") or 0.0
        total = self.registry.get_sample_value(f"{prefix}_sum") or 0.0
        result["latency_count"] = count
        result["latency_mean_ms"] = total / count if count else 0.0
        return result

    def exposition(self) -> bytes:
        """Prometheus text exposition of this loader's registry."""
        return generate_latest(self.registry)


__all__ = ["LoaderMetrics"]
