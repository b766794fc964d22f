"""
Cache Metrics Collector

Prometheus counters and histograms for the cache layer, kept in a dedicated
registry so the /api/metrics endpoint only exposes what this service owns.
"""

from typing import Dict

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)


class CacheMetricsCollector:
    """Hit/miss, error, invalidation and latency metrics for the cache."""

    def __init__(self):
        self._setup_prometheus_metrics()

    def _setup_prometheus_metrics(self) -> None:
        """Setup Prometheus metrics for the cache."""
        self.registry = CollectorRegistry()

        self.prom_cache_requests_total = Counter(
            "pdv_cache_requests_total",
            "Cache lookups by layer and result",
            ["layer", "result"],
            registry=self.registry,
        )

        self.prom_cache_errors_total = Counter(
            "pdv_cache_errors_total",
            "Cache operations that failed and were degraded",
            ["operation"],
            registry=self.registry,
        )

        self.prom_cache_invalidations_total = Counter(
            "pdv_cache_invalidations_total",
            "Invalidation requests by entity",
            ["entity"],
            registry=self.registry,
        )

        self.prom_cache_coalesced_total = Counter(
            "pdv_cache_coalesced_total",
            "Loads served by joining an in-flight request",
            registry=self.registry,
        )

        self.prom_cache_operation_seconds = Histogram(
            "pdv_cache_operation_seconds",
            "Cache operation latency in seconds",
            ["operation"],
            buckets=[0.0001, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
            registry=self.registry,
        )

        # Process-local tallies for the stats endpoint
        self._counts: Dict[str, int] = {"hits": 0, "misses": 0, "errors": 0}

    def record_lookup(self, layer: str, hit: bool) -> None:
        result = "hit" if hit else "miss"
        self.prom_cache_requests_total.labels(layer=layer, result=result).inc()
        self._counts["hits" if hit else "misses"] += 1

    def record_error(self, operation: str) -> None:
        self.prom_cache_errors_total.labels(operation=operation).inc()
        self._counts["errors"] += 1

    def record_invalidation(self, entity: str) -> None:
        self.prom_cache_invalidations_total.labels(entity=entity).inc()

    def record_coalesced(self) -> None:
        self.prom_cache_coalesced_total.inc()

    def observe(self, operation: str, seconds: float) -> None:
        self.prom_cache_operation_seconds.labels(operation=operation).observe(seconds)

    def summary(self) -> Dict[str, float]:
        """Hit/miss/error counts and hit rate since process start."""
        lookups = self._counts["hits"] + self._counts["misses"]
        return {
            **self._counts,
            "hit_rate": self._counts["hits"] / lookups if lookups else 0.0,
        }

    def export(self) -> bytes:
        """Prometheus text exposition of the registry."""
        return generate_latest(self.registry)


# Global metrics collector instance
cache_metrics = CacheMetricsCollector()
