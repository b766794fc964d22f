"""
Monitoring package for cache metrics collection.
"""

from .cache_metrics import cache_metrics, CacheMetricsCollector

__all__ = ["cache_metrics", "CacheMetricsCollector"]
