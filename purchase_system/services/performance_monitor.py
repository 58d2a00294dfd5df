# purchase_system/services/performance_monitor.py
"""
Performance counters for the validator and the path finder.

One monitor per engine instance. Counters are in-process only and reset on
restart.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict

from purchase_system.utils.cache import TTLCache

logger = logging.getLogger(__name__)

VALIDATOR = "validator"
PATH_FINDER = "pathFinder"


@dataclass
class _ComponentStats:
    calls: int = 0
    cacheHits: int = 0
    cacheMisses: int = 0
    failures: int = 0
    totalTimeMs: float = 0.0

    def snapshot(self) -> Dict[str, Any]:
        lookups = self.cacheHits + self.cacheMisses
        return {
            "calls": self.calls,
            "cacheHits": self.cacheHits,
            "cacheMisses": self.cacheMisses,
            "failures": self.failures,
            "cacheHitRate": round(self.cacheHits / lookups * 100, 2) if lookups else 0.0,
            "averageResponseTime": round(self.totalTimeMs / self.calls, 3) if self.calls else 0.0,
        }


class PerformanceMonitor:
    """
    Aggregates hit/miss counters and timings, and owns the cache registry.

    Usage:
        monitor = PerformanceMonitor()
        monitor.register_cache("validation", cache)
        monitor.record(VALIDATOR, cacheHit=False, elapsedMs=3.2)
        monitor.getPerformanceStats()
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._components: Dict[str, _ComponentStats] = {
            VALIDATOR: _ComponentStats(),
            PATH_FINDER: _ComponentStats(),
        }
        self._caches: Dict[str, TTLCache] = {}

    def register_cache(self, name: str, cache: TTLCache) -> None:
        with self._lock:
            self._caches[name] = cache

    def record(
            self,
            component: str,
            cacheHit: bool,
            elapsedMs: float,
            failed: bool = False
    ) -> None:
        """Count one call of component."""
        with self._lock:
            stats = self._components.setdefault(component, _ComponentStats())
            stats.calls += 1
            stats.totalTimeMs += elapsedMs
            if cacheHit:
                stats.cacheHits += 1
            else:
                stats.cacheMisses += 1
            if failed:
                stats.failures += 1

    def getPerformanceStats(self) -> Dict[str, Any]:
        """
        Snapshot of all counters.

        Top-level keys describe the validator; per-component numbers are
        under "components", cache sizes under "cacheSize".
        """
        with self._lock:
            components = {
                name: stats.snapshot() for name, stats in self._components.items()
            }
            caches = dict(self._caches)

        validator = components[VALIDATOR]
        return {
            "totalValidations": validator["calls"],
            "cacheHits": validator["cacheHits"],
            "cacheMisses": validator["cacheMisses"],
            "cacheHitRate": validator["cacheHitRate"],
            "averageResponseTime": validator["averageResponseTime"],
            "cacheSize": {name: len(cache) for name, cache in caches.items()},
            "components": components,
        }

    def clearCache(self) -> None:
        """Empty every registered cache. Counters are kept."""
        with self._lock:
            caches = list(self._caches.values())
        for cache in caches:
            cache.clear()
        logger.info(f"Cleared {len(caches)} caches")

    def reset(self) -> None:
        """Zero all counters."""
        with self._lock:
            for name in list(self._components):
                self._components[name] = _ComponentStats()
