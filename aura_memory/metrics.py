"""
In-process metrics for the memory layer.

Counters, gauges and simple histograms kept in memory and exported as a
snapshot dict (surfaced through ``MemorySystem.get_memory_stats()`` and the
``aura-memory stats`` command). No external collector is involved.

Usage:
    from aura_memory.metrics import metrics

    metrics.inc(FACTS_FORMED, 3)
    with metrics.timer(RETRIEVAL_SECONDS):
        ...
"""

from __future__ import annotations

import threading
import time
from collections import Counter, defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

# Metric names used across the package.
RUNS_PROCESSED = "formation.runs_processed"
RUNS_DUPLICATE = "formation.runs_duplicate"
FACTS_FORMED = "formation.facts_formed"
EXPERIENCES_FORMED = "formation.experiences_formed"
RETRIEVAL_QUERIES = "retrieval.queries"
RETRIEVAL_RESULTS = "retrieval.results"
RETRIEVAL_SECONDS = "retrieval.seconds"
CONSOLIDATION_PASSES = "consolidation.passes"
CONSOLIDATION_SKIPPED = "consolidation.skipped"
CONSOLIDATION_FAILURES = "consolidation.failures"
CONSOLIDATION_SECONDS = "consolidation.seconds"
PATTERNS_MERGED = "consolidation.patterns_merged"
RULES_EXTRACTED = "consolidation.rules_extracted"
MEMORIES_PRUNED = "consolidation.memories_pruned"
SESSIONS_ACTIVE = "working_memory.sessions_active"
SESSIONS_EXPIRED = "working_memory.sessions_expired"


@dataclass
class _Histogram:
    """Running count, sum and extremes of an observed quantity."""

    count: int = 0
    total: float = 0.0
    low: float = float("inf")
    high: float = float("-inf")

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.low = min(self.low, value)
        self.high = max(self.high, value)

    def snapshot(self) -> dict[str, Any]:
        if not self.count:
            return {"count": 0, "sum": 0.0, "avg": 0.0, "min": 0.0, "max": 0.0}
        return {
            "count": self.count,
            "sum": round(self.total, 4),
            "avg": round(self.total / self.count, 4),
            "min": round(self.low, 4),
            "max": round(self.high, 4),
        }


class MetricsRegistry:
    """Process-wide counters, gauges and histograms behind one lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Counter[str] = Counter()
        self._gauges: dict[str, float] = {}
        self._histograms: defaultdict[str, _Histogram] = defaultdict(_Histogram)
        self._since = time.monotonic()

    def inc(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] += value

    def counter(self, name: str) -> int:
        with self._lock:
            return self._counters[name]

    def set_gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = float(value)

    def gauge(self, name: str) -> float:
        with self._lock:
            return self._gauges.get(name, 0.0)

    def observe(self, name: str, value: float) -> None:
        with self._lock:
            self._histograms[name].observe(value)

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        """Observe the wall time of a block, whether or not it raises."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.observe(name, time.perf_counter() - started)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            counters = {name: count for name, count in self._counters.items() if count}
            histograms = {name: h.snapshot() for name, h in self._histograms.items()}
            return {
                "uptime_seconds": round(time.monotonic() - self._since, 1),
                "counters": counters,
                "gauges": dict(self._gauges),
                "histograms": histograms,
            }

    def reset(self) -> None:
        with self._lock:
            self._counters = Counter()
            self._gauges = {}
            self._histograms = defaultdict(_Histogram)
            self._since = time.monotonic()


metrics = MetricsRegistry()
