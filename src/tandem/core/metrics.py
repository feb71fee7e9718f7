"""
Tandem Metrics — in-process counters, histograms and gauges.

Usage:
    from tandem.core.metrics import metrics

    metrics.inc("turn.finished", labels={"reason": "stop"})
    metrics.observe("model.call_ms", 812.4, labels={"provider": "openai"})
    metrics.gauge_set("subagent.background", 2)

    snapshot = metrics.snapshot()
"""

from __future__ import annotations

import time
from collections import defaultdict, deque


class MetricsCollector:
    """In-process metrics collector — counters, histograms, gauges."""

    # Rolling window size for histograms
    HISTOGRAM_MAX_SAMPLES = 1000

    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._histograms: dict[str, deque[float]] = defaultdict(
            lambda: deque(maxlen=self.HISTOGRAM_MAX_SAMPLES)
        )
        self._gauges: dict[str, float] = defaultdict(float)
        self._started_at = time.time()

    # ── Counters ──────────────────────────────────────────────────

    def inc(self, name: str, value: int = 1, labels: dict | None = None) -> None:
        self._counters[self._key(name, labels)] += value

    def counter(self, name: str, labels: dict | None = None) -> int:
        return self._counters.get(self._key(name, labels), 0)

    # ── Histograms ────────────────────────────────────────────────

    def observe(self, name: str, value: float, labels: dict | None = None) -> None:
        self._histograms[self._key(name, labels)].append(value)

    # ── Gauges ────────────────────────────────────────────────────

    def gauge_set(self, name: str, value: float, labels: dict | None = None) -> None:
        self._gauges[self._key(name, labels)] = value

    def gauge(self, name: str, labels: dict | None = None) -> float:
        return self._gauges.get(self._key(name, labels), 0.0)

    # ── Snapshot ──────────────────────────────────────────────────

    def snapshot(self) -> dict:
        """Counters, gauges and histogram summaries (count/min/max/p50/p95)."""
        histograms: dict[str, dict] = {}
        for key, samples in self._histograms.items():
            if not samples:
                continue
            ordered = sorted(samples)
            n = len(ordered)
            histograms[key] = {
                "count": n,
                "min": ordered[0],
                "max": ordered[-1],
                "p50": ordered[n // 2],
                "p95": ordered[min(int(n * 0.95), n - 1)],
            }
        return {
            "uptime_seconds": round(time.time() - self._started_at, 1),
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "histograms": histograms,
        }

    def reset(self) -> None:
        self._counters.clear()
        self._histograms.clear()
        self._gauges.clear()

    def _key(self, name: str, labels: dict | None) -> str:
        """e.g. "tool.executed{decision=allow,tool=read}"."""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


# Process-wide singleton
metrics = MetricsCollector()
