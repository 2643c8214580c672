"""Prometheus-style metrics collector for governance decisions. Thread-safe, in-memory. No real Prometheus dependency."""

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque

DECISIONS_TOTAL = "governance_decisions_total"
DECISION_LATENCY = "governance_decision_latency_ms"
AUDIT_FAILURES_TOTAL = "governance_audit_failures_total"
ANOMALIES_TOTAL = "governance_anomalies_total"

# Samples kept per histogram for the percentile; count/sum/max cover the full lifetime.
RECENT_SAMPLES = 1000


@dataclass
class _Histogram:
    count: int = 0
    total: float = 0.0
    max: float = 0.0
    recent: Deque[float] = field(default_factory=lambda: deque(maxlen=RECENT_SAMPLES))

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.max = max(self.max, value)
        self.recent.append(value)

    def p95(self) -> float:
        if not self.recent:
            return 0.0
        ordered = sorted(self.recent)
        return ordered[min(len(ordered) - 1, int(len(ordered) * 0.95))]


class MetricsCollector:
    """
    In-memory Prometheus-style registry. Tracks counters and latency histograms.
    Exposes increment, observe_latency, export_metrics.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, float] = {}
        self._counters_by_labels: dict[str, dict[str, float]] = {}
        self._histograms: dict[str, _Histogram] = {}

    def increment(
        self,
        name: str,
        value: float = 1.0,
        *,
        result: str | None = None,
        operation: str | None = None,
    ) -> None:
        """Increment a counter. Optional result/operation labels for dimensional metrics."""
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value
            labels = [
                f"{label}={v}"
                for label, v in (("result", result), ("operation", operation))
                if v is not None
            ]
            if labels:
                key = f"{name}:{','.join(labels)}"
                by_label = self._counters_by_labels.setdefault(name, {})
                by_label[key] = by_label.get(key, 0) + value

    def observe_latency(
        self,
        name: str,
        latency_ms: float,
        *,
        result: str | None = None,
    ) -> None:
        with self._lock:
            bucket = name if result is None else f"{name}:result={result}"
            self._histograms.setdefault(bucket, _Histogram()).observe(latency_ms)

    def record_decision(self, operation: str, result: str, latency_ms: float) -> None:
        self.increment(DECISIONS_TOTAL, result=result, operation=operation)
        self.observe_latency(DECISION_LATENCY, latency_ms, result=result)

    def export_metrics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "counters_by_labels": {
                    k: dict(v) for k, v in self._counters_by_labels.items()
                },
                "histograms": {
                    k: {
                        "count": h.count,
                        "sum": h.total,
                        "max": h.max,
                        "p95": h.p95(),
                    }
                    for k, h in self._histograms.items()
                },
            }

    def reset(self) -> None:
        """Reset all metrics (for tests)."""
        with self._lock:
            self._counters.clear()
            self._counters_by_labels.clear()
            self._histograms.clear()
