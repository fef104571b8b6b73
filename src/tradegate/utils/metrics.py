"""
In-process metrics for the decision engine.

Counters, gauges and timers with statistical summaries, served by /metrics.
"""

import statistics
import threading
from collections import defaultdict, deque
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass
class MetricSummary:
    """Statistical summary of timer values."""
    count: int
    min: float
    max: float
    mean: float
    median: float
    p95: float
    p99: float


class MetricsCollector:
    """Thread-safe metrics collection."""

    def __init__(self, max_history: int = 5000):
        self._counters: Dict[str, float] = defaultdict(float)
        self._gauges: Dict[str, float] = {}
        self._timers: Dict[str, deque] = defaultdict(lambda: deque(maxlen=max_history))
        self._lock = threading.RLock()
        self._max_history = max_history

    def increment(self, metric_name: str, value: float = 1.0, tags: Dict[str, str] = None):
        with self._lock:
            self._counters[self._build_metric_name(metric_name, tags)] += value

    def gauge(self, metric_name: str, value: float, tags: Dict[str, str] = None):
        with self._lock:
            self._gauges[self._build_metric_name(metric_name, tags)] = value

    def timer(self, metric_name: str, duration_ms: float, tags: Dict[str, str] = None):
        with self._lock:
            self._timers[self._build_metric_name(metric_name, tags)].append(duration_ms)

    def counter(self, metric_name: str, tags: Dict[str, str] = None) -> float:
        with self._lock:
            return self._counters.get(self._build_metric_name(metric_name, tags), 0.0)

    def _build_metric_name(self, metric_name: str, tags: Dict[str, str] = None) -> str:
        if not tags:
            return metric_name
        tag_string = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
        return f"{metric_name}[{tag_string}]"

    def get_summary(self, metric_name: str) -> Optional[MetricSummary]:
        """Summarize a timer (full name including tags)."""
        with self._lock:
            values = list(self._timers.get(metric_name, ()))

        if not values:
            return None

        return MetricSummary(
            count=len(values),
            min=min(values),
            max=max(values),
            mean=statistics.mean(values),
            median=statistics.median(values),
            p95=self._percentile(values, 0.95),
            p99=self._percentile(values, 0.99)
        )

    def _percentile(self, values: List[float], percentile: float) -> float:
        sorted_values = sorted(values)
        k = (len(sorted_values) - 1) * percentile
        f = int(k)
        c = k - f

        if f + 1 < len(sorted_values):
            return sorted_values[f] + c * (sorted_values[f + 1] - sorted_values[f])
        return sorted_values[f]

    def get_current_values(self) -> Dict[str, Any]:
        with self._lock:
            timer_names = list(self._timers.keys())
            snapshot = {
                'counters': dict(self._counters),
                'gauges': dict(self._gauges),
            }

        snapshot['timers'] = {}
        for name in timer_names:
            summary = self.get_summary(name)
            if summary is not None:
                snapshot['timers'][name] = asdict(summary)
        return snapshot

    def reset(self):
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._timers.clear()


class EngineMetrics:
    """Decision-engine specific metrics on top of a collector."""

    def __init__(self, collector: Optional[MetricsCollector] = None):
        self.collector = collector or MetricsCollector()

    def webhook_received(self, source: str):
        self.collector.increment('webhooks.received', 1.0, {'source': source})

    def webhook_rejected(self, reason: str):
        self.collector.increment('webhooks.rejected', 1.0, {'reason': reason})

    def decision_made(self, action: str, confidence: float, latency_ms: float):
        self.collector.increment('decisions.total', 1.0, {'action': action})
        self.collector.gauge('decisions.last_confidence', confidence)
        self.collector.timer('decisions.latency_ms', latency_ms)

    def decision_forced(self, cause: str):
        self.collector.increment('decisions.forced', 1.0, {'cause': cause})

    def provider_failed(self, provider: str, kind: str):
        self.collector.increment('providers.failed', 1.0, {'provider': provider, 'kind': kind})

    def market_fetch(self, duration_ms: float, completeness: float):
        self.collector.timer('market.fetch_ms', duration_ms)
        self.collector.gauge('market.completeness', completeness)

    def gate_failed(self, gate: str):
        self.collector.increment('gates.failed', 1.0, {'gate': gate})

    def decision_budget_exceeded(self, duration_ms: float):
        self.collector.increment('decisions.budget_exceeded')
        self.collector.timer('decisions.gate_score_ms', duration_ms)

    def guard_violation(self):
        self.collector.increment('guard.violations')

    def snapshot(self) -> Dict[str, Any]:
        return self.collector.get_current_values()
