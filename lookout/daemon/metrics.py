"""Metrics collection and observability."""

import json
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger


@dataclass
class LatencyHistogram:
    """Track latency distribution with percentiles."""
    name: str
    buckets: List[float] = field(default_factory=lambda: [
        1, 5, 10, 25, 50, 100, 250, 500, 1000  # milliseconds
    ])
    counts: Dict[float, int] = field(default_factory=dict)
    total_count: int = 0
    sum_ms: float = 0

    def __post_init__(self):
        for bucket in self.buckets:
            self.counts[bucket] = 0

    def record(self, latency_ms: float) -> None:
        """Record a latency measurement."""
        self.total_count += 1
        self.sum_ms += latency_ms

        for bucket in self.buckets:
            if latency_ms <= bucket:
                self.counts[bucket] += 1
                break
        else:
            # Over max bucket
            self.counts[self.buckets[-1]] += 1

    def get_percentile(self, percentile: float) -> float:
        """Get approximate percentile value."""
        if self.total_count == 0:
            return 0

        target_count = self.total_count * (percentile / 100)
        cumulative = 0

        for bucket in self.buckets:
            cumulative += self.counts[bucket]
            if cumulative >= target_count:
                return bucket

        return self.buckets[-1]

    def get_mean(self) -> float:
        if self.total_count == 0:
            return 0
        return self.sum_ms / self.total_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "count": self.total_count,
            "mean": round(self.get_mean(), 2),
            "p50": self.get_percentile(50),
            "p95": self.get_percentile(95),
            "p99": self.get_percentile(99),
        }


class MetricsCollector:
    """
    Central metrics collection for the query engine.
    Histograms are created on first use: `turn.total`, `source.<id>`, ...
    """

    def __init__(self):
        self.histograms: Dict[str, LatencyHistogram] = {}
        self.counters: Dict[str, int] = defaultdict(int)

    def histogram(self, metric_name: str) -> LatencyHistogram:
        if metric_name not in self.histograms:
            self.histograms[metric_name] = LatencyHistogram(metric_name)
        return self.histograms[metric_name]

    def record_latency(self, metric_name: str, latency_ms: float) -> None:
        self.histogram(metric_name).record(latency_ms)

    def increment_counter(self, counter_name: str, amount: int = 1) -> None:
        self.counters[counter_name] += amount

    def export_metrics(self, format: str = "json") -> str:
        """Export all metrics in specified format."""
        if format == "json":
            data = {
                "timestamp": datetime.utcnow().isoformat(),
                "latencies": {
                    name: hist.to_dict()
                    for name, hist in sorted(self.histograms.items())
                },
                "counters": dict(sorted(self.counters.items())),
            }
            return json.dumps(data, indent=2, default=str)

        elif format == "prometheus":
            lines = []
            for name, hist in sorted(self.histograms.items()):
                metric_name = f"lookout_{_metric_id(name)}_latency_ms"
                lines.append(f"# TYPE {metric_name} histogram")

                cumulative = 0
                for bucket in hist.buckets:
                    cumulative += hist.counts[bucket]
                    lines.append(f'{metric_name}_bucket{{le="{bucket}"}} {cumulative}')
                lines.append(f'{metric_name}_bucket{{le="+Inf"}} {hist.total_count}')
                lines.append(f'{metric_name}_sum {hist.sum_ms}')
                lines.append(f'{metric_name}_count {hist.total_count}')

            for name, value in sorted(self.counters.items()):
                metric_name = f"lookout_{_metric_id(name)}_total"
                lines.append(f"# TYPE {metric_name} counter")
                lines.append(f"{metric_name} {value}")

            return "\n".join(lines)

        else:
            raise ValueError(f"Unknown format: {format}")

    def reset(self) -> None:
        """Reset all metrics (for testing)."""
        self.histograms.clear()
        self.counters.clear()


def _metric_id(name: str) -> str:
    return "".join(c if c.isalnum() else "_" for c in name)


# Global metrics instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector instance."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


class LatencyTimer:
    """Context manager for timing operations."""

    def __init__(self, metric_name: str, collector: Optional[MetricsCollector] = None):
        self.metric_name = metric_name
        self.metrics = collector or get_metrics()
        self.start_time: Optional[float] = None
        self.elapsed_ms: float = 0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000
            self.metrics.record_latency(self.metric_name, self.elapsed_ms)
            if self.elapsed_ms > 100:
                logger.debug(f"{self.metric_name} took {self.elapsed_ms:.1f}ms")
        return False
