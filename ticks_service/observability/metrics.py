"""
Observability metrics for monitoring and debugging.
Counts ticks, deliveries, evictions and sentry lifecycles.
"""

from fastapi import APIRouter, Response
from typing import Dict, List, Optional, Tuple
import json

MetricKey = Tuple[str, str]


def _key(name: str, labels: Optional[Dict[str, str]]) -> MetricKey:
    return name, json.dumps(labels or {}, sort_keys=True)


def _render(key: MetricKey) -> str:
    name, labels_json = key
    labels = json.loads(labels_json)
    if not labels:
        return name
    inner = ",".join(f'{k}="{v}"' for k, v in labels.items())
    return f"{name}{{{inner}}}"


# Simple metrics tracking without Prometheus dependency
class SimpleMetrics:
    """Simple metrics tracking for observability."""

    def __init__(self):
        self.counters: Dict[MetricKey, int] = {}
        self.gauges: Dict[MetricKey, float] = {}
        self.histograms: Dict[MetricKey, List[float]] = {}

    def inc_counter(self, name: str, labels: Dict[str, str] = None, value: int = 1):
        """Increment a counter."""
        key = _key(name, labels)
        self.counters[key] = self.counters.get(key, 0) + value

    def set_gauge(self, name: str, value: float, labels: Dict[str, str] = None):
        """Set a gauge value."""
        self.gauges[_key(name, labels)] = value

    def observe_histogram(self, name: str, value: float, labels: Dict[str, str] = None):
        """Observe a histogram value."""
        key = _key(name, labels)
        if key not in self.histograms:
            self.histograms[key] = []
        self.histograms[key].append(value)
        # Keep only last 1000 samples
        if len(self.histograms[key]) > 1000:
            self.histograms[key] = self.histograms[key][-1000:]

    def get_counter(self, name: str, labels: Dict[str, str] = None) -> int:
        return self.counters.get(_key(name, labels), 0)

    def get_metrics(self) -> str:
        """Get metrics in text format."""
        lines = []
        for key, value in sorted(self.counters.items()):
            lines.append(f"# TYPE {key[0]} counter")
            lines.append(f"{_render(key)} {value}")
        for key, value in sorted(self.gauges.items()):
            lines.append(f"# TYPE {key[0]} gauge")
            lines.append(f"{_render(key)} {value}")
        for key, values in sorted(self.histograms.items()):
            if values:
                lines.append(f"# TYPE {key[0]} histogram")
                lines.append(f"{_render(key)}_count {len(values)}")
                lines.append(f"{_render(key)}_sum {sum(values)}")
                lines.append(f"{_render(key)}_avg {sum(values)/len(values)}")
        return "\n".join(lines)

    def reset(self):
        self.counters.clear()
        self.gauges.clear()
        self.histograms.clear()

# Global metrics instance
_metrics = SimpleMetrics()

def get_registry() -> SimpleMetrics:
    """Get the global metrics registry."""
    return _metrics

def record_tick_received(sentry_id: str):
    """Record a tick arriving in a sentry's mailbox."""
    _metrics.inc_counter("ticks_received", {"sentry": sentry_id})

def record_fanout(sentry_id: str, accepted: int, skipped: int):
    """Record one fan-out cycle."""
    _metrics.inc_counter("ticks_handed_off", {"sentry": sentry_id}, accepted)
    if skipped:
        _metrics.inc_counter("ticks_skipped", {"sentry": sentry_id}, skipped)

def record_delivery(sentry_id: str, status: str, latency_ms: float):
    """Record a callback invocation outcome ("ok", "error", "timeout")."""
    _metrics.inc_counter("deliveries", {"sentry": sentry_id, "status": status})
    _metrics.observe_histogram("delivery_latency_ms", latency_ms, {"sentry": sentry_id})

def record_eviction(sentry_id: str):
    """Record a subscriber evicted after a delivery timeout."""
    _metrics.inc_counter("evictions", {"sentry": sentry_id})

def record_sentry_lifecycle(event: str):
    """Record a sentry start or termination."""
    _metrics.inc_counter("sentries", {"event": event})

def record_subscribers(sentry_id: str, count: int):
    """Record the current subscriber count of a sentry."""
    _metrics.set_gauge("subscribers", count, {"sentry": sentry_id})

def get_metrics() -> str:
    """Get metrics in text format."""
    return _metrics.get_metrics()

def create_metrics_router() -> APIRouter:
    """Create FastAPI router for metrics endpoint."""
    router = APIRouter()

    @router.get("/metrics")
    def metrics():
        """Metrics endpoint."""
        return Response(get_metrics(), media_type="text/plain")

    return router
