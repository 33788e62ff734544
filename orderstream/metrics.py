"""
In-process metrics registry.

Components receive a registry through their constructor and record counters,
gauges and duration observations on it. NullMetrics accepts the same calls and
drops them, so code never has to check whether metrics are enabled.
"""

import threading
from typing import Any, Dict, Tuple

MetricKey = Tuple[str, Tuple[Tuple[str, str], ...]]


def _key(name: str, labels: Dict[str, Any]) -> MetricKey:
    return name, tuple(sorted((k, str(v)) for k, v in labels.items()))


def _render(key: MetricKey) -> str:
    name, labels = key
    if not labels:
        return name
    inner = ",".join(f'{k}="{v}"' for k, v in labels)
    return f"{name}{{{inner}}}"


class MetricsRegistry:
    """Thread-safe counters, gauges and summaries"""

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[MetricKey, float] = {}
        self._gauges: Dict[MetricKey, float] = {}
        self._summaries: Dict[MetricKey, Dict[str, float]] = {}

    def inc(self, name: str, value: float = 1, **labels: Any) -> None:
        key = _key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + value

    def set_gauge(self, name: str, value: float, **labels: Any) -> None:
        key = _key(name, labels)
        with self._lock:
            self._gauges[key] = value

    def observe(self, name: str, seconds: float, **labels: Any) -> None:
        key = _key(name, labels)
        with self._lock:
            summary = self._summaries.setdefault(
                key, {"count": 0, "sum": 0.0, "max": 0.0}
            )
            summary["count"] += 1
            summary["sum"] += seconds
            summary["max"] = max(summary["max"], seconds)

    def counter(self, name: str, **labels: Any) -> float:
        with self._lock:
            return self._counters.get(_key(name, labels), 0)

    def summary(self, name: str, **labels: Any) -> Dict[str, float]:
        with self._lock:
            return dict(self._summaries.get(_key(name, labels), {"count": 0, "sum": 0.0, "max": 0.0}))

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Copy of every metric, keyed by its rendered name"""
        with self._lock:
            return {
                "counters": {_render(k): v for k, v in self._counters.items()},
                "gauges": {_render(k): v for k, v in self._gauges.items()},
                "summaries": {_render(k): dict(v) for k, v in self._summaries.items()},
            }


class NullMetrics(MetricsRegistry):
    """Registry that records nothing"""

    def inc(self, name: str, value: float = 1, **labels: Any) -> None:
        pass

    def set_gauge(self, name: str, value: float, **labels: Any) -> None:
        pass

    def observe(self, name: str, seconds: float, **labels: Any) -> None:
        pass
