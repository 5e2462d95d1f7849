from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional, Tuple

from marketplace.config import Config

MetricKey = Tuple[str, Tuple[Tuple[str, str], ...]]


def _labels_tuple(labels: Optional[Dict[str, str]]) -> Tuple[Tuple[str, str], ...]:
    if not labels:
        return ()
    return tuple(sorted((key, str(value)) for key, value in labels.items()))


@dataclass
class Histogram:
    count: int = 0
    total: float = 0.0
    min_value: float = field(default=float("inf"))
    max_value: float = field(default=float("-inf"))

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.min_value = min(self.min_value, value)
        self.max_value = max(self.max_value, value)

    def snapshot(self) -> Dict[str, Any]:
        avg = self.total / self.count if self.count else 0.0
        return {
            "count": self.count,
            "avg": avg,
            "min": None if self.count == 0 else self.min_value,
            "max": None if self.count == 0 else self.max_value,
        }


_MAX_EVENTS = 100

_metrics_lock = threading.Lock()
_counters: Dict[MetricKey, float] = defaultdict(float)
_gauges: Dict[MetricKey, float] = {}
_histograms: Dict[MetricKey, Histogram] = {}
_events: Deque[Dict[str, Any]] = deque(maxlen=_MAX_EVENTS)


def _enabled() -> bool:
    return Config.OBSERVABILITY_ENABLED


def increment_counter(name: str, amount: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
    if not _enabled():
        return
    with _metrics_lock:
        _counters[(name, _labels_tuple(labels))] += amount


def set_gauge(name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
    if not _enabled():
        return
    with _metrics_lock:
        _gauges[(name, _labels_tuple(labels))] = value


def observe_latency(name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
    if not _enabled():
        return
    with _metrics_lock:
        histogram = _histograms.setdefault((name, _labels_tuple(labels)), Histogram())
        histogram.observe(value)


def record_event(name: str, payload: Dict[str, Any]) -> None:
    if not _enabled():
        return
    event = {"name": name, "timestamp": time.time(), "payload": payload}
    with _metrics_lock:
        _events.append(event)


def get_counter_value(name: str, labels: Optional[Dict[str, str]] = None) -> float:
    """Sum a counter across label sets, or read one label set exactly."""
    with _metrics_lock:
        if labels is not None:
            return _counters.get((name, _labels_tuple(labels)), 0.0)
        return sum(value for (metric, _), value in _counters.items() if metric == name)


def get_metrics_snapshot() -> Dict[str, Any]:
    snapshot: Dict[str, Any] = {"counters": {}, "gauges": {}, "histograms": {}, "events": []}
    with _metrics_lock:
        for (name, labels), value in _counters.items():
            snapshot["counters"].setdefault(name, []).append({"labels": dict(labels), "value": value})

        for (name, labels), value in _gauges.items():
            snapshot["gauges"].setdefault(name, []).append({"labels": dict(labels), "value": value})

        for (name, labels), histogram in _histograms.items():
            snapshot["histograms"].setdefault(name, []).append(
                {"labels": dict(labels), "stats": histogram.snapshot()}
            )

        snapshot["events"] = list(_events)

    return snapshot


def get_recent_events(name: Optional[str] = None) -> list[Dict[str, Any]]:
    with _metrics_lock:
        return [event for event in _events if name is None or event["name"] == name]


def reset_metrics() -> None:
    """Testing helper."""
    with _metrics_lock:
        _counters.clear()
        _gauges.clear()
        _histograms.clear()
        _events.clear()
