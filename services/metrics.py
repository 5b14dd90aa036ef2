"""In-process metrics for the command engine."""
from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

logger = logging.getLogger(__name__)

HISTOGRAM_WINDOW = 100


def _summarize(values: list[float]) -> dict[str, float]:
    values = sorted(values)
    if not values:
        return {}
    count = len(values)
    return {
        "count": count,
        "min": values[0],
        "max": values[-1],
        "avg": sum(values) / count,
        "p50": values[int(count * 0.5)],
        "p95": values[int(count * 0.95)] if count > 1 else values[-1],
    }


class MetricsCollector:
    """Thread-safe counters and bounded histograms."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._counters: dict[str, float] = defaultdict(float)
        self._histograms: dict[str, list[float]] = defaultdict(list)

    def increment(self, name: str, value: float = 1.0, labels: dict[str, str] | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] += value

    def histogram(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            values = self._histograms[key]
            values.append(value)
            if len(values) > HISTOGRAM_WINDOW:
                del values[:-HISTOGRAM_WINDOW]

    @contextmanager
    def timer(self, name: str, labels: dict[str, str] | None = None) -> Generator[None, None, None]:
        """Time a block and record it as ``<name>_duration_ms``, even if it raises."""
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            self.histogram(f"{name}_duration_ms", elapsed_ms, labels)
            self.increment(f"{name}_count", labels=labels)

    def _make_key(self, name: str, labels: dict[str, str] | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> float:
        key = self._make_key(name, labels)
        with self._lock:
            return self._counters.get(key, 0.0)

    def get_histogram_stats(self, name: str, labels: dict[str, str] | None = None) -> dict[str, float]:
        key = self._make_key(name, labels)
        with self._lock:
            values = list(self._histograms.get(key, []))
        return _summarize(values)

    def get_all_metrics(self) -> dict[str, Any]:
        """Snapshot of every counter and a summary of every histogram."""
        with self._lock:
            counters = dict(self._counters)
            histograms = {key: list(values) for key, values in self._histograms.items()}
        return {
            "counters": counters,
            "histograms": {key: _summarize(values) for key, values in histograms.items()},
        }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()


metrics = MetricsCollector()


def record_llm_call(model: str, success: bool) -> None:
    labels = {"model": model, "success": str(success).lower()}
    metrics.increment("llm_calls_total", labels=labels)
    if not success:
        metrics.increment("llm_errors_total", labels={"model": model})


def record_action(action: str, success: bool, affected: int = 0) -> None:
    labels = {"action": action, "success": str(success).lower()}
    metrics.increment("actions_total", labels=labels)
    metrics.increment("records_affected_total", float(affected), labels={"action": action})


def record_gate(verdict: str) -> None:
    metrics.increment("gate_verdicts_total", labels={"verdict": verdict})


def record_error(component: str, error_type: str) -> None:
    metrics.increment("errors_total", labels={"component": component, "type": error_type})
