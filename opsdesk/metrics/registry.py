"""Simple in-memory metrics registry."""
from __future__ import annotations

from collections import defaultdict
from threading import Lock
from typing import Dict, Iterable, Mapping, MutableMapping, Tuple

LabelValues = Tuple[str, ...]


class CounterMetric:
    """Monotonic counter, optionally split by label values."""

    def __init__(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> None:
        self.name = name
        self.description = description
        self.label_names: Tuple[str, ...] = tuple(label_names or ())
        self._values: MutableMapping[LabelValues, float] = defaultdict(float)
        self._lock = Lock()

    def _normalise_labels(self, labels: Mapping[str, str] | None = None) -> LabelValues:
        if not self.label_names:
            if labels:
                raise ValueError(f"Metric '{self.name}' does not accept labels")
            return ()
        if labels is None:
            raise ValueError(f"Metric '{self.name}' requires labels {self.label_names}")
        missing = [label for label in self.label_names if label not in labels]
        if missing:
            raise ValueError(f"Missing labels {missing} for metric '{self.name}'")
        return tuple(labels[label] for label in self.label_names)

    def inc(self, amount: float = 1.0, *, labels: Mapping[str, str] | None = None) -> None:
        key = self._normalise_labels(labels)
        with self._lock:
            self._values[key] += amount

    def value(self, labels: Mapping[str, str] | None = None) -> float:
        key = self._normalise_labels(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def snapshot(self) -> Mapping[LabelValues, float]:
        with self._lock:
            return dict(self._values)


class MetricsRegistry:
    """Registry that holds counter instances keyed by name."""

    def __init__(self) -> None:
        self._metrics: MutableMapping[str, CounterMetric] = {}
        self._lock = Lock()

    def counter(
        self,
        name: str,
        *,
        description: str = "",
        label_names: Iterable[str] | None = None,
    ) -> CounterMetric:
        with self._lock:
            if name not in self._metrics:
                self._metrics[name] = CounterMetric(
                    name, description=description, label_names=label_names
                )
            return self._metrics[name]

    def snapshot(self) -> Dict[str, Mapping[LabelValues, float]]:
        """Return a serialisable snapshot of all registered metrics."""

        with self._lock:
            metrics = dict(self._metrics)
        return {name: metric.snapshot() for name, metric in metrics.items()}
