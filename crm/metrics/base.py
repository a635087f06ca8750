"""Counter and summary primitives held by the registry."""
from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import ClassVar, Dict, Iterable, Iterator, Mapping, Tuple

LabelValues = Tuple[str, ...]
Sample = Tuple[str, LabelValues, float]


class Metric(ABC):
    prometheus_type: ClassVar[str]

    def __init__(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> None:
        self.name = name
        self.description = description
        self.label_names: Tuple[str, ...] = tuple(label_names or ())
        self._lock = Lock()

    def _label_key(self, labels: Mapping[str, str] | None) -> LabelValues:
        if not self.label_names:
            if labels:
                raise ValueError(f"Metric '{self.name}' does not accept labels")
            return ()
        labels = labels or {}
        missing = [label for label in self.label_names if label not in labels]
        if missing:
            raise ValueError(f"Missing labels {missing} for metric '{self.name}'")
        return tuple(str(labels[label]) for label in self.label_names)

    @abstractmethod
    def samples(self) -> Iterator[Sample]:
        """Yield ``(name suffix, label values, value)`` in label order."""


class CounterMetric(Metric):
    """Monotonic counter."""

    prometheus_type = "counter"

    def __init__(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> None:
        super().__init__(name, description=description, label_names=label_names)
        self._values: Dict[LabelValues, float] = defaultdict(float)

    def inc(self, amount: float = 1.0, *, labels: Mapping[str, str] | None = None) -> None:
        if amount < 0:
            raise ValueError("Counters can only increase")
        key = self._label_key(labels)
        with self._lock:
            self._values[key] += amount

    def value(self, *, labels: Mapping[str, str] | None = None) -> float:
        key = self._label_key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def samples(self) -> Iterator[Sample]:
        with self._lock:
            values = sorted(self._values.items())
        for key, value in values:
            yield "", key, value


@dataclass(slots=True)
class _Summary:
    count: int = 0
    total: float = 0.0


class SummaryMetric(Metric):
    """Observation count and sum, exported as a Prometheus summary."""

    prometheus_type = "summary"

    def __init__(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> None:
        super().__init__(name, description=description, label_names=label_names)
        self._values: Dict[LabelValues, _Summary] = defaultdict(_Summary)

    def observe(self, value: float, *, labels: Mapping[str, str] | None = None) -> None:
        key = self._label_key(labels)
        with self._lock:
            summary = self._values[key]
            summary.count += 1
            summary.total += value

    def count(self, *, labels: Mapping[str, str] | None = None) -> int:
        key = self._label_key(labels)
        with self._lock:
            summary = self._values.get(key)
            return summary.count if summary is not None else 0

    def samples(self) -> Iterator[Sample]:
        with self._lock:
            values = sorted((key, summary.count, summary.total) for key, summary in self._values.items())
        for key, count, total in values:
            yield "_count", key, float(count)
            yield "_sum", key, total
