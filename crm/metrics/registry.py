from __future__ import annotations

from contextlib import contextmanager
from threading import Lock
from time import perf_counter
from typing import Dict, Iterable, Iterator, Mapping, Tuple, Type, TypeVar

from .base import CounterMetric, Metric, SummaryMetric

M = TypeVar("M", bound=Metric)


class MetricsRegistry:
    """Metric instances by name; a name keeps the type it was first registered with."""

    def __init__(self) -> None:
        self._metrics: Dict[str, Metric] = {}
        self._lock = Lock()

    def _register(
        self, metric_type: Type[M], name: str, description: str, label_names: Iterable[str] | None
    ) -> M:
        with self._lock:
            metric = self._metrics.setdefault(
                name, metric_type(name, description=description, label_names=label_names)
            )
        if not isinstance(metric, metric_type):
            raise TypeError(f"Metric '{name}' already exists as a {metric.prometheus_type}")
        return metric

    def counter(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> CounterMetric:
        return self._register(CounterMetric, name, description, label_names)

    def summary(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> SummaryMetric:
        return self._register(SummaryMetric, name, description, label_names)

    def metrics(self) -> Tuple[Metric, ...]:
        with self._lock:
            return tuple(self._metrics.values())

    @contextmanager
    def time_summary(self, name: str, *, labels: Mapping[str, str] | None = None) -> Iterator[None]:
        """Observe the wall time of the ``with`` block into summary ``name``."""

        metric = self.summary(name)
        start = perf_counter()
        try:
            yield
        finally:
            metric.observe(perf_counter() - start, labels=labels)
