"""In-memory metrics registry shared by the ticket services."""
from __future__ import annotations

from contextlib import contextmanager
from threading import Lock
from typing import Callable, Dict, Iterable, Iterator, Mapping, MutableMapping, Tuple, TypeVar

from .base import CounterMetric, DistributionMetric, Metric, track_duration

MetricT = TypeVar("MetricT", bound=Metric)


class MetricsRegistry:
    """Registry that holds metric instances and offers helper utilities."""

    def __init__(self) -> None:
        self._metrics: MutableMapping[str, Metric] = {}
        self._lock = Lock()

    def _get_or_create(self, name: str, kind: type[MetricT], factory: Callable[[], MetricT]) -> MetricT:
        with self._lock:
            if name not in self._metrics:
                self._metrics[name] = factory()
            metric = self._metrics[name]
        if not isinstance(metric, kind):
            raise TypeError(f"Metric '{name}' already exists with a different type")
        return metric

    def counter(
        self,
        name: str,
        *,
        description: str = "",
        label_names: Iterable[str] | None = None,
    ) -> CounterMetric:
        return self._get_or_create(
            name,
            CounterMetric,
            lambda: CounterMetric(name, description=description, label_names=label_names),
        )

    def distribution(
        self,
        name: str,
        *,
        description: str = "",
        label_names: Iterable[str] | None = None,
    ) -> DistributionMetric:
        return self._get_or_create(
            name,
            DistributionMetric,
            lambda: DistributionMetric(name, description=description, label_names=label_names),
        )

    def metrics(self) -> Tuple[Metric, ...]:
        with self._lock:
            return tuple(self._metrics.values())

    def snapshot(self) -> Dict[str, Mapping[Tuple[str, ...], Mapping[str, float]]]:
        with self._lock:
            return {name: metric.snapshot() for name, metric in self._metrics.items()}

    def reset(self) -> None:
        """Zero every metric while keeping the registrations."""

        for metric in self.metrics():
            metric.reset()

    @contextmanager
    def time_distribution(
        self,
        name: str,
        *,
        labels: Mapping[str, object] | None = None,
    ) -> Iterator[None]:
        metric = self.distribution(name)
        with track_duration(metric, labels=labels):
            yield
