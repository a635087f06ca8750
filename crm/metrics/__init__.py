"""Application wide metrics utilities."""
from .base import CounterMetric, SummaryMetric
from .definitions import DEFAULT_METRIC_DEFINITIONS, MetricDefinition
from .exporters import PrometheusExporter
from .registry import MetricsRegistry

metrics_registry = MetricsRegistry()


def register_default_metrics(registry: MetricsRegistry | None = None) -> MetricsRegistry:
    """Ensure all default metric definitions exist in the registry."""
    target = registry or metrics_registry
    for definition in DEFAULT_METRIC_DEFINITIONS:
        factory = target.counter if definition.metric_type == "counter" else target.summary
        factory(definition.name, description=definition.description, label_names=definition.label_names)
    return target


register_default_metrics()

__all__ = [
    "CounterMetric",
    "MetricDefinition",
    "MetricsRegistry",
    "PrometheusExporter",
    "SummaryMetric",
    "metrics_registry",
    "register_default_metrics",
]
