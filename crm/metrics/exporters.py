"""Prometheus text exposition of the metrics registry."""
from __future__ import annotations

from .registry import MetricsRegistry

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


class PrometheusExporter:
    """Render every registered metric in the Prometheus text format."""

    def __init__(self, registry: MetricsRegistry) -> None:
        self.registry = registry

    def build_payload(self) -> str:
        lines: list[str] = []
        for metric in self.registry.metrics():
            lines.append(f"# HELP {metric.name} {metric.description}")
            lines.append(f"# TYPE {metric.name} {metric.prometheus_type}")
            for suffix, label_values, value in metric.samples():
                label_text = ""
                if label_values:
                    pairs = ",".join(f'{name}="{label}"' for name, label in zip(metric.label_names, label_values))
                    label_text = "{" + pairs + "}"
                lines.append(f"{metric.name}{suffix}{label_text} {value}")
        return "\n".join(lines) + "\n"
