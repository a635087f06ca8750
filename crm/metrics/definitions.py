"""Metric definitions registered at startup."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name="work_item_mutations_total",
        metric_type="counter",
        description="Accepted work item mutations.",
        label_names=("operation",),
    ),
    MetricDefinition(
        name="work_item_conflicts_total",
        metric_type="counter",
        description="Mutations rejected because the version token moved.",
        label_names=("operation",),
    ),
    MetricDefinition(
        name="work_item_illegal_transitions_total",
        metric_type="counter",
        description="Status transitions rejected by the lifecycle table.",
    ),
    MetricDefinition(
        name="work_item_lock_timeouts_total",
        metric_type="counter",
        description="Assignments aborted because the row lock was not granted in time.",
    ),
    MetricDefinition(
        name="work_item_lock_wait_seconds",
        metric_type="summary",
        description="Time spent waiting for the per work item row lock.",
    ),
    MetricDefinition(
        name="work_item_operation_duration_seconds",
        metric_type="summary",
        description="Duration of work item engine operations.",
        label_names=("operation",),
    ),
)
