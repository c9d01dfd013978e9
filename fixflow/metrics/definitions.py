"""Metrics recorded by the workflow service."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

TRANSITIONS_TOTAL = "workflow_transitions_total"
ERRORS_TOTAL = "workflow_errors_total"
OPERATION_DURATION_SECONDS = "workflow_operation_duration_seconds"


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=TRANSITIONS_TOTAL,
        metric_type="counter",
        description="Committed ticket and work-order transitions.",
        label_names=("entity", "action"),
    ),
    MetricDefinition(
        name=ERRORS_TOTAL,
        metric_type="counter",
        description="Workflow operations refused with a workflow error.",
        label_names=("code",),
    ),
    MetricDefinition(
        name=OPERATION_DURATION_SECONDS,
        metric_type="distribution",
        description="Duration of workflow service operations in seconds.",
        label_names=("operation",),
    ),
)
