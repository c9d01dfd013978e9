"""In-process metrics for the workflow service."""
from .base import CounterMetric, DistributionMetric, track_duration
from .definitions import (
    DEFAULT_METRIC_DEFINITIONS,
    ERRORS_TOTAL,
    OPERATION_DURATION_SECONDS,
    TRANSITIONS_TOTAL,
    MetricDefinition,
)
from .exporters import PrometheusExporter
from .registry import MetricsRegistry

metrics_registry = MetricsRegistry()


def register_default_metrics(registry: MetricsRegistry | None = None) -> MetricsRegistry:
    """Ensure all default metric definitions exist in the registry."""
    target = registry or metrics_registry
    for definition in DEFAULT_METRIC_DEFINITIONS:
        if definition.metric_type == "counter":
            target.counter(
                definition.name,
                description=definition.description,
                label_names=definition.label_names,
            )
        elif definition.metric_type == "distribution":
            target.distribution(
                definition.name,
                description=definition.description,
                label_names=definition.label_names,
            )
        else:
            raise ValueError(f"Unsupported metric type: {definition.metric_type}")
    return target


register_default_metrics()

__all__ = [
    "CounterMetric",
    "DistributionMetric",
    "ERRORS_TOTAL",
    "MetricDefinition",
    "MetricsRegistry",
    "OPERATION_DURATION_SECONDS",
    "PrometheusExporter",
    "TRANSITIONS_TOTAL",
    "metrics_registry",
    "register_default_metrics",
    "track_duration",
]
