"""Application wide metrics utilities."""
from .definitions import DEFAULT_METRIC_DEFINITIONS, MetricDefinition
from .exporters import PrometheusExporter
from .registry import MetricsRegistry

metrics_registry = MetricsRegistry()


def register_default_metrics(registry: MetricsRegistry | None = None) -> None:
    """Ensure all default metric definitions exist in the registry."""
    target = registry or metrics_registry
    for definition in DEFAULT_METRIC_DEFINITIONS:
        if definition.metric_type == "counter":
            factory = target.counter
        elif definition.metric_type == "gauge":
            factory = target.gauge
        elif definition.metric_type == "distribution":
            factory = target.distribution
        else:
            raise ValueError(f"Unsupported metric type: {definition.metric_type}")
        factory(definition.name, description=definition.description, label_names=definition.label_names)


register_default_metrics()

__all__ = [
    "MetricDefinition",
    "MetricsRegistry",
    "PrometheusExporter",
    "metrics_registry",
    "register_default_metrics",
]
