"""Metric definitions used across the application."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class MetricDefinition:
    """Describe a metric that should exist in the registry."""

    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


BOOKINGS_TOTAL = "queue_bookings_total"
ADVANCES_TOTAL = "queue_advances_total"
COMPLETIONS_TOTAL = "queue_completions_total"
MUTATION_RETRIES_TOTAL = "queue_mutation_retries_total"
MUTATION_FAILURES_TOTAL = "queue_mutation_failures_total"
MUTATION_DURATION_SECONDS = "queue_mutation_duration_seconds"
ACTIVE_TICKETS = "queue_active_tickets"
FANOUT_DROPPED_TOTAL = "queue_fanout_dropped_total"
FANOUT_SUBSCRIBERS = "queue_fanout_subscribers"


DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=BOOKINGS_TOTAL,
        metric_type="counter",
        description="Tickets booked.",
        label_names=("service_type",),
    ),
    MetricDefinition(
        name=ADVANCES_TOTAL,
        metric_type="counter",
        description="Tickets moved from pending to serving.",
        label_names=("service_type",),
    ),
    MetricDefinition(
        name=COMPLETIONS_TOTAL,
        metric_type="counter",
        description="Tickets completed.",
        label_names=("service_type",),
    ),
    MetricDefinition(
        name=MUTATION_RETRIES_TOTAL,
        metric_type="counter",
        description="Line mutations retried after a concurrent write.",
        label_names=("operation",),
    ),
    MetricDefinition(
        name=MUTATION_FAILURES_TOTAL,
        metric_type="counter",
        description="Line mutations abandoned after exhausting retries.",
        label_names=("operation",),
    ),
    MetricDefinition(
        name=MUTATION_DURATION_SECONDS,
        metric_type="distribution",
        description="Time spent applying a line mutation, lock wait included.",
        label_names=("operation",),
    ),
    MetricDefinition(
        name=ACTIVE_TICKETS,
        metric_type="gauge",
        description="Pending and serving tickets per line after the last mutation.",
        label_names=("service_type", "date"),
    ),
    MetricDefinition(
        name=FANOUT_DROPPED_TOTAL,
        metric_type="counter",
        description="Subscribers dropped because their outbox was full.",
    ),
    MetricDefinition(
        name=FANOUT_SUBSCRIBERS,
        metric_type="gauge",
        description="Subscribers currently registered per channel tier.",
        label_names=("tier",),
    ),
)
