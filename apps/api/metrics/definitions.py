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


TICKETS_CREATED = "tickets_created_total"
TICKET_NUMBER_COLLISIONS = "ticket_number_collisions_total"
TICKET_CREATE_FAILURES = "ticket_create_failures_total"
TICKET_STATUS_CHANGES = "ticket_status_changes_total"
TICKET_ASSIGNMENTS = "ticket_assignments_total"
TICKET_NOTES = "ticket_notes_total"
TICKET_VERSION_CONFLICTS = "ticket_version_conflicts_total"
TICKET_OPERATION_DURATION = "ticket_operation_duration_seconds"
ANALYTICS_DURATION = "analytics_compute_duration_seconds"

DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=TICKETS_CREATED,
        metric_type="counter",
        description="Tickets accepted from the submission form.",
    ),
    MetricDefinition(
        name=TICKET_NUMBER_COLLISIONS,
        metric_type="counter",
        description="Ticket number collisions resolved by regenerating the number.",
    ),
    MetricDefinition(
        name=TICKET_CREATE_FAILURES,
        metric_type="counter",
        description="Submissions rejected after exhausting ticket number retries.",
    ),
    MetricDefinition(
        name=TICKET_STATUS_CHANGES,
        metric_type="counter",
        description="Applied status changes by target status.",
        label_names=("status",),
    ),
    MetricDefinition(
        name=TICKET_ASSIGNMENTS,
        metric_type="counter",
        description="Ticket assignments and reassignments.",
    ),
    MetricDefinition(
        name=TICKET_NOTES,
        metric_type="counter",
        description="Notes appended to tickets.",
    ),
    MetricDefinition(
        name=TICKET_VERSION_CONFLICTS,
        metric_type="counter",
        description="Optimistic version conflicts that forced a re-read.",
    ),
    MetricDefinition(
        name=TICKET_OPERATION_DURATION,
        metric_type="distribution",
        description="Duration of lifecycle operations in seconds.",
        label_names=("operation",),
    ),
    MetricDefinition(
        name=ANALYTICS_DURATION,
        metric_type="distribution",
        description="Duration of analytics snapshot computation in seconds.",
    ),
)
