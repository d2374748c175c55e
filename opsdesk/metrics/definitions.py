"""Metric definitions used across the application."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class MetricDefinition:
    """Describe a counter that should exist in the registry."""

    name: str
    description: str
    label_names: Tuple[str, ...] = ()


DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name="ticket_transitions_total",
        description="Ticket transitions applied and persisted.",
        label_names=("operation",),
    ),
    MetricDefinition(
        name="ticket_authorization_denials_total",
        description="Ticket transitions rejected by the transition authorizer.",
        label_names=("operation", "reason"),
    ),
    MetricDefinition(
        name="ticket_notification_failures_total",
        description="Notification deliveries that raised and were dropped.",
        label_names=("event",),
    ),
)
