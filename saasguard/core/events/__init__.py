"""Governance event topics and the in-process event bus."""

from saasguard.core.events.topics import (
    PAYLOAD_TYPES,
    AccessReviewCompletedPayload,
    AnomalyDetectedPayload,
    AppDiscoveredPayload,
    BudgetExceededPayload,
    Event,
    EventPayload,
    LicenseUnusedPayload,
    RenewalApproachingPayload,
    RiskyPermissionPayload,
    SodViolationPayload,
    Topic,
    UserOffboardedPayload,
)
from saasguard.core.events.bus import EventBus, EventBusError, EventHandler

__all__ = [
    "PAYLOAD_TYPES",
    "AccessReviewCompletedPayload",
    "AnomalyDetectedPayload",
    "AppDiscoveredPayload",
    "BudgetExceededPayload",
    "Event",
    "EventBus",
    "EventBusError",
    "EventHandler",
    "EventPayload",
    "LicenseUnusedPayload",
    "RenewalApproachingPayload",
    "RiskyPermissionPayload",
    "SodViolationPayload",
    "Topic",
    "UserOffboardedPayload",
]
