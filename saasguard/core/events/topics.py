"""Governance event topics and their typed payloads.

Every event carries the tenant it belongs to plus a topic-specific payload.
Payloads flatten to a plain mapping (``Event.data``) which is what policy
conditions are evaluated against, so field names here are part of the public
contract other subsystems and tenant policies depend on.
"""

import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Type, Union


class Topic(str, Enum):
    """Closed set of event topics understood by the governance engine."""

    APP_DISCOVERED = "app.discovered"
    LICENSE_UNUSED = "license.unused"
    OAUTH_RISKY_PERMISSION = "oauth.risky_permission"
    USER_OFFBOARDED = "user.offboarded"
    CONTRACT_RENEWAL_APPROACHING = "contract.renewal_approaching"
    BUDGET_EXCEEDED = "budget.exceeded"
    ANOMALY_DETECTED = "anomaly.detected"
    ACCESS_REVIEW_COMPLETED = "access_review.completed"
    SOD_VIOLATION_DETECTED = "sod.violation_detected"

    @classmethod
    def parse(cls, value: Union[str, "Topic"]) -> "Topic":
        """Resolve a topic from its dotted name.

        Raises:
            ValueError: If the name is not a known topic
        """
        if isinstance(value, Topic):
            return value
        try:
            return cls(value)
        except ValueError:
            known = ", ".join(t.value for t in cls)
            raise ValueError(f"Unknown event topic '{value}' (known: {known})")


@dataclass
class EventPayload:
    """Base class for topic payloads.

    Unknown keys received from producers are preserved in ``extra`` so that
    conditions written against them keep working.
    """

    topic: ClassVar[Topic]

    tenant_id: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Flatten the payload into a single mapping."""
        data: Dict[str, Any] = dict(self.extra)
        for f in fields(self):
            if f.name == "extra":
                continue
            value = getattr(self, f.name)
            data[f.name] = list(value) if isinstance(value, (list, tuple)) else value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EventPayload":
        """Build a payload from a raw mapping, keeping unknown keys in ``extra``."""
        known = {f.name for f in fields(cls) if f.name != "extra"}
        kwargs = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known and k != "extra"}
        extra.update(data.get("extra") or {})
        return cls(extra=extra, **kwargs)


@dataclass
class AppDiscoveredPayload(EventPayload):
    """An application not (or not yet) approved was seen in an IdP sync."""

    topic: ClassVar[Topic] = Topic.APP_DISCOVERED

    app_id: str = ""
    app_name: str = ""
    vendor: Optional[str] = None
    approval_status: str = "pending"
    risk_level: str = "low"
    risk_score: int = 0
    recommended_action: str = "review"
    is_new_discovery: bool = False


@dataclass
class RiskyPermissionPayload(EventPayload):
    """An application holds OAuth scopes that scored as high risk."""

    topic: ClassVar[Topic] = Topic.OAUTH_RISKY_PERMISSION

    app_id: str = ""
    app_name: str = ""
    risk_level: str = "low"
    risk_score: int = 0
    scopes: List[str] = field(default_factory=list)


@dataclass
class LicenseUnusedPayload(EventPayload):
    """A paid seat has not been used for a while."""

    topic: ClassVar[Topic] = Topic.LICENSE_UNUSED

    app_id: str = ""
    app_name: str = ""
    user_id: str = ""
    days_unused: int = 0
    license_cost: float = 0.0


@dataclass
class UserOffboardedPayload(EventPayload):
    """A user left the organization."""

    topic: ClassVar[Topic] = Topic.USER_OFFBOARDED

    user_id: str = ""
    user_email: str = ""
    department: Optional[str] = None
    offboarded_by: Optional[str] = None


@dataclass
class RenewalApproachingPayload(EventPayload):
    """A SaaS contract is close to its renewal date."""

    topic: ClassVar[Topic] = Topic.CONTRACT_RENEWAL_APPROACHING

    contract_id: str = ""
    app_id: str = ""
    vendor: Optional[str] = None
    renewal_date: Optional[str] = None
    days_until_renewal: int = 0
    annual_value: float = 0.0
    auto_renew: bool = False


@dataclass
class BudgetExceededPayload(EventPayload):
    """Spend went over a department or application budget."""

    topic: ClassVar[Topic] = Topic.BUDGET_EXCEEDED

    budget_id: str = ""
    department: Optional[str] = None
    budget_amount: float = 0.0
    actual_spend: float = 0.0
    overage_percent: float = 0.0


@dataclass
class AnomalyDetectedPayload(EventPayload):
    """A behavioural anomaly was detected for a user or application."""

    topic: ClassVar[Topic] = Topic.ANOMALY_DETECTED

    anomaly_id: str = ""
    user_id: Optional[str] = None
    app_id: Optional[str] = None
    anomaly_type: str = ""
    severity: str = "low"
    confidence: int = 0


@dataclass
class AccessReviewCompletedPayload(EventPayload):
    """An access-review campaign was closed."""

    topic: ClassVar[Topic] = Topic.ACCESS_REVIEW_COMPLETED

    campaign_id: str = ""
    campaign_name: str = ""
    total_items: int = 0
    reviewed_items: int = 0
    approved_items: int = 0
    revoked_items: int = 0
    deferred_items: int = 0
    completion_rate: int = 0


@dataclass
class SodViolationPayload(EventPayload):
    """A user holds a combination of apps forbidden by a SoD rule."""

    topic: ClassVar[Topic] = Topic.SOD_VIOLATION_DETECTED

    violation_id: str = ""
    rule_id: str = ""
    rule_name: str = ""
    user_id: str = ""
    app_ids: List[str] = field(default_factory=list)
    severity: str = "medium"


PAYLOAD_TYPES: Dict[Topic, Type[EventPayload]] = {
    Topic.APP_DISCOVERED: AppDiscoveredPayload,
    Topic.OAUTH_RISKY_PERMISSION: RiskyPermissionPayload,
    Topic.LICENSE_UNUSED: LicenseUnusedPayload,
    Topic.USER_OFFBOARDED: UserOffboardedPayload,
    Topic.CONTRACT_RENEWAL_APPROACHING: RenewalApproachingPayload,
    Topic.BUDGET_EXCEEDED: BudgetExceededPayload,
    Topic.ANOMALY_DETECTED: AnomalyDetectedPayload,
    Topic.ACCESS_REVIEW_COMPLETED: AccessReviewCompletedPayload,
    Topic.SOD_VIOLATION_DETECTED: SodViolationPayload,
}


@dataclass
class Event:
    """A published governance event."""

    topic: Topic
    payload: EventPayload
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def tenant_id(self) -> str:
        return self.payload.tenant_id

    @property
    def data(self) -> Dict[str, Any]:
        """Flat payload mapping, ``tenant_id`` included."""
        return self.payload.to_dict()

    @classmethod
    def create(cls, payload: EventPayload) -> "Event":
        return cls(topic=payload.topic, payload=payload)

    @classmethod
    def from_dict(cls, topic: Union[str, Topic], data: Dict[str, Any]) -> "Event":
        """Build a typed event from a topic name and raw payload mapping.

        Raises:
            ValueError: If the topic is unknown
        """
        resolved = Topic.parse(topic)
        payload = PAYLOAD_TYPES[resolved].from_dict(data)
        return cls(topic=resolved, payload=payload)
