"""Access-review campaign, review item and SoD records."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class CampaignStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"


class ScopeType(str, Enum):
    """Which slice of the access snapshot a campaign reviews."""

    ALL = "all"
    DEPARTMENT = "department"
    APPS = "apps"
    USERS = "users"


class ReviewDecision(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REVOKED = "revoked"
    DEFERRED = "deferred"


class ExecutionState(str, Enum):
    """Whether a decision's side effect has been carried out."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class CampaignConfig:
    """Input for creating a campaign."""

    name: str
    due_date: datetime
    description: Optional[str] = None
    campaign_type: str = "manual"
    frequency: Optional[str] = None
    scope_type: ScopeType = ScopeType.ALL
    scope_config: Dict[str, Any] = field(default_factory=dict)
    start_date: Optional[datetime] = None
    auto_approve_on_timeout: bool = False


@dataclass
class AccessReviewCampaign:
    id: str
    tenant_id: str
    name: str
    due_date: datetime
    start_date: datetime
    description: Optional[str] = None
    campaign_type: str = "manual"
    frequency: Optional[str] = None
    scope_type: ScopeType = ScopeType.ALL
    scope_config: Dict[str, Any] = field(default_factory=dict)
    status: CampaignStatus = CampaignStatus.DRAFT
    total_items: int = 0
    reviewed_items: int = 0
    approved_items: int = 0
    revoked_items: int = 0
    deferred_items: int = 0
    auto_approve_on_timeout: bool = False
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    completion_report: Optional[Dict[str, Any]] = None


@dataclass
class AccessReviewItem:
    """One (user, app) grant under review, with a snapshot of both sides."""

    id: str
    tenant_id: str
    campaign_id: str
    user_id: str
    app_id: str
    user_name: str = ""
    user_email: Optional[str] = None
    user_department: Optional[str] = None
    app_name: str = ""
    app_risk_score: int = 0
    access_type: str = "user"
    granted_date: Optional[datetime] = None
    last_used_date: Optional[datetime] = None
    days_since_last_use: Optional[int] = None
    business_justification: Optional[str] = None
    risk_level: RiskLevel = RiskLevel.LOW
    reviewer_id: Optional[str] = None
    reviewer_name: Optional[str] = None
    decision: ReviewDecision = ReviewDecision.PENDING
    decision_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    execution_status: ExecutionState = ExecutionState.PENDING
    execution_error: Optional[str] = None
    executed_at: Optional[datetime] = None


@dataclass(frozen=True)
class AccessReviewDecision:
    """Append-only audit row for a submitted decision."""

    id: str
    tenant_id: str
    campaign_id: str
    item_id: str
    user_id: str
    app_id: str
    decision: ReviewDecision
    reviewer_id: str
    reviewer_name: str
    notes: Optional[str] = None
    decided_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SodStatus(str, Enum):
    OPEN = "open"
    REMEDIATED = "remediated"
    ACCEPTED = "accepted"


@dataclass
class SodRule:
    """Set of applications no single user may hold together."""

    id: str
    tenant_id: str
    name: str
    conflicting_app_ids: List[str]
    description: Optional[str] = None
    severity: str = "medium"
    is_active: bool = True
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class SodViolation:
    id: str
    tenant_id: str
    rule_id: str
    user_id: str
    app_ids: List[str]
    severity: str = "medium"
    status: SodStatus = SodStatus.OPEN
    detected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    revoked_app_id: Optional[str] = None
