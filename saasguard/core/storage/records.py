"""Catalog, directory and access-snapshot records."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class ApprovalStatus(str, Enum):
    """Catalog approval disposition of a SaaS application."""

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class AccessStatus(str, Enum):
    """State of a user's grant to an application."""

    ACTIVE = "active"
    REVOKED = "revoked"


@dataclass
class SaasApp:
    """Catalog entry for a SaaS application known to a tenant."""

    id: str
    tenant_id: str
    name: str
    vendor: Optional[str] = None
    website_url: Optional[str] = None
    logo_url: Optional[str] = None
    permissions: List[str] = field(default_factory=list)
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    risk_score: int = 0
    risk_factors: List[str] = field(default_factory=list)
    discovery_method: Optional[str] = None
    discovered_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def external_id(self) -> Optional[str]:
        return self.metadata.get("external_id")


@dataclass
class DirectoryUser:
    """A person in the tenant's directory."""

    id: str
    tenant_id: str
    name: str
    email: Optional[str] = None
    department: Optional[str] = None
    manager_id: Optional[str] = None
    is_active: bool = True


@dataclass
class UserAppAccess:
    """One user's grant to one application."""

    id: str
    tenant_id: str
    user_id: str
    app_id: str
    access_type: str = "user"
    granted_date: Optional[datetime] = None
    last_access_date: Optional[datetime] = None
    business_justification: Optional[str] = None
    status: AccessStatus = AccessStatus.ACTIVE
    revoked_at: Optional[datetime] = None
    source_idp: Optional[str] = None


@dataclass
class OAuthGrant:
    """An OAuth token a user granted to an application."""

    id: str
    tenant_id: str
    user_id: str
    app_id: str
    scopes: List[str] = field(default_factory=list)
    risk_score: int = 0
    risk_factors: List[str] = field(default_factory=list)
    source_idp: Optional[str] = None
    external_token_id: Optional[str] = None
    discovered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
