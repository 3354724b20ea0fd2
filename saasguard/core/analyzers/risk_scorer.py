"""Risk scoring for discovered SaaS applications.

Scores are additive, built from independent factors and capped at 100. The
permission component comes from a pluggable analyzer; the default one uses a
lookup table of well-known Google Workspace and Microsoft Graph scopes.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

import structlog

from saasguard.core.connectors.base import DiscoveredApp

logger = structlog.get_logger(__name__)

MAX_RISK_SCORE = 100

EXCESSIVE_SCOPE_THRESHOLD = 10


@dataclass
class PermissionRiskAssessment:
    """Outcome of assessing a set of OAuth scopes."""

    risk_score: int = 0
    reasons: List[str] = field(default_factory=list)


@dataclass
class RiskScore:
    score: int
    factors: List[str] = field(default_factory=list)

    @property
    def level(self) -> str:
        return risk_level_for(self.score)


class PermissionRiskAnalyzer(Protocol):
    def assess_permissions(self, scopes: Iterable[str]) -> PermissionRiskAssessment: ...


class OAuthRiskAnalyzer:
    """Scores OAuth scopes against a table of known risky permissions."""

    CRITICAL_WEIGHT = 25
    HIGH_RISK_WEIGHT = 15
    DATA_ACCESS_WEIGHT = 5

    # Admin-level scopes: tenant takeover or directory control
    CRITICAL_SCOPES: Dict[str, str] = {
        "https://www.googleapis.com/auth/admin.directory.user": "User management",
        "https://www.googleapis.com/auth/admin.directory.group": "Group management",
        "https://www.googleapis.com/auth/admin.directory.domain": "Domain management",
        "https://www.googleapis.com/auth/admin.directory.orgunit": "Org unit management",
        "https://www.googleapis.com/auth/admin.directory.rolemanagement": "Role management",
        "https://www.googleapis.com/auth/apps.groups.settings": "Group settings",
        "Directory.ReadWrite.All": "Directory write access",
        "User.ReadWrite.All": "User management",
        "RoleManagement.ReadWrite.Directory": "Role management",
        "Application.ReadWrite.All": "Application registration management",
    }

    # Full read/write over mail, files or calendars
    HIGH_RISK_SCOPES: Dict[str, str] = {
        "https://mail.google.com/": "Full Gmail access",
        "https://www.googleapis.com/auth/gmail.modify": "Modify Gmail",
        "https://www.googleapis.com/auth/gmail.compose": "Send email",
        "https://www.googleapis.com/auth/gmail.send": "Send email",
        "https://www.googleapis.com/auth/drive": "Full Drive access",
        "https://www.googleapis.com/auth/calendar": "Full Calendar access",
        "Mail.ReadWrite": "Mailbox write access",
        "Mail.Send": "Send email",
        "Files.ReadWrite.All": "Write access to all files",
        "Sites.ReadWrite.All": "Write access to all sites",
    }

    DATA_ACCESS_SCOPES: Dict[str, str] = {
        "https://www.googleapis.com/auth/drive.readonly": "Read all Drive files",
        "https://www.googleapis.com/auth/drive.file": "Per-file Drive access",
        "https://www.googleapis.com/auth/gmail.readonly": "Read email",
        "https://www.googleapis.com/auth/calendar.readonly": "Read calendars",
        "https://www.googleapis.com/auth/contacts.readonly": "Read contacts",
        "Mail.Read": "Read email",
        "Files.Read.All": "Read all files",
        "Calendars.Read": "Read calendars",
        "Contacts.Read": "Read contacts",
    }

    def _tiers(self) -> List[Tuple[Dict[str, str], int]]:
        return [
            (self.CRITICAL_SCOPES, self.CRITICAL_WEIGHT),
            (self.HIGH_RISK_SCOPES, self.HIGH_RISK_WEIGHT),
            (self.DATA_ACCESS_SCOPES, self.DATA_ACCESS_WEIGHT),
        ]

    def assess_permissions(self, scopes: Iterable[str]) -> PermissionRiskAssessment:
        """Assess a list of OAuth scopes.

        Each scope contributes at most once, from its highest tier. Unknown
        scopes contribute nothing.

        Args:
            scopes: OAuth scope strings

        Returns:
            PermissionRiskAssessment with a score capped at 100
        """
        score = 0
        reasons: List[str] = []

        for scope in dict.fromkeys(scopes):
            for table, weight in self._tiers():
                description = table.get(scope)
                if description:
                    score += weight
                    reasons.append(f"{description} ({scope})")
                    break

        return PermissionRiskAssessment(risk_score=min(score, MAX_RISK_SCORE), reasons=reasons)


class RiskScorer:
    """Computes the 0-100 risk score of a discovered application."""

    def __init__(self, analyzer: Optional[PermissionRiskAnalyzer] = None):
        self.analyzer = analyzer or OAuthRiskAnalyzer()

    def score(self, app: DiscoveredApp) -> RiskScore:
        """Score a discovered application from its permissions and metadata.

        Args:
            app: Discovered application

        Returns:
            RiskScore with the capped score and human-readable factors
        """
        score = 0
        factors: List[str] = []

        assessment = self.analyzer.assess_permissions(app.scopes)
        score += assessment.risk_score
        factors.extend(f"High-risk permission: {reason}" for reason in assessment.reasons)

        if not app.vendor or app.vendor == "Unknown":
            score += 10
            factors.append("Unknown vendor")

        if not app.website_url:
            score += 5
            factors.append("No website URL available")

        if len(app.scopes) > EXCESSIVE_SCOPE_THRESHOLD:
            score += 10
            factors.append(f"Excessive permissions ({len(app.scopes)} scopes)")

        capped = min(score, MAX_RISK_SCORE)
        logger.debug("app_risk_scored", app_name=app.name, score=capped, factors=len(factors))
        return RiskScore(score=capped, factors=factors)


def risk_level_for(score: int) -> str:
    """Bucket a 0-100 score into low / medium / high / critical."""
    if score >= 75:
        return "critical"
    if score >= 50:
        return "high"
    if score >= 25:
        return "medium"
    return "low"
