"""Tests for app and OAuth permission risk scoring."""

from saasguard.core.analyzers.risk_scorer import (
    OAuthRiskAnalyzer,
    PermissionRiskAssessment,
    RiskScorer,
    risk_level_for,
)
from saasguard.core.connectors.base import DiscoveredApp

DRIVE = "https://www.googleapis.com/auth/drive"
GMAIL_READ = "https://www.googleapis.com/auth/gmail.readonly"
ADMIN_USERS = "https://www.googleapis.com/auth/admin.directory.user"


class TestOAuthRiskAnalyzer:
    """Test scope weighting."""

    def test_weights_by_tier(self):
        """Test critical, high-risk and data-access scopes are weighted 25/15/5."""
        analyzer = OAuthRiskAnalyzer()

        assessment = analyzer.assess_permissions([ADMIN_USERS, DRIVE, GMAIL_READ])

        assert assessment.risk_score == 45
        assert assessment.reasons == [
            f"User management ({ADMIN_USERS})",
            f"Full Drive access ({DRIVE})",
            f"Read email ({GMAIL_READ})",
        ]

    def test_duplicate_and_unknown_scopes(self):
        """Test a repeated scope counts once and unknown scopes add nothing."""
        analyzer = OAuthRiskAnalyzer()

        assessment = analyzer.assess_permissions([DRIVE, DRIVE, "openid", "profile"])

        assert assessment.risk_score == 15
        assert len(assessment.reasons) == 1

    def test_microsoft_graph_scopes(self):
        """Test Microsoft Graph permissions are recognized."""
        assessment = OAuthRiskAnalyzer().assess_permissions(
            ["Directory.ReadWrite.All", "Mail.Send", "Files.Read.All"]
        )

        assert assessment.risk_score == 25 + 15 + 5


class TestRiskScorer:
    """Test the overall app score."""

    def test_unknown_app_with_many_scopes(self):
        """Test an app with no vendor, no website and twelve scopes."""
        scopes = [DRIVE] + [f"https://example.com/scope/{i}" for i in range(11)]
        app = DiscoveredApp(external_id="x-1", name="Acme Docs", scopes=scopes)

        score = RiskScorer().score(app)

        assert score.score == 15 + 10 + 5 + 10
        assert score.factors == [
            f"High-risk permission: Full Drive access ({DRIVE})",
            "Unknown vendor",
            "No website URL available",
            "Excessive permissions (12 scopes)",
        ]
        assert score.level == "medium"

    def test_known_vendor_without_scopes(self):
        """Test a well-described app with no permissions scores zero."""
        app = DiscoveredApp(
            external_id="x-2",
            name="Slack",
            vendor="Salesforce",
            website_url="https://slack.com",
        )

        score = RiskScorer().score(app)

        assert score.score == 0
        assert score.factors == []
        assert score.level == "low"

    def test_unknown_vendor_literal(self):
        """Test the vendor name 'Unknown' counts as missing."""
        app = DiscoveredApp(external_id="x-3", name="Thing", vendor="Unknown", website_url="https://t.io")

        assert RiskScorer().score(app).factors == ["Unknown vendor"]

    def test_score_is_capped(self):
        """Test the score never exceeds 100."""

        class EverythingIsCritical:
            def assess_permissions(self, scopes):
                return PermissionRiskAssessment(risk_score=100, reasons=["all of it"])

        app = DiscoveredApp(external_id="x-4", name="Danger", scopes=["a"] * 11)

        assert RiskScorer(analyzer=EverythingIsCritical()).score(app).score == 100


class TestRiskLevel:
    """Test score bucketing."""

    def test_boundaries(self):
        """Test bucket boundaries at 25, 50 and 75."""
        assert risk_level_for(24) == "low"
        assert risk_level_for(25) == "medium"
        assert risk_level_for(49) == "medium"
        assert risk_level_for(50) == "high"
        assert risk_level_for(74) == "high"
        assert risk_level_for(75) == "critical"
        assert risk_level_for(100) == "critical"
