"""Tests for Shadow IT detection."""

import pytest

from saasguard.core.analyzers.risk_scorer import RiskScore, RiskScorer
from saasguard.core.analyzers.shadow_it_detector import (
    ShadowITDetector,
    ShadowITDetectorError,
    normalize_app_name,
)
from saasguard.core.connectors.base import DiscoveredApp
from saasguard.core.connectors.static import StaticConnector
from saasguard.core.events.topics import Topic
from saasguard.core.storage.records import ApprovalStatus, SaasApp

DRIVE = "https://www.googleapis.com/auth/drive"
CALENDAR = "https://www.googleapis.com/auth/calendar"
GMAIL_READ = "https://www.googleapis.com/auth/gmail.readonly"


@pytest.fixture
def detector(tenant_id, store, bus, clock):
    return ShadowITDetector(tenant_id, store, bus, clock=clock)


@pytest.fixture
def acme_docs():
    """Unvetted app with broad Google scopes (risk 50)."""
    return DiscoveredApp(
        external_id="g-acme-docs",
        name="Acme Docs",
        scopes=[DRIVE, CALENDAR, GMAIL_READ],
    )


@pytest.fixture
def export():
    return {
        "idp_id": "google",
        "users": [
            {"id": "u-1", "name": "Dana Ruiz", "email": "dana@acme.test", "manager_id": "u-2"},
            {"id": "u-2", "name": "Lee Park", "email": "lee@acme.test"},
        ],
        "apps": [
            {"external_id": "g-slack", "name": "Slack", "vendor": "Salesforce", "website_url": "https://slack.com"},
            {"external_id": "g-acme-docs", "name": "Acme Docs", "scopes": [DRIVE, CALENDAR, GMAIL_READ]},
        ],
        "user_access": [
            {"user_id": "u-1", "external_app_id": "g-slack", "last_access_date": "2024-06-01T09:00:00Z"},
            {"user_id": "u-1", "external_app_id": "g-acme-docs", "access_type": "admin"},
            {"user_id": "u-9", "external_app_id": "g-slack"},
            {"user_id": "u-2", "external_app_id": "g-unknown"},
        ],
        "oauth_tokens": [
            {"user_id": "u-1", "external_app_id": "g-acme-docs", "scopes": [DRIVE]},
            {"user_id": "u-1", "external_app_id": "g-unknown", "scopes": [DRIVE]},
        ],
    }


class TestNormalizeAppName:
    """Test app name normalization."""

    def test_strips_case_and_punctuation(self):
        """Test only lowercase letters and digits remain."""
        assert normalize_app_name("Google Drive (Beta) 2.0") == "googledrivebeta20"
        assert normalize_app_name("monday.com") == "mondaycom"


class TestCatalogMatching:
    """Test how discovered apps are matched to catalog entries."""

    @pytest.mark.asyncio
    async def test_exact_name_wins_over_vendor(self, detector, store, tenant_id):
        """Test an exact normalized name match is preferred to a vendor match."""
        await store.create_saas_app(SaasApp(id="a-1", tenant_id=tenant_id, name="Salesforce CRM", vendor="Salesforce"))
        await store.create_saas_app(SaasApp(id="a-2", tenant_id=tenant_id, name="Slack", vendor="Slack Technologies"))

        matched = await detector.find_matching_app(
            DiscoveredApp(external_id="x", name="SLACK", vendor="Salesforce")
        )

        assert matched.id == "a-2"

    @pytest.mark.asyncio
    async def test_vendor_match(self, detector, store, tenant_id):
        """Test falling back to the vendor name."""
        await store.create_saas_app(SaasApp(id="a-1", tenant_id=tenant_id, name="Jira", vendor="Atlassian"))

        matched = await detector.find_matching_app(
            DiscoveredApp(external_id="x", name="Confluence", vendor="atlassian")
        )

        assert matched.id == "a-1"

    @pytest.mark.asyncio
    async def test_substring_match_needs_four_characters(self, detector, store, tenant_id):
        """Test containment only applies when both names are long enough."""
        await store.create_saas_app(SaasApp(id="a-1", tenant_id=tenant_id, name="Zoom"))
        await store.create_saas_app(SaasApp(id="a-2", tenant_id=tenant_id, name="Box"))

        zoom = await detector.find_matching_app(DiscoveredApp(external_id="x", name="Zoom Video Meetings"))
        box = await detector.find_matching_app(DiscoveredApp(external_id="y", name="Dropbox"))

        assert zoom.id == "a-1"
        assert box is None

    @pytest.mark.asyncio
    async def test_other_tenants_are_ignored(self, detector, store):
        """Test catalogs are tenant scoped."""
        await store.create_saas_app(SaasApp(id="a-1", tenant_id="globex", name="Slack"))

        assert await detector.find_matching_app(DiscoveredApp(external_id="x", name="Slack")) is None


class TestProcessApp:
    """Test analysis, persistence and event emission for one app."""

    @pytest.mark.asyncio
    async def test_new_discovery_is_pending(self, detector, store, tenant_id, acme_docs, published, clock):
        """Test an unknown app is created as pending and reported."""
        result = await detector.process_app(acme_docs, "google")

        assert result.created is True
        assert result.analysis.is_unapproved is True
        assert result.analysis.is_new_discovery is True
        assert result.analysis.risk_score == 50
        assert result.analysis.risk_factors[0] == "App not in approved catalog"
        assert result.analysis.recommended_action == "review"

        app = await store.get_saas_app(result.app_id, tenant_id)
        assert app.approval_status == ApprovalStatus.PENDING
        assert app.external_id == "g-acme-docs"
        assert app.metadata["discovered_from"] == "google"
        assert app.discovered_at == clock()
        assert app.permissions == [DRIVE, CALENDAR, GMAIL_READ]

        assert [e.topic for e in published] == [
            Topic.APP_DISCOVERED,
            Topic.OAUTH_RISKY_PERMISSION,
        ]
        discovered = published[0].data
        assert discovered["tenant_id"] == tenant_id
        assert discovered["app_id"] == result.app_id
        assert discovered["risk_level"] == "high"
        assert discovered["is_new_discovery"] is True
        assert published[1].data["scopes"] == [DRIVE, CALENDAR, GMAIL_READ]

    @pytest.mark.asyncio
    async def test_denied_app_gets_penalty(self, detector, store, tenant_id, acme_docs, published):
        """Test a denied catalog app keeps its status and scores 30 higher."""
        await store.create_saas_app(
            SaasApp(id="a-docs", tenant_id=tenant_id, name="Acme Docs", approval_status=ApprovalStatus.DENIED)
        )

        result = await detector.process_app(acme_docs, "google")

        assert result.created is False
        assert result.analysis.risk_score == 80
        assert result.analysis.risk_factors[0] == "App explicitly denied"
        assert result.analysis.recommended_action == "deny"

        app = await store.get_saas_app("a-docs", tenant_id)
        assert app.approval_status == ApprovalStatus.DENIED
        assert app.risk_score == 80
        assert published[0].data["approval_status"] == "denied"
        assert published[0].data["is_new_discovery"] is False

    @pytest.mark.asyncio
    async def test_approved_app_is_updated_quietly(self, detector, store, tenant_id, catalog_app, published, clock):
        """Test an approved app is refreshed without emitting events."""
        await store.create_saas_app(catalog_app)

        result = await detector.process_app(
            DiscoveredApp(external_id="g-slack-2", name="Slack", vendor="Salesforce", website_url="https://slack.com"),
            "okta",
        )

        assert result.created is False
        assert result.analysis.is_unapproved is False
        assert published == []

        app = await store.get_saas_app(catalog_app.id, tenant_id)
        assert app.last_seen_at == clock()
        assert app.discovery_method == "idp"
        assert app.metadata["last_synced_from"] == "okta"
        assert app.external_id == "g-slack"

    @pytest.mark.asyncio
    async def test_matched_app_learns_external_id(self, detector, store, tenant_id):
        """Test a catalog app without an IdP id adopts the discovered one."""
        await store.create_saas_app(
            SaasApp(id="a-zoom", tenant_id=tenant_id, name="Zoom", approval_status=ApprovalStatus.APPROVED)
        )

        await detector.process_app(DiscoveredApp(external_id="g-zoom", name="Zoom"), "google")

        found = await store.find_saas_app_by_external_id(tenant_id, "g-zoom")
        assert found.id == "a-zoom"

    @pytest.mark.asyncio
    async def test_reprocessing_is_idempotent(self, detector, store, tenant_id, acme_docs, published):
        """Test seeing the same app twice updates the first record."""
        first = await detector.process_app(acme_docs, "google")
        second = await detector.process_app(acme_docs, "google")

        assert second.created is False
        assert second.app_id == first.app_id
        assert second.analysis.is_new_discovery is False
        assert second.analysis.risk_factors[0] == "App approval pending"
        assert len(await store.list_saas_apps(tenant_id)) == 1
        # Still unapproved, so reported again
        assert [e.topic for e in published].count(Topic.APP_DISCOVERED) == 2

    @pytest.mark.asyncio
    async def test_low_risk_app_skips_risky_permission_event(self, detector, published):
        """Test only apps scoring 50 or more raise the OAuth event."""
        await detector.process_app(
            DiscoveredApp(external_id="g-notes", name="Notes", scopes=[GMAIL_READ]), "google"
        )

        assert [e.topic for e in published] == [Topic.APP_DISCOVERED]


class TestProcessApps:
    """Test batch processing."""

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, tenant_id, store, bus, acme_docs):
        """Test one failing app does not stop the batch."""

        class FlakyScorer(RiskScorer):
            def score(self, app):
                if app.name == "Broken":
                    raise RuntimeError("scoring exploded")
                return RiskScore(score=80, factors=[])

        detector = ShadowITDetector(tenant_id, store, bus, scorer=FlakyScorer())
        apps = [
            DiscoveredApp(external_id="b", name="Broken"),
            acme_docs,
            DiscoveredApp(external_id="c", name="Calendly"),
        ]

        stats = await detector.process_apps(apps, "google")

        assert stats.apps_processed == 3
        assert stats.apps_failed == 1
        assert stats.apps_created == 2
        assert stats.shadow_it_detected == 2
        assert stats.high_risk_apps == 2
        assert stats.errors == ["Broken: scoring exploded"]


class TestFullSync:
    """Test a complete sync from a static export."""

    @pytest.mark.asyncio
    async def test_full_sync(self, detector, store, tenant_id, catalog_app, export, published):
        """Test users, apps, grants and tokens are all recorded."""
        await store.create_saas_app(catalog_app)
        connector = StaticConnector(export)

        stats = await detector.process_full_sync(connector)

        assert stats.to_dict() == {
            "idp_id": "google",
            "users_synced": 2,
            "apps_processed": 2,
            "apps_created": 1,
            "apps_updated": 1,
            "shadow_it_detected": 1,
            "high_risk_apps": 0,
            "apps_failed": 0,
            "user_access_created": 2,
            "tokens_created": 1,
        }

        grants = await store.list_user_app_access(tenant_id)
        assert {(g.user_id, g.source_idp) for g in grants} == {("u-1", "google")}
        slack = await store.get_user_app_access("u-1", catalog_app.id, tenant_id)
        assert slack.last_access_date.year == 2024

        tokens = await store.list_oauth_grants(tenant_id)
        assert len(tokens) == 1
        assert tokens[0].risk_score == 15

        user = await store.get_user("u-1", tenant_id)
        assert user.manager_id == "u-2"

    @pytest.mark.asyncio
    async def test_second_sync_creates_nothing_new(self, detector, store, export):
        """Test grants and tokens are upserted on repeated syncs."""
        connector = StaticConnector(export)

        await detector.process_full_sync(connector)
        stats = await detector.process_full_sync(connector)

        assert stats.apps.apps_created == 0
        assert stats.user_access_created == 0
        assert stats.tokens_created == 0

    @pytest.mark.asyncio
    async def test_discovery_failure(self, detector):
        """Test connector errors surface as ShadowITDetectorError."""

        class BrokenConnector(StaticConnector):
            async def discover_apps(self):
                raise ConnectionError("idp unreachable")

        with pytest.raises(ShadowITDetectorError, match="idp unreachable"):
            await detector.process_full_sync(BrokenConnector({}, idp_id="okta"))
