"""Tests for built-in policy action handlers."""

import pytest

from saasguard.core.access_review.models import CampaignStatus, ScopeType
from saasguard.core.policies.actions import (
    ActionRegistry,
    ActionResult,
    EscalateAction,
    LogAction,
    render_template,
)
from saasguard.core.policies.models import PolicyContext
from saasguard.core.remediation.revocation import RevocationService
from saasguard.core.storage.records import AccessStatus, ApprovalStatus


def context_for(tenant_id, **trigger_data):
    return PolicyContext(
        tenant_id=tenant_id,
        trigger_event="app.discovered",
        trigger_data=trigger_data,
        policy_id="p-1",
        policy_name="Quarantine",
    )


@pytest.fixture
def revocation(store, clock):
    return RevocationService(store, clock=clock)


@pytest.fixture
def registry(store, bus, revocation, notifier, clock):
    return ActionRegistry.with_defaults(
        store, bus=bus, revocation=revocation, notifiers=[notifier], clock=clock
    )


class TestRenderTemplate:
    """Test message templating."""

    def test_fills_known_placeholders(self, tenant_id):
        """Test trigger data, trigger event and tenant are available."""
        context = context_for(tenant_id, app_name="Acme Docs")

        rendered = render_template("{app_name} in {tenant_id} via {trigger_event}", context)

        assert rendered == "Acme Docs in acme via app.discovered"

    def test_malformed_template_is_returned_unchanged(self, tenant_id):
        """Test a broken format string does not raise."""
        assert render_template("{app_name", context_for(tenant_id)) == "{app_name"


class TestActionRegistry:
    """Test handler registration."""

    def test_default_types(self, registry):
        """Test every built-in type is registered when all services exist."""
        assert registry.registered_types() == [
            "approve_app",
            "block_app",
            "deny_app",
            "escalate",
            "log",
            "notify",
            "revoke_access",
            "start_access_review",
        ]

    def test_defaults_without_revocation(self, store):
        """Test revocation-backed actions need a revocation service."""
        registry = ActionRegistry.with_defaults(store)

        assert "revoke_access" not in registry.registered_types()
        assert "start_access_review" not in registry.registered_types()

    def test_register_rejects_non_handlers(self):
        """Test objects without execute are refused."""
        with pytest.raises(TypeError):
            ActionRegistry().register("bogus", object())

    def test_register_custom_handler(self):
        """Test custom handlers can be added and looked up."""

        class Ticket:
            async def execute(self, config, context):
                return ActionResult(success=True)

        registry = ActionRegistry()
        handler = Ticket()
        registry.register("open_ticket", handler)

        assert registry.get_handler("open_ticket") is handler
        assert registry.get_handler("missing") is None


class TestNotificationActions:
    """Test notify, escalate and log."""

    @pytest.mark.asyncio
    async def test_escalate_prefixes_message(self, tenant_id, notifier):
        """Test escalations name their target and priority."""
        action = EscalateAction([notifier])

        result = await action.execute(
            {"escalate_to": "ciso", "message": "{app_name} needs review"},
            context_for(tenant_id, app_name="Acme Docs", risk_level="high"),
        )

        assert result.success is True
        message, details = notifier.sent[0]
        assert message == "[ESCALATION:high] @ciso Acme Docs needs review"
        assert details["escalate_to"] == "ciso"
        assert details["risk_level"] == "high"
        assert details["policy_name"] == "Quarantine"

    @pytest.mark.asyncio
    async def test_log_action(self, tenant_id):
        """Test the log action succeeds with the rendered message."""
        result = await LogAction().execute(
            {"message": "saw {app_name}", "level": "warning"},
            context_for(tenant_id, app_name="Acme Docs"),
        )

        assert result.success is True
        assert result.data == {"message": "saw Acme Docs"}

    @pytest.mark.asyncio
    async def test_log_action_rejects_unknown_level(self, tenant_id):
        """Test only real log levels are accepted."""
        result = await LogAction().execute({"level": "bind"}, context_for(tenant_id))

        assert result.success is False
        assert result.error == "Unknown log level: bind"


class TestAppApprovalActions:
    """Test approve_app, deny_app and block_app."""

    @pytest.mark.asyncio
    async def test_block_app(self, registry, seeded_store, tenant_id):
        """Test blocking denies the app and records the reason."""
        handler = registry.get_handler("block_app")

        result = await handler.execute(
            {"reason": "Too risky"}, context_for(tenant_id, app_id="app-ledger")
        )

        assert result.success is True
        app = await seeded_store.get_saas_app("app-ledger", tenant_id)
        assert app.approval_status == ApprovalStatus.DENIED
        assert app.metadata["blocked"] is True
        assert app.metadata["block_reason"] == "Too risky"

    @pytest.mark.asyncio
    async def test_approve_app_from_config(self, registry, seeded_store, tenant_id):
        """Test the app id in the action config wins over the trigger data."""
        await seeded_store.update_saas_app("app-payroll", tenant_id, approval_status=ApprovalStatus.PENDING)

        result = await registry.get_handler("approve_app").execute(
            {"app_id": "app-payroll"}, context_for(tenant_id, app_id="app-ledger")
        )

        assert result.data["approval_status"] == "approved"
        app = await seeded_store.get_saas_app("app-payroll", tenant_id)
        assert app.approval_status == ApprovalStatus.APPROVED

    @pytest.mark.asyncio
    async def test_missing_app(self, registry, tenant_id):
        """Test a failed result when the app is absent or unknown."""
        handler = registry.get_handler("deny_app")

        no_id = await handler.execute({}, context_for(tenant_id))
        unknown = await handler.execute({}, context_for(tenant_id, app_id="nope"))

        assert no_id.success is False
        assert unknown.success is False
        assert unknown.error == "App nope not found"


class TestRemediationActions:
    """Test revoke_access and start_access_review."""

    @pytest.mark.asyncio
    async def test_revoke_access(self, registry, seeded_store, tenant_id):
        """Test the grant from the trigger data is revoked."""
        result = await registry.get_handler("revoke_access").execute(
            {}, context_for(tenant_id, user_id="u-dana", app_id="app-ledger")
        )

        assert result.success is True
        assert result.data["already_revoked"] is False
        access = await seeded_store.get_user_app_access("u-dana", "app-ledger", tenant_id)
        assert access.status == AccessStatus.REVOKED

    @pytest.mark.asyncio
    async def test_revoke_access_needs_both_ids(self, registry, tenant_id):
        """Test a failed result without a user id."""
        result = await registry.get_handler("revoke_access").execute(
            {}, context_for(tenant_id, app_id="app-ledger")
        )

        assert result.success is False

    @pytest.mark.asyncio
    async def test_start_access_review(self, registry, seeded_store, tenant_id, clock):
        """Test a campaign scoped to the triggering app is opened."""
        result = await registry.get_handler("start_access_review").execute(
            {"due_in_days": 7}, context_for(tenant_id, app_id="app-ledger", app_name="Ledger")
        )

        assert result.success is True
        assert result.data["total_items"] == 2

        campaign = await seeded_store.get_campaign(result.data["campaign_id"], tenant_id)
        assert campaign.name == "Access review: Ledger"
        assert campaign.status == CampaignStatus.ACTIVE
        assert campaign.scope_type == ScopeType.APPS
        assert campaign.campaign_type == "policy"
        assert (campaign.due_date - campaign.start_date).days == 7
        assert campaign.start_date == clock()
