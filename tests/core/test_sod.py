"""Tests for segregation-of-duties rules and violations."""

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from saasguard.core.access_review.models import SodStatus
from saasguard.core.access_review.sod import SodError, SodService
from saasguard.core.events.topics import Topic
from saasguard.core.remediation.revocation import RevocationError, RevocationService
from saasguard.core.storage.records import AccessStatus, UserAppAccess


@pytest.fixture
def revocation(seeded_store, clock):
    return RevocationService(seeded_store, clock=clock)


@pytest.fixture
def sod(tenant_id, seeded_store, bus, revocation, clock):
    return SodService(tenant_id, seeded_store, bus, revocation, clock=clock)


@pytest_asyncio.fixture
async def ledger_payroll_rule(sod):
    return await sod.create_rule(
        "Ledger vs Payroll", ["app-ledger", "app-payroll"], severity="high", created_by="auditor"
    )


class TestRules:
    """Test rule management."""

    @pytest.mark.asyncio
    async def test_rule_needs_two_distinct_apps(self, sod):
        """Test duplicates collapse and a single app is rejected."""
        with pytest.raises(SodError):
            await sod.create_rule("Solo", ["app-ledger", "app-ledger"])

    @pytest.mark.asyncio
    async def test_unknown_severity(self, sod):
        """Test severities are validated."""
        with pytest.raises(SodError, match="Unknown severity"):
            await sod.create_rule("Bad", ["app-ledger", "app-payroll"], severity="urgent")

    @pytest.mark.asyncio
    async def test_toggle_rule(self, sod, ledger_payroll_rule):
        """Test toggling flips the active flag unless told explicitly."""
        rule = await sod.toggle_rule(ledger_payroll_rule.id)
        assert rule.is_active is False

        rule = await sod.toggle_rule(ledger_payroll_rule.id, is_active=False)
        assert rule.is_active is False

        rule = await sod.toggle_rule(ledger_payroll_rule.id)
        assert rule.is_active is True


class TestDetection:
    """Test violation detection."""

    @pytest.mark.asyncio
    async def test_detects_conflicting_holder(self, sod, ledger_payroll_rule, published):
        """Test only users holding two conflicting apps are reported."""
        violations = await sod.detect_violations()

        assert [(v.user_id, v.app_ids) for v in violations] == [("u-sam", ["app-ledger", "app-payroll"])]
        assert violations[0].severity == "high"
        assert violations[0].status == SodStatus.OPEN

        events = [e for e in published if e.topic == Topic.SOD_VIOLATION_DETECTED]
        assert len(events) == 1
        assert events[0].data["rule_name"] == "Ledger vs Payroll"
        assert events[0].data["user_id"] == "u-sam"

    @pytest.mark.asyncio
    async def test_open_violation_is_not_duplicated(self, sod, ledger_payroll_rule):
        """Test a second scan does not report the same open violation."""
        await sod.detect_violations()

        assert await sod.detect_violations() == []

    @pytest.mark.asyncio
    async def test_accepted_violation_is_not_reported_again(self, sod, ledger_payroll_rule, published):
        """Test an accepted exception stays quiet on later scans."""
        violation = (await sod.detect_violations())[0]
        await sod.accept_violation(violation.id, "auditor", "Small team, compensating controls")

        assert await sod.detect_violations() == []
        assert len([e for e in published if e.topic == Topic.SOD_VIOLATION_DETECTED]) == 1

    @pytest.mark.asyncio
    async def test_acceptance_covers_only_the_accepted_apps(self, sod, seeded_store, tenant_id):
        """Test gaining another conflicting app reopens the violation."""
        await sod.create_rule("Money movers", ["app-slack", "app-ledger", "app-payroll"])
        dana = next(v for v in await sod.detect_violations() if v.user_id == "u-dana")
        await sod.accept_violation(dana.id, "auditor", "Finance lead")
        await seeded_store.upsert_user_app_access(
            UserAppAccess(
                id="u-dana:app-payroll",
                tenant_id=tenant_id,
                user_id="u-dana",
                app_id="app-payroll",
                status=AccessStatus.ACTIVE,
            )
        )

        again = await sod.detect_violations()

        assert [(v.user_id, v.app_ids) for v in again] == [
            ("u-dana", ["app-slack", "app-ledger", "app-payroll"])
        ]

    @pytest.mark.asyncio
    async def test_inactive_rules_are_skipped(self, sod, ledger_payroll_rule):
        """Test disabled rules detect nothing."""
        await sod.toggle_rule(ledger_payroll_rule.id, is_active=False)

        assert await sod.detect_violations() == []


class TestResolution:
    """Test remediation and acceptance."""

    @pytest.mark.asyncio
    async def test_remediate_revokes_one_app(self, sod, ledger_payroll_rule, seeded_store, tenant_id, clock):
        """Test remediation revokes the chosen app and closes the violation."""
        violation = (await sod.detect_violations())[0]

        resolved = await sod.remediate_violation(violation.id, "app-payroll", "auditor", "Moved to payroll team")

        assert resolved.status == SodStatus.REMEDIATED
        assert resolved.revoked_app_id == "app-payroll"
        assert resolved.resolved_by == "auditor"
        assert resolved.resolved_at == clock()
        access = await seeded_store.get_user_app_access("u-sam", "app-payroll", tenant_id)
        assert access.status == AccessStatus.REVOKED

        with pytest.raises(SodError, match="already remediated"):
            await sod.accept_violation(violation.id, "auditor", "Too late")

    @pytest.mark.asyncio
    async def test_remediate_rejects_unrelated_app(self, sod, ledger_payroll_rule):
        """Test only apps in the violation can be revoked."""
        violation = (await sod.detect_violations())[0]

        with pytest.raises(SodError, match="not part of violation"):
            await sod.remediate_violation(violation.id, "app-slack", "auditor")

    @pytest.mark.asyncio
    async def test_failed_revocation_keeps_violation_open(self, sod, ledger_payroll_rule, revocation, seeded_store, tenant_id):
        """Test a provider failure leaves the violation open."""
        violation = (await sod.detect_violations())[0]
        revocation.revoke_user_app_access = AsyncMock(side_effect=RevocationError("okta is down"))

        with pytest.raises(SodError, match="okta is down"):
            await sod.remediate_violation(violation.id, "app-ledger", "auditor")

        stored = await seeded_store.get_sod_violation(violation.id, tenant_id)
        assert stored.status == SodStatus.OPEN

    @pytest.mark.asyncio
    async def test_accept_requires_justification(self, sod, ledger_payroll_rule):
        """Test acceptance is documented."""
        violation = (await sod.detect_violations())[0]

        with pytest.raises(SodError, match="justification"):
            await sod.accept_violation(violation.id, "auditor", "")

        accepted = await sod.accept_violation(violation.id, "auditor", "Small team, compensating controls")
        assert accepted.status == SodStatus.ACCEPTED
        assert accepted.resolution_notes == "Small team, compensating controls"
