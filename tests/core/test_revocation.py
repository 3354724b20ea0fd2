"""Tests for access revocation."""

import pytest

from saasguard.core.connectors.base import ConnectorError
from saasguard.core.connectors.static import StaticConnector
from saasguard.core.remediation.revocation import RevocationError, RevocationService
from saasguard.core.storage.records import AccessStatus


class RejectingConnector(StaticConnector):
    async def revoke_access(self, user_id, external_app_id):
        raise ConnectorError("insufficient privileges")


class TestRevocationService:
    """Test revoking grants locally and at the provider."""

    @pytest.mark.asyncio
    async def test_revokes_at_provider_with_external_id(self, seeded_store, tenant_id, clock):
        """Test the provider receives the app's external id."""
        google = StaticConnector({}, idp_id="google")
        service = RevocationService(seeded_store, {"google": google}, clock=clock)

        result = await service.revoke_user_app_access("u-dana", "app-slack", tenant_id)

        assert result.provider_revoked is True
        assert result.already_revoked is False
        assert result.revoked_at == clock()
        assert google.revoked == [("u-dana", "g-slack")]

        access = await seeded_store.get_user_app_access("u-dana", "app-slack", tenant_id)
        assert access.status == AccessStatus.REVOKED
        assert access.revoked_at == clock()

    @pytest.mark.asyncio
    async def test_revoking_twice_is_a_noop(self, seeded_store, tenant_id, clock):
        """Test a second revocation reports the first and calls nobody."""
        google = StaticConnector({}, idp_id="google")
        service = RevocationService(seeded_store, clock=clock)
        service.register_connector(google)

        first = await service.revoke_user_app_access("u-sam", "app-ledger", tenant_id)
        clock.advance(hours=1)
        second = await service.revoke_user_app_access("u-sam", "app-ledger", tenant_id)

        assert second.already_revoked is True
        assert second.revoked_at == first.revoked_at
        assert len(google.revoked) == 1

    @pytest.mark.asyncio
    async def test_without_connector_revokes_locally(self, seeded_store, tenant_id):
        """Test grants from unknown providers are still revoked in the snapshot."""
        service = RevocationService(seeded_store)

        result = await service.revoke_user_app_access("u-sam", "app-payroll", tenant_id)

        assert result.provider_revoked is False
        access = await seeded_store.get_user_app_access("u-sam", "app-payroll", tenant_id)
        assert access.status == AccessStatus.REVOKED

    @pytest.mark.asyncio
    async def test_provider_failure_leaves_grant_active(self, seeded_store, tenant_id):
        """Test a rejected provider call raises and changes nothing."""
        service = RevocationService(seeded_store, {"google": RejectingConnector({}, idp_id="google")})

        with pytest.raises(RevocationError, match="insufficient privileges"):
            await service.revoke_user_app_access("u-sam", "app-slack", tenant_id)

        access = await seeded_store.get_user_app_access("u-sam", "app-slack", tenant_id)
        assert access.status == AccessStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_missing_grant(self, seeded_store, tenant_id):
        """Test revoking a grant that does not exist."""
        service = RevocationService(seeded_store)

        with pytest.raises(RevocationError, match="No access grant"):
            await service.revoke_user_app_access("u-lee", "app-slack", tenant_id)
