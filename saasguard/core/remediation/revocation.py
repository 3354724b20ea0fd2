"""Revocation of a user's access to a SaaS application."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

import structlog

from saasguard.core.connectors.base import IdentityProviderConnector
from saasguard.core.storage.records import AccessStatus

if TYPE_CHECKING:
    from saasguard.core.storage.base import GovernanceStore

logger = structlog.get_logger(__name__)


class RevocationError(Exception):
    """Raised when access cannot be revoked."""

    pass


@dataclass
class RevocationResult:
    user_id: str
    app_id: str
    already_revoked: bool = False
    provider_revoked: bool = False
    revoked_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "app_id": self.app_id,
            "already_revoked": self.already_revoked,
            "provider_revoked": self.provider_revoked,
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
        }


class RevocationService:
    """Revokes grants at the identity provider and in the access snapshot.

    Revoking a grant that is already revoked is a no-op, so callers may
    retry freely.
    """

    def __init__(
        self,
        store: "GovernanceStore",
        connectors: Optional[Dict[str, IdentityProviderConnector]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.connectors = dict(connectors or {})
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def register_connector(self, connector: IdentityProviderConnector) -> None:
        self.connectors[connector.idp_id] = connector

    async def revoke_user_app_access(
        self, user_id: str, app_id: str, tenant_id: str
    ) -> RevocationResult:
        """Revoke one user's access to one application.

        Args:
            user_id: Directory user id
            app_id: Catalog app id
            tenant_id: Owning tenant

        Returns:
            RevocationResult describing what was done

        Raises:
            RevocationError: If no grant exists or the provider rejects the call
        """
        access = await self.store.get_user_app_access(user_id, app_id, tenant_id)
        if access is None:
            raise RevocationError(f"No access grant for user {user_id} on app {app_id}")

        if access.status == AccessStatus.REVOKED:
            logger.info("access_already_revoked", user_id=user_id, app_id=app_id)
            return RevocationResult(
                user_id=user_id,
                app_id=app_id,
                already_revoked=True,
                revoked_at=access.revoked_at,
            )

        provider_revoked = False
        connector = self.connectors.get(access.source_idp) if access.source_idp else None

        if connector is not None:
            app = await self.store.get_saas_app(app_id, tenant_id)
            external_app_id = (app.external_id if app else None) or app_id
            try:
                await connector.revoke_access(user_id, external_app_id)
            except Exception as e:
                logger.error(
                    "provider_revocation_failed",
                    idp_id=access.source_idp,
                    user_id=user_id,
                    app_id=app_id,
                    error=str(e),
                )
                raise RevocationError(
                    f"{access.source_idp} rejected revocation for user {user_id}: {e}"
                ) from e
            provider_revoked = True
        else:
            logger.warning(
                "revocation_connector_missing",
                idp_id=access.source_idp,
                user_id=user_id,
                app_id=app_id,
            )

        revoked_at = self._clock()
        await self.store.update_user_app_access(
            access.id, tenant_id, status=AccessStatus.REVOKED, revoked_at=revoked_at
        )

        logger.info(
            "access_revoked",
            tenant_id=tenant_id,
            user_id=user_id,
            app_id=app_id,
            provider_revoked=provider_revoked,
        )
        return RevocationResult(
            user_id=user_id,
            app_id=app_id,
            provider_revoked=provider_revoked,
            revoked_at=revoked_at,
        )
